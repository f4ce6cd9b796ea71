"""Key layout shared by every component that touches the revocation store.

Blacklist entries are keyed by the full capability token string. Renewal
entries are keyed by subject and renewal token so that every live renewal
token of one subject shares the prefix used for all-devices revocation.
"""

from __future__ import annotations

import re

BLACKLIST_PREFIX = "blacklist:"
RENEWAL_PREFIX = "refresh_token:"

BLACKLIST_SENTINEL = "blacklisted"

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _check_subject(subject_id: str) -> str:
    # ":" would let one subject's prefix match another subject's keys
    if not subject_id or ":" in subject_id:
        raise ValueError("subject id must be non-empty and must not contain ':'")
    return subject_id


def blacklist_key(capability_token: str) -> str:
    return f"{BLACKLIST_PREFIX}{capability_token}"


def renewal_key(subject_id: str, renewal_token: str) -> str:
    return f"{RENEWAL_PREFIX}{_check_subject(subject_id)}:{renewal_token}"


def renewal_prefix(subject_id: str) -> str:
    return f"{RENEWAL_PREFIX}{_check_subject(subject_id)}:"


def escape_glob(value: str) -> str:
    """Escape glob metacharacters for Redis ``SCAN MATCH`` patterns."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)

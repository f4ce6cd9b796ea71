from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Callable, Optional

from sessionward.logging import bind_correlation, get_logger
from sessionward.service.claims import ROLES, Claims, TokenKind, TokenPair, to_epoch
from sessionward.service.codec import ClaimsCodec
from sessionward.storage.errors import StoreUnavailable
from sessionward.storage.keys import renewal_key
from sessionward.storage.models import RenewalRecord
from sessionward.storage.revocation import RevocationStore

logger = get_logger(__name__)

DEFAULT_CAPABILITY_TTL_SECONDS = 15 * 60
DEFAULT_RENEWAL_TTL_SECONDS = 7 * 24 * 60 * 60


def _new_token_id() -> str:
    return secrets.token_urlsafe(16)


class SessionIssuer:
    """Mints capability/renewal pairs and records renewal tokens as live."""

    def __init__(
        self,
        codec: ClaimsCodec,
        store: RevocationStore,
        *,
        capability_ttl_seconds: int = DEFAULT_CAPABILITY_TTL_SECONDS,
        renewal_ttl_seconds: int = DEFAULT_RENEWAL_TTL_SECONDS,
        token_id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        if capability_ttl_seconds <= 0 or renewal_ttl_seconds <= 0:
            raise ValueError("token lifetimes must be positive")
        self.codec = codec
        self.store = store
        self.capability_ttl_seconds = capability_ttl_seconds
        self.renewal_ttl_seconds = renewal_ttl_seconds
        self._token_id_factory = token_id_factory or _new_token_id

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _claims(self, subject_id: str, role: str, kind: TokenKind, issued_at: int, ttl: int) -> Claims:
        return Claims(
            subject=subject_id,
            role=role,
            kind=kind,
            issued_at=issued_at,
            expires_at=issued_at + ttl,
            token_id=self._token_id_factory(),
        )

    def mint(self, subject_id: str, role: str, now: datetime) -> TokenPair:
        """Encode a fresh pair without touching the store."""
        if role not in ROLES:
            raise ValueError(f"unknown role: {role!r}")
        issued_at = to_epoch(now)
        capability = self._claims(
            subject_id, role, TokenKind.CAPABILITY, issued_at, self.capability_ttl_seconds
        )
        renewal = self._claims(
            subject_id, role, TokenKind.RENEWAL, issued_at, self.renewal_ttl_seconds
        )
        return TokenPair(
            capability_token=self.codec.encode(capability),
            renewal_token=self.codec.encode(renewal),
            capability_claims=capability,
            renewal_claims=renewal,
        )

    async def record_renewal(
        self, subject_id: str, renewal_token: str, renewal_claims: Claims, now: datetime
    ) -> None:
        """Write the live-session entry for ``renewal_token``.

        The entry lives exactly as long as the token's remaining validity.
        """
        ttl = renewal_claims.remaining_seconds(now)
        if ttl <= 0:
            raise ValueError("renewal token already expired")
        record = RenewalRecord(subject_id=subject_id, created_at=now)
        await self.store.put(renewal_key(subject_id, renewal_token), record.to_json(), ttl)

    async def issue(
        self,
        subject_id: str,
        role: str,
        now: Optional[datetime] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> TokenPair:
        """Mint a pair for an authenticated subject and record its renewal token.

        Raises ``StoreUnavailable`` when the renewal record cannot be written;
        a renewal token that was never recorded could not be rotated later.
        """
        log = bind_correlation(logger, correlation_id)
        now = now or self._now()
        pair = self.mint(subject_id, role, now)
        try:
            await self.record_renewal(subject_id, pair.renewal_token, pair.renewal_claims, now)
        except StoreUnavailable:
            log.error("session_issue_failed", subject_id=subject_id, reason="store_unavailable")
            raise
        log.info(
            "session_issued",
            subject_id=subject_id,
            role=role,
            capability_expires_at=pair.capability_claims.expires_at,
            renewal_expires_at=pair.renewal_claims.expires_at,
        )
        return pair

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class TokenKind(str, Enum):
    CAPABILITY = "capability"
    RENEWAL = "renewal"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


ROLES = frozenset(role.value for role in Role)


def to_epoch(moment: datetime) -> int:
    """Whole epoch seconds for ``moment``; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def from_epoch(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass(frozen=True)
class Claims:
    """Identity assertions carried inside a signed token.

    Timestamps are whole epoch seconds, the resolution the token encodes, so a
    decoded token compares equal to the claims it was minted from.
    """

    subject: str
    role: str
    kind: TokenKind
    issued_at: int
    expires_at: int
    token_id: str

    def remaining_seconds(self, now: datetime) -> int:
        return self.expires_at - to_epoch(now)

    def is_expired(self, now: datetime, leeway_seconds: int = 0) -> bool:
        return to_epoch(now) >= self.expires_at + leeway_seconds

    @property
    def expires_at_datetime(self) -> datetime:
        return from_epoch(self.expires_at)


@dataclass(frozen=True)
class TokenPair:
    capability_token: str
    renewal_token: str
    capability_claims: Claims
    renewal_claims: Claims

    @property
    def capability_max_age(self) -> int:
        return self.capability_claims.expires_at - self.capability_claims.issued_at

    @property
    def renewal_max_age(self) -> int:
        return self.renewal_claims.expires_at - self.renewal_claims.issued_at

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sessionward.logging import bind_correlation, get_logger
from sessionward.service.claims import Claims, TokenKind
from sessionward.service.codec import ClaimsCodec
from sessionward.service.errors import NoToken, TokenError, TokenRevoked
from sessionward.storage.errors import StoreUnavailable
from sessionward.storage.keys import blacklist_key
from sessionward.storage.revocation import RevocationStore

logger = get_logger(__name__)


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, value = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


def extract_token(
    authorization: Optional[str] = None, cookie: Optional[str] = None
) -> Optional[str]:
    """Pick the capability token a request presented.

    The cookie wins over an ``Authorization: Bearer`` header, matching how
    browsers and API clients each send exactly one of them.
    """
    if cookie:
        return cookie
    return extract_bearer(authorization)


class SessionVerifier:
    """Stateless capability-token check plus a single blacklist lookup."""

    def __init__(self, codec: ClaimsCodec, store: RevocationStore) -> None:
        self.codec = codec
        self.store = store

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def verify(
        self,
        capability_token: Optional[str],
        now: Optional[datetime] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> Claims:
        """Return the token's claims or raise the precise rejection reason.

        Local checks (structure, signature, kind, expiry) run before the only
        I/O, the blacklist lookup. When the store cannot answer, the token is
        rejected by propagating ``StoreUnavailable``.
        """
        log = bind_correlation(logger, correlation_id)
        if not capability_token:
            raise NoToken()
        try:
            claims = self.codec.decode(
                capability_token,
                now or self._now(),
                expected_kind=TokenKind.CAPABILITY,
            )
        except TokenError as exc:
            log.info("capability_token_rejected", reason=exc.error_code)
            raise
        try:
            blacklisted = await self.store.get(blacklist_key(capability_token))
        except StoreUnavailable:
            log.warning(
                "blacklist_check_failed_rejecting_token",
                subject_id=claims.subject,
            )
            raise
        if blacklisted is not None:
            log.info("capability_token_rejected", reason=TokenRevoked.error_code, subject_id=claims.subject)
            raise TokenRevoked()
        return claims

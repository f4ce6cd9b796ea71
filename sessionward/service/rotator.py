from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sessionward.logging import bind_correlation, get_logger
from sessionward.service.claims import Claims, TokenKind, TokenPair
from sessionward.service.codec import ClaimsCodec
from sessionward.service.errors import IdentityNotFound, NoToken, TokenError, TokenRevoked
from sessionward.service.issuer import SessionIssuer
from sessionward.storage.errors import StoreUnavailable
from sessionward.storage.keys import renewal_key
from sessionward.storage.models import User
from sessionward.storage.revocation import RevocationStore

logger = get_logger(__name__)


class UserLookup(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...


class SessionRotator:
    """Exchanges a live renewal token, exactly once, for a fresh pair.

    The old renewal record is consumed with the store's atomic ``pop`` before
    the replacement is issued, so of two concurrent rotations of the same
    token only one observes the record. A store without ``pop`` falls back to
    ``get`` followed by ``delete``; with that fallback two concurrent
    rotations can both succeed.
    """

    def __init__(
        self,
        codec: ClaimsCodec,
        store: RevocationStore,
        users: UserLookup,
        issuer: SessionIssuer,
    ) -> None:
        self.codec = codec
        self.store = store
        self.users = users
        self.issuer = issuer

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _consume(self, key: str, log: Any) -> Optional[str]:
        pop = getattr(self.store, "pop", None)
        if pop is not None:
            return await pop(key)
        value = await self.store.get(key)
        if value is None:
            return None
        log.warning("renewal_rotation_not_atomic", reason="store_has_no_pop")
        await self.store.delete(key)
        return value

    async def _restore(
        self, key: str, value: str, claims: Claims, now: datetime, log: Any
    ) -> None:
        ttl = claims.remaining_seconds(now)
        if ttl <= 0:
            return
        try:
            await self.store.put(key, value, ttl)
        except StoreUnavailable:
            # The caller already gets the issuance failure; the client has to
            # log in again if this restore did not land.
            log.error("renewal_record_restore_failed", subject_id=claims.subject)
        else:
            log.info("renewal_record_restored", subject_id=claims.subject)

    async def rotate(
        self,
        old_renewal_token: Optional[str],
        now: Optional[datetime] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> TokenPair:
        """Consume ``old_renewal_token`` and issue a replacement pair.

        The new pair carries the subject's current role from the user
        directory, not the role embedded in the old token.

        Raises:
            InvalidToken / TokenExpired: the token fails local validation
            IdentityNotFound: the subject no longer exists
            NoToken: no renewal token was presented
            TokenRevoked: no live renewal record (revoked, or already rotated)
            StoreUnavailable: the store could not be reached
        """
        log = bind_correlation(logger, correlation_id)
        now = now or self._now()
        if not old_renewal_token:
            raise NoToken("no renewal token provided")
        try:
            claims = self.codec.decode(
                old_renewal_token, now, expected_kind=TokenKind.RENEWAL
            )
        except TokenError as exc:
            log.info("renewal_token_rejected", reason=exc.error_code)
            raise

        user = self.users.get_user(claims.subject)
        if user is None:
            log.warning("renewal_subject_missing", subject_id=claims.subject)
            raise IdentityNotFound()

        key = renewal_key(claims.subject, old_renewal_token)
        consumed = await self._consume(key, log)
        if consumed is None:
            log.warning(
                "renewal_token_rejected",
                reason=TokenRevoked.error_code,
                subject_id=claims.subject,
            )
            raise TokenRevoked()

        try:
            pair = await self.issuer.issue(
                claims.subject, user.role, now, correlation_id=correlation_id
            )
        except StoreUnavailable:
            await self._restore(key, consumed, claims, now, log)
            raise

        log.info(
            "renewal_token_rotated",
            subject_id=claims.subject,
            role=user.role,
            previous_role=claims.role,
        )
        return pair

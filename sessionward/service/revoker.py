from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sessionward.logging import bind_correlation, get_logger
from sessionward.service.claims import TokenKind
from sessionward.service.codec import ClaimsCodec
from sessionward.service.errors import TokenError
from sessionward.storage.keys import BLACKLIST_SENTINEL, blacklist_key, renewal_key, renewal_prefix
from sessionward.storage.revocation import RevocationStore

logger = get_logger(__name__)


class SessionRevoker:
    """Single-session and all-devices logout."""

    def __init__(self, codec: ClaimsCodec, store: RevocationStore) -> None:
        self.codec = codec
        self.store = store

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def revoke_one(
        self,
        capability_token: Optional[str],
        renewal_token: Optional[str],
        subject_id: Optional[str],
        now: Optional[datetime] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Blacklist the capability token and drop its renewal record.

        The blacklist entry lives only for the token's remaining validity, so
        an already expired token is not written at all. Either token may be
        missing and repeating the call is harmless. A capability token that
        fails signature or shape checks is never written to the store.
        """
        log = bind_correlation(logger, correlation_id)
        now = now or self._now()

        blacklisted = False
        if capability_token:
            try:
                claims = self.codec.decode(
                    capability_token,
                    now,
                    expected_kind=TokenKind.CAPABILITY,
                    allow_expired=True,
                )
            except TokenError as exc:
                log.info("logout_capability_token_ignored", reason=exc.error_code)
            else:
                ttl = claims.remaining_seconds(now)
                if ttl > 0:
                    await self.store.put(
                        blacklist_key(capability_token), BLACKLIST_SENTINEL, ttl
                    )
                    blacklisted = True

        renewal_deleted = False
        if renewal_token and subject_id:
            renewal_deleted = await self.store.delete(renewal_key(subject_id, renewal_token))

        log.info(
            "session_revoked",
            subject_id=subject_id,
            capability_blacklisted=blacklisted,
            renewal_deleted=renewal_deleted,
        )

    async def revoke_all(
        self, subject_id: str, *, correlation_id: Optional[str] = None
    ) -> int:
        """Delete every renewal record of ``subject_id``.

        Capability tokens already handed out stay valid until they expire or
        are blacklisted individually.
        """
        log = bind_correlation(logger, correlation_id)
        deleted = await self.store.delete_by_prefix(renewal_prefix(subject_id))
        log.info("all_sessions_revoked", subject_id=subject_id, renewal_records_deleted=deleted)
        return deleted

from __future__ import annotations

import contextlib
from datetime import datetime
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from sessionward.config import Settings
from sessionward.logging import bind_correlation, get_logger
from sessionward.service.claims import ROLES, Claims, Role, TokenPair
from sessionward.service.codec import ClaimsCodec
from sessionward.service.errors import (
    ConflictError,
    InvalidCredentials,
    NotFoundError,
    ValidationError,
)
from sessionward.service.issuer import SessionIssuer
from sessionward.service.revoker import SessionRevoker
from sessionward.service.rotator import SessionRotator
from sessionward.service.verifier import SessionVerifier
from sessionward.storage.errors import ConstraintViolation
from sessionward.storage.models import User
from sessionward.storage.revocation import RevocationStore

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"


class UserStore(Protocol):
    def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        *,
        password_algo: str = PASSWORD_ALGO,
        role: str = "user",
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def update_user_role(self, user_id: str, role: str) -> Optional[User]: ...


class SessionService:
    """Accounts plus the capability/renewal token lifecycle.

    Wires one codec, issuer, verifier, rotator and revoker around an explicitly
    passed user store and revocation store. Holds no mutable state of its own.
    """

    def __init__(
        self,
        users: UserStore,
        store: RevocationStore,
        settings: Settings,
    ) -> None:
        self.users = users
        self.store = store
        self.settings = settings
        self.codec = ClaimsCodec(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            leeway_seconds=settings.token_leeway_seconds,
        )
        self.issuer = SessionIssuer(
            self.codec,
            store,
            capability_ttl_seconds=settings.capability_token_ttl_seconds,
            renewal_ttl_seconds=settings.renewal_token_ttl_seconds,
        )
        self.verifier = SessionVerifier(self.codec, store)
        self.rotator = SessionRotator(self.codec, store, users, self.issuer)
        self.revoker = SessionRevoker(self.codec, store)
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        # Hash checked against when the email is unknown so both login
        # failures cost one argon2 verification.
        self._dummy_hash = self._pwd_hasher.hash("sessionward-dummy-password")
        self.logger = logger

    def _hash_password(self, password: str) -> Tuple[str, str]:
        return self._pwd_hasher.hash(password), PASSWORD_ALGO

    def verify_password(self, user: User, password: str) -> bool:
        if user.password_algo != PASSWORD_ALGO:
            self.logger.warning("password_algo_mismatch", user_id=user.id, algo=user.password_algo)
            return False
        try:
            return self._pwd_hasher.verify(user.password_hash, password)
        except (InvalidHash, VerifyMismatchError):
            self.logger.warning("password_verification_failed", user_id=user.id)
            return False

    def _validate_password(self, password: str) -> None:
        if len(password) < self.settings.min_password_length:
            raise ValidationError(
                "password too short",
                detail={"min_length": self.settings.min_password_length},
            )

    async def register(
        self,
        email: str,
        name: str,
        password: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> Tuple[User, TokenPair]:
        """Create an account and log it in."""
        log = bind_correlation(self.logger, correlation_id)
        self._validate_password(password)
        pwd_hash, algo = self._hash_password(password)
        try:
            user = self.users.create_user(email, name, pwd_hash, password_algo=algo)
        except ConstraintViolation as exc:
            log.info("register_rejected", reason="duplicate_email")
            raise ConflictError("user already exists with this email", detail=exc.detail) from None
        pair = await self.issuer.issue(user.id, user.role, correlation_id=correlation_id)
        log.info("user_registered", user_id=user.id)
        return user, pair

    async def login(
        self,
        email: str,
        password: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> Tuple[User, TokenPair]:
        log = bind_correlation(self.logger, correlation_id)
        user = self.users.get_user_by_email(email)
        if user is None:
            with contextlib.suppress(VerificationError):
                self._pwd_hasher.verify(self._dummy_hash, password)
            log.info("login_rejected", reason="unknown_email")
            raise InvalidCredentials()
        if not self.verify_password(user, password):
            log.info("login_rejected", reason="bad_password", user_id=user.id)
            raise InvalidCredentials()
        pair = await self.issuer.issue(user.id, user.role, correlation_id=correlation_id)
        return user, pair

    async def authenticate(
        self,
        capability_token: Optional[str],
        now: Optional[datetime] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> Claims:
        return await self.verifier.verify(
            capability_token, now, correlation_id=correlation_id
        )

    async def refresh(
        self,
        renewal_token: Optional[str],
        now: Optional[datetime] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> TokenPair:
        return await self.rotator.rotate(renewal_token, now, correlation_id=correlation_id)

    async def logout(
        self,
        capability_token: Optional[str],
        renewal_token: Optional[str],
        subject_id: Optional[str],
        now: Optional[datetime] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> None:
        await self.revoker.revoke_one(
            capability_token,
            renewal_token,
            subject_id,
            now,
            correlation_id=correlation_id,
        )

    async def logout_all(
        self, subject_id: str, *, correlation_id: Optional[str] = None
    ) -> int:
        return await self.revoker.revoke_all(subject_id, correlation_id=correlation_id)

    def set_user_role(self, user_id: str, role: str) -> User:
        """Change a user's role; it reaches tokens at their next rotation."""
        if role not in ROLES:
            raise ValidationError(
                "invalid role", detail={"allowed": sorted(r.value for r in Role)}
            )
        user = self.users.update_user_role(user_id, role)
        if user is None:
            raise NotFoundError("user not found")
        self.logger.info("user_role_updated", user_id=user_id, role=role)
        return user

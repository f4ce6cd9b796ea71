from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP ``status_code`` and a stable
    ``error_code``. Messages are fixed strings chosen here; raw store or codec
    text is logged by the component that caught it, never carried in
    ``message``.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentials(AuthenticationError):
    """Unknown account or wrong password; deliberately indistinguishable."""

    def __init__(self, message: str = "invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)


class TokenError(AuthenticationError):
    """A presented token was not accepted.

    Subclasses keep the precise reason available for logging. At the
    verification boundary every subclass collapses to the generic
    ``unauthorized`` outcome (see ``public_auth_error``).
    """

    default_message = "token rejected"

    def __init__(self, message: Optional[str] = None, **kwargs) -> None:
        super().__init__(message or self.default_message, **kwargs)


class NoToken(TokenError):
    default_message = "no token provided"
    error_code = "no_token"


class InvalidToken(TokenError):
    default_message = "invalid token"
    error_code = "invalid_token"


class MalformedToken(InvalidToken):
    default_message = "malformed token"
    error_code = "malformed_token"


class InvalidSignature(InvalidToken):
    default_message = "invalid token signature"
    error_code = "invalid_signature"


class WrongTokenKind(InvalidToken):
    default_message = "wrong token kind"
    error_code = "wrong_token_kind"


class TokenExpired(TokenError):
    default_message = "token expired"
    error_code = "token_expired"


class TokenRevoked(TokenError):
    default_message = "token revoked"
    error_code = "token_revoked"


class IdentityNotFound(TokenError):
    """The subject of a renewal token no longer exists."""
    default_message = "identity not found"
    error_code = "identity_not_found"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


def public_auth_error() -> AuthenticationError:
    """Uniform verification failure returned across the trust boundary."""
    return AuthenticationError("not authenticated")


def public_renewal_error(exc: TokenError) -> AuthenticationError:
    """Rotation failure with only as much detail as the client needs.

    Revoked and expired renewal tokens keep their codes so the caller knows to
    prompt a re-login; every other rejection is reported as generically invalid.
    """
    if isinstance(exc, TokenExpired):
        return AuthenticationError("session expired", error_code="token_expired")
    if isinstance(exc, (TokenRevoked, IdentityNotFound)):
        return AuthenticationError("session revoked", error_code="token_revoked")
    return public_auth_error()


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidCredentials",
    "TokenError",
    "NoToken",
    "InvalidToken",
    "MalformedToken",
    "InvalidSignature",
    "WrongTokenKind",
    "TokenExpired",
    "TokenRevoked",
    "IdentityNotFound",
    "NotFoundError",
    "ConflictError",
    "public_auth_error",
    "public_renewal_error",
]

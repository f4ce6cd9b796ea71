"""Compact HS256 JWS encoding of :class:`Claims`.

The codec is a pure function of the signing secret: timestamps and token ids
are supplied by the caller and expiry is checked against a caller-supplied
``now``, so tests never depend on the wall clock.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime
from typing import Any, Optional

from sessionward.logging import get_logger
from sessionward.service.claims import ROLES, Claims, TokenKind
from sessionward.service.errors import (
    InvalidSignature,
    InvalidToken,
    MalformedToken,
    TokenExpired,
    WrongTokenKind,
)

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}
DEFAULT_ISSUER = "sessionward"


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(signing_input: str, secret: str) -> bytes:
    return hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _claims_from_payload(payload: Any) -> Claims:
    if not isinstance(payload, dict):
        raise MalformedToken()
    subject = payload.get("sub")
    role = payload.get("role")
    kind = payload.get("type")
    token_id = payload.get("jti")
    issued_at = payload.get("iat")
    expires_at = payload.get("exp")
    if not isinstance(subject, str) or not subject:
        raise MalformedToken()
    if role not in ROLES:
        raise MalformedToken()
    if not isinstance(token_id, str) or not token_id:
        raise MalformedToken()
    if not _is_int(issued_at) or not _is_int(expires_at) or expires_at <= issued_at:
        raise MalformedToken()
    try:
        token_kind = TokenKind(kind)
    except ValueError:
        raise MalformedToken() from None
    return Claims(
        subject=subject,
        role=role,
        kind=token_kind,
        issued_at=issued_at,
        expires_at=expires_at,
        token_id=token_id,
    )


def encode_claims(claims: Claims, secret: str, *, issuer: str = DEFAULT_ISSUER) -> str:
    payload = {
        "iss": issuer,
        "sub": claims.subject,
        "role": claims.role,
        "type": claims.kind.value,
        "jti": claims.token_id,
        "iat": claims.issued_at,
        "exp": claims.expires_at,
    }
    header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
    payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
    signing_input = f"{header_enc}.{payload_enc}"
    return f"{signing_input}.{_encode_segment(_sign(signing_input, secret))}"


def decode_claims(
    token: str,
    secret: str,
    now: Optional[datetime],
    *,
    issuer: str = DEFAULT_ISSUER,
    expected_kind: Optional[TokenKind] = None,
    allow_expired: bool = False,
    leeway_seconds: int = 0,
) -> Claims:
    """Verify ``token`` and return its claims.

    Checks run cheapest first: structure, signature, payload shape, issuer,
    kind (when ``expected_kind`` is given) and finally expiry against ``now``.
    ``allow_expired`` skips only the expiry check.

    Raises:
        MalformedToken: the token cannot be parsed
        InvalidSignature: the signature or algorithm does not match
        InvalidToken: the token was issued for another issuer
        WrongTokenKind: the token is not of ``expected_kind``
        TokenExpired: ``now`` is at or past the embedded expiry
    """
    if not isinstance(token, str):
        raise MalformedToken()
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise MalformedToken()
    header_b64, payload_b64, sig_b64 = parts

    try:
        header = json.loads(_decode_segment(header_b64))
    except (ValueError, RecursionError):
        raise MalformedToken() from None
    if not isinstance(header, dict):
        raise MalformedToken()
    # Reject anything but HS256 to prevent algorithm confusion ("none", RS256)
    if header.get("alg") != _HEADER["alg"]:
        logger.warning("jwt_invalid_algorithm", alg=str(header.get("alg")))
        raise InvalidSignature()

    # Compare the canonical encoding so no other spelling of the same
    # signature bytes verifies; revocation is keyed by the exact string.
    expected_sig = _encode_segment(_sign(f"{header_b64}.{payload_b64}", secret))
    if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode("utf-8", "replace")):
        raise InvalidSignature()

    try:
        payload = json.loads(_decode_segment(payload_b64))
    except (ValueError, RecursionError):
        raise MalformedToken() from None
    claims = _claims_from_payload(payload)
    if payload.get("iss") != issuer:
        raise InvalidToken()
    if expected_kind is not None and claims.kind != expected_kind:
        raise WrongTokenKind()
    if not allow_expired:
        if now is None:
            raise ValueError("now is required unless allow_expired is set")
        if claims.is_expired(now, leeway_seconds):
            raise TokenExpired()
    return claims


class ClaimsCodec:
    """Codec bound to the process-wide secret, issuer and expiry leeway."""

    def __init__(
        self, secret: str, *, issuer: str = DEFAULT_ISSUER, leeway_seconds: int = 0
    ) -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._secret = secret
        self.issuer = issuer
        self.leeway_seconds = leeway_seconds

    def encode(self, claims: Claims) -> str:
        return encode_claims(claims, self._secret, issuer=self.issuer)

    def decode(
        self,
        token: str,
        now: Optional[datetime],
        *,
        expected_kind: Optional[TokenKind] = None,
        allow_expired: bool = False,
    ) -> Claims:
        return decode_claims(
            token,
            self._secret,
            now,
            issuer=self.issuer,
            expected_kind=expected_kind,
            allow_expired=allow_expired,
            leeway_seconds=self.leeway_seconds,
        )

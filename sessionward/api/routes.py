from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from sessionward.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    PrincipalResponse,
    RefreshTokenRequest,
    RegisterRequest,
    UserResponse,
)
from sessionward.service.claims import Claims, TokenPair
from sessionward.service.errors import (
    NotFoundError,
    TokenError,
    public_auth_error,
    public_renewal_error,
)
from sessionward.service.runtime import Runtime
from sessionward.service.verifier import extract_token
from sessionward.storage.errors import StoreUnavailable
from sessionward.storage.models import User

router = APIRouter()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def _correlation_id(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


def _capability_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    settings = get_runtime(request).settings
    return extract_token(authorization, request.cookies.get(settings.access_cookie_name))


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Claims:
    """Resolve the caller's capability token into verified claims.

    Every rejection, including an unreachable store, surfaces as the same 401.
    """
    runtime = get_runtime(request)
    token = _capability_token(request, authorization)
    try:
        return await runtime.sessions.authenticate(
            token, correlation_id=_correlation_id(request)
        )
    except (TokenError, StoreUnavailable):
        raise public_auth_error() from None


def _apply_token_cookies(response: Response, runtime: Runtime, pair: TokenPair) -> None:
    settings = runtime.settings
    response.set_cookie(
        settings.access_cookie_name,
        pair.capability_token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=pair.capability_max_age,
        path="/",
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        pair.renewal_token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=pair.renewal_max_age,
        path="/",
    )


def _clear_token_cookies(response: Response, runtime: Runtime) -> None:
    settings = runtime.settings
    for name in (settings.access_cookie_name, settings.refresh_cookie_name):
        response.delete_cookie(
            name, path="/", secure=settings.is_production, samesite="strict", httponly=True
        )


def _user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, name=user.name, email=user.email, role=user.role)


def _auth_response(message: str, pair: TokenPair, user: Optional[User] = None) -> AuthResponse:
    return AuthResponse(
        message=message,
        user=_user_response(user) if user else None,
        access_token=pair.capability_token,
        refresh_token=pair.renewal_token,
        access_expires_at=pair.capability_claims.expires_at_datetime,
        refresh_expires_at=pair.renewal_claims.expires_at_datetime,
    )


def _envelope(request: Request, data) -> Envelope:
    envelope = Envelope(status="ok", data=data)
    request_id = _correlation_id(request)
    if request_id:
        envelope.request_id = request_id
    return envelope


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest, request: Request, response: Response):
    """Create an account and start its first session.

    Raises:
        400: If the password is too short
        409: If the email is already registered
    """
    runtime = get_runtime(request)
    user, pair = await runtime.sessions.register(
        body.email,
        body.name,
        body.password,
        correlation_id=_correlation_id(request),
    )
    _apply_token_cookies(response, runtime, pair)
    return _envelope(request, _auth_response("user registered successfully", pair, user))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request, response: Response):
    runtime = get_runtime(request)
    user, pair = await runtime.sessions.login(
        body.email, body.password, correlation_id=_correlation_id(request)
    )
    _apply_token_cookies(response, runtime, pair)
    return _envelope(request, _auth_response("login successful", pair, user))


@router.post("/auth/refresh-token", response_model=Envelope, tags=["auth"])
async def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
):
    """Exchange a renewal token for a fresh token pair.

    The renewal token is read from the refresh cookie first, then the body.
    """
    runtime = get_runtime(request)
    token = request.cookies.get(runtime.settings.refresh_cookie_name) or (
        body.refresh_token if body else None
    )
    try:
        pair = await runtime.sessions.refresh(token, correlation_id=_correlation_id(request))
    except TokenError as exc:
        raise public_renewal_error(exc) from None
    _apply_token_cookies(response, runtime, pair)
    return _envelope(request, _auth_response("token refreshed successfully", pair))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    authorization: Optional[str] = Header(None),
    principal: Claims = Depends(get_principal),
):
    runtime = get_runtime(request)
    renewal = request.cookies.get(runtime.settings.refresh_cookie_name) or (
        body.refresh_token if body else None
    )
    await runtime.sessions.logout(
        _capability_token(request, authorization),
        renewal,
        principal.subject,
        correlation_id=_correlation_id(request),
    )
    _clear_token_cookies(response, runtime)
    return _envelope(request, {"message": "logout successful"})


@router.post("/auth/logout-all-devices", response_model=Envelope, tags=["auth"])
async def logout_all_devices(
    request: Request,
    response: Response,
    principal: Claims = Depends(get_principal),
):
    """Drop every renewal record of the caller.

    Capability tokens already issued on other devices stay usable until they
    expire.
    """
    runtime = get_runtime(request)
    deleted = await runtime.sessions.logout_all(
        principal.subject, correlation_id=_correlation_id(request)
    )
    _clear_token_cookies(response, runtime)
    return _envelope(
        request,
        {"message": "logout from all devices successful", "sessions_revoked": deleted},
    )


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def get_me(request: Request, principal: Claims = Depends(get_principal)):
    runtime = get_runtime(request)
    user = runtime.users.get_user(principal.subject)
    if user is None:
        raise NotFoundError("user not found")
    return _envelope(
        request,
        {
            "user": _user_response(user),
            "session": PrincipalResponse(
                user_id=principal.subject,
                role=principal.role,
                expires_at=principal.expires_at_datetime,
            ),
        },
    )


@router.get("/health", response_model=Envelope, tags=["health"])
async def health(request: Request):
    runtime = get_runtime(request)
    return _envelope(
        request,
        {
            "status": "healthy",
            "store": type(runtime.store).__name__,
            "environment": runtime.settings.environment.value,
        },
    )

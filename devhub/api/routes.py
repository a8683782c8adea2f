from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response

from devhub.api.schemas import (
    Envelope,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from devhub.config import Settings
from devhub.logging import get_logger
from devhub.service.errors import NotFoundError, cookie_setting_error
from devhub.service.runtime import check_rate_limit, get_runtime
from devhub.service.session import AuthContext, require_role
from devhub.storage.models import Role

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

LOGIN_RATE_WINDOW_SECONDS = 60


def _http_error(
    code: str,
    message: str,
    status_code: int,
    details: Optional[dict | str] = None,
    headers: Optional[dict] = None,
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload, headers=headers)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def _enforce_rate_limit(runtime, key: str, limit: int, window_seconds: int) -> None:
    allowed, _, reset_seconds = await check_rate_limit(
        runtime, key, limit, window_seconds
    )
    if not allowed:
        raise _http_error(
            "rate_limited",
            "Too many login attempts, please try again later",
            status_code=429,
            details={"retry_after": reset_seconds},
            headers={"Retry-After": str(max(1, reset_seconds))},
        )


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    return await runtime.sessions.authenticate(authorization)


async def get_admin_user(principal: AuthContext = Depends(get_user)) -> AuthContext:
    return require_role(principal, Role.ADMIN.value)


def _cookie_flags(settings: Settings) -> dict:
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict" if settings.is_production else "lax",
        "domain": settings.cookie_domain,
    }


def _apply_refresh_cookie(response: Response, settings: Settings, refresh_token: str) -> None:
    try:
        response.set_cookie(
            settings.refresh_cookie_name,
            refresh_token,
            max_age=settings.refresh_token_ttl_days * 24 * 60 * 60,
            path=settings.refresh_cookie_path,
            **_cookie_flags(settings),
        )
    except (TypeError, ValueError, AssertionError) as exc:
        logger.error("refresh_cookie_failed", error=str(exc))
        raise cookie_setting_error() from exc


def _clear_auth_cookies(response: Response, settings: Settings) -> None:
    flags = _cookie_flags(settings)
    response.delete_cookie(
        settings.refresh_cookie_name, path=settings.refresh_cookie_path, **flags
    )
    response.delete_cookie(settings.access_cookie_name, path="/", **flags)


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an account; admin accounts come from the bootstrap script only."""
    runtime = get_runtime()
    user = await runtime.sessions.register(
        email=body.email,
        password=body.password,
        name=body.name,
        phone=body.phone,
        role=body.role,
    )
    return Envelope(status="ok", data=UserResponse.from_user(user).model_dump(mode="json"))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request, response: Response):
    """Authenticate with email and password.

    Returns an access token in the body and sets the refresh token as an
    http-only cookie scoped to the refresh route.

    Raises:
        401: If credentials are invalid
        403: If the account is locked
        429: If this client exceeded the login rate limit
    """
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime,
        f"login:{_client_ip(request)}",
        runtime.settings.login_rate_limit_per_minute,
        LOGIN_RATE_WINDOW_SECONDS,
    )
    result = await runtime.sessions.login(body.email, body.password)
    _apply_refresh_cookie(response, runtime.settings, result.refresh_token)
    return Envelope(
        status="ok", data=TokenResponse(access_token=result.access_token).model_dump()
    )


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(request: Request):
    """Issue a new access token from the refresh cookie."""
    runtime = get_runtime()
    token = request.cookies.get(runtime.settings.refresh_cookie_name)
    result = await runtime.sessions.refresh(token)
    return Envelope(
        status="ok", data=TokenResponse(access_token=result.access_token).model_dump()
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(response: Response, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    await runtime.sessions.logout(principal.user_id)
    _clear_auth_cookies(response, runtime.settings)
    return Envelope(status="ok", data={"message": "Logged out successfully"})


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user = runtime.store.get_user(principal.user_id)
    if not user:
        raise NotFoundError("user not found")
    return Envelope(status="ok", data=UserResponse.from_user(user).model_dump(mode="json"))


@router.get("/admin/users/{user_id}", response_model=Envelope, tags=["admin"])
async def admin_get_user(user_id: str, principal: AuthContext = Depends(get_admin_user)):
    runtime = get_runtime()
    try:
        uuid.UUID(user_id)
    except ValueError:
        raise NotFoundError("user not found", detail={"user_id": user_id})
    user = runtime.store.get_user(user_id)
    if not user:
        raise NotFoundError("user not found", detail={"user_id": user_id})
    return Envelope(status="ok", data=UserResponse.from_user(user).model_dump(mode="json"))

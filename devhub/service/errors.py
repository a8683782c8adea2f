from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code used in the response envelope:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - rate_limited (429)
    - server_error (500)
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


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class AuthErrorKind(str, Enum):
    """Every way the authentication core can fail."""

    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_GENERATION = "token_generation"
    COOKIE_SETTING = "cookie_setting"


class TokenFailureReason(str, Enum):
    """Reason codes attached to ``TOKEN_INVALID`` errors."""

    MISSING = "missing"
    MALFORMED = "malformed"
    INVALID = "invalid"
    MISMATCH = "mismatch"
    VERSION_MISMATCH = "version_mismatch"
    USER_NOT_FOUND = "user_not_found"


class AuthError(ServiceError):
    """Authentication-core failure tagged with an :class:`AuthErrorKind`.

    Status and envelope code are resolved from ``kind`` at the HTTP
    boundary (see ``devhub.api.error_handling``).
    """

    status_code = 401
    error_code = "unauthorized"

    def __init__(
        self, kind: AuthErrorKind, message: str, *, detail: Optional[dict] = None
    ) -> None:
        super().__init__(message, detail=detail)
        self.kind = kind

    @property
    def reason(self) -> Optional[TokenFailureReason]:
        raw = self.detail.get("reason")
        return TokenFailureReason(raw) if raw else None

    def __repr__(self) -> str:
        return f"AuthError(kind={self.kind.value!r}, message={self.message!r})"


def authentication_error(message: str = "Invalid credentials") -> AuthError:
    return AuthError(AuthErrorKind.INVALID_CREDENTIALS, message)


def account_locked_error(
    unlock_time: datetime,
    message: str = "Account temporarily locked due to multiple failed attempts",
) -> AuthError:
    return AuthError(
        AuthErrorKind.ACCOUNT_LOCKED,
        message,
        detail={"unlock_time": unlock_time.isoformat()},
    )


def token_verification_error(
    reason: TokenFailureReason, message: str = "Token verification failed"
) -> AuthError:
    return AuthError(
        AuthErrorKind.TOKEN_INVALID, message, detail={"reason": reason.value}
    )


def token_expired_error(message: str = "Token has expired") -> AuthError:
    return AuthError(AuthErrorKind.TOKEN_EXPIRED, message)


def token_generation_error(message: str = "Error generating token") -> AuthError:
    return AuthError(AuthErrorKind.TOKEN_GENERATION, message)


def cookie_setting_error(message: str = "Failed to set cookie") -> AuthError:
    return AuthError(AuthErrorKind.COOKIE_SETTING, message)


__all__ = [
    "ServiceError",
    "ValidationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "AuthErrorKind",
    "TokenFailureReason",
    "AuthError",
    "authentication_error",
    "account_locked_error",
    "token_verification_error",
    "token_expired_error",
    "token_generation_error",
    "cookie_setting_error",
]

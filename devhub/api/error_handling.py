from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from devhub.api.schemas import Envelope, ErrorBody
from devhub.logging import get_logger
from devhub.service.errors import AuthError, AuthErrorKind, ServiceError
from devhub.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
    429: "rate_limited",
    500: "server_error",
}

_GENERIC_SERVER_MESSAGE = "internal server error"


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def auth_error_status(kind: AuthErrorKind) -> tuple[int, str]:
    """HTTP status and envelope code for an authentication failure kind."""

    match kind:
        case AuthErrorKind.INVALID_CREDENTIALS:
            return 401, "unauthorized"
        case AuthErrorKind.ACCOUNT_LOCKED:
            return 403, "account_locked"
        case AuthErrorKind.TOKEN_INVALID:
            return 401, "invalid_token"
        case AuthErrorKind.TOKEN_EXPIRED:
            return 403, "token_expired"
        case AuthErrorKind.TOKEN_GENERATION | AuthErrorKind.COOKIE_SETTING:
            return 500, "server_error"
    raise ValueError(f"unhandled auth error kind: {kind!r}")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details or None)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(
        status_code=status_code, content=envelope.model_dump(), headers=headers
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-producing handlers for domain, storage and framework errors."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        status_code, code = auth_error_status(exc.kind)
        log_fn = logger.error if status_code >= 500 else logger.warning
        log_fn(
            "auth_error",
            path=request.url.path,
            method=request.method,
            kind=exc.kind.value,
            status_code=status_code,
            message=exc.message,
            detail=exc.detail,
        )
        if status_code >= 500:
            return _error_response(status_code, _GENERIC_SERVER_MESSAGE, code=code)
        return _error_response(status_code, exc.message, exc.detail, code=code)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        if exc.status_code >= 500:
            return _error_response(
                exc.status_code, _GENERIC_SERVER_MESSAGE, code=exc.error_code
            )
        return _error_response(
            exc.status_code, exc.message, exc.detail, code=exc.error_code
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        # ctx may hold exception instances; keep only the serializable parts.
        errors = [
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            error_count=len(errors),
        )
        return _error_response(
            422, "request validation failed", errors, code="validation_error"
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        # Envelope-shaped detail from _http_error() in routes.
        if isinstance(exc.detail, dict) and isinstance(exc.detail.get("error"), dict):
            error_obj = exc.detail["error"]
            message = error_obj.get("message", "http error")
            code = error_obj.get("code")
            details = error_obj.get("details")
        else:
            message = str(exc.detail) if exc.detail else "http error"
            code = None
            details = None
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "http_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=code,
            message=message,
        )
        return _error_response(
            exc.status_code, message, details, code=code, headers=exc.headers
        )

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, _GENERIC_SERVER_MESSAGE, code="server_error")

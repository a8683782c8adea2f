from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Client-supplied request ids end up in every log line; keep them boring.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
_JWT_PATTERN = re.compile(r"^[\w-]+\.[\w-]+\.[\w-]+$")

# Values under these keys are never logged, not even partially.
_SECRET_KEYS = ("password", "secret", "token", "authorization", "cookie", "hash")
# Values under these keys are masked but stay recognisable.
_PII_KEYS = ("email", "phone")
# Keys that contain a marker word but never carry secrets.
_KEEP_KEYS = frozenset({"event", "security_event", "token_version"})


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(candidate: Optional[str] = None) -> str:
    """Bind a request id for the current context.

    A well-formed client id (``X-Request-ID``) is reused; anything else is
    replaced by a fresh UUID.
    """
    if candidate and _REQUEST_ID_PATTERN.match(candidate):
        rid = candidate
    else:
        rid = str(uuid.uuid4())
    request_id_var.set(rid)
    return rid


def _add_request_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    rid = request_id_var.get()
    if rid and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


def _mask_pii(value: str) -> str:
    local, sep, domain = value.partition("@")
    if sep:
        return f"{local[:1]}***@{domain}"
    return f"***{value[-2:]}" if len(value) > 4 else "***"


def _redact(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Drop credentials and mask contact details before rendering."""
    for key, value in list(event_dict.items()):
        if key in _KEEP_KEYS or not isinstance(value, str):
            continue
        lower_key = key.lower()
        if any(marker in lower_key for marker in _SECRET_KEYS):
            event_dict[key] = "[redacted]"
        elif any(marker in lower_key for marker in _PII_KEYS):
            event_dict[key] = _mask_pii(value)
        elif _JWT_PATTERN.match(value) and len(value) > 40:
            # A bearer token slipped into an unrelated field.
            event_dict[key] = "[redacted-jwt]"
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Install the structlog pipeline.

    Args:
        log_level: minimum level name (DEBUG, INFO, WARNING, ERROR)
        json_output: render one JSON object per line
        development_mode: colourised console output, overrides ``json_output``
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_request_id,
        _redact,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=development_mode))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Logging is read straight from the environment so it works before Settings loads.
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


_security_logger = get_logger("security")


def log_security_event(event: str, **fields: Any) -> None:
    """Emit a security-relevant event (token mismatch, lockout, refresh...).

    Every event carries ``security_event=True`` so log pipelines can route
    them separately; the timestamp is added by the shared processors.
    """
    _security_logger.warning(event, security_event=True, **fields)

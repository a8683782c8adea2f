from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict

import jwt

from devhub.config import Settings
from devhub.logging import get_logger
from devhub.service.errors import (
    TokenFailureReason,
    token_expired_error,
    token_generation_error,
    token_verification_error,
)
from devhub.service.store import AuthStore
from devhub.storage.errors import ConstraintViolation
from devhub.storage.models import utcnow

logger = get_logger(__name__)

ALGORITHM = "HS256"
REFRESH_AUDIENCE = "refresh"


def is_well_formed(token: str | None) -> bool:
    """True when ``token`` has three non-empty dot-separated segments."""

    if not token:
        return False
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


class TokenIssuer:
    """Signs and verifies access and refresh tokens.

    Access and refresh tokens use distinct secrets and audiences, so a token
    of one kind never verifies as the other.
    """

    def __init__(
        self, settings: Settings, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        if not settings.jwt_secret or not settings.jwt_refresh_secret:
            raise token_generation_error("JWT_SECRET and JWT_REFRESH_SECRET must be set")
        if settings.jwt_secret == settings.jwt_refresh_secret:
            raise token_generation_error(
                "JWT_SECRET and JWT_REFRESH_SECRET must be different"
            )
        self._access_secret = settings.jwt_secret
        self._refresh_secret = settings.jwt_refresh_secret
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.access_ttl = timedelta(minutes=settings.access_token_ttl_minutes)
        self.refresh_ttl = timedelta(days=settings.refresh_token_ttl_days)
        self._clock = clock

    def _sign(self, payload: Dict[str, Any], secret: str) -> str:
        try:
            return jwt.encode(payload, secret, algorithm=ALGORITHM)
        except (TypeError, ValueError, jwt.PyJWTError) as exc:
            logger.error("token_signing_failed", error=str(exc), sub=payload.get("sub"))
            raise token_generation_error() from exc

    def issue_access_token(self, user: Any) -> str:
        user_id = getattr(user, "id", None)
        role = getattr(user, "role", None)
        if not user_id or not role:
            raise token_generation_error("Invalid user data for access token")
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "role": role,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return self._sign(payload, self._access_secret)

    def issue_refresh_token(self, store: AuthStore, user: Any) -> str:
        """Bump ``token_version``, sign it into a refresh token and persist it.

        The increment happens first so any refresh token issued earlier stops
        matching the stored version.
        """

        user_id = getattr(user, "id", None)
        if not user_id:
            raise token_generation_error("Invalid user data for refresh token")
        try:
            version = store.increment_token_version(user_id)
        except ConstraintViolation as exc:
            raise token_generation_error("User not found for refresh token") from exc
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "version": version,
            "iss": self.issuer,
            "aud": REFRESH_AUDIENCE,
            "iat": now,
            "exp": now + self.refresh_ttl,
        }
        token = self._sign(payload, self._refresh_secret)
        store.update_credentials(user_id, refresh_token=token)
        return token

    def _decode(self, token: str, secret: str, audience: str, required: list[str]) -> dict:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[ALGORITHM],
                audience=audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "iss", "aud", "sub", *required]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise token_expired_error() from exc
        except jwt.InvalidTokenError as exc:
            raise token_verification_error(TokenFailureReason.INVALID) from exc

    def decode_access_token(self, token: str) -> dict:
        return self._decode(token, self._access_secret, self.audience, ["role"])

    def decode_refresh_token(self, token: str) -> dict:
        payload = self._decode(token, self._refresh_secret, REFRESH_AUDIENCE, ["version"])
        if not isinstance(payload.get("version"), int):
            raise token_verification_error(TokenFailureReason.INVALID)
        return payload

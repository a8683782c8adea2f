from __future__ import annotations

import contextlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from devhub.config import Settings
from devhub.logging import get_logger, log_security_event
from devhub.service.errors import (
    AuthError,
    AuthErrorKind,
    ConflictError,
    ForbiddenError,
    ServerError,
    ServiceError,
    TokenFailureReason,
    ValidationError,
    account_locked_error,
    authentication_error,
    token_verification_error,
)
from devhub.service.lockout import (
    LockoutPolicy,
    is_currently_locked,
    record_failure,
    record_success,
)
from devhub.service.passwords import (
    DUMMY_PASSWORD_HASH,
    hash_password,
    needs_rehash,
    verify_password,
)
from devhub.service.store import AuthStore
from devhub.service.tokens import TokenIssuer, is_well_formed
from devhub.storage.errors import ConstraintViolation
from devhub.storage.models import Role, User, utcnow

logger = get_logger(__name__)

# Roles a caller may pick for themselves at registration.
SELF_ASSIGNABLE_ROLES = frozenset({Role.USER.value, Role.DEVELOPER.value})

# No look-alike characters (0/O, 1/l/I).
ACCESS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789_"
ACCESS_CODE_LENGTH = 8
MAX_ACCESS_CODE_ATTEMPTS = 10


def generate_access_code() -> str:
    return "".join(
        secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH)
    )


@dataclass
class AuthContext:
    user_id: str
    role: str
    email: str


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    user: User


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    user: User


class SessionController:
    """Registration, login, refresh and logout against a user store.

    Login moves through CHECKING_LOCK then VERIFYING_PASSWORD. A locked
    account is rejected before the password is looked at, so lock checks
    never touch the attempt counter.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        issuer: Optional[TokenIssuer] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self.issuer = issuer or TokenIssuer(settings)
        self.lockout_policy = LockoutPolicy.from_settings(settings)
        self._clock = clock
        self.logger = logger

    @contextlib.contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        """Turn unclassified store failures into a generic ServerError."""

        try:
            yield
        except (ServiceError, ConstraintViolation):
            raise
        except Exception as exc:
            self.logger.error(
                "auth_store_failure",
                operation=operation,
                error=str(exc),
                exc_info=True,
            )
            raise ServerError("Internal server error") from exc

    async def register(
        self,
        *,
        email: str,
        password: str,
        name: str,
        phone: Optional[str] = None,
        role: str = Role.USER.value,
    ) -> User:
        if role not in SELF_ASSIGNABLE_ROLES:
            raise ValidationError(
                "role cannot be self-assigned", detail={"field": "role"}
            )
        with self._store_errors("register"):
            if self.store.get_user_by_email(email):
                raise ConflictError(
                    "Email already registered", detail={"field": "email"}
                )
            password_hash = hash_password(password)
            for _ in range(MAX_ACCESS_CODE_ATTEMPTS):
                try:
                    user = self.store.create_user(
                        email,
                        password_hash,
                        name=name,
                        role=role,
                        phone=phone,
                        access_code=generate_access_code(),
                    )
                except ConstraintViolation as exc:
                    self.logger.info("registration_conflict", field=exc.field)
                    if exc.field == "access_code":
                        continue
                    raise ConflictError(exc.message, detail=exc.detail) from exc
                break
            else:
                self.logger.error(
                    "access_code_exhausted", attempts=MAX_ACCESS_CODE_ATTEMPTS
                )
                raise ServerError("Unable to generate a unique access code")
        self.logger.info("user_registered", user_id=user.id, role=user.role)
        return user

    async def login(self, email: Optional[str], password: Optional[str]) -> LoginResult:
        if not email or not password:
            raise authentication_error("Email and password are required")
        with self._store_errors("login"):
            creds = self.store.get_credentials_by_email(email)
            if not creds or not creds.is_active:
                # Same argon2 cost as a known account so timing hides which emails exist.
                verify_password(password, DUMMY_PASSWORD_HASH)
                raise authentication_error()

            now = self._clock()
            if is_currently_locked(creds, now):
                log_security_event("login_blocked_locked", user_id=creds.id)
                raise account_locked_error(creds.lock_until)

            if not verify_password(password, creds.password_hash):
                updated = record_failure(self.store, creds, now, self.lockout_policy)
                log_security_event(
                    "login_failed", user_id=creds.id, attempts=updated.login_attempts
                )
                raise authentication_error()

            creds = record_success(self.store, creds, now)
            if needs_rehash(creds.password_hash):
                creds = (
                    self.store.update_credentials(
                        creds.id, password_hash=hash_password(password)
                    )
                    or creds
                )
                self.logger.info("password_rehashed", user_id=creds.id)
            access_token = self.issuer.issue_access_token(creds)
            refresh_token = self.issuer.issue_refresh_token(self.store, creds)
        self.logger.info("user_logged_in", user_id=creds.id)
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            user=creds.to_user(),
        )

    async def refresh(self, refresh_token: Optional[str]) -> RefreshResult:
        """Mint a new access token from the refresh token held in the cookie.

        The refresh token itself is not rotated; it stays valid until the
        next login or a logout replaces or clears the stored copy.
        """

        if not refresh_token:
            raise token_verification_error(
                TokenFailureReason.MISSING, "Refresh token not found"
            )
        if not is_well_formed(refresh_token):
            raise token_verification_error(
                TokenFailureReason.MALFORMED, "Invalid token format"
            )
        try:
            payload = self.issuer.decode_refresh_token(refresh_token)
        except AuthError as exc:
            if exc.kind is AuthErrorKind.TOKEN_EXPIRED:
                log_security_event("refresh_token_expired")
            else:
                log_security_event("invalid_refresh_token")
            raise

        user_id = payload["sub"]
        with self._store_errors("refresh"):
            creds = self.store.get_credentials(user_id)
            if not creds or not creds.is_active:
                raise token_verification_error(
                    TokenFailureReason.USER_NOT_FOUND, "User not found"
                )
            if creds.refresh_token != refresh_token:
                log_security_event("refresh_token_mismatch", user_id=user_id)
                raise token_verification_error(
                    TokenFailureReason.MISMATCH, "Invalid refresh token"
                )
            if payload["version"] != creds.token_version:
                log_security_event(
                    "refresh_token_version_mismatch",
                    user_id=user_id,
                    presented_version=payload["version"],
                    current_version=creds.token_version,
                )
                raise token_verification_error(
                    TokenFailureReason.VERSION_MISMATCH, "Token version mismatch"
                )
            access_token = self.issuer.issue_access_token(creds)
        log_security_event("token_refreshed", user_id=user_id)
        return RefreshResult(access_token=access_token, user=creds.to_user())

    async def logout(self, user_id: str) -> None:
        with self._store_errors("logout"):
            self.store.update_credentials(user_id, refresh_token=None)
        log_security_event("user_logged_out", user_id=user_id)

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """Resolve a ``Bearer`` access token into an :class:`AuthContext`."""

        scheme, _, token = (authorization or "").strip().partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise token_verification_error(
                TokenFailureReason.MISSING, "Access token not found"
            )
        if not is_well_formed(token):
            raise token_verification_error(
                TokenFailureReason.MALFORMED, "Invalid token format"
            )
        payload = self.issuer.decode_access_token(token)
        with self._store_errors("authenticate"):
            user = self.store.get_user(payload["sub"])
        if not user:
            raise token_verification_error(
                TokenFailureReason.USER_NOT_FOUND, "User not found"
            )
        if not user.is_active:
            raise token_verification_error(
                TokenFailureReason.INVALID, "Account is inactive"
            )
        # Role comes from the store so demotions apply before the token expires.
        return AuthContext(user_id=user.id, role=user.role, email=user.email)


def require_role(ctx: AuthContext, *roles: str) -> AuthContext:
    """Reject ``ctx`` unless it holds one of ``roles``; admin passes every check."""

    if ctx.role == Role.ADMIN.value or ctx.role in roles:
        return ctx
    raise ForbiddenError("Insufficient permissions", detail={"required": list(roles)})

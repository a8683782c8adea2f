from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"
    DEVELOPER = "developer"


@dataclass(frozen=True)
class User:
    """Public projection of a user record; carries no credential fields."""

    id: str
    email: str
    name: str
    role: str = Role.USER.value
    phone: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    access_code: Optional[str] = None


@dataclass(frozen=True)
class UserCredentials:
    """Full credential record, only returned by explicit credential lookups."""

    id: str
    email: str
    name: str
    password_hash: str
    role: str = Role.USER.value
    phone: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    access_code: Optional[str] = None
    refresh_token: Optional[str] = None
    token_version: int = 0
    login_attempts: int = 0
    is_locked: bool = False
    lock_until: Optional[datetime] = None
    last_login: Optional[datetime] = None

    def to_user(self) -> User:
        return User(
            id=self.id,
            email=self.email,
            name=self.name,
            role=self.role,
            phone=self.phone,
            is_active=self.is_active,
            created_at=self.created_at,
            access_code=self.access_code,
        )


# Fields that may be changed through ``update_credentials``; token_version is
# only ever moved by ``increment_token_version``. password_hash changes on rehash.
UPDATABLE_CREDENTIAL_FIELDS = frozenset(
    {
        "refresh_token",
        "login_attempts",
        "is_locked",
        "lock_until",
        "last_login",
        "role",
        "is_active",
        "password_hash",
    }
)

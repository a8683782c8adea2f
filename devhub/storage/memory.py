from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from typing import Any, Dict, Optional

from devhub.storage.errors import ConstraintViolation
from devhub.storage.models import (
    UPDATABLE_CREDENTIAL_FIELDS,
    Role,
    User,
    UserCredentials,
)


class MemoryStore:
    """In-memory user store for tests and local development.

    Records are immutable; every mutation swaps in a new record while holding
    ``_data_lock`` so read-modify-write sequences are atomic.
    """

    def __init__(self) -> None:
        self.users: Dict[str, UserCredentials] = {}
        self._data_lock = threading.RLock()

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        name: str,
        role: str = Role.USER.value,
        phone: Optional[str] = None,
        access_code: Optional[str] = None,
    ) -> User:
        normalized_email = email.strip().lower()
        with self._data_lock:
            if any(existing.email == normalized_email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if phone and any(existing.phone == phone for existing in self.users.values()):
                raise ConstraintViolation("phone already exists", {"field": "phone"})
            if access_code and any(
                existing.access_code == access_code for existing in self.users.values()
            ):
                raise ConstraintViolation(
                    "access_code already exists", {"field": "access_code"}
                )
            record = UserCredentials(
                id=str(uuid.uuid4()),
                email=normalized_email,
                name=name,
                password_hash=password_hash,
                role=role,
                phone=phone,
                access_code=access_code,
            )
            self.users[record.id] = record
            return record.to_user()

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            record = self.users.get(user_id)
            return record.to_user() if record else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        record = self.get_credentials_by_email(email)
        return record.to_user() if record else None

    def get_credentials(self, user_id: str) -> Optional[UserCredentials]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_credentials_by_email(self, email: str) -> Optional[UserCredentials]:
        normalized_email = email.strip().lower()
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.email == normalized_email), None
            )

    def update_credentials(self, user_id: str, **fields: Any) -> Optional[UserCredentials]:
        unknown = set(fields) - UPDATABLE_CREDENTIAL_FIELDS
        if unknown:
            raise ValueError(f"fields not updatable: {', '.join(sorted(unknown))}")
        with self._data_lock:
            record = self.users.get(user_id)
            if not record:
                return None
            updated = replace(record, **fields)
            self.users[user_id] = updated
            return updated

    def increment_token_version(self, user_id: str) -> int:
        with self._data_lock:
            record = self.users.get(user_id)
            if not record:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            updated = replace(record, token_version=record.token_version + 1)
            self.users[user_id] = updated
            return updated.token_version

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        updated = self.update_credentials(user_id, role=role)
        return updated.to_user() if updated else None

    def verify_connection(self) -> None:
        return None

from __future__ import annotations

from typing import Any, Optional, Protocol

from devhub.storage.models import User, UserCredentials


class AuthStore(Protocol):
    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        name: str,
        role: str = "user",
        phone: Optional[str] = None,
        access_code: Optional[str] = None,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_credentials(self, user_id: str) -> Optional[UserCredentials]: ...

    def get_credentials_by_email(self, email: str) -> Optional[UserCredentials]: ...

    def update_credentials(
        self, user_id: str, **fields: Any
    ) -> Optional[UserCredentials]: ...

    def increment_token_version(self, user_id: str) -> int: ...

    def update_user_role(self, user_id: str, role: str) -> Optional[User]: ...

    def verify_connection(self) -> None: ...

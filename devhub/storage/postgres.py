from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from devhub.logging import get_logger
from devhub.storage.errors import ConstraintViolation
from devhub.storage.models import (
    UPDATABLE_CREDENTIAL_FIELDS,
    Role,
    User,
    UserCredentials,
)

_USER_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS app_user (
    id UUID PRIMARY KEY,
    email TEXT NOT NULL,
    name TEXT NOT NULL,
    phone TEXT UNIQUE,
    access_code TEXT UNIQUE CHECK (access_code ~ '^\\w{8}$'),
    role TEXT NOT NULL DEFAULT 'user',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    password_hash TEXT NOT NULL,
    refresh_token TEXT,
    token_version INTEGER NOT NULL DEFAULT 0 CHECK (token_version >= 0),
    login_attempts INTEGER NOT NULL DEFAULT 0,
    is_locked BOOLEAN NOT NULL DEFAULT FALSE,
    lock_until TIMESTAMPTZ,
    last_login TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_USER_EMAIL_INDEX_DDL = (
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_lower_idx ON app_user (lower(email))"
)

# Default projection: credential columns are only selected on explicit request.
_PUBLIC_COLUMNS = "id, email, name, phone, role, is_active, created_at, access_code"


def _conflicting_field(constraint: str) -> str:
    """Name the user attribute behind a unique-constraint name."""

    for field in ("access_code", "phone"):
        if field in constraint:
            return field
    return "email"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PostgresStore:
    """Postgres-backed user store; every mutation is a single statement."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_user_table()

    def _connect(self):
        return self.pool.connection()

    def _ensure_user_table(self) -> None:
        """Create the ``app_user`` table and its case-insensitive email index."""

        with self._connect() as conn:
            conn.execute(_USER_TABLE_DDL)
            conn.execute(_USER_EMAIL_INDEX_DDL)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_user(row: dict) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            name=row["name"],
            phone=row.get("phone"),
            role=row.get("role", Role.USER.value),
            is_active=row.get("is_active", True),
            created_at=_aware(row.get("created_at")) or datetime.now(timezone.utc),
            access_code=row.get("access_code"),
        )

    @staticmethod
    def _row_to_credentials(row: dict) -> UserCredentials:
        return UserCredentials(
            id=str(row["id"]),
            email=row["email"],
            name=row["name"],
            password_hash=row["password_hash"],
            phone=row.get("phone"),
            role=row.get("role", Role.USER.value),
            is_active=row.get("is_active", True),
            created_at=_aware(row.get("created_at")) or datetime.now(timezone.utc),
            access_code=row.get("access_code"),
            refresh_token=row.get("refresh_token"),
            token_version=int(row.get("token_version") or 0),
            login_attempts=int(row.get("login_attempts") or 0),
            is_locked=bool(row.get("is_locked", False)),
            lock_until=_aware(row.get("lock_until")),
            last_login=_aware(row.get("last_login")),
        )

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
        user_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO app_user (id, email, name, phone, role, password_hash, access_code)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_PUBLIC_COLUMNS}
                    """,
                    (
                        user_id,
                        email.strip().lower(),
                        name,
                        phone,
                        role,
                        password_hash,
                        access_code,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", "") or ""
            field = _conflicting_field(constraint)
            self.logger.info("user_create_conflict", field=field, constraint=constraint)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return self._row_to_user(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PUBLIC_COLUMNS} FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PUBLIC_COLUMNS} FROM app_user WHERE lower(email) = lower(%s)",
                (email.strip(),),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_credentials(self, user_id: str) -> Optional[UserCredentials]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_credentials(row) if row else None

    def get_credentials_by_email(self, email: str) -> Optional[UserCredentials]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE lower(email) = lower(%s)",
                (email.strip(),),
            ).fetchone()
        return self._row_to_credentials(row) if row else None

    def update_credentials(self, user_id: str, **fields: Any) -> Optional[UserCredentials]:
        unknown = set(fields) - UPDATABLE_CREDENTIAL_FIELDS
        if unknown:
            raise ValueError(f"fields not updatable: {', '.join(sorted(unknown))}")
        if not fields:
            return self.get_credentials(user_id)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name))
            for name in fields
        )
        query = sql.SQL(
            "UPDATE app_user SET {assignments}, updated_at = now() "
            "WHERE id = %(user_id)s RETURNING *"
        ).format(assignments=assignments)
        with self._connect() as conn:
            row = conn.execute(query, {**fields, "user_id": user_id}).fetchone()
        return self._row_to_credentials(row) if row else None

    def increment_token_version(self, user_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user SET token_version = token_version + 1, updated_at = now()
                WHERE id = %s RETURNING token_version
                """,
                (user_id,),
            ).fetchone()
        if not row:
            raise ConstraintViolation("user does not exist", {"user_id": user_id})
        return int(row["token_version"])

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        updated = self.update_credentials(user_id, role=role)
        return updated.to_user() if updated else None

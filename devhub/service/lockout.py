"""Per-account brute-force lockout.

State lives on the credential record (``login_attempts``, ``is_locked``,
``lock_until``) so every worker sees the same counters. Each transition is
persisted with a single ``update_credentials`` call; two concurrent failures
may both read the same count and lose one increment.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from devhub.config import Settings
from devhub.logging import log_security_event
from devhub.service.store import AuthStore
from devhub.storage.models import UserCredentials

MAX_LOGIN_ATTEMPTS = 5
LOCK_DURATION = timedelta(minutes=30)


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = MAX_LOGIN_ATTEMPTS
    lock_duration: timedelta = LOCK_DURATION

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.max_login_attempts,
            lock_duration=timedelta(minutes=settings.lockout_minutes),
        )


DEFAULT_POLICY = LockoutPolicy()


def is_currently_locked(user: UserCredentials, now: datetime) -> bool:
    # An elapsed lock_until unlocks the account even while the flag is still set.
    return bool(user.is_locked and user.lock_until is not None and user.lock_until > now)


def record_failure(
    store: AuthStore,
    user: UserCredentials,
    now: datetime,
    policy: LockoutPolicy = DEFAULT_POLICY,
) -> UserCredentials:
    """Count a failed password check and lock the account at the threshold."""

    attempts = user.login_attempts + 1
    fields: dict = {"login_attempts": attempts}
    if attempts >= policy.max_attempts:
        fields["is_locked"] = True
        fields["lock_until"] = now + policy.lock_duration
    updated = store.update_credentials(user.id, **fields)
    if fields.get("is_locked"):
        log_security_event(
            "account_locked",
            user_id=user.id,
            attempts=attempts,
            lock_until=fields["lock_until"].isoformat(),
        )
    return updated or replace(user, **fields)


def record_success(
    store: AuthStore, user: UserCredentials, now: datetime
) -> UserCredentials:
    fields = {
        "login_attempts": 0,
        "is_locked": False,
        "lock_until": None,
        "last_login": now,
    }
    updated = store.update_credentials(user.id, **fields)
    return updated or replace(user, **fields)

from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from devhub.logging import get_logger

logger = get_logger(__name__)

_pwd_hasher = PasswordHasher(type=Type.ID)

# Verified against when the email is unknown so both login paths pay for argon2.
DUMMY_PASSWORD_HASH = _pwd_hasher.hash("devhub-unknown-account")


def hash_password(password: str) -> str:
    return _pwd_hasher.hash(password)


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    """Constant-time check of ``password`` against an argon2id hash.

    Returns ``False`` for a missing, empty or malformed hash instead of
    raising, so callers can treat every failure as a credential mismatch.
    """

    if not stored_hash or password is None:
        return False
    try:
        return _pwd_hasher.verify(stored_hash, password)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError):
        logger.warning("password_hash_unverifiable")
        return False


def needs_rehash(stored_hash: str) -> bool:
    """True when ``stored_hash`` was made with weaker parameters than the current ones."""
    try:
        return _pwd_hasher.check_needs_rehash(stored_hash)
    except InvalidHash:
        return True

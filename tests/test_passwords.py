"""Tests for argon2id password hashing."""

import pytest

from devhub.service.passwords import hash_password, needs_rehash, verify_password


class TestHashPassword:
    def test_hash_is_argon2id(self):
        pwd_hash = hash_password("Valid@Pass123")
        assert pwd_hash.startswith("$argon2id$")

    def test_hash_is_not_plaintext(self):
        password = "Valid@Pass123"
        assert hash_password(password) != password

    def test_same_password_produces_different_hashes(self):
        """Salting makes every hash unique."""
        assert hash_password("Valid@Pass123") != hash_password("Valid@Pass123")


class TestVerifyPassword:
    def test_correct_password_verifies(self):
        pwd_hash = hash_password("Valid@Pass123")
        assert verify_password("Valid@Pass123", pwd_hash) is True

    def test_wrong_password_fails(self):
        pwd_hash = hash_password("Valid@Pass123")
        assert verify_password("Wrong@Pass123", pwd_hash) is False

    @pytest.mark.parametrize("stored", [None, "", "not-a-hash", "$argon2id$broken"])
    def test_unusable_hash_returns_false(self, stored):
        assert verify_password("Valid@Pass123", stored) is False


class TestNeedsRehash:
    def test_fresh_hash_does_not_need_rehash(self):
        assert needs_rehash(hash_password("Valid@Pass123")) is False

    def test_malformed_hash_needs_rehash(self):
        assert needs_rehash("not-a-hash") is True

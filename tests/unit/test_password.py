"""
Unit tests for credential hashing.
"""

import pytest

from ems_auth.infrastructure.auth.password import hash_password, verify_password

pytestmark = pytest.mark.unit

ROUNDS = 2


class TestPasswordHashing:
    """Test password hashing and verification."""

    def test_hash_password_has_salt_digest_form(self):
        """Stored credential is salt:digest and never contains the password."""
        hashed = hash_password("Secret123!", rounds=ROUNDS)

        salt, digest = hashed.split(":")
        assert salt and digest
        assert "Secret123!" not in hashed

    def test_hash_password_different_each_time(self):
        """Same password produces different stored values (fresh salt)."""
        assert hash_password("Secret123!", rounds=ROUNDS) != hash_password("Secret123!", rounds=ROUNDS)

    def test_verify_password_correct(self):
        hashed = hash_password("Secret123!", rounds=ROUNDS)

        assert verify_password("Secret123!", hashed, rounds=ROUNDS) is True

    def test_verify_password_incorrect(self):
        hashed = hash_password("Secret123!", rounds=ROUNDS)

        assert verify_password("wrong", hashed, rounds=ROUNDS) is False

    def test_verify_password_single_bit_mutation(self):
        """Flipping any single bit of the password makes verification fail."""
        password = "Secret123!"
        hashed = hash_password(password, rounds=ROUNDS)

        for index, char in enumerate(password):
            for bit in range(7):
                mutated = password[:index] + chr(ord(char) ^ (1 << bit)) + password[index + 1:]
                assert verify_password(mutated, hashed, rounds=ROUNDS) is False

    def test_verify_password_wrong_rounds(self):
        hashed = hash_password("Secret123!", rounds=ROUNDS)

        assert verify_password("Secret123!", hashed, rounds=ROUNDS + 1) is False

    def test_verify_password_empty(self):
        hashed = hash_password("Secret123!", rounds=ROUNDS)

        assert verify_password("", hashed, rounds=ROUNDS) is False

    @pytest.mark.parametrize("stored", ["", "no-separator", ":", "!!!:???", "c2FsdA==:"])
    def test_verify_password_malformed_stored_value(self, stored):
        """Malformed stored credentials return False instead of raising."""
        assert verify_password("Secret123!", stored, rounds=ROUNDS) is False

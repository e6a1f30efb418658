"""Unit tests for argon2id password hashing."""

import pytest

from reelscore.config import MIN_PASSWORD_HASH_COST
from reelscore.service.passwords import HashingError, PasswordHasher


class TestPasswordHasher:
    async def test_hash_round_trip(self, hasher):
        """A hash verifies against its own plaintext."""
        hashed = await hasher.hash("correct-horse")
        assert await hasher.verify("correct-horse", hashed) is True

    async def test_wrong_password_is_rejected(self, hasher):
        hashed = await hasher.hash("correct-horse")
        assert await hasher.verify("battery-staple", hashed) is False

    async def test_hash_is_salted_and_self_describing(self, hasher):
        first = await hasher.hash("correct-horse")
        second = await hasher.hash("correct-horse")
        assert first != second
        assert first.startswith("$argon2id$")
        assert "correct-horse" not in first

    async def test_malformed_hash_returns_false(self, hasher):
        """Garbage in the hash column never raises."""
        assert await hasher.verify("correct-horse", "not-a-hash") is False
        assert await hasher.verify("correct-horse", "") is False

    def test_cost_below_minimum_is_raised(self):
        assert PasswordHasher(0).cost == MIN_PASSWORD_HASH_COST
        assert PasswordHasher(None).cost == MIN_PASSWORD_HASH_COST
        assert PasswordHasher(4).cost == 4

    async def test_backend_failure_raises_hashing_error(self, hasher, monkeypatch):
        from argon2.exceptions import HashingError as Argon2HashingError

        class FailingBackend:
            def hash(self, _plaintext):
                raise Argon2HashingError("backend exploded")

        monkeypatch.setattr(hasher, "_hasher", FailingBackend())
        with pytest.raises(HashingError):
            await hasher.hash("correct-horse")

"""Tests for profile lookup, update and deletion."""

import pytest

from reelscore.service.errors import ErrorKind
from reelscore.service.users import UserService


@pytest.fixture
def service(store, hasher):
    return UserService(store.users, hasher)


@pytest.fixture
def seeded(store, hasher):
    async def _seed():
        await store.users.create("alice", "alice@example.com", await hasher.hash("old-password"))
        await store.users.create("bob", "bob@example.com", await hasher.hash("bob-password"))

    return _seed


class TestGetProfile:
    async def test_known_user(self, service, seeded):
        await seeded()
        outcome = await service.get_profile("alice")
        assert outcome.ok
        assert outcome.value.email == "alice@example.com"

    async def test_unknown_user(self, service):
        outcome = await service.get_profile("ghost")
        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert outcome.error.message == "User not found"


class TestUpdateProfile:
    async def test_password_change_is_rehashed(self, service, seeded, store, hasher):
        await seeded()
        outcome = await service.update_profile("alice", password="new-password")
        assert outcome.ok

        stored = await store.users.find_by_username("alice")
        assert stored.password_hash != "new-password"
        assert await hasher.verify("new-password", stored.password_hash)
        assert not await hasher.verify("old-password", stored.password_hash)

    async def test_rename(self, service, seeded, store):
        await seeded()
        outcome = await service.update_profile("alice", new_username="alicia")
        assert outcome.value.username == "alicia"
        assert await store.users.find_by_username("alice") is None

    async def test_taken_email_conflicts(self, service, seeded):
        await seeded()
        outcome = await service.update_profile("alice", email="bob@example.com")
        assert outcome.error.kind == ErrorKind.CONFLICT
        assert outcome.error.message == "Email already exists"

    async def test_taken_username_conflicts(self, service, seeded):
        await seeded()
        outcome = await service.update_profile("alice", new_username="bob")
        assert outcome.error.kind == ErrorKind.CONFLICT
        assert outcome.error.message == "Username already exists"

    async def test_unknown_user(self, service):
        outcome = await service.update_profile("ghost", email="ghost@example.com")
        assert outcome.error.kind == ErrorKind.NOT_FOUND


class TestDeleteAccount:
    async def test_delete_then_missing(self, service, seeded):
        await seeded()
        outcome = await service.delete_account("alice")
        assert outcome.value == {"message": "User deleted successfully"}

        again = await service.delete_account("alice")
        assert again.error.kind == ErrorKind.NOT_FOUND

    async def test_storage_failure_is_internal(self, service, store, monkeypatch):
        async def broken_delete(username):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(store.users, "delete_by_username", broken_delete)
        outcome = await service.delete_account("alice")
        assert outcome.error.kind == ErrorKind.INTERNAL

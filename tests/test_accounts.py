"""Unit tests for auth/accounts.py -- UserManager.

Covers:
- registration writes the user row and a 32-byte CipherKey; rollback on key failure
- duplicate handles and invalid input
- password change and profile update
- transitive deletion: secrets, outbound and inbound shares, key, bucket, row
- a failure part-way through deletion restores every earlier step exactly
- CompensationFailed when an inverse also fails
"""

from __future__ import annotations

import pytest

from auth.tokens import authenticate_user
from conftest import TEST_PASSWORD
from core.errors import (
    AlreadyExists,
    CompensationFailed,
    Forbidden,
    InvalidInput,
    NotFound,
    StoreError,
    Unauthorized,
)
from core.lifecycle import bucket_for
from core.validation import CIPHER_KEY_SLOT


class TestRegister:
    def test_register_creates_row_and_key(self, lockbox):
        user = lockbox.register("alice", "Alice")
        assert user.id is not None
        assert user.display_name == "Alice"
        assert user.created_at
        key = lockbox.cipher.get(bucket_for(user.id), CIPHER_KEY_SLOT)
        assert key is not None and len(key) == 32

    def test_password_is_not_stored(self, lockbox):
        user = lockbox.register("alice")
        stored = lockbox.meta.get_user(user.id)
        assert TEST_PASSWORD not in stored.hashed_password
        assert len(stored.salt) == 128

    def test_duplicate_handle(self, lockbox):
        first = lockbox.register("alice")
        original_key = lockbox.cipher.get(bucket_for(first.id), CIPHER_KEY_SLOT)
        with pytest.raises(AlreadyExists):
            lockbox.register("alice")
        assert lockbox.cipher.get(bucket_for(first.id), CIPHER_KEY_SLOT) == original_key
        assert len(lockbox.meta.list_users()) == 1

    def test_key_write_failure_removes_user(self, lockbox):
        lockbox.cipher.fail_on("set")
        with pytest.raises(StoreError):
            lockbox.register("alice")
        assert lockbox.meta.get_user_by_handle("alice") is None

    @pytest.mark.parametrize(
        "handle,name,password",
        [("Al", "Alice", TEST_PASSWORD), ("alice", "", TEST_PASSWORD), ("alice", "Alice", "short")],
    )
    def test_invalid_input(self, lockbox, handle, name, password):
        with pytest.raises(InvalidInput):
            lockbox.accounts.register(handle, name, password)
        assert lockbox.meta.list_users() == []


class TestProfile:
    def test_change_password(self, lockbox):
        user = lockbox.register("alice")
        lockbox.accounts.change_password(user, TEST_PASSWORD, "a-new-password")
        assert authenticate_user(lockbox.meta, "alice", TEST_PASSWORD) is None
        assert authenticate_user(lockbox.meta, "alice", "a-new-password") is not None

    def test_change_password_wrong_old(self, lockbox):
        user = lockbox.register("alice")
        with pytest.raises(Unauthorized):
            lockbox.accounts.change_password(user, "not-the-password", "a-new-password")

    def test_password_change_keeps_secrets_readable(self, lockbox):
        user = lockbox.register("alice")
        lockbox.secrets.create_secret(user, "db", "v1")
        lockbox.accounts.change_password(user, TEST_PASSWORD, "a-new-password")
        assert lockbox.secrets.read_secret(user, "db").value == "v1"

    def test_update_display_name(self, lockbox):
        user = lockbox.register("alice")
        updated = lockbox.accounts.update_user(user, "  Alice L.  ")
        assert updated.display_name == "Alice L."
        assert updated.handle == "alice"

    def test_get_and_list(self, lockbox):
        lockbox.register("bob")
        lockbox.register("alice")
        assert lockbox.accounts.get_user("bob").handle == "bob"
        assert [u.handle for u in lockbox.accounts.list_users()] == ["alice", "bob"]
        with pytest.raises(NotFound):
            lockbox.accounts.get_user("carol")


class TestDeleteUser:
    @pytest.fixture
    def world(self, lockbox):
        """alice owns two secrets and shares one with bob; bob shares one with alice."""
        alice = lockbox.register("alice")
        bob = lockbox.register("bob")
        lockbox.secrets.create_secret(alice, "api", "a-api")
        lockbox.secrets.create_secret(alice, "db", "a-db")
        lockbox.secrets.create_share(alice, "api", ["bob"])
        lockbox.secrets.create_secret(bob, "wifi", "b-wifi")
        lockbox.secrets.create_share(bob, "wifi", ["alice"])
        return alice, bob

    def _snapshot(self, lockbox, alice, bob):
        bucket = bucket_for(alice.id)
        return {
            "user": lockbox.meta.get_user(alice.id),
            "secrets": lockbox.meta.list_secrets(alice.id),
            "outbound": lockbox.meta.list_shares_by_owner(alice.id),
            "inbound": lockbox.meta.list_shares_for_target(alice.id),
            "ciphertext": {k: lockbox.cipher.get(bucket, k) for k in ("api", "db", CIPHER_KEY_SLOT)},
        }

    def test_delete_removes_everything(self, lockbox, world):
        alice, bob = world
        lockbox.accounts.delete_user(alice, "alice")

        assert lockbox.meta.get_user(alice.id) is None
        assert lockbox.meta.list_secrets(alice.id) == []
        assert lockbox.meta.list_shares_by_owner(alice.id) == []
        assert lockbox.meta.list_shares_for_target(alice.id) == []
        assert lockbox.cipher.purge(bucket_for(alice.id)) == 0
        # bob keeps his own secret; his share to alice is gone.
        assert lockbox.secrets.read_secret(bob, "wifi").value == "b-wifi"
        assert lockbox.secrets.list_shares(bob) == []
        assert lockbox.secrets.list_secrets(bob) == [lockbox.secrets.read_secret(bob, "wifi")]

    def test_cannot_delete_someone_else(self, lockbox, world):
        alice, bob = world
        with pytest.raises(Forbidden):
            lockbox.accounts.delete_user(bob, "alice")
        assert lockbox.meta.get_user(alice.id) is not None

    def test_failure_on_second_secret_restores_first(self, lockbox, world):
        alice, bob = world
        before = self._snapshot(lockbox, alice, bob)

        lockbox.meta.fail_on("delete_secret", nth=2)
        with pytest.raises(StoreError):
            lockbox.accounts.delete_user(alice, "alice")

        assert self._snapshot(lockbox, alice, bob) == before
        assert lockbox.secrets.read_secret(alice, "api").value == "a-api"
        assert lockbox.secrets.read_secret(bob, "alice:api").value == "a-api"

    def test_failure_on_user_row_restores_all(self, lockbox, world):
        alice, bob = world
        before = self._snapshot(lockbox, alice, bob)

        lockbox.meta.fail_on("delete_user")
        with pytest.raises(StoreError):
            lockbox.accounts.delete_user(alice, "alice")

        assert self._snapshot(lockbox, alice, bob) == before
        assert lockbox.secrets.read_secret(alice, "bob:wifi").value == "b-wifi"

    def test_failed_rollback_is_compensation_failed(self, lockbox, world):
        alice, bob = world
        lockbox.meta.fail_on("delete_user")
        lockbox.meta.fail_on("restore_user")
        with pytest.raises(CompensationFailed) as info:
            lockbox.accounts.delete_user(alice, "alice")
        assert isinstance(info.value.cause, StoreError)
        assert info.value.operation == "delete_user"
        # Everything before the user row was still put back.
        assert [s.key for s in lockbox.meta.list_secrets(alice.id)] == ["api", "db"]

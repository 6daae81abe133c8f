"""Unit tests for metadata/store.py -- SQLMetadataStore.

Covers:
- user create/get/list/update/delete and handle uniqueness
- restore_user / restore_secret / restore_share keep original ids and timestamps
- (owner_id, key) and (secret_id, target_id) uniqueness -> AlreadyExists
- share listings join in handles and key, and parse until as aware UTC
- ids are never reused after a delete
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import AlreadyExists
from core.models import Secret, ShareRelation, User
from metadata.store import SQLMetadataStore


def _user(handle: str) -> User:
    return User(handle=handle, display_name=handle.title(), salt=b"\x01" * 16, hashed_password="hash")


@pytest.fixture
def store():
    s = SQLMetadataStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def populated(store):
    """alice owns "db" shared with bob; bob owns "api"."""
    alice = store.create_user(_user("alice"))
    bob = store.create_user(_user("bob"))
    db = store.create_secret(Secret(key="db", owner_id=alice))
    api = store.create_secret(Secret(key="api", owner_id=bob))
    until = datetime(2030, 1, 1, tzinfo=timezone.utc)
    share = store.create_share(
        ShareRelation(owner="alice", key="db", target="bob", until=until, secret_id=db, owner_id=alice, target_id=bob)
    )
    return {"alice": alice, "bob": bob, "db": db, "api": api, "share": share, "until": until}


class TestUsers:
    def test_create_and_get(self, store):
        uid = store.create_user(_user("alice"))
        user = store.get_user(uid)
        assert user.handle == "alice"
        assert user.salt == b"\x01" * 16
        assert user.created_at and user.updated_at
        assert store.get_user_by_handle("alice").id == uid

    def test_missing_user_is_none(self, store):
        assert store.get_user(999) is None
        assert store.get_user_by_handle("ghost") is None

    def test_duplicate_handle(self, store):
        store.create_user(_user("alice"))
        with pytest.raises(AlreadyExists):
            store.create_user(_user("alice"))

    def test_list_ordered_by_handle(self, store):
        store.create_user(_user("carol"))
        store.create_user(_user("alice"))
        assert [u.handle for u in store.list_users()] == ["alice", "carol"]

    def test_update_mutable_fields(self, store):
        uid = store.create_user(_user("alice"))
        assert store.update_user(uid, display_name="Alice Liddell")
        assert store.get_user(uid).display_name == "Alice Liddell"
        assert not store.update_user(999, display_name="nobody")

    def test_handle_is_immutable(self, store):
        uid = store.create_user(_user("alice"))
        with pytest.raises(ValueError):
            store.update_user(uid, handle="mallory")

    def test_delete_and_restore(self, store):
        uid = store.create_user(_user("alice"))
        original = store.get_user(uid)
        assert store.delete_user(uid)
        assert store.get_user(uid) is None
        assert not store.delete_user(uid)
        store.restore_user(original)
        assert store.get_user(uid) == original

    def test_ids_not_reused(self, store):
        first = store.create_user(_user("alice"))
        store.delete_user(first)
        second = store.create_user(_user("alice"))
        assert second != first


class TestSecrets:
    def test_create_get_list(self, store, populated):
        secret = store.get_secret(populated["alice"], "db")
        assert secret.id == populated["db"]
        assert store.get_secret_by_id(populated["db"]).key == "db"
        assert [s.key for s in store.list_secrets(populated["alice"])] == ["db"]

    def test_get_is_scoped_to_owner(self, store, populated):
        assert store.get_secret(populated["bob"], "db") is None

    def test_duplicate_key_per_owner(self, store, populated):
        with pytest.raises(AlreadyExists):
            store.create_secret(Secret(key="db", owner_id=populated["alice"]))

    def test_same_key_different_owner(self, store, populated):
        store.create_secret(Secret(key="db", owner_id=populated["bob"]))

    def test_delete_and_restore(self, store, populated):
        original = store.get_secret_by_id(populated["db"])
        assert store.delete_secret(original.id)
        store.restore_secret(original)
        assert store.get_secret_by_id(original.id) == original


class TestShares:
    def test_listing_joins_handles_and_key(self, store, populated):
        (rel,) = store.list_shares_for_secret(populated["db"])
        assert (rel.owner, rel.key, rel.target) == ("alice", "db", "bob")
        assert rel.until == populated["until"]
        assert rel.until.tzinfo is not None

    def test_listing_by_owner_and_target(self, store, populated):
        assert [r.id for r in store.list_shares_by_owner(populated["alice"])] == [populated["share"]]
        assert [r.id for r in store.list_shares_for_target(populated["bob"])] == [populated["share"]]
        assert store.list_shares_for_target(populated["alice"]) == []

    def test_duplicate_target(self, store, populated):
        with pytest.raises(AlreadyExists):
            store.create_share(
                ShareRelation(
                    owner="alice",
                    key="db",
                    target="bob",
                    secret_id=populated["db"],
                    owner_id=populated["alice"],
                    target_id=populated["bob"],
                )
            )

    def test_open_ended_share(self, store, populated):
        carol = store.create_user(_user("carol"))
        store.create_share(
            ShareRelation(
                owner="alice", key="db", target="carol", secret_id=populated["db"], owner_id=populated["alice"], target_id=carol
            )
        )
        (rel,) = store.list_shares_for_target(carol)
        assert rel.until is None

    def test_until_stored_as_utc(self, store, populated):
        carol = store.create_user(_user("carol"))
        plus_two = timezone(timedelta(hours=2))
        until = datetime(2030, 1, 1, 14, 0, tzinfo=plus_two)
        store.create_share(
            ShareRelation(
                owner="alice",
                key="db",
                target="carol",
                until=until,
                secret_id=populated["db"],
                owner_id=populated["alice"],
                target_id=carol,
            )
        )
        (rel,) = store.list_shares_for_target(carol)
        assert rel.until == until
        assert rel.until.utcoffset() == timedelta(0)

    def test_delete_and_restore(self, store, populated):
        (original,) = store.list_shares_for_secret(populated["db"])
        assert store.delete_share(original.id)
        assert store.list_shares_for_secret(populated["db"]) == []
        store.restore_share(original)
        assert store.list_shares_for_secret(populated["db"]) == [original]

    def test_relation_of_deleted_secret_is_hidden(self, store, populated):
        store.delete_secret(populated["db"])
        assert store.list_shares_for_target(populated["bob"]) == []


def test_ping(store):
    assert store.ping()

"""Unit tests for core/validation.py and core/access.py -- input and ownership checks."""

import pytest

from core.access import parse_reference, require_own, require_self
from core.errors import Forbidden, InvalidInput
from core.models import User
from core.validation import (
    CIPHER_KEY_SLOT,
    validate_display_name,
    validate_handle,
    validate_password,
    validate_secret_key,
    validate_targets,
    validate_value,
)

ALICE = User(handle="alice", display_name="Alice", id=1)


class TestHandles:
    @pytest.mark.parametrize("handle", ["abc", "alice_01", "a-b-c", "x" * 25])
    def test_valid(self, handle):
        assert validate_handle(handle) == handle

    @pytest.mark.parametrize("handle", ["ab", "x" * 26, "Alice", "al ice", "al:ice", ""])
    def test_invalid(self, handle):
        with pytest.raises(InvalidInput):
            validate_handle(handle)


class TestSecretKeys:
    @pytest.mark.parametrize("key", ["a", "db-pass", "AWS_KEY", "ns:key", "x" * 20])
    def test_valid(self, key):
        assert validate_secret_key(key) == key

    @pytest.mark.parametrize("key", ["", "x" * 21, "has space", "dot.key", "slash/key"])
    def test_invalid(self, key):
        with pytest.raises(InvalidInput):
            validate_secret_key(key)

    def test_reserved_key_slot_rejected(self):
        with pytest.raises(InvalidInput):
            validate_secret_key(CIPHER_KEY_SLOT)


class TestPayloads:
    def test_value_encoded(self):
        assert validate_value("héllo") == "héllo".encode("utf-8")

    def test_value_size_counts_bytes(self):
        with pytest.raises(InvalidInput):
            validate_value("é" * 3, max_bytes=5)

    def test_value_must_be_string(self):
        with pytest.raises(InvalidInput):
            validate_value(b"bytes")

    def test_display_name_stripped(self):
        assert validate_display_name("  Alice  ") == "Alice"

    @pytest.mark.parametrize("name", ["", "   ", "x" * 65, "bad\nname"])
    def test_display_name_invalid(self, name):
        with pytest.raises(InvalidInput):
            validate_display_name(name)

    @pytest.mark.parametrize("password", ["short", "x" * 129])
    def test_password_length(self, password):
        with pytest.raises(InvalidInput):
            validate_password(password)


class TestTargets:
    def test_valid(self):
        assert validate_targets(["bob", "carol"], owner_handle="alice") == ["bob", "carol"]

    def test_empty(self):
        with pytest.raises(InvalidInput):
            validate_targets([])

    def test_too_many(self):
        with pytest.raises(InvalidInput):
            validate_targets([f"user{i:02d}" for i in range(51)])

    def test_duplicates(self):
        with pytest.raises(InvalidInput):
            validate_targets(["bob", "bob"])

    def test_self(self):
        with pytest.raises(InvalidInput):
            validate_targets(["alice"], owner_handle="alice")


class TestReferences:
    def test_plain_key_is_own(self):
        ref = parse_reference(ALICE, "db-pass")
        assert (ref.owner, ref.key, ref.foreign) == ("alice", "db-pass", False)

    def test_foreign_reference(self):
        ref = parse_reference(ALICE, "bob:db-pass")
        assert (ref.owner, ref.key, ref.foreign) == ("bob", "db-pass", True)

    def test_own_prefix_is_literal(self):
        ref = parse_reference(ALICE, "alice:db-pass")
        assert (ref.owner, ref.key, ref.foreign) == ("alice", "alice:db-pass", False)

    def test_prefix_that_is_not_a_handle_is_literal(self):
        assert not parse_reference(ALICE, "ns:key").foreign
        assert not parse_reference(ALICE, "AB:key").foreign

    def test_trailing_colon_is_literal(self):
        assert not parse_reference(ALICE, "bob:").foreign

    def test_require_own_rejects_foreign(self):
        with pytest.raises(Forbidden):
            require_own(ALICE, "bob:db-pass")
        assert require_own(ALICE, "db-pass") == "db-pass"

    def test_require_self(self):
        require_self(ALICE, "alice")
        with pytest.raises(Forbidden):
            require_self(ALICE, "bob")

"""
core/validation.py -- Structural checks on identifiers and payloads.

Every check here runs before the first store call of an operation and raises
InvalidInput on failure. Nothing in this module touches a store, so a bad
request never costs a round trip and never opens a compensation scope.

Reserved keys: the per-user encryption key lives in the same ciphertext
bucket as the user's secrets, under CIPHER_KEY_SLOT. That name matches the
secret-key pattern, so validate_secret_key() rejects it explicitly -- this is
the only thing that keeps a user from overwriting their own key slot.
"""

from __future__ import annotations

import re
from datetime import timedelta

from core.errors import InvalidInput

HANDLE_PATTERN = r"^[a-z0-9_-]{3,25}$"
SECRET_KEY_PATTERN = r"^[A-Za-z0-9_:-]{1,20}$"

_HANDLE_RE = re.compile(HANDLE_PATTERN)
_SECRET_KEY_RE = re.compile(SECRET_KEY_PATTERN)

CIPHER_KEY_SLOT = "__cipherkey__"
RESERVED_KEYS: frozenset[str] = frozenset({CIPHER_KEY_SLOT})

MAX_DISPLAY_NAME = 64
MIN_PASSWORD = 8
MAX_PASSWORD = 128
MAX_SHARE_TARGETS = 50
DEFAULT_MAX_VALUE_BYTES = 64 * 1024


def is_handle(value: str) -> bool:
    """Return True if value is a well-formed user handle."""
    return bool(_HANDLE_RE.match(value))


def validate_handle(handle: str) -> str:
    if not isinstance(handle, str) or not _HANDLE_RE.match(handle):
        raise InvalidInput(
            "invalid handle",
            detail="3-25 characters: lowercase letters, digits, '-' or '_'",
        )
    return handle


def validate_secret_key(key: str) -> str:
    if not isinstance(key, str) or not _SECRET_KEY_RE.match(key):
        raise InvalidInput(
            "invalid secret key",
            detail="1-20 characters: letters, digits, '-', '_' or ':'",
        )
    if key in RESERVED_KEYS:
        raise InvalidInput(f"secret key {key!r} is reserved")
    return key


def validate_value(value: str, max_bytes: int = DEFAULT_MAX_VALUE_BYTES) -> bytes:
    """Check a secret value and return its UTF-8 encoding."""
    if not isinstance(value, str):
        raise InvalidInput("secret value must be a string")
    encoded = value.encode("utf-8")
    if len(encoded) > max_bytes:
        raise InvalidInput(f"secret value exceeds {max_bytes} bytes", detail=f"got {len(encoded)} bytes")
    return encoded


def validate_display_name(name: str) -> str:
    if not isinstance(name, str):
        raise InvalidInput("display name must be a string")
    name = name.strip()
    if not 1 <= len(name) <= MAX_DISPLAY_NAME or not name.isprintable():
        raise InvalidInput(f"display name must be 1-{MAX_DISPLAY_NAME} printable characters")
    return name


def validate_password(password: str) -> str:
    if not isinstance(password, str) or not MIN_PASSWORD <= len(password) <= MAX_PASSWORD:
        raise InvalidInput(f"password must be {MIN_PASSWORD}-{MAX_PASSWORD} characters")
    return password


def validate_targets(targets: list[str], owner_handle: str | None = None) -> list[str]:
    """Check a share target list. Order is preserved; duplicates are rejected."""
    if not targets:
        raise InvalidInput("a share needs at least one target")
    if len(targets) > MAX_SHARE_TARGETS:
        raise InvalidInput(f"a share may name at most {MAX_SHARE_TARGETS} targets")
    seen: set[str] = set()
    for target in targets:
        validate_handle(target)
        if target in seen:
            raise InvalidInput(f"duplicate share target {target!r}")
        if owner_handle is not None and target == owner_handle:
            raise InvalidInput("cannot share a secret with yourself")
        seen.add(target)
    return list(targets)


def validate_duration(duration: timedelta) -> timedelta:
    if duration <= timedelta(0):
        raise InvalidInput("share duration must be positive")
    return duration

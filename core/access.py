"""
core/access.py -- Ownership rules for secret and share operations.

The HTTP layer (auth/dependencies.py) binds a verified User to each request.
This module decides what that caller may touch once bound.

Secret references:
  "db-pass"          own secret "db-pass"
  "alice:db-pass"    alice's secret "db-pass", read through a share -- unless
                     the caller IS alice, in which case it is the caller's own
                     secret with the literal key "alice:db-pass"

A key is a foreign reference when the text before its first ':' is a
well-formed handle other than the caller's. Foreign references are read-only:
share targets get derived read access and nothing else, so every mutation
goes through require_own() first.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import Forbidden
from core.models import User
from core.validation import is_handle


@dataclass(frozen=True)
class SecretRef:
    owner: str
    key: str
    foreign: bool


def parse_reference(caller: User, key: str) -> SecretRef:
    """Resolve a requested key into (owner handle, key, foreign?)."""
    prefix, sep, rest = key.partition(":")
    if sep and rest and prefix != caller.handle and is_handle(prefix):
        return SecretRef(owner=prefix, key=rest, foreign=True)
    return SecretRef(owner=caller.handle, key=key, foreign=False)


def require_own(caller: User, key: str) -> str:
    """Return key unchanged if it names one of the caller's own secrets.

    Raises:
        Forbidden: If key is a reference into another user's secrets.
    """
    ref = parse_reference(caller, key)
    if ref.foreign:
        raise Forbidden(f"{key!r} belongs to {ref.owner}; shared secrets are read-only")
    return key


def require_self(caller: User, handle: str) -> None:
    """Raise Forbidden unless handle names the caller."""
    if caller.handle != handle:
        raise Forbidden("you can only modify your own account")

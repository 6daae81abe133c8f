"""
core/models.py -- Domain dataclasses for Lockbox.

Pattern: Data class (pure data container, zero logic). Stores map rows into
these; lifecycle managers and routes do the work.

Timestamps follow the store convention: created_at / updated_at are ISO 8601
strings set by the metadata store on insert. Share expiry (`until`) is a
timezone-aware datetime because the share resolver compares it against the
clock on every read.

Plaintext secret values only ever appear in Secret.value, and only for the
lifetime of a single read. The field is excluded from repr() so a stray log
line or traceback cannot print it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A registered identity.

    handle is immutable once set. salt + hashed_password form the password
    verifier; the plaintext password is never stored. id is None before the
    record is written to the metadata store.
    """

    handle: str
    display_name: str
    id: int | None = None
    salt: bytes | None = field(default=None, repr=False)
    hashed_password: str | None = field(default=None, repr=False)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Identity:
    """The stable attributes a token asserts about its bearer."""

    user_id: int
    handle: str


@dataclass
class Secret:
    """A named secret owned by one user.

    For a shared read the key is relabelled "owner:key" and created_at is
    cleared -- the result is a derived view, not the owner's metadata.
    """

    key: str
    owner_id: int | None = None
    id: int | None = None
    value: str | None = field(default=None, repr=False)
    created_at: str | None = None


@dataclass
class ShareRelation:
    """One (secret, target) edge of a share, as stored in the metadata store.

    owner / key / target are handles and key names joined in by the store so
    the share resolver can group relations without further lookups. until is
    None for an open-ended share.
    """

    owner: str
    key: str
    target: str
    until: datetime | None = None
    id: int | None = None
    secret_id: int | None = None
    owner_id: int | None = None
    target_id: int | None = None
    created_at: str | None = None


@dataclass
class Share:
    """A logical share: one secret, one expiry, one or more targets."""

    owner: str
    key: str
    until: datetime | None = None
    targets: list[str] = field(default_factory=list)

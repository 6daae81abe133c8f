"""
metadata/store.py -- SQLAlchemy Core persistence for users, secret metadata, and shares.

Uses SQLAlchemy Core (not ORM) so the dataclasses in core/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. SQLMetadataStore is the repository; the
_row_to_* functions are the mappers. Lifecycle code never touches SQL.

Never stored here: plaintext values, ciphertext, or encryption keys. Those
live in the ciphertext store. This store only knows that a secret named `key`
exists for an owner.

Uniqueness guards (the only concurrency control in the system):
  users.handle                      -- one account per handle
  secrets (owner_id, key)           -- one secret per key per owner
  shares  (secret_id, target_id)    -- one relation per target per secret
A violation raises AlreadyExists; any other SQLAlchemy failure raises
StoreError. Both chain the driver exception.

No foreign keys: cascades across users -> secrets -> shares are performed
step by step by the lifecycle managers so every step can register an
inverse. Share listings use inner joins, so a relation whose secret or user
row is already gone is silently skipped.

sqlite_autoincrement: ids are never reused after a delete. A token issued
to a deleted user must not resolve to a later account that inherits its id.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import AlreadyExists, StoreError
from core.models import Secret, ShareRelation, User

logger = logging.getLogger("lockbox.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("handle", String(25), nullable=False, unique=True),
    Column("display_name", String(64), nullable=False),
    Column("salt", LargeBinary, nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

_secrets = Table(
    "secrets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", Integer, nullable=False, index=True),
    Column("key", String(20), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("owner_id", "key", name="uq_secret_owner_key"),
    sqlite_autoincrement=True,
)

_shares = Table(
    "shares",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("secret_id", Integer, nullable=False, index=True),
    Column("owner_id", Integer, nullable=False, index=True),
    Column("target_id", Integer, nullable=False, index=True),
    Column("until", String(32)),  # ISO 8601 UTC; NULL = open-ended
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("secret_id", "target_id", name="uq_share_secret_target"),
    sqlite_autoincrement=True,
)

_owner = _users.alias("owner")
_target = _users.alias("target")

# Relations joined with the secret key and both handles, so the share
# resolver can group them without further lookups.
_SHARE_SELECT = select(
    _shares,
    _secrets.c.key.label("key"),
    _owner.c.handle.label("owner_handle"),
    _target.c.handle.label("target_handle"),
).select_from(
    _shares.join(_secrets, _shares.c.secret_id == _secrets.c.id)
    .join(_owner, _shares.c.owner_id == _owner.c.id)
    .join(_target, _shares.c.target_id == _target.c.id)
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp. Naive values are treated as UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@contextmanager
def _translated(action: str) -> Iterator[None]:
    """Map SQLAlchemy exceptions onto the core error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        raise AlreadyExists(f"{action}: record already exists") from exc
    except SQLAlchemyError as exc:
        logger.error("Metadata store failure during %s: %s", action, exc)
        raise StoreError(f"{action}: metadata store unavailable") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SQLMetadataStore:
    """Repository for User, Secret metadata, and ShareRelation records.

    Usage:
        store = SQLMetadataStore()                                # SQLite default
        store = SQLMetadataStore("postgresql://user:pw@host/db")  # PostgreSQL
        uid = store.create_user(User(handle="alice", display_name="Alice", salt=s, hashed_password=h))
        sid = store.create_secret(Secret(key="db-pass", owner_id=uid))
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///lockbox_metadata.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers on a thread pool; the same pooled
            # connection may be used from more than one thread.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned id.

        Raises AlreadyExists if the handle is taken -- including by a
        concurrent registration that committed first.
        """
        now = _now_iso()
        with _translated("create user"), self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    handle=user.handle,
                    display_name=user.display_name,
                    salt=user.salt,
                    hashed_password=user.hashed_password,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def restore_user(self, user: User) -> None:
        """Re-insert a deleted user exactly as it was (id and timestamps included)."""
        self._restore(
            _users,
            "restore user",
            id=user.id,
            handle=user.handle,
            display_name=user.display_name,
            salt=user.salt,
            hashed_password=user.hashed_password,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    def get_user(self, user_id: int) -> User | None:
        with _translated("get user"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_handle(self, handle: str) -> User | None:
        """Look up a user by exact handle. Returns None if not found."""
        with _translated("get user"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.handle == handle)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by handle."""
        with _translated("list users"), self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.handle)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields (display_name, salt, hashed_password).

        handle is immutable and rejected here. updated_at is stamped
        automatically. Returns False if user_id was not found.
        """
        if "handle" in fields or "id" in fields:
            raise ValueError("handle and id are immutable")
        fields["updated_at"] = _now_iso()
        with _translated("update user"), self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user row. Owned secrets and shares must already be gone."""
        with _translated("delete user"), self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Secret metadata
    # ------------------------------------------------------------------

    def create_secret(self, secret: Secret) -> int:
        """Insert secret metadata and return its id.

        Raises AlreadyExists if the owner already has a secret with this key.
        """
        with _translated("create secret"), self.engine.connect() as conn:
            result = conn.execute(
                _secrets.insert().values(
                    owner_id=secret.owner_id,
                    key=secret.key,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def restore_secret(self, secret: Secret) -> None:
        """Re-insert deleted secret metadata with its original id and created_at."""
        self._restore(
            _secrets,
            "restore secret",
            id=secret.id,
            owner_id=secret.owner_id,
            key=secret.key,
            created_at=secret.created_at,
        )

    def get_secret(self, owner_id: int, key: str) -> Secret | None:
        with _translated("get secret"), self.engine.connect() as conn:
            row = conn.execute(
                _secrets.select().where((_secrets.c.owner_id == owner_id) & (_secrets.c.key == key))
            ).fetchone()
        return _row_to_secret(row) if row is not None else None

    def get_secret_by_id(self, secret_id: int) -> Secret | None:
        with _translated("get secret"), self.engine.connect() as conn:
            row = conn.execute(_secrets.select().where(_secrets.c.id == secret_id)).fetchone()
        return _row_to_secret(row) if row is not None else None

    def list_secrets(self, owner_id: int) -> list[Secret]:
        """Return an owner's secret metadata ordered by key."""
        with _translated("list secrets"), self.engine.connect() as conn:
            rows = conn.execute(
                _secrets.select().where(_secrets.c.owner_id == owner_id).order_by(_secrets.c.key)
            ).fetchall()
        return [_row_to_secret(r) for r in rows]

    def delete_secret(self, secret_id: int) -> bool:
        with _translated("delete secret"), self.engine.connect() as conn:
            result = conn.execute(_secrets.delete().where(_secrets.c.id == secret_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Share relations
    # ------------------------------------------------------------------

    def create_share(self, relation: ShareRelation) -> int:
        """Insert one (secret, target) relation and return its id.

        Raises AlreadyExists if the secret is already shared with the target.
        """
        with _translated("create share"), self.engine.connect() as conn:
            result = conn.execute(
                _shares.insert().values(
                    secret_id=relation.secret_id,
                    owner_id=relation.owner_id,
                    target_id=relation.target_id,
                    until=_to_iso(relation.until),
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def restore_share(self, relation: ShareRelation) -> None:
        """Re-insert a deleted relation with its original id and timestamps."""
        self._restore(
            _shares,
            "restore share",
            id=relation.id,
            secret_id=relation.secret_id,
            owner_id=relation.owner_id,
            target_id=relation.target_id,
            until=_to_iso(relation.until),
            created_at=relation.created_at,
        )

    def list_shares_for_secret(self, secret_id: int) -> list[ShareRelation]:
        return self._select_shares("list shares", _shares.c.secret_id == secret_id)

    def list_shares_by_owner(self, owner_id: int) -> list[ShareRelation]:
        return self._select_shares("list shares", _shares.c.owner_id == owner_id)

    def list_shares_for_target(self, target_id: int) -> list[ShareRelation]:
        return self._select_shares("list shares", _shares.c.target_id == target_id)

    def delete_share(self, share_id: int) -> bool:
        with _translated("delete share"), self.engine.connect() as conn:
            result = conn.execute(_shares.delete().where(_shares.c.id == share_id))
            conn.commit()
        return result.rowcount > 0

    def _restore(self, table: Table, action: str, **values) -> None:
        """Insert a row under its original id unless that id is still present.

        Rollback inverses are registered before the delete they undo, so a
        restore may run for a row whose delete never happened.
        """
        with _translated(action), self.engine.connect() as conn:
            present = conn.execute(select(table.c.id).where(table.c.id == values["id"])).first()
            if present is not None:
                return
            conn.execute(table.insert().values(**values))
            conn.commit()

    def _select_shares(self, action: str, condition) -> list[ShareRelation]:
        with _translated(action), self.engine.connect() as conn:
            rows = conn.execute(_SHARE_SELECT.where(condition).order_by(_shares.c.id)).fetchall()
        return [_row_to_share(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        handle=row.handle,
        display_name=row.display_name,
        salt=bytes(row.salt) if row.salt is not None else None,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_secret(row) -> Secret:
    return Secret(
        id=row.id,
        owner_id=row.owner_id,
        key=row.key,
        created_at=row.created_at,
    )


def _row_to_share(row) -> ShareRelation:
    return ShareRelation(
        id=row.id,
        secret_id=row.secret_id,
        owner_id=row.owner_id,
        target_id=row.target_id,
        owner=row.owner_handle,
        key=row.key,
        target=row.target_handle,
        until=_from_iso(row.until),
        created_at=row.created_at,
    )

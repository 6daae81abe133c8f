"""
core/ports.py -- Storage capabilities the lifecycle managers consume.

The core never imports a concrete driver. It talks to whatever satisfies these
Protocols; metadata/store.py and ciphertext/store.py are the shipped
implementations, and the tests wrap them to inject failures.

Conventions shared by both capabilities:
  - get_* returns None for "not found"; that is never an exception.
  - delete_* returns False when nothing was removed.
  - A uniqueness violation raises AlreadyExists.
  - Any other driver failure raises StoreError, chained from the driver error.
  - restore_* re-inserts a record under its original id and timestamps, and
    does nothing if that id is still present. Rollback inverses rely on it.
"""

from __future__ import annotations

from typing import Protocol

from core.models import Secret, ShareRelation, User


class MetadataStore(Protocol):
    """Relational records: users, secret metadata, share relations."""

    # Users
    def create_user(self, user: User) -> int: ...

    def restore_user(self, user: User) -> None: ...

    def get_user(self, user_id: int) -> User | None: ...

    def get_user_by_handle(self, handle: str) -> User | None: ...

    def list_users(self) -> list[User]: ...

    def update_user(self, user_id: int, **fields) -> bool: ...

    def delete_user(self, user_id: int) -> bool: ...

    # Secrets
    def create_secret(self, secret: Secret) -> int: ...

    def restore_secret(self, secret: Secret) -> None: ...

    def get_secret(self, owner_id: int, key: str) -> Secret | None: ...

    def get_secret_by_id(self, secret_id: int) -> Secret | None: ...

    def list_secrets(self, owner_id: int) -> list[Secret]: ...

    def delete_secret(self, secret_id: int) -> bool: ...

    # Share relations
    def create_share(self, relation: ShareRelation) -> int: ...

    def restore_share(self, relation: ShareRelation) -> None: ...

    def list_shares_for_secret(self, secret_id: int) -> list[ShareRelation]: ...

    def list_shares_by_owner(self, owner_id: int) -> list[ShareRelation]: ...

    def list_shares_for_target(self, target_id: int) -> list[ShareRelation]: ...

    def delete_share(self, share_id: int) -> bool: ...


class CiphertextStore(Protocol):
    """Opaque bytes in per-owner buckets."""

    def set(self, bucket: str, key: str, value: bytes) -> None: ...

    def get(self, bucket: str, key: str) -> bytes | None: ...

    def delete(self, bucket: str, key: str) -> bool: ...

    def purge(self, bucket: str) -> int: ...

"""
auth/accounts.py -- Account lifecycle: registration, profile, password, deletion.

UserManager owns the user row in the metadata store and the CipherKey slot in
the ciphertext store. Everything a user owns is removed through
SecretManager.remove_secret(), inside the same Compensation scope as the user
row itself, so a half-deleted account is rolled back to exactly what it was.

Deletion order (each step registers its inverse before it runs):
  1. every owned secret: shares, ciphertext, metadata
  2. inbound share relations naming the user
  3. the CipherKey slot
  4. any remaining entries in the user's ciphertext bucket (orphans with no
     metadata; not restored on rollback)
  5. the user row

Layer rule: no imports from api/. core/ and auth.tokens only.
"""

from __future__ import annotations

import logging
from functools import partial

from auth.tokens import hash_password, verify_password
from core.access import require_self
from core.compensation import Compensation
from core.context import OperationContext
from core.crypto import new_salt, new_user_key
from core.errors import NotFound, Unauthorized
from core.lifecycle import SecretManager, bucket_for
from core.models import User
from core.ports import CiphertextStore, MetadataStore
from core.validation import (
    CIPHER_KEY_SLOT,
    validate_display_name,
    validate_handle,
    validate_password,
)

logger = logging.getLogger("lockbox.auth")


class UserManager:
    def __init__(self, meta: MetadataStore, cipher: CiphertextStore, secrets: SecretManager) -> None:
        self.meta = meta
        self.cipher = cipher
        self.secrets = secrets

    def register(self, handle: str, display_name: str, password: str, ctx: OperationContext | None = None) -> User:
        """Create an account and its encryption key.

        The handle's uniqueness constraint is the guard against concurrent
        registrations: the loser gets AlreadyExists before any key is written.
        """
        validate_handle(handle)
        display_name = validate_display_name(display_name)
        validate_password(password)
        salt = new_salt()
        user = User(handle=handle, display_name=display_name, salt=salt, hashed_password=hash_password(password, salt))
        meta, cipher = self.secrets.guarded(ctx)

        with Compensation("register") as scope:
            slot = scope.add_insert(self.meta.delete_user)
            slot.value = meta.create_user(user)

            bucket = bucket_for(slot.value)
            scope.add(partial(self.cipher.delete, bucket, CIPHER_KEY_SLOT))
            cipher.set(bucket, CIPHER_KEY_SLOT, new_user_key())

            created = meta.get_user(slot.value)

        logger.info("User registered: handle=%s", handle)
        return created or User(handle=handle, display_name=display_name, id=slot.value)

    def change_password(self, caller: User, old_password: str, new_password: str, ctx: OperationContext | None = None) -> None:
        """Replace the caller's verifier after checking the current password.

        The CipherKey is independent of the password, so nothing in the
        ciphertext store changes.
        """
        validate_password(new_password)
        meta, _ = self.secrets.guarded(ctx)
        current = meta.get_user(caller.id)
        if current is None or not verify_password(old_password, current.salt, current.hashed_password):
            raise Unauthorized("current password is incorrect")
        salt = new_salt()
        meta.update_user(current.id, salt=salt, hashed_password=hash_password(new_password, salt))
        logger.info("Password changed: handle=%s", caller.handle)

    def get_user(self, handle: str, ctx: OperationContext | None = None) -> User:
        validate_handle(handle)
        meta, _ = self.secrets.guarded(ctx)
        user = meta.get_user_by_handle(handle)
        if user is None:
            raise NotFound(f"user {handle!r} not found")
        return user

    def list_users(self, ctx: OperationContext | None = None) -> list[User]:
        meta, _ = self.secrets.guarded(ctx)
        return meta.list_users()

    def update_user(self, caller: User, display_name: str, ctx: OperationContext | None = None) -> User:
        """Change the caller's display name. The handle never changes."""
        display_name = validate_display_name(display_name)
        meta, _ = self.secrets.guarded(ctx)
        if not meta.update_user(caller.id, display_name=display_name):
            raise NotFound("user no longer exists")
        updated = meta.get_user(caller.id)
        if updated is None:
            raise NotFound("user no longer exists")
        return updated

    def delete_user(self, caller: User, handle: str, ctx: OperationContext | None = None) -> None:
        """Delete an account with every secret and share it touches.

        Raises:
            Forbidden: handle is not the caller's own.
            CompensationFailed: a step failed and the rollback did not
                complete; the stores may disagree.
        """
        validate_handle(handle)
        require_self(caller, handle)
        meta, cipher = self.secrets.guarded(ctx)

        with Compensation("delete_user") as scope:
            user = meta.get_user(caller.id)
            if user is None:
                raise NotFound(f"user {handle!r} not found")
            bucket = bucket_for(user.id)

            owned = meta.list_secrets(user.id)
            for secret in owned:
                self.secrets.remove_secret(scope, meta, cipher, secret)

            for rel in meta.list_shares_for_target(user.id):
                scope.add(partial(self.meta.restore_share, rel))
                meta.delete_share(rel.id)

            user_key = cipher.get(bucket, CIPHER_KEY_SLOT)
            if user_key is not None:
                scope.add(partial(self.cipher.set, bucket, CIPHER_KEY_SLOT, user_key))
                cipher.delete(bucket, CIPHER_KEY_SLOT)

            leftover = cipher.purge(bucket)
            if leftover:
                logger.warning("Purged %d orphaned ciphertext entries for %s", leftover, handle)

            scope.add(partial(self.meta.restore_user, user))
            meta.delete_user(user.id)

        logger.info("User deleted: handle=%s secrets=%d", handle, len(owned))

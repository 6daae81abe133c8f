"""
core/lifecycle.py -- Secret and share lifecycle across the two backing stores.

SecretManager owns every operation that touches a secret or a share. Each
one follows the same shape:

  1. Structural validation and ownership checks (no store calls yet).
  2. Store calls, in a fixed order, through Guarded proxies that honour the
     operation's OperationContext.
  3. For mutations, every step inside one Compensation scope, with the
     inverse registered on the raw (unguarded) store before the step runs.

Where things live:
  metadata store    users, secret metadata (key, id, created_at), relations
  ciphertext store  bucket str(owner_id): one entry per secret key, plus the
                    user's data key under CIPHER_KEY_SLOT

Create/overwrite order: the new metadata row is inserted BEFORE the
ciphertext is written. The (owner_id, key) uniqueness constraint is the only
guard against two concurrent creates, and inserting first makes the loser
fail with AlreadyExists before it writes any ciphertext. When the loser was
an overwrite, its rollback finds the pair taken and leaves the old secret
removed rather than restoring it over the winner (see _RemovedSecret).

Lazy expiry: every path that lists relations runs them through _reap(),
which deletes expired relations from the metadata store before anything is
returned. There is no background sweep.

Security Note:
    Never log values, ciphertext, or key material. Handles and key names only.
    Decrypted values and user keys live only for the duration of one call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from functools import partial

from core import crypto
from core.access import SecretRef, parse_reference, require_own
from core.compensation import Compensation
from core.context import Guarded, OperationContext
from core.errors import AlreadyExists, NotFound, NotShared
from core.models import Secret, Share, ShareRelation, User
from core.ports import CiphertextStore, MetadataStore
from core.shares import DEFAULT_SHARE_DAYS, merge, reap_expired, resolve_until, split
from core.validation import (
    CIPHER_KEY_SLOT,
    DEFAULT_MAX_VALUE_BYTES,
    validate_handle,
    validate_secret_key,
    validate_targets,
    validate_value,
)

logger = logging.getLogger("lockbox.lifecycle")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def bucket_for(user_id: int) -> str:
    """Ciphertext bucket name for a user."""
    return str(user_id)


class _RemovedSecret:
    """Rollback state shared by the inverses of one secret removal.

    Inverses run in reverse, so the metadata row is put back before the
    ciphertext and relations. If a concurrent create has taken the
    (owner, key) pair in the meantime, the removed secret stays removed and
    its ciphertext and relations are not restored over the newer secret.
    """

    def __init__(self, meta: MetadataStore, secret: Secret) -> None:
        self.meta = meta
        self.secret = secret
        self.superseded = False

    def restore_row(self) -> None:
        try:
            self.meta.restore_secret(self.secret)
        except AlreadyExists:
            current = self.meta.get_secret(self.secret.owner_id, self.secret.key)
            if current is None or current.id == self.secret.id:
                raise
            self.superseded = True
            logger.warning(
                "Secret replaced concurrently; not restoring: owner_id=%s key=%s",
                self.secret.owner_id,
                self.secret.key,
            )

    def unless_superseded(self, inverse: Callable[..., object], *args) -> None:
        if not self.superseded:
            inverse(*args)


class SecretManager:
    """Create, read, list, and delete secrets and their shares.

    Every public method takes the bound caller (a User from the access gate)
    and an optional OperationContext. Queries are scoped to the caller's id;
    the only cross-owner access is a read through a live share.
    """

    def __init__(
        self,
        meta: MetadataStore,
        cipher: CiphertextStore,
        *,
        clock: Clock = utcnow,
        default_share_days: int = DEFAULT_SHARE_DAYS,
        max_value_bytes: int = DEFAULT_MAX_VALUE_BYTES,
    ) -> None:
        self.meta = meta
        self.cipher = cipher
        self.clock = clock
        self.default_share_days = default_share_days
        self.max_value_bytes = max_value_bytes

    def guarded(self, ctx: OperationContext | None) -> tuple[MetadataStore, CiphertextStore]:
        """Return (metadata, ciphertext) proxies that check ctx before every call."""
        ctx = ctx or OperationContext()
        return Guarded(self.meta, ctx), Guarded(self.cipher, ctx)

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def create_secret(self, caller: User, key: str, value: str, ctx: OperationContext | None = None) -> Secret:
        """Create a secret, or atomically replace the one already under `key`.

        An overwrite removes the old secret's shares, ciphertext, and metadata
        before installing the new value, so nothing of the old value remains
        once the call returns. Any failure restores the previous state.
        """
        require_own(caller, key)
        validate_secret_key(key)
        plaintext = validate_value(value, self.max_value_bytes)
        meta, cipher = self.guarded(ctx)
        bucket = bucket_for(caller.id)

        with Compensation("create_secret") as scope:
            owner = self._load_user(meta, caller.id)
            prior = meta.get_secret(owner.id, key)
            if prior is not None:
                self.remove_secret(scope, meta, cipher, prior)

            slot = scope.add_insert(self.meta.delete_secret)
            slot.value = meta.create_secret(Secret(key=key, owner_id=owner.id))

            blob = crypto.encrypt(self._user_key(cipher, owner.id), plaintext)
            scope.add(partial(self.cipher.delete, bucket, key))
            cipher.set(bucket, key, blob)

            created = meta.get_secret_by_id(slot.value)

        logger.info("Secret %s: user=%s key=%s", "replaced" if prior else "created", caller.handle, key)
        return created or Secret(key=key, owner_id=caller.id, id=slot.value)

    def read_secret(self, caller: User, key: str, ctx: OperationContext | None = None) -> Secret:
        """Return a secret with its decrypted value.

        `owner:key` reads another user's secret through a live share;
        anything else reads one of the caller's own secrets.
        """
        meta, cipher = self.guarded(ctx)
        ref = parse_reference(caller, key)
        if ref.foreign:
            return self._read_shared(meta, cipher, caller, ref)

        validate_secret_key(key)
        secret = meta.get_secret(caller.id, key)
        if secret is None:
            raise NotFound(f"secret {key!r} not found")
        value = self._decrypt_entry(cipher, caller.id, key, self._user_key(cipher, caller.id))
        if value is None:
            raise NotFound(f"secret {key!r} has no stored value")
        secret.value = value
        return secret

    def list_secrets(self, caller: User, ctx: OperationContext | None = None) -> list[Secret]:
        """Return the caller's own secrets followed by every secret shared with them.

        Shares whose secret, ciphertext, or owner key has gone missing are
        skipped rather than failing the whole listing.
        """
        meta, cipher = self.guarded(ctx)
        results: list[Secret] = []

        own = meta.list_secrets(caller.id)
        if own:
            user_key = self._user_key(cipher, caller.id)
            for secret in own:
                value = self._decrypt_entry(cipher, caller.id, secret.key, user_key)
                if value is None:
                    logger.warning("Skipping secret with no stored value: user=%s key=%s", caller.handle, secret.key)
                    continue
                secret.value = value
                results.append(secret)

        owner_keys: dict[int, bytes | None] = {}
        for rel in self._reap(meta, meta.list_shares_for_target(caller.id)):
            if rel.owner_id not in owner_keys:
                owner_keys[rel.owner_id] = cipher.get(bucket_for(rel.owner_id), CIPHER_KEY_SLOT)
            owner_key = owner_keys[rel.owner_id]
            value = None if owner_key is None else self._decrypt_entry(cipher, rel.owner_id, rel.key, owner_key)
            if value is None:
                logger.warning("Skipping unreadable share: owner=%s key=%s target=%s", rel.owner, rel.key, caller.handle)
                continue
            results.append(Secret(key=f"{rel.owner}:{rel.key}", owner_id=rel.owner_id, id=rel.secret_id, value=value))

        return results

    def delete_secret(self, caller: User, key: str, ctx: OperationContext | None = None) -> None:
        """Delete a secret with its shares and ciphertext."""
        require_own(caller, key)
        validate_secret_key(key)
        meta, cipher = self.guarded(ctx)

        with Compensation("delete_secret") as scope:
            secret = meta.get_secret(caller.id, key)
            if secret is None:
                raise NotFound(f"secret {key!r} not found")
            self.remove_secret(scope, meta, cipher, secret)

        logger.info("Secret deleted: user=%s key=%s", caller.handle, key)

    def remove_secret(self, scope: Compensation, meta: MetadataStore, cipher: CiphertextStore, secret: Secret) -> None:
        """Delete a secret's relations, ciphertext, and metadata inside an open scope.

        Shared by overwrite, delete, and account deletion. Expired relations
        are reaped without an inverse; live relations, the ciphertext, and the
        metadata row are each restorable, unless a concurrent create takes
        the key before rollback. A missing ciphertext entry is treated as
        already deleted.
        """
        bucket = bucket_for(secret.owner_id)
        removed = _RemovedSecret(self.meta, secret)
        for rel in self._reap(meta, meta.list_shares_for_secret(secret.id)):
            scope.add(partial(removed.unless_superseded, self.meta.restore_share, rel))
            meta.delete_share(rel.id)

        old = cipher.get(bucket, secret.key)
        if old is not None:
            scope.add(partial(removed.unless_superseded, self.cipher.set, bucket, secret.key, old))
            cipher.delete(bucket, secret.key)

        scope.add(removed.restore_row)
        meta.delete_secret(secret.id)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    def create_share(
        self,
        caller: User,
        key: str,
        targets: list[str],
        until: datetime | None = None,
        duration: timedelta | None = None,
        ctx: OperationContext | None = None,
    ) -> Share:
        """Share one of the caller's secrets with one or more users.

        Expiry: explicit `until`, else now + `duration`, else now +
        default_share_days (open-ended when that is 0).

        Raises:
            NotFound: The secret or a target user does not exist.
            AlreadyExists: A live relation already exists for one of the
                targets. Delete it first to change its expiry.
        """
        require_own(caller, key)
        validate_secret_key(key)
        validate_targets(targets, owner_handle=caller.handle)
        expiry = resolve_until(self.clock(), until, duration, self.default_share_days)
        meta, _ = self.guarded(ctx)

        with Compensation("create_share") as scope:
            secret = self._own_secret(meta, caller, key)
            target_users = [self._target_user(meta, handle) for handle in targets]

            existing = {rel.target for rel in self._reap(meta, meta.list_shares_for_secret(secret.id))}
            clash = sorted(existing.intersection(targets))
            if clash:
                raise AlreadyExists(
                    f"secret {key!r} is already shared with {', '.join(clash)}",
                    detail="delete the existing share before re-sharing",
                )

            share = Share(owner=caller.handle, key=key, until=expiry, targets=list(targets))
            for rel, target in zip(split(share), target_users):
                rel.secret_id = secret.id
                rel.owner_id = caller.id
                rel.target_id = target.id
                slot = scope.add_insert(self.meta.delete_share)
                slot.value = meta.create_share(rel)

        logger.info("Share created: owner=%s key=%s targets=%d until=%s", caller.handle, key, len(targets), expiry)
        return share

    def get_share(self, caller: User, key: str, ctx: OperationContext | None = None) -> list[Share]:
        """Return the live shares of one of the caller's secrets, grouped by expiry."""
        require_own(caller, key)
        validate_secret_key(key)
        meta, _ = self.guarded(ctx)
        secret = self._own_secret(meta, caller, key)
        return merge(self._reap(meta, meta.list_shares_for_secret(secret.id)))

    def list_shares(self, caller: User, ctx: OperationContext | None = None) -> list[Share]:
        """Return every live share the caller owns."""
        meta, _ = self.guarded(ctx)
        return merge(self._reap(meta, meta.list_shares_by_owner(caller.id)))

    def list_shared_with(self, caller: User, ctx: OperationContext | None = None) -> list[Share]:
        """Return every live share that targets the caller."""
        meta, _ = self.guarded(ctx)
        return merge(self._reap(meta, meta.list_shares_for_target(caller.id)))

    def delete_share_target(self, caller: User, key: str, target: str, ctx: OperationContext | None = None) -> None:
        """Stop sharing one of the caller's secrets with one user."""
        require_own(caller, key)
        validate_secret_key(key)
        validate_handle(target)
        meta, _ = self.guarded(ctx)
        secret = self._own_secret(meta, caller, key)
        for rel in self._reap(meta, meta.list_shares_for_secret(secret.id)):
            if rel.target == target:
                meta.delete_share(rel.id)
                logger.info("Share target removed: owner=%s key=%s target=%s", caller.handle, key, target)
                return
        raise NotFound(f"secret {key!r} is not shared with {target}")

    def purge_share(self, caller: User, key: str, ctx: OperationContext | None = None) -> int:
        """Stop sharing one of the caller's secrets with everyone. Returns the number removed."""
        require_own(caller, key)
        validate_secret_key(key)
        meta, _ = self.guarded(ctx)

        with Compensation("purge_share") as scope:
            secret = self._own_secret(meta, caller, key)
            live = self._reap(meta, meta.list_shares_for_secret(secret.id))
            for rel in live:
                scope.add(partial(self.meta.restore_share, rel))
                meta.delete_share(rel.id)

        logger.info("Share purged: owner=%s key=%s removed=%d", caller.handle, key, len(live))
        return len(live)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read_shared(self, meta: MetadataStore, cipher: CiphertextStore, caller: User, ref: SecretRef) -> Secret:
        """Read another user's secret through a live share targeting the caller.

        Every miss (unknown owner, unknown key, no relation, expired
        relation) is NotShared, so the response never reveals which secrets
        exist under another user's handle.
        """
        validate_secret_key(ref.key)
        owner = meta.get_user_by_handle(ref.owner)
        secret = meta.get_secret(owner.id, ref.key) if owner is not None else None
        if owner is None or secret is None:
            raise NotShared(f"{ref.owner}:{ref.key} is not shared with you")
        live = self._reap(meta, meta.list_shares_for_secret(secret.id))
        if not any(rel.target_id == caller.id for rel in live):
            raise NotShared(f"{ref.owner}:{ref.key} is not shared with you")

        value = self._decrypt_entry(cipher, owner.id, ref.key, self._user_key(cipher, owner.id))
        if value is None:
            raise NotFound(f"{ref.owner}:{ref.key} has no stored value")
        return Secret(key=f"{owner.handle}:{ref.key}", owner_id=owner.id, id=secret.id, value=value)

    def _reap(self, meta: MetadataStore, relations: list[ShareRelation]) -> list[ShareRelation]:
        """Delete expired relations and return the live ones."""
        live, expired = reap_expired(relations, self.clock())
        for rel in expired:
            meta.delete_share(rel.id)
            logger.info("Expired share reaped: owner=%s key=%s target=%s", rel.owner, rel.key, rel.target)
        return live

    @staticmethod
    def _load_user(meta: MetadataStore, user_id: int) -> User:
        user = meta.get_user(user_id)
        if user is None:
            raise NotFound("user no longer exists")
        return user

    @staticmethod
    def _own_secret(meta: MetadataStore, caller: User, key: str) -> Secret:
        secret = meta.get_secret(caller.id, key)
        if secret is None:
            raise NotFound(f"secret {key!r} not found")
        return secret

    @staticmethod
    def _target_user(meta: MetadataStore, handle: str) -> User:
        user = meta.get_user_by_handle(handle)
        if user is None:
            raise NotFound(f"user {handle!r} not found")
        return user

    @staticmethod
    def _user_key(cipher: CiphertextStore, user_id: int) -> bytes:
        key = cipher.get(bucket_for(user_id), CIPHER_KEY_SLOT)
        if key is None:
            raise NotFound("encryption key for user is missing")
        return key

    @staticmethod
    def _decrypt_entry(cipher: CiphertextStore, owner_id: int, key: str, user_key: bytes) -> str | None:
        """Fetch and decrypt one entry; None if the ciphertext is absent."""
        blob = cipher.get(bucket_for(owner_id), key)
        if blob is None:
            return None
        return crypto.decrypt(user_key, blob).decode("utf-8")

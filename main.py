#!/usr/bin/env python3
"""
Lockbox -- operator CLI.

Usage:
  python main.py gen-key
  python main.py init-db
  python main.py delete-user alice

Storage locations come from the same settings as the API server
(METADATA_DB_URL, CIPHERTEXT_DB_PATH, or .env).

Exit codes:
  0  success
  1  the operation failed and nothing was changed
  2  the operation failed AND its rollback failed -- the stores may disagree
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from auth.accounts import UserManager
from ciphertext.store import SQLiteCiphertextStore
from core.config import get_settings
from core.crypto import new_signing_key
from core.errors import CompensationFailed, LockboxError, NotFound
from core.lifecycle import SecretManager
from metadata.store import SQLMetadataStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_COMPENSATION_FAILED = 2


def _open_stores() -> tuple[SQLMetadataStore, SQLiteCiphertextStore]:
    settings = get_settings()
    return SQLMetadataStore(settings.metadata_db_url), SQLiteCiphertextStore(settings.ciphertext_db_path)


def cmd_gen_key(args: argparse.Namespace) -> int:
    """Print a fresh signing key for SECRET_KEY."""
    print(new_signing_key().hex())
    return EXIT_OK


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create both stores' schemas. Safe to run against existing databases."""
    meta, cipher = _open_stores()
    try:
        healthy = meta.ping() and cipher.ping()
    finally:
        cipher.close()
        meta.close()
    if not healthy:
        print("  [!] A store did not respond after initialization.", file=sys.stderr)
        return EXIT_FAILED
    print("Stores initialized.")
    return EXIT_OK


def cmd_delete_user(args: argparse.Namespace) -> int:
    """Delete one account and everything it owns, acting as that user."""
    meta, cipher = _open_stores()
    settings = get_settings()
    accounts = UserManager(meta, cipher, SecretManager(meta, cipher, default_share_days=settings.default_share_days))
    try:
        user = meta.get_user_by_handle(args.handle)
        if user is None:
            raise NotFound(f"user {args.handle!r} not found")
        accounts.delete_user(user, args.handle)
    except CompensationFailed as exc:
        print(f"  [!] {exc.message}: {exc.detail}", file=sys.stderr)
        print("  [!] Rollback was incomplete. Reconcile the stores manually.", file=sys.stderr)
        return EXIT_COMPENSATION_FAILED
    except LockboxError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        cipher.close()
        meta.close()
    print(f"Deleted user {args.handle}.")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lockbox",
        description="Operator commands for a Lockbox secrets store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  SECRET_KEY=$(python main.py gen-key) uvicorn api.main:app
  python main.py init-db
  python main.py delete-user alice
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("gen-key", help="Print a new token signing key")
    gen.set_defaults(func=cmd_gen_key)

    init = sub.add_parser("init-db", help="Create the metadata and ciphertext schemas")
    init.set_defaults(func=cmd_init_db)

    delete = sub.add_parser("delete-user", help="Delete a user with all their secrets and shares")
    delete.add_argument("handle", metavar="HANDLE", help="Handle of the account to delete")
    delete.set_defaults(func=cmd_delete_user)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ValueError as exc:
        # Settings validation (e.g. missing SECRET_KEY in production mode).
        print(f"  [!] Configuration error: {exc}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

"""
core/crypto.py -- Key material generation and authenticated encryption.

Ciphertext format:
    [nonce 12B][AES-256-GCM payload + tag 16B]

A fresh random nonce is drawn for every encrypt() call and prepended to the
output, so encrypting the same value twice never yields the same bytes.
decrypt() rejects anything shorter than nonce + tag before touching the
cipher, and turns an authentication failure into InvalidCiphertext so callers
never see a cryptography-specific exception.

Randomness: every byte of key material, salt, and nonce is drawn through one
module-level _RandomSource. Its lock serialises reads so concurrent request
threads never interleave on the shared generator. The source reads from the
operating system CSPRNG, which seeds itself; there is no user-space seed to
manage.

Security Note:
    Never log plaintext, ciphertext, or key material. Only log sizes.

Layer rule: core/ is the kernel. No imports from api/, auth/, metadata/, or
ciphertext/.
"""

from __future__ import annotations

import logging
import secrets
import threading

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import InvalidCiphertext, InvalidInput

logger = logging.getLogger("lockbox.crypto")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
USER_KEY_SIZE = 32  # AES-256
SALT_SIZE = 128
SIGNING_KEY_SIZE = 256


# ---------------------------------------------------------------------------
# Shared random source
# ---------------------------------------------------------------------------


class _RandomSource:
    """Lock-guarded byte source shared by every caller in the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def read(self, size: int) -> bytes:
        with self._lock:
            return secrets.token_bytes(size)


_random = _RandomSource()


def random_bytes(size: int) -> bytes:
    """Return `size` bytes from the shared random source."""
    return _random.read(size)


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def new_salt() -> bytes:
    """Return a fresh 128-byte password salt."""
    return random_bytes(SALT_SIZE)


def new_user_key() -> bytes:
    """Return a fresh 32-byte per-user data key (AES-256)."""
    return random_bytes(USER_KEY_SIZE)


def new_signing_key() -> bytes:
    """Return a fresh 256-byte token signing key."""
    return random_bytes(SIGNING_KEY_SIZE)


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------


def encrypt(key: bytes, plaintext: bytes) -> bytes:
    """Encrypt plaintext under a 32-byte key.

    Args:
        key: Per-user data key from new_user_key().
        plaintext: Bytes to protect.

    Returns:
        nonce + ciphertext + tag.

    Raises:
        InvalidInput: If the key is not 32 bytes.
    """
    if len(key) != USER_KEY_SIZE:
        raise InvalidInput(f"encryption key must be {USER_KEY_SIZE} bytes, got {len(key)}")
    nonce = random_bytes(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def decrypt(key: bytes, ciphertext: bytes) -> bytes:
    """Decrypt output produced by encrypt().

    Raises:
        InvalidCiphertext: If the input is shorter than nonce + tag, or the
            tag does not verify (wrong key or tampered bytes).
        InvalidInput: If the key is not 32 bytes.
    """
    minimum = NONCE_SIZE + TAG_SIZE
    if len(ciphertext) < minimum:
        raise InvalidCiphertext(f"ciphertext too short: {len(ciphertext)} bytes (minimum {minimum})")
    if len(key) != USER_KEY_SIZE:
        raise InvalidInput(f"decryption key must be {USER_KEY_SIZE} bytes, got {len(key)}")
    nonce = ciphertext[:NONCE_SIZE]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext[NONCE_SIZE:], None)
    except InvalidTag as exc:
        logger.warning("Ciphertext failed authentication (%d bytes)", len(ciphertext))
        raise InvalidCiphertext("ciphertext failed authentication") from exc

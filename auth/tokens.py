"""
auth/tokens.py -- Session tokens and password verifiers.

Security design decisions:
  Tokens: python-jose JWT, HS256, signed with Settings.secret_key. A token
       carries the user id, handle (sub), issue time, and an absolute expiry
       (one hour by default). Nothing is persisted: validity is signature +
       expiry at verification time. verify() raises InvalidToken or
       TokenExpired -- the dependency layer turns both into a 401.

  Refresh: there is no refresh-token chain. refresh() verifies the presented
       token and issues a fresh one with a new expiry.

  Passwords: bcrypt over a per-user salted pre-hash. Each user gets a
       128-byte salt from core.crypto.new_salt(); the password is first run
       through HMAC-SHA256(salt, password) and base64-encoded (44 bytes) before
       bcrypt. That binds the verifier to the stored salt and keeps the input
       under bcrypt's 72-byte truncation limit for any password length.

  Timing: authenticate_user() always runs bcrypt, against _DUMMY_HASH when the
       handle does not exist, so response time does not reveal which handles
       are registered.

Layer rule: no imports from api/, metadata/, or ciphertext/. Imports from core/
are allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.crypto import new_salt
from core.errors import InvalidToken, TokenExpired
from core.models import Identity, User

if TYPE_CHECKING:
    from core.ports import MetadataStore

logger = logging.getLogger("lockbox.auth")

_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(hours=1)

# ---------------------------------------------------------------------------
# Password hashing (bcrypt over a salted HMAC pre-hash)
# ---------------------------------------------------------------------------


def _prehash(plain: str, salt: bytes) -> bytes:
    digest = hmac.new(salt, plain.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest)


def hash_password(plain: str, salt: bytes) -> str:
    """Return a bcrypt verifier for plain under the user's salt."""
    return bcrypt.hashpw(_prehash(plain, salt), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, salt: bytes, hashed: str) -> bool:
    """Return True if plain matches the stored verifier."""
    try:
        return bcrypt.checkpw(_prehash(plain, salt), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Timing equalization dummy. Computed once at module load so the first login
# attempt is not measurably slower than later ones.
_DUMMY_SALT: bytes = new_salt()
_DUMMY_HASH: str = hash_password("lockbox_timing_dummy", _DUMMY_SALT)


def authenticate_user(store: MetadataStore, handle: str, password: str) -> User | None:
    """Authenticate a handle/password login with timing equalization.

    Always runs bcrypt whether or not the handle exists:
    - Unknown handle: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_user_by_handle(handle)
    if user is None or user.hashed_password is None or user.salt is None:
        verify_password(password, _DUMMY_SALT, _DUMMY_HASH)
        return None
    if not verify_password(password, user.salt, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Token authority
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        """Seconds until expiry, floored at zero."""
        return max(0, int((self.expires_at - datetime.now(timezone.utc)).total_seconds()))


class TokenAuthority:
    """Issues and verifies signed, expiring identity tokens.

    The signing key is read-only after construction, so one instance is safe
    to share across request threads.
    """

    def __init__(self, signing_key: str, ttl: timedelta = DEFAULT_TOKEN_TTL) -> None:
        self._key = signing_key
        self.ttl = ttl

    def issue(self, identity: Identity) -> IssuedToken:
        """Sign a token for identity expiring `ttl` from now."""
        now = datetime.now(timezone.utc).replace(microsecond=0)
        expires_at = now + self.ttl
        payload = {
            "sub": identity.handle,
            "user_id": identity.user_id,
            "iat": now,
            "exp": expires_at,
        }
        return IssuedToken(token=jwt.encode(payload, self._key, algorithm=_ALGORITHM), expires_at=expires_at)

    def verify(self, token: str) -> Identity:
        """Check signature and expiry and return the embedded identity.

        Raises:
            TokenExpired: The signature is valid but the expiry has passed.
            InvalidToken: Bad signature, malformed token, or missing claims.
        """
        try:
            payload = jwt.decode(token, self._key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired("session token has expired") from exc
        except JWTError as exc:
            raise InvalidToken("session token is invalid") from exc
        handle = payload.get("sub")
        user_id = payload.get("user_id")
        if not isinstance(handle, str) or not isinstance(user_id, int):
            raise InvalidToken("session token is missing identity claims")
        return Identity(user_id=user_id, handle=handle)

    def refresh(self, token: str) -> IssuedToken:
        """Re-issue a token for the identity in a still-valid token."""
        return self.issue(self.verify(token))


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, issued: IssuedToken, secure: bool = False) -> None:
    """Write the token as an httpOnly cookie that expires with it.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    response.set_cookie(
        "access_token",
        value=issued.token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=issued.expires_in,
    )

"""
API request and response models for Lockbox REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Field checks here are transport-level only (types, presence, coarse length
caps). Identifier patterns, reserved keys, and value size limits are enforced
by core/validation.py, so the CLI and the HTTP API reject the same inputs
with the same InvalidInput error.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import Secret, Share, User

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    handle: str = Field(min_length=1, max_length=64)
    display_name: str = Field(min_length=1, max_length=128)
    # Not stripped: leading/trailing spaces are part of the password.
    password: str = Field(min_length=1, max_length=256, json_schema_extra={"format": "password"})


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    handle: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=256)


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/auth/password."""

    old_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=256)


class TokenResponse(BaseModel):
    """Response for login, register, and refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    handle: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    handle: str
    display_name: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/me."""

    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: str = Field(min_length=1, max_length=128)


class UserResponse(BaseModel):
    """Public profile. Never includes the salt or password verifier."""

    model_config = ConfigDict(frozen=True)

    handle: str
    display_name: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(handle=user.handle, display_name=user.display_name, created_at=user.created_at or "")


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class SecretPut(BaseModel):
    """Request body for PUT /api/v1/secrets/{key}."""

    value: str


class SecretResponse(BaseModel):
    """One decrypted secret.

    key is "owner:key" and created_at is null for a secret read through a share.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    value: str
    created_at: Optional[str] = None

    @classmethod
    def from_secret(cls, secret: Secret) -> "SecretResponse":
        return cls(key=secret.key, value=secret.value or "", created_at=secret.created_at)


class SecretCreatedResponse(BaseModel):
    """Response for PUT /api/v1/secrets/{key}. The value is not echoed back."""

    model_config = ConfigDict(frozen=True)

    key: str
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------


class ShareCreate(BaseModel):
    """Request body for POST /api/v1/shares.

    Give at most one of `until` (timezone-aware ISO 8601 instant) and
    `duration_seconds`. With neither, the server default applies.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=64)
    targets: list[str] = Field(min_length=1, max_length=50)
    until: Optional[datetime] = None
    duration_seconds: Optional[int] = Field(default=None, gt=0)


class ShareResponse(BaseModel):
    """One logical share: a secret, an expiry, and its targets. until=null is open-ended."""

    model_config = ConfigDict(frozen=True)

    owner: str
    key: str
    until: Optional[datetime] = None
    targets: list[str]

    @classmethod
    def from_share(cls, share: Share) -> "ShareResponse":
        return cls(owner=share.owner, key=share.key, until=share.until, targets=list(share.targets))


class PurgeResponse(BaseModel):
    """Response for DELETE /api/v1/shares/{key}."""

    model_config = ConfigDict(frozen=True)

    removed: int


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "ok" only when every component answers; otherwise "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

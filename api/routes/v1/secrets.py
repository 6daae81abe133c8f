"""
api/routes/v1/secrets.py -- Secret CRUD endpoints.

Routes:
  PUT    /api/v1/secrets/{key}   -- create or overwrite one of the caller's secrets
  GET    /api/v1/secrets         -- own secrets, then secrets shared with the caller
  GET    /api/v1/secrets/{key}   -- read one; "owner:key" reads through a share
  DELETE /api/v1/secrets/{key}   -- delete one, with its shares

All routes require auth. Responses carry decrypted values, so every one is
sent with Cache-Control: no-store.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import SecretCreatedResponse, SecretPut, SecretResponse
from auth.dependencies import get_current_user, get_operation_context, get_secret_manager
from core.context import OperationContext
from core.lifecycle import SecretManager
from core.models import User

router = APIRouter()


@router.put("/secrets/{key}", response_model=SecretCreatedResponse, status_code=201)
def put_secret(
    key: str,
    body: SecretPut,
    response: Response,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> SecretCreatedResponse:
    """Store a value under key. An existing secret and its shares are replaced."""
    created = secrets.create_secret(current_user, key, body.value, ctx=ctx)
    response.headers["Cache-Control"] = "no-store"
    return SecretCreatedResponse(key=created.key, created_at=created.created_at)


@router.get("/secrets", response_model=list[SecretResponse])
def list_secrets(
    response: Response,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> list[SecretResponse]:
    response.headers["Cache-Control"] = "no-store"
    return [SecretResponse.from_secret(s) for s in secrets.list_secrets(current_user, ctx=ctx)]


@router.get("/secrets/{key}", response_model=SecretResponse)
def get_secret(
    key: str,
    response: Response,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> SecretResponse:
    response.headers["Cache-Control"] = "no-store"
    return SecretResponse.from_secret(secrets.read_secret(current_user, key, ctx=ctx))


@router.delete("/secrets/{key}", status_code=204)
def delete_secret(
    key: str,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> Response:
    secrets.delete_secret(current_user, key, ctx=ctx)
    return Response(status_code=204)

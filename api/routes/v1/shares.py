"""
api/routes/v1/shares.py -- Share endpoints.

Routes:
  POST   /api/v1/shares                          -- share one of the caller's secrets
  GET    /api/v1/shares                          -- the caller's outbound shares
  GET    /api/v1/shares/incoming                 -- shares that target the caller
  GET    /api/v1/shares/{key}                    -- shares of one secret
  DELETE /api/v1/shares/{key}/targets/{target}   -- stop sharing with one user
  DELETE /api/v1/shares/{key}                    -- stop sharing with everyone

All routes require auth. Listings group relations into logical shares by
(owner, key, until); expired relations are deleted as they are met.

/shares/incoming is registered before /shares/{key}, so a secret named
"incoming" lists its shares only through GET /shares.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Response

from api.models import PurgeResponse, ShareCreate, ShareResponse
from auth.dependencies import get_current_user, get_operation_context, get_secret_manager
from core.context import OperationContext
from core.lifecycle import SecretManager
from core.models import User

router = APIRouter()


@router.post("/shares", response_model=ShareResponse, status_code=201)
def create_share(
    body: ShareCreate,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> ShareResponse:
    """Share a secret read-only.

    A target that already holds a live share of this secret is 409; delete
    that share first to change its expiry.
    """
    duration = timedelta(seconds=body.duration_seconds) if body.duration_seconds is not None else None
    share = secrets.create_share(current_user, body.key, body.targets, until=body.until, duration=duration, ctx=ctx)
    return ShareResponse.from_share(share)


@router.get("/shares", response_model=list[ShareResponse])
def list_shares(
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> list[ShareResponse]:
    return [ShareResponse.from_share(s) for s in secrets.list_shares(current_user, ctx=ctx)]


@router.get("/shares/incoming", response_model=list[ShareResponse])
def list_incoming(
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> list[ShareResponse]:
    """Shares that target the caller.

    Declared before /shares/{key}, so a secret named "incoming" cannot be
    looked up there; GET /shares lists it.
    """
    return [ShareResponse.from_share(s) for s in secrets.list_shared_with(current_user, ctx=ctx)]


@router.get("/shares/{key}", response_model=list[ShareResponse])
def get_share(
    key: str,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> list[ShareResponse]:
    return [ShareResponse.from_share(s) for s in secrets.get_share(current_user, key, ctx=ctx)]


@router.delete("/shares/{key}/targets/{target}", status_code=204)
def delete_share_target(
    key: str,
    target: str,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> Response:
    secrets.delete_share_target(current_user, key, target, ctx=ctx)
    return Response(status_code=204)


@router.delete("/shares/{key}", response_model=PurgeResponse)
def purge_share(
    key: str,
    current_user: User = Depends(get_current_user),
    secrets: SecretManager = Depends(get_secret_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> PurgeResponse:
    return PurgeResponse(removed=secrets.purge_share(current_user, key, ctx=ctx))

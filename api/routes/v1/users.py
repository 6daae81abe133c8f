"""
api/routes/v1/users.py -- User directory and account endpoints.

Routes:
  GET    /api/v1/users            -- list every user (handles are needed to share)
  GET    /api/v1/users/me         -- the caller's own profile
  GET    /api/v1/users/{handle}   -- one user's public profile
  PATCH  /api/v1/users/me         -- change the caller's display name
  DELETE /api/v1/users/{handle}   -- delete the caller's account and everything it owns

All routes require auth. Deleting anyone but yourself is 403.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import UserPatch, UserResponse
from auth.accounts import UserManager
from auth.dependencies import get_current_user, get_operation_context, get_user_manager
from core.context import OperationContext
from core.models import User

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(
    current_user: User = Depends(get_current_user),
    accounts: UserManager = Depends(get_user_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in accounts.list_users(ctx=ctx)]


@router.get("/users/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """The caller's own profile. Declared before /users/{handle}, which would reject "me"."""
    return UserResponse.from_user(current_user)


@router.patch("/users/me", response_model=UserResponse)
def update_me(
    body: UserPatch,
    current_user: User = Depends(get_current_user),
    accounts: UserManager = Depends(get_user_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> UserResponse:
    """Change the caller's display name. The handle cannot be changed."""
    return UserResponse.from_user(accounts.update_user(current_user, body.display_name, ctx=ctx))


@router.get("/users/{handle}", response_model=UserResponse)
def get_user(
    handle: str,
    current_user: User = Depends(get_current_user),
    accounts: UserManager = Depends(get_user_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> UserResponse:
    return UserResponse.from_user(accounts.get_user(handle, ctx=ctx))


@router.delete("/users/{handle}", status_code=204)
def delete_user(
    handle: str,
    current_user: User = Depends(get_current_user),
    accounts: UserManager = Depends(get_user_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> Response:
    """Delete the caller's account, secrets, and shares; clear the session cookie.

    A failure part-way is rolled back. If the rollback itself fails the
    response is 500 compensation_failed and an operator must reconcile.
    """
    accounts.delete_user(current_user, handle, ctx=ctx)
    resp = Response(status_code=204)
    resp.delete_cookie("access_token")
    return resp

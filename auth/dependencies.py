"""
auth/dependencies.py -- FastAPI Depends() helpers that bind a caller to a request.

Token sources, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients and the CLI.
  2. "access_token" cookie -- set by POST /auth/login for browser clients.

The token is verified by the TokenAuthority on app.state, then the user is
reloaded from the metadata store by id. A token whose user has been deleted,
or whose handle no longer matches the row, is rejected even if its signature
and expiry are fine.

Failures raise core.errors.Unauthorized (or its InvalidToken / TokenExpired
subclasses); the LockboxError handler in api/main.py turns them into 401.

get_operation_context() builds the per-request deadline that every lifecycle
call receives.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.accounts import UserManager
from auth.tokens import TokenAuthority
from core.context import OperationContext
from core.errors import Unauthorized
from core.lifecycle import SecretManager
from core.models import User


def extract_token(request: Request) -> str | None:
    """Return the raw token from the Bearer header or the cookie, if any."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get("access_token") or None


def get_current_user(request: Request) -> User:
    """Require a valid session token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/secrets")
        def route(caller: User = Depends(get_current_user)): ...
    """
    token = extract_token(request)
    if token is None:
        raise Unauthorized("authentication required")
    tokens: TokenAuthority = request.app.state.tokens
    identity = tokens.verify(token)
    user = request.app.state.metadata_store.get_user(identity.user_id)
    if user is None or user.handle != identity.handle:
        raise Unauthorized("account no longer exists")
    return user


def get_operation_context(request: Request) -> OperationContext:
    """One deadline per request, from Settings.request_timeout_seconds."""
    return OperationContext.with_timeout(request.app.state.settings.request_timeout_seconds)


def get_secret_manager(request: Request) -> SecretManager:
    return request.app.state.secrets


def get_user_manager(request: Request) -> UserManager:
    return request.app.state.accounts

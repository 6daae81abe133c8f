"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/register   -- create an account; sets JWT cookie
  POST /api/v1/auth/login      -- password login; sets JWT cookie
  POST /api/v1/auth/logout     -- clears cookie
  POST /api/v1/auth/refresh    -- exchange a still-valid token for a fresh one
  GET  /api/v1/auth/me         -- validate the token and return the bound user
  POST /api/v1/auth/password   -- change the caller's password

Security:
  register and login are rate-limited per IP (Settings.login_rate_limit).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a token.
  Logout is stateless: tokens are not persisted, so there is nothing to
  revoke server-side. The cookie is cleared and the token simply expires.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    MeResponse,
    PasswordChangeRequest,
    RegisterRequest,
    TokenResponse,
)
from auth.accounts import UserManager
from auth.dependencies import extract_token, get_current_user, get_operation_context, get_user_manager
from auth.tokens import IssuedToken, TokenAuthority, authenticate_user, set_auth_cookie
from core.context import OperationContext
from core.errors import Forbidden, Unauthorized
from core.models import Identity, User

# Auth policy:
# - POST /auth/register, /auth/login, /auth/logout: public
# - POST /auth/refresh: needs a token that is still valid
# - everything else: get_current_user
router = APIRouter()


def _token_response(issued: IssuedToken, handle: str, request: Request, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=TokenResponse(
            access_token=issued.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=issued.expires_in,
            handle=handle,
        ).model_dump(),
    )
    set_auth_cookie(resp, issued, secure=request.app.state.settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    accounts: UserManager = Depends(get_user_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> JSONResponse:
    """Create an account and log it in.

    A taken handle returns 409 already_exists. Disabled entirely (403) when
    SELF_REGISTRATION_ENABLED=false.
    """
    if not request.app.state.settings.self_registration_enabled:
        raise Forbidden("self-registration is disabled")
    user = accounts.register(body.handle, body.display_name, body.password, ctx=ctx)
    tokens: TokenAuthority = request.app.state.tokens
    issued = tokens.issue(Identity(user_id=user.id, handle=user.handle))
    return _token_response(issued, user.handle, request, status_code=201)


@limiter.limit(login_limit)
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with handle and password; set JWT cookie.

    Returns the same error for an unknown handle and a wrong password so the
    response does not reveal which handles exist.
    """
    user = authenticate_user(request.app.state.metadata_store, body.handle, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=Unauthorized.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code="bad_credentials", message="Invalid handle or password.")
            ).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    tokens: TokenAuthority = request.app.state.tokens
    issued = tokens.issue(Identity(user_id=user.id, handle=user.handle))
    return _token_response(issued, user.handle, request)


@router.post("/auth/logout")
def logout() -> JSONResponse:
    """Clear the JWT cookie and end the browser session."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request) -> JSONResponse:
    """Issue a new token for the bearer of a still-valid one.

    The account must still exist: a deleted user cannot keep extending a
    token that was issued before the deletion.
    """
    token = extract_token(request)
    if token is None:
        raise Unauthorized("authentication required")
    user = get_current_user(request)
    tokens: TokenAuthority = request.app.state.tokens
    issued = tokens.refresh(token)
    return _token_response(issued, user.handle, request)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        handle=current_user.handle,
        display_name=current_user.display_name,
    )


@router.post("/auth/password", status_code=204)
def change_password(
    body: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    accounts: UserManager = Depends(get_user_manager),
    ctx: OperationContext = Depends(get_operation_context),
) -> Response:
    """Replace the caller's password. Existing tokens stay valid until they expire."""
    accounts.change_password(current_user, body.old_password, body.new_password, ctx=ctx)
    return Response(status_code=204)

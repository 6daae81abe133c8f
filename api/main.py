"""
api/main.py -- FastAPI application entry point for Lockbox.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the object graph once and hangs it on app.state:
  settings, metadata_store, ciphertext_store, tokens, secrets, accounts
Routes reach them through the Depends() helpers in auth/dependencies.py.
Shutdown closes both stores.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.secrets import router as secrets_router
from api.routes.v1.shares import router as shares_router
from api.routes.v1.users import router as users_router
from auth.accounts import UserManager
from auth.tokens import TokenAuthority
from ciphertext.store import SQLiteCiphertextStore
from core.config import get_settings
from core.errors import CompensationFailed, LockboxError
from core.lifecycle import SecretManager
from metadata.store import SQLMetadataStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lockbox.api")


# ---------------------------------------------------------------------------
# Object graph
# ---------------------------------------------------------------------------


def build_state(app: FastAPI, settings, metadata_store, ciphertext_store) -> None:
    """Wire settings and both stores into the managers on app.state.

    Shared by the real lifespan and the test fixtures, so tests exercise the
    same wiring with in-memory stores.
    """
    app.state.settings = settings
    app.state.metadata_store = metadata_store
    app.state.ciphertext_store = ciphertext_store
    app.state.tokens = TokenAuthority(settings.secret_key, ttl=timedelta(seconds=settings.token_expire_seconds))
    app.state.secrets = SecretManager(
        metadata_store,
        ciphertext_store,
        default_share_days=settings.default_share_days,
        max_value_bytes=settings.max_value_bytes,
    )
    app.state.accounts = UserManager(metadata_store, ciphertext_store, app.state.secrets)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open both stores on startup and close them on shutdown.

    Settings are resolved first: in production a missing SECRET_KEY fails
    here, before any store file is created.
    """
    logger.info("Lockbox API starting up")
    settings = get_settings()
    metadata_store = SQLMetadataStore(settings.metadata_db_url)
    ciphertext_store = SQLiteCiphertextStore(settings.ciphertext_db_path)
    build_state(app, settings, metadata_store, ciphertext_store)
    logger.info(
        "Stores initialized (token_ttl=%ds, default_share_days=%d)",
        settings.token_expire_seconds,
        settings.default_share_days,
    )

    yield

    ciphertext_store.close()
    metadata_store.close()
    logger.info("Lockbox API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Lockbox API",
    description="Multi-user secrets store with per-user encryption and time-boxed sharing.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() calls are applied outermost-first from the caller's
# perspective. Register in the order a request should meet them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Method, path, status, latency, client. Never the body: request and response
# bodies carry secret values and tokens.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(secrets_router, prefix="/api/v1", tags=["Secrets"])
app.include_router(shares_router, prefix="/api/v1", tags=["Shares"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(LockboxError)
async def lockbox_error_handler(request: Request, exc: LockboxError) -> JSONResponse:
    """Map the core error taxonomy onto HTTP using each class's code and status.

    CompensationFailed is the one error that needs an operator; it was
    already logged at CRITICAL by the compensation scope. Server-side
    failures (5xx) are logged here with the route for correlation.
    """
    if isinstance(exc, CompensationFailed):
        logger.error("Rollback incomplete on %s %s: %s", request.method, request.url.path, exc.operation)
    elif exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail),
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and a Retry-After header."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body or path fails schema validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured error for Starlette HTTP exceptions (404 on unknown routes, 405, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration. No auth and no rate limit: load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Report liveness of each backing store. 503 when either is down."""
    components = {
        "metadata": "ok" if request.app.state.metadata_store.ping() else "unavailable",
        "ciphertext": "ok" if request.app.state.ciphertext_store.ping() else "unavailable",
    }
    healthy = all(v == "ok" for v in components.values())
    body = HealthResponse(status="ok" if healthy else "degraded", version=VERSION, components=components)
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())

"""
api/main.py -- FastAPI application entry point for sessionkeeper.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the stores, the notification sink and the SessionManager on
startup and closes the stores on shutdown. Everything request handlers need is
on app.state; nothing is created lazily per request.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ApiResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.code_store import CodeStore
from auth.errors import (
    AuthError,
    Conflict,
    InvalidCredentials,
    InvalidInput,
    InvalidOrExpiredCode,
    InvalidRefreshToken,
    NotFound,
    StorageUnavailable,
)
from auth.notify import build_notification_sink
from auth.session import SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.redaction import RedactingFilter

API_VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RedactingFilter())
logger = logging.getLogger("sessionkeeper.api")

# Domain failure -> HTTP status. Anything not listed is a 400.
_STATUS_BY_ERROR: dict[type[AuthError], int] = {
    Conflict: 409,
    InvalidCredentials: 401,
    InvalidInput: 400,
    InvalidRefreshToken: 401,
    InvalidOrExpiredCode: 400,
    NotFound: 404,
    StorageUnavailable: 503,
}

_STORAGE_RETRY_AFTER_SECONDS = 5


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The signing key is read once here and frozen into the codec
    owned by the SessionManager.
    """
    settings = get_settings()
    logger.info("sessionkeeper API starting up")
    app.state.user_store = UserStore(settings.database_url, settings.database_timeout_seconds)
    app.state.code_store = CodeStore(settings.database_url, settings.database_timeout_seconds)
    app.state.sessions = SessionManager.from_settings(
        settings,
        app.state.user_store,
        app.state.code_store,
        build_notification_sink(settings),
    )
    logger.info("Auth initialized (rate_limit_enabled=%s)", settings.rate_limit_enabled)

    yield

    app.state.user_store.close()
    app.state.code_store.close()
    logger.info("sessionkeeper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="sessionkeeper API",
    description="Registration, login, token rotation and password recovery.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request gets an id: the caller's X-Request-ID if present, otherwise a
# fresh UUID. It is echoed on the response and written to the access log so a
# client report can be matched to a server log line.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        request_id,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ApiResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map a domain failure to its HTTP status and a stable error code.

    StorageUnavailable is the only retryable failure; it carries Retry-After.
    """
    status_code = _STATUS_BY_ERROR.get(type(exc), 400)
    detail = exc.violations if isinstance(exc, InvalidInput) and exc.violations else None
    response = JSONResponse(
        status_code=status_code,
        content=ApiResponse.fail(exc.code, exc.message, detail).model_dump(),
    )
    if exc.retryable:
        response.headers["Retry-After"] = str(_STORAGE_RETRY_AFTER_SECONDS)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ApiResponse.fail("rate_limited", "Too many requests.", str(exc)).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the request body fails validation.

    Only field locations and messages are echoed; submitted values are not,
    so a rejected password never comes back in a response.
    """
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ApiResponse.fail("validation_error", "Request validation failed.", errors).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route dependencies raise HTTPException with detail={"code", "message"}.
    When detail is already a structured dict, use it directly.
    """
    if isinstance(exc.detail, dict):
        code = str(exc.detail.get("code", f"http_{exc.status_code}"))
        message = str(exc.detail.get("message", ""))
    else:
        code = f"http_{exc.status_code}"
        message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse.fail(code, message).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ApiResponse.fail("internal_error", "An unexpected error occurred.").model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )

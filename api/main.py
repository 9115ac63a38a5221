"""
api/main.py -- FastAPI application entry point for AuditBoard.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. SessionMiddleware     -- signed session cookie; the page's session storage
  4. profile_cookie        -- per-browser profile id keying durable storage
  5. log_requests          -- one log line per request

Lifespan opens the durable store and installs the identity client factory on
startup, and closes the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.session import router as session_router
from auth.dependencies import PROFILE_COOKIE, PROFILE_COOKIE_MAX_AGE, msal_identity_factory, new_profile_id
from auth.storage import DurableStore
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("auditboard.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the durable store and install the identity factory.

    Everything before yield runs on startup, everything after on shutdown.
    """
    logger.info("AuditBoard starting up")
    app.state.durable_store = DurableStore(settings.storage_db_url)
    logger.info("Durable storage initialized")
    app.state.identity_factory = msal_identity_factory
    if not settings.client_id:
        logger.warning("CLIENT_ID is not set -- sign-in will fail until it is configured")

    yield

    app.state.durable_store.close()
    logger.info("AuditBoard shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuditBoard API",
    description="5S audit dashboard over a SharePoint list, signed in with Microsoft Entra ID.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the app, so the last one added is the outermost.
# @app.middleware("http") functions are added the same way.
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


@app.middleware("http")
async def profile_cookie(request: Request, call_next):
    """Give every browser a stable profile id for durable storage.

    The id is opaque and carries no identity; it only scopes the local_storage
    rows (token cache, login hint) to one browser profile.
    """
    profile_id = request.cookies.get(PROFILE_COOKIE)
    issued = not profile_id
    if issued:
        profile_id = new_profile_id()
    request.state.profile_id = profile_id
    response = await call_next(request)
    if issued:
        response.set_cookie(
            PROFILE_COOKIE,
            profile_id,
            max_age=PROFILE_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=settings.secure_cookies,
        )
    return response


# max_age=None: the cookie ends with the browser session, like sessionStorage.
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    session_cookie="auditboard_session",
    max_age=None,
    same_site="lax",
    https_only=settings.secure_cookies,
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_host_list)

# SlowAPIMiddleware looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(session_router, prefix="/api/v1", tags=["Session"])
app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is the ErrorResponse envelope; clients switch on
# error.code, never on the HTTP status alone.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 plus Retry-After (seconds); slowapi may not set retry_after, so default to a minute."""
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routes raise with an ErrorDetail dict as detail; anything else gets an http_<status> code."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Internals stay in the log.
    logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. No rate limit:
# load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and the durable store's status."""
    database = "error"
    store = getattr(request.app.state, "durable_store", None)
    if store is not None:
        try:
            database = "ok" if store.ping() else "error"
        except SQLAlchemyError:
            logger.exception("Durable store health check failed")
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})

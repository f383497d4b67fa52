"""
api/main.py -- FastAPI application entry point for SessionKeep.

Exposes the account flows and the session protocol over HTTP for the web
frontend and the mobile apps.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
                              (credentials allowed: browsers send cookies)
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every long-lived collaborator (durable store, Redis cache,
repositories, Authenticator, AccountService), stores them on app.state, and
tears them down symmetrically on shutdown.
"""

from __future__ import annotations

import logging
import time
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
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.accounts import AccountService
from auth.authenticate import Authenticator
from auth.families import TokenFamilyRepository
from auth.oauth import GoogleIdentityProvider
from auth.replay import ReplayCache
from auth.store import UserStore
from cache.store import RedisCache
from core.config import get_settings
from core.errors import AppError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sessionkeep.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, user_store: UserStore, cache: RedisCache, settings=None) -> None:
    """Build the protocol objects on top of connected stores and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both run the same
    object graph.
    """
    settings = settings or get_settings()
    families = TokenFamilyRepository(user_store, cache, ttl=settings.token_family_cache_ttl_seconds)
    replay = ReplayCache(cache, ttl=settings.used_token_ttl_seconds)
    authenticator = Authenticator(user_store, families, replay, settings)

    app.state.user_store = user_store
    app.state.cache = cache
    app.state.authenticator = authenticator
    app.state.accounts = AccountService(
        user_store,
        authenticator,
        settings,
        identity_provider=GoogleIdentityProvider(settings),
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Durable store first -- it is the source of truth; a failure here
         aborts startup.
      2. Redis second -- an unreachable Redis only logs a warning; the
         service runs degraded on the durable store.
      3. Services last -- they reference both.
    """
    settings = get_settings()
    logger.info("SessionKeep API starting up (environment=%s)", settings.environment)

    user_store = UserStore(settings.database_url)
    await user_store.connect()
    logger.info("Durable store initialized")

    cache = RedisCache(settings.redis_url)
    await cache.connect()
    logger.info("Cache initialized")

    wire_services(app, user_store, cache, settings)
    if not settings.google_configured:
        logger.info("Google OAuth not configured -- /auth/google endpoints will return 400")

    yield

    await cache.close()
    await user_store.close()
    logger.info("SessionKeep API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="SessionKeep API",
    description="Phone/email sign-up, OTP and Google sign-in, rotating refresh-token sessions.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None if _settings.is_production else "/docs",
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Refresh-Token", _settings.mobile_client_header],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render business-rule failures (auth, account state, conflicts).

    Session failures are logged at INFO with the error code only; the
    rejected credentials themselves never reach the log.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path)
    else:
        logger.info("%s on %s %s", exc.code, request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail)
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
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
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
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

    The raw exception is written to the log only, never to the response body.
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
# No rate limit applied -- health checks from load balancers must not be
# throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)

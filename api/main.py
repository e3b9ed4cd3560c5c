"""
api/main.py -- FastAPI application entry point for the marketplace API.

Exposes the authentication subsystem over HTTP. Other marketplace resources
(services, bookings, reviews) mount their routers next to the auth router and
protect themselves with auth.dependencies.get_current_session / require_roles.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (account store, revocation registry, token codec,
mailer, auth service, purge task) and shutdown (cancel purge task, close DB
connection) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.google import GoogleIdentityVerifier
from auth.revocation import InMemoryRevocationRegistry
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenCodec
from core.config import get_settings
from mail.dispatcher import build_mailer

__version__ = "0.1.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("localmarket.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Drop expired entries from the revocation registry every interval.

    is_revoked() already ignores expired entries; this only bounds memory for
    tokens that are revoked and never presented again. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        removed = app.state.revocations.purge_expired()
        if removed:
            logger.debug("Purged %d expired revocation entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth object graph once and share it through app.state.

    Startup order matters:
      1. Store and registry -- no dependencies.
      2. Codec -- needs the registry.
      3. AuthService -- needs everything above plus verifier and mailer.
      4. Purge task last -- references app.state.revocations.
    """
    logger.info("Marketplace API starting up (environment=%s)", settings.environment)
    app.state.account_store = AccountStore(db_url=settings.database_url)
    app.state.revocations = InMemoryRevocationRegistry()
    codec = TokenCodec.from_settings(settings, app.state.revocations)
    verifier = GoogleIdentityVerifier(settings.google_client_id)
    if not verifier.configured:
        logger.warning("GOOGLE_CLIENT_ID not set -- POST /auth/google will answer 500")
    app.state.auth_service = AuthService.from_settings(
        settings,
        store=app.state.account_store,
        codec=codec,
        identity_verifier=verifier,
        notifier=build_mailer(settings),
    )
    logger.info(
        "Auth initialized (accounts=%d, persist_refresh_tokens=%s)",
        app.state.account_store.count(),
        settings.persist_refresh_tokens,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.revocation_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.account_store.close()
    logger.info("Marketplace API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Kamnet Marketplace API",
    description="Accounts and sessions for the local-services marketplace.",
    version=__version__,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
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

app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {success: false, message, errors?} envelope
# so clients parse failures uniformly.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, errors: list[str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, errors=errors).model_dump(exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return _error(exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests, please try again later")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one readable line per failed field."""
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return _error(400, "Validation Error", errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 route not found, 405, ...) in the envelope."""
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The exception is logged with its traceback; the client only sees a
    generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal Server Error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly here (not in a router) so it is reachable regardless of
# API_PREFIX. No rate limit -- load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness, version and environment."""
    return HealthResponse(version=__version__, environment=settings.environment)

"""
api/main.py -- FastAPI application entry point for Tollgate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the CredentialStore, builds the grant engine services on
app.state, and starts the expired-code purge task; shutdown reverses it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.userinfo import router as userinfo_router
from auth.authentication import AuthenticationService
from auth.codes import AuthorizationCodeIssuer
from auth.errors import OAuthError
from auth.grants import GrantProcessor
from auth.store import CredentialStore
from auth.validator import TokenValidator
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tollgate.api")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def configure_services(
    app: FastAPI,
    store: CredentialStore,
    settings: Settings,
    clock: Callable[[], datetime] = _utcnow,
) -> None:
    """Build the grant engine on app.state.

    Shared by the real lifespan and the test fixtures so both wire the
    services identically. Settings and clock are handed in explicitly.
    """
    authentication = AuthenticationService(store)
    app.state.store = store
    app.state.authentication = authentication
    app.state.code_issuer = AuthorizationCodeIssuer(store, settings, clock=clock)
    app.state.grant_processor = GrantProcessor(store, authentication, settings, clock=clock)
    app.state.token_validator = TokenValidator(store, clock=clock)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired authorization codes every `interval` seconds.

    Expired codes are already unusable -- redemption re-checks expiry -- so
    this only keeps the table small. A failed pass is logged and retried on
    the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(app.state.store.purge_expired_authorization_codes, _utcnow())
        except SQLAlchemyError:
            logger.exception("Authorization code purge failed")
            continue
        if removed:
            logger.info("Purged %d expired authorization code(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store and wire services on startup; close them on shutdown."""
    settings = get_settings()
    logger.info("Tollgate starting up")
    store = CredentialStore(settings.database_url)
    configure_services(app, store, settings)
    logger.info(
        "Credential store ready (code=%ss access=%ss refresh=%ss)",
        settings.authorization_code_expiration,
        settings.access_token_expiration,
        settings.refresh_token_expiration,
    )
    app.state.purge_task = None
    if settings.code_purge_interval_seconds > 0:
        app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.code_purge_interval_seconds))

    yield

    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    store.close()
    logger.info("Tollgate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Tollgate",
    description="OAuth2 authorization server: authorization code and refresh token grants.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)
app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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

app.include_router(auth_router, tags=["Auth"])
app.include_router(userinfo_router, tags=["Resources"])
# Login page router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(OAuthError)
async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    """Render a grant engine failure.

    Only the generic message goes out. Reasons (unknown user vs. bad password,
    expired vs. unknown code) stay in the server log.
    """
    response = _error_response(exc.status_code, exc.code, exc.message)
    response.headers["Cache-Control"] = "no-store"
    if exc.status_code == 401 and exc.code == "unauthorized":
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After.

    Must stay synchronous: SlowAPIMiddleware calls it directly for sync routes.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or malformed form fields are an invalid_request, not a 422.

    The body never carries pydantic's error list, which echoes submitted
    values. Only the offending field names are logged.
    """
    fields = sorted({".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()})
    logger.info("Request validation failed on %s: %s", request.url.path, ", ".join(fields))
    response = _error_response(400, "invalid_request", "Request validation failed.")
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors, including CredentialCollision.

    The exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check. Not rate-limited."""
    try:
        database = "ok" if request.app.state.store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})

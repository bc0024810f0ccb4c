"""
api/main.py -- FastAPI application entry point for HubAuth.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- one access-log line per request
  5. security_headers      -- nosniff / DENY / no-referrer on every response
  6. csrf_protect          -- double-submit check on state-changing methods

Lifespan handles startup (engine, stores, mailer, session purge task) and
shutdown (cancel purge task, drain mailer, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.csrf import csrf_protect
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.security import router as security_router
from auth.errors import AuthError, RateLimitedError, ServerError
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import UserStore, make_engine
from core.config import get_settings
from core.mailer import Mailer

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("hubauth.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float) -> None:
    """Delete expired and revoked sessions every `interval` seconds.

    A failed pass is logged and retried on the next tick. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(app.state.sessions.purge)
        except SQLAlchemyError:
            logger.exception("Session purge failed; retrying in %ss", interval)
            continue
        if removed:
            logger.info("Purged %d stale session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the store -> registry -> service chain once per process.

    The user table and the session table share one engine so a password
    reset and the session revocation it triggers hit the same database.
    """
    logger.info("HubAuth API starting up")
    engine = make_engine(settings.database_url)
    app.state.user_store = UserStore(engine)
    app.state.sessions = SessionRegistry(
        engine,
        ttl_seconds=settings.session_expire_seconds,
        touch_interval_seconds=settings.session_touch_interval_seconds,
    )
    app.state.mailer = Mailer.from_settings(settings)
    if not app.state.mailer.is_configured:
        logger.warning("SMTP_HOST not set -- outgoing mail will be logged, not sent")
    app.state.auth_service = AuthService(app.state.user_store, app.state.sessions, app.state.mailer, settings)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))
    logger.info("Auth initialized (session_tracking=%s)", settings.session_tracking)

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    app.state.mailer.close()
    app.state.user_store.close()
    logger.info("HubAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="HubAuth API",
    description="Account authentication: signup, login with lockout, email verification, "
    "password reset, refresh tokens, TOTP second factor and session management.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() / @app.middleware call wraps everything registered
# before it, so the last one registered sees the request first. Registration
# below runs innermost to outermost.
# ---------------------------------------------------------------------------

app.middleware("http")(csrf_protect)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Captures wall-clock time
# around call_next so every response line reports latency. Never logs bodies,
# so passwords, tokens and codes stay out of the log.
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


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token", "X-Session-Token"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(security_router, prefix="/api/v1", tags=["2FA & Sessions"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(exc: AuthError, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=detail, meta=exc.meta or None)
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render service-layer failures (401 invalid_credentials, 423 account_locked, ...)."""
    return _error_response(exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    response = _error_response(RateLimitedError("Too many requests."), detail=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 validation_error when the body or params fail schema validation.

    Only field locations and messages are echoed back, never the input values,
    so a rejected password never appears in a response.
    """
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(code="validation_error", message="Request validation failed.", detail=problems)
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(ServerError("An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database round-trip check."""
    try:
        database = "ok" if request.app.state.user_store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        database = "error"
    return HealthResponse(version=API_VERSION, components={"app": "ok", "database": database})

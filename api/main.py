"""
api/main.py -- FastAPI application entry point.

Run with:  uvicorn asgi:app --reload

Configuration is validated when this module is imported: get_settings()
exits the process with a list of violated constraints if the environment is
incomplete, before any route can be served.

Middleware stack (outermost to innermost):
  1. security_headers      -- CSP, frame/sniffing headers, HSTS in production
  2. log_requests          -- one access line per request with latency
  3. route_guard           -- path traversal rejection + page redirects
  4. CORSMiddleware        -- CORS headers for the application origin
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Rate limits are applied per route with @limiter.limit() (api/limiter.py).

Lifespan builds the long-lived services once and hangs them on app.state:
  settings, user_store, sessions, security_logger, lockout, purge_task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldErrorModel, HealthResponse, field_errors
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from auth.guard import RouteClass, classify_route, decide, has_traversal_segment
from auth.lockout import LoginLockout
from auth.sessions import SessionManager, SessionState
from auth.store import UserStore
from auth.tokens import AUTH_COOKIE, clear_auth_cookie
from core.config import Settings, get_settings
from security.logger import SecurityEventType, SecurityLogger, Severity

APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authstarter.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


def purge_expired_state(app: FastAPI) -> None:
    """Drop expired session rows and stale lockout entries.

    Lockout identifiers are attacker-chosen emails, so without this pass the
    in-memory table would grow with every failed login for a new address.
    """
    stale = app.state.lockout.purge_expired()
    if stale:
        logger.info("Purged %d stale lockout entries", stale)
    try:
        removed = app.state.user_store.purge_expired_sessions()
    except SQLAlchemyError:
        logger.exception("Session purge failed")
        return
    if removed:
        logger.info("Purged %d expired session(s)", removed)


async def _purge_loop(app: FastAPI) -> None:
    """Run purge_expired_state() every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(60 * 60)
        await run_in_threadpool(purge_expired_state, app)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_services(app: FastAPI, settings: Settings) -> None:
    """Construct the process-wide services and attach them to app.state."""
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.sessions = SessionManager(
        app.state.user_store,
        settings.jwt_secret,
        expire_seconds=settings.token_expire_seconds,
    )
    app.state.security_logger = SecurityLogger(max_events=settings.security_log_max_events)
    app.state.lockout = LoginLockout(
        max_attempts=settings.lockout_max_attempts,
        base_minutes=settings.lockout_base_minutes,
        max_minutes=settings.lockout_max_minutes,
        window_minutes=settings.lockout_window_minutes,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services on startup, release them on shutdown."""
    settings: Settings = app.state.settings
    logger.info("%s starting up (environment=%s)", settings.app_name, settings.environment)
    build_services(app, settings)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("%s shutdown complete", settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

settings = get_settings()

app = FastAPI(
    title=f"{settings.app_name} API",
    description="Signup, login, password reset, and email verification.",
    version=APP_VERSION,
    lifespan=lifespan,
)
app.state.settings = settings

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the last one added is the
# outermost. @app.middleware("http") functions registered below wrap these.
# ---------------------------------------------------------------------------

_app_host = urlparse(settings.app_url).hostname or "localhost"

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=sorted({_app_host, "localhost", "127.0.0.1"}),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# slowapi looks for app.state.limiter by convention.
app.state.limiter = limiter


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


# ---------------------------------------------------------------------------
# Route guard middleware
#
# Page routes are classified by auth/guard.py; this middleware supplies the
# session check and turns the decision into a response. API routes are not
# redirected -- they answer 401 through get_current_user instead.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def route_guard(request: Request, call_next):
    path = request.url.path
    raw_path = request.scope.get("raw_path", b"").decode("latin-1")
    if has_traversal_segment(path) or has_traversal_segment(raw_path):
        request.app.state.security_logger.log(
            SecurityEventType.PATH_TRAVERSAL_ATTEMPT,
            None,
            Severity.CRITICAL,
            ip=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            details={"path": raw_path or path},
        )
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error=ErrorDetail(code="bad_request", message="Invalid path.")).model_dump(),
        )

    route_class = classify_route(path)
    if path.startswith("/api/") or route_class is RouteClass.PUBLIC:
        return await call_next(request)

    token = request.cookies.get(AUTH_COOKIE)
    state = SessionState.INVALID
    if token:
        sessions: SessionManager = request.app.state.sessions
        state, _user_id = await run_in_threadpool(sessions.inspect, token)
        if state is SessionState.INVALID:
            request.app.state.security_logger.log(
                SecurityEventType.INVALID_SESSION_TOKEN,
                None,
                Severity.MEDIUM,
                ip=_client_ip(request),
                user_agent=request.headers.get("user-agent"),
                details={"path": path},
            )

    authenticated = state is SessionState.VALID
    decision = decide(route_class, authenticated, path)
    if decision.allow:
        response = await call_next(request)
    else:
        response = RedirectResponse(decision.location, status_code=302)

    # A cookie that no longer verifies is dropped so the browser stops sending it.
    if token and not authenticated:
        clear_auth_cookie(response)
    return response


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
        _client_ip(request) or "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Security headers middleware
#
# Registered last so it wraps the others and also covers redirects and the
# traversal 400 produced by route_guard.
# ---------------------------------------------------------------------------

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data: https:",
        "font-src 'self' data:",
        "connect-src 'self'",
        "object-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
    ]
)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
}

HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    # HSTS only makes sense behind https, which production enforces.
    if request.app.state.settings.is_production:
        response.headers["Strict-Transport-Security"] = HSTS_VALUE
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])
# Page routes (web/) are mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 and record the breach in the security log."""
    request.app.state.security_logger.log(
        SecurityEventType.RATE_LIMIT_EXCEEDED,
        None,
        Severity.MEDIUM,
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details={"path": request.url.path, "limit": str(exc.detail)},
    )
    # exc.limit.limit is the limits.RateLimitItem that tripped.
    retry_after = exc.limit.limit.get_expiry()
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
    """Return 400 with one (field, message) entry per failed constraint."""
    fields = [FieldErrorModel(field=e.field, message=e.message) for e in field_errors(exc.errors())]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                fields=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail ({code, message});
    that dict becomes the error field as-is.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception goes to the server log only; the client gets a generic
    message with no internal detail.
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
# No rate limit -- load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Report liveness plus a database round trip. 503 when the DB is down."""
    checks: dict[str, str] = {}
    try:
        request.app.state.user_store.ping()
        checks["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        checks["database"] = "error"

    healthy = all(v == "ok" for v in checks.values())
    body = HealthResponse(status="healthy" if healthy else "unhealthy", version=APP_VERSION, checks=checks)
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())

"""
api/main.py -- FastAPI application entry point for Tokenguard.

Exposes the auth core over HTTP: registration, login, token refresh, logout,
identity lookup, and token/role administration.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request with latency
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan handles startup (auth context, event logging, token cleanup task)
and shutdown (cancel background tasks, dispose the store engine)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.errors import error_body, http_error_body, service_error_body, status_for
from api.models import HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.context import AuthContext, build_auth_context
from core.config import get_settings
from core.errors import ErrorCategory, ErrorKind, ServiceError
from core.events import DomainEvent
from core.tasks import TaskSupervisor, periodic

VERSION = "0.1.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tokenguard.api")
audit_logger = logging.getLogger("tokenguard.audit")


def _log_event(event: DomainEvent) -> None:
    """Audit trail: one line per domain event. Token values never reach events."""
    audit_logger.info("%s %s", event.event_type, event)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def start_background_tasks(auth: AuthContext) -> TaskSupervisor:
    """Start the periodic ledger cleanup under a supervisor owned by the app."""
    retention = timedelta(days=auth.settings.used_token_retention_days)
    tasks = TaskSupervisor()
    tasks.start(
        "token-cleanup",
        periodic(
            auth.settings.token_cleanup_interval_seconds,
            lambda: auth.service.cleanup_tokens(retention),
            name="token-cleanup",
        ),
    )
    return tasks


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth context on startup and release it on shutdown.

    Startup order matters:
      1. Auth context first -- resolving the signing secret may raise
         KeyProvisioningError, which aborts startup before anything else runs.
      2. Event logging second -- subscribed before the first request can
         publish anything.
      3. Cleanup task last -- references app.state.auth.
    """
    logger.info("Tokenguard API starting up (environment=%s)", settings.environment)
    auth = build_auth_context(settings)
    app.state.auth = auth
    auth.events.subscribe(DomainEvent, _log_event)
    app.state.tasks = start_background_tasks(auth)

    yield

    await app.state.tasks.cancel_all()
    auth.events.clear()
    auth.close()
    logger.info("Tokenguard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Tokenguard API",
    description="Password login, JWT access/refresh tokens with rotation, and role-based permissions.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each registration wraps the stack built so far, so the last one registered
# is the outermost layer.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


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
# All handlers return the same envelope (status, code, message, path,
# timestamp, optional fieldErrors) so API clients parse errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a core failure. Sub-reasons stay in the log; the body shows the public kind."""
    status = status_for(exc.public_kind)
    if exc.category is ErrorCategory.INFRASTRUCTURE:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=service_error_body(exc, request.url.path))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 VALIDATION_ERROR with one fieldErrors entry per offending field.

    Locations arrive as ("body", "firstName") and so on; the last element is
    already the camelCase wire name.
    """
    field_errors: dict[str, str] = {}
    for error in exc.errors():
        loc = error.get("loc") or ("body",)
        field_errors.setdefault(str(loc[-1]), error.get("msg", "Invalid value"))
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorKind.VALIDATION_ERROR, request.url.path, field_errors=field_errors),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and other framework errors, in the same envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=http_error_body(exc.status_code, request.url.path, str(exc.detail) if exc.detail else None),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(ErrorKind.INTERNAL_ERROR, request.url.path, "An unexpected error occurred"),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


def _ping_database(auth: AuthContext) -> None:
    with auth.engine.connect() as conn:
        conn.execute(text("SELECT 1"))


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Liveness plus a database round trip. Reports "degraded" instead of failing when the database is down."""
    auth: AuthContext = request.app.state.auth
    components = {"app": "ok"}
    try:
        await asyncio.wait_for(asyncio.to_thread(_ping_database, auth), timeout=auth.settings.store_timeout_seconds)
        components["database"] = "ok"
    except (SQLAlchemyError, asyncio.TimeoutError) as exc:
        logger.warning("Health check: database unavailable (%s)", exc)
        components["database"] = "error"
    status = "healthy" if all(state == "ok" for state in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)

"""
api/main.py -- FastAPI application entry point for Stocks Hunter auth.

Exposes session-cookie authentication and RBAC administration over HTTP.

Run with:      uvicorn asgi:app --reload
Bootstrap:     python main.py seed

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- one access-log line per request
  5. api_session_gate      -- 401 for /api/ calls that carry no session cookie

Lifespan builds the engine and every auth service on app.state at startup
and disposes the engine at shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.audit import AuditLogger
from auth.dependencies import get_auth_context
from auth.guard import UNAUTHENTICATED
from auth.models import AuthorizationContext
from auth.schema import create_auth_engine
from auth.service import AdminService
from auth.sessions import SessionStore
from auth.store import AuthStore
from auth.throttle import LoginThrottle
from core.config import get_settings

APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("stockshunter.api")


# ---------------------------------------------------------------------------
# Application state
# ---------------------------------------------------------------------------


def init_auth_state(app: FastAPI, engine: Engine) -> None:
    """Attach every auth service to app.state, all sharing one engine.

    Also used by the test suite to wire isolated in-memory databases.
    """
    settings = get_settings()
    app.state.engine = engine
    app.state.auth_store = AuthStore(engine)
    app.state.sessions = SessionStore(engine, ttl_hours=settings.auth_session_ttl_hours)
    app.state.audit = AuditLogger(engine)
    app.state.admin = AdminService(app.state.auth_store, app.state.sessions, app.state.audit)
    app.state.login_throttle = LoginThrottle()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the engine and services on startup; dispose the engine on shutdown."""
    logger.info("Stocks Hunter API starting up")
    engine = create_auth_engine(get_settings().database_url)
    init_auth_state(app, engine)
    if not app.state.auth_store.has_users():
        logger.warning("No users exist yet -- run `python main.py seed` to create the first admin")

    yield

    app.state.auth_store.close()
    logger.info("Stocks Hunter API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Stocks Hunter API",
    description="Session authentication and role-based access control.",
    version=APP_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by session-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# API session gate
#
# Cheap pre-routing rejection: an /api/ request with no session cookie at all
# cannot pass any guard, so answer 401 before the router runs. Requests that
# do carry a cookie are still fully validated by the route dependencies.
# ---------------------------------------------------------------------------

_PUBLIC_API_PATHS = frozenset({"/api/v1/auth/login", "/api/v1/auth/logout", "/api/v1/health"})


@app.middleware("http")
async def api_session_gate(request: Request, call_next):
    path = request.url.path
    if path.startswith("/api/") and path not in _PUBLIC_API_PATHS:
        if not request.cookies.get(get_settings().auth_session_cookie_name):
            return UNAUTHENTICATED.to_response()
    return await call_next(request)


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
# Middleware stack
#
# Starlette wraps each registration around the ones before it, so the last
# add_middleware() call is the first to see a request. Registered here
# innermost-first: SlowAPI, CORS, TrustedHost. CORS answers preflights before
# the session gate runs.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(context: AuthorizationContext = Depends(get_auth_context)):
    """Swagger UI -- requires a valid session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Stocks Hunter API")


@app.get("/redoc", include_in_schema=False)
async def redoc(context: AuthorizationContext = Depends(get_auth_context)):
    """ReDoc UI -- requires a valid session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Stocks Hunter API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when the coarse per-IP cap is exceeded."""
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


def _first_violation(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid value.")
    return f"{field}: {message}" if field else message


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 carrying the first violation as `field: message`."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message=_first_violation(exc),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Guards and routes raise HTTPException with detail={"code", "message"}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit, no session.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        database = "unavailable"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=APP_VERSION,
        components={"app": "ok", "database": database},
    )

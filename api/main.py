"""
api/main.py -- FastAPI application entry point for the Meetup backend.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. request_context  -- assigns the request id, logs one line per request
  2. CORSMiddleware   -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds every long-lived collaborator once (engine, stores, cache,
token issuers, authorizer, notifier) and hangs it on app.state. Route
handlers and dependencies read them from there; nothing below the API layer
calls get_settings().

Concurrency: route handlers are plain `def` functions. Starlette runs each
in its worker thread pool, so a request occupies one thread from accept to
response and blocking store/cache calls never stall the event loop.
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
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ComponentHealth, ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.members import router as members_router
from api.routes.v1.organizations import router as organizations_router
from api.routes.v1.profiles import router as profiles_router
from api.routes.v1.roles import router as roles_router
from auth.action_tokens import ActionTokenIssuer
from auth.store import UserStore
from auth.tokens import SessionTokenIssuer
from authz.core import Authorizer
from cache.store import CacheStore
from core.config import Settings, get_settings
from core.database import create_db_engine
from core.errors import AppError, CacheError, ErrorKind
from core.log import configure_logging, request_id_var
from core.notifier import LogNotifier
from orgs.store import OrganizationStore

APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

configure_logging(get_settings().log_level)
logger = logging.getLogger("meetup.api")

# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


def build_state(app: FastAPI, settings: Settings) -> None:
    """Construct the application's collaborators and attach them to app.state.

    Order matters: the authorizer needs both stores, the cache and the
    session token issuer.
    """
    engine = create_db_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
    )
    app.state.settings = settings
    app.state.user_store = UserStore(engine)
    app.state.org_store = OrganizationStore(engine)
    app.state.cache = (
        CacheStore.from_url(
            settings.redis_url,
            user_ttl=settings.cache_ttl_user_seconds,
            org_ttl=settings.cache_ttl_org_seconds,
        )
        if settings.cache_enabled
        else None
    )
    app.state.session_tokens = SessionTokenIssuer(
        settings.jwt_secret_key,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        exp_hours=settings.jwt_access_exp_hours,
    )
    app.state.action_tokens = ActionTokenIssuer(settings.secret_key)
    app.state.authorizer = Authorizer(
        app.state.user_store,
        app.state.org_store,
        app.state.cache,
        app.state.session_tokens,
        cache_enabled=bool(settings.cache_enabled),
    )
    app.state.notifier = LogNotifier(debug=settings.debug)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown."""
    settings = get_settings()
    logger.info("Meetup API starting up (environment=%s)", settings.environment)
    build_state(app, settings)
    if app.state.cache is not None:
        try:
            app.state.cache.ping()
            logger.info("Cache reachable at startup")
        except CacheError as exc:
            # Requests fall back to the store until redis comes back.
            logger.warning("Cache unreachable at startup: %s", exc.reason)

    yield

    if app.state.cache is not None:
        app.state.cache.close()
    app.state.user_store.close()
    logger.info("Meetup API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Meetup API",
    description="Users, organizations and organization-scoped roles.",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request context middleware
#
# Every request gets an id (the caller's X-Request-ID or a fresh uuid4). It is
# stored on request.state, echoed in the response header, and published to
# core.log.request_id_var so every log line written while serving the request
# carries it.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    token = request_id_var.set(request_id)
    start = time.perf_counter()
    try:
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
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        request_id_var.reset(token)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(profiles_router, prefix="/api/v1", tags=["Profiles"])
app.include_router(organizations_router, prefix="/api/v1", tags=["Organizations"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])
app.include_router(members_router, prefix="/api/v1", tags=["Members"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.DUPLICATE: 400,
    ErrorKind.NOT_FOUND: 400,
    ErrorKind.CONFLICT: 400,
    ErrorKind.INVALID_TOKEN: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.EXPIRED: 422,
    ErrorKind.INTERNAL: 500,
}


def status_for(kind: ErrorKind) -> int:
    return _STATUS_BY_KIND[kind]


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map a tagged AppError to its HTTP status.

    The client sees exc.message (safe text); exc.reason goes to the log only.
    """
    status = status_for(exc.kind)
    if status >= 500:
        logger.error("%s on %s %s: %s", exc.kind.name, request.method, request.url.path, exc.reason)
    else:
        logger.info("%s on %s %s: %s", exc.kind.name, request.method, request.url.path, exc.reason)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, fields=exc.fields)).model_dump(),
    )
    if status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


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
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one message per offending field."""
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.setdefault(".".join(loc) or "body", err.get("msg", "invalid value"))
    logger.debug("Validation failed on %s %s: %s", request.method, request.url.path, fields)
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                fields=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers may raise HTTPException with a dict detail; use it
    directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": ErrorDetail(**exc.detail).model_dump()},
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Report liveness of the app, the database and the cache.

    An unreachable database makes the service unhealthy (503). An unreachable
    cache only degrades it: requests keep being served from the store.
    """
    state = request.app.state
    components: dict[str, ComponentHealth] = {"app": ComponentHealth(status="ok")}

    try:
        state.user_store.ping()
        components["database"] = ComponentHealth(status="ok")
    except SQLAlchemyError as exc:
        logger.warning("Health check: database unreachable: %s", exc)
        components["database"] = ComponentHealth(status="error", detail="database unreachable")

    if state.cache is None:
        components["cache"] = ComponentHealth(status="disabled")
    else:
        try:
            state.cache.ping()
            components["cache"] = ComponentHealth(status="ok")
        except CacheError as exc:
            logger.warning("Health check: cache unreachable: %s", exc.reason)
            components["cache"] = ComponentHealth(status="error", detail="cache unreachable")

    if components["database"].status != "ok":
        overall, code = "error", 503
    elif components["cache"].status == "error":
        overall, code = "degraded", 200
    else:
        overall, code = "ok", 200

    body = HealthResponse(
        status=overall,
        version=APP_VERSION,
        environment=state.settings.environment,
        components=components,
    )
    return JSONResponse(status_code=code, content=body.model_dump())

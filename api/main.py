"""
api/main.py -- FastAPI application entry point for Stockroom.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the stores and services from Settings and closes the stores
on shutdown. wire_services() is the single place the object graph is
assembled; the test suite calls it with in-memory stores.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.categories import router as categories_router
from api.routes.v1.products import router as products_router
from auth.access import AccessEvaluator
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import SessionStore, UserStore
from auth.tokens import TokenIssuer
from catalog.store import CatalogStore
from core.config import Settings, get_settings
from core.errors import ErrorKind, ServiceError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("stockroom.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    session_store: SessionStore,
    catalog: CatalogStore,
) -> None:
    """Assemble the service graph on app.state.

    Route handlers and dependencies only ever read these attributes; nothing
    is constructed per request.
    """
    issuer = TokenIssuer(
        secret_key=settings.secret_key,
        access_ttl=settings.access_token_expire_seconds,
        refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
    )
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.session_store = session_store
    app.state.catalog = catalog
    app.state.token_issuer = issuer
    app.state.auth_service = AuthService(
        users=user_store,
        sessions=session_store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        issuer=issuer,
    )
    app.state.access = AccessEvaluator(catalog)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores on startup and dispose of their engines on shutdown."""
    settings = get_settings()
    logger.info("Stockroom API starting up (debug=%s)", settings.debug)
    user_store = UserStore(db_url=settings.auth_db_url)
    session_store = SessionStore(db_url=settings.auth_db_url)
    catalog = CatalogStore(db_url=settings.catalog_db_url)
    wire_services(app, settings, user_store, session_store, catalog)
    logger.info("Stores initialized")

    yield

    session_store.close()
    user_store.close()
    catalog.close()
    logger.info("Stockroom API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Stockroom API",
    description="Inventory catalog with JWT authentication and group-based category access.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    # Cookies carry the tokens, so credentialed requests must be allowed.
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(categories_router, prefix="/api/v1", tags=["Categories"])
app.include_router(products_router, prefix="/api/v1", tags=["Products"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, violations: list[str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, violations=violations or [])
        ).model_dump(),
    )


def _violation_text(err: dict) -> str:
    """Render one pydantic error as a field-level violation string."""
    loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc) or "body"
    if err.get("type") == "missing":
        return f"field `{field}` is required"
    if err.get("type") == "extra_forbidden":
        return f"field `{field}` is not allowed"
    return f"field `{field}`: {err.get('msg', 'invalid value')}"


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Translate a classified service failure through STATUS_BY_KIND."""
    if exc.kind is ErrorKind.INTERNAL:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    response = _error_response(exc.status_code, exc.kind.value, exc.message, exc.violations)
    if exc.kind is ErrorKind.UNAUTHORIZED:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Must stay synchronous: SlowAPIMiddleware calls the registered handler
    itself and substitutes its own plain body for coroutine handlers.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    response = _error_response(429, "rate_limited", "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one violation per offending field."""
    violations = [_violation_text(err) for err in exc.errors()]
    return _error_response(422, ErrorKind.VALIDATION.value, "Validation failed.", violations)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured envelope for framework-raised errors (unknown route, bad method)."""
    code = ErrorKind.NOT_FOUND.value if exc.status_code == 404 else f"http_{exc.status_code}"
    return _error_response(exc.status_code, code, str(exc.detail))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store failures become internal_error. The cause is logged, never returned."""
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorKind.INTERNAL.value, "An unexpected error occurred.")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorKind.INTERNAL.value, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


def _component_status(store) -> str:
    try:
        store.ping()
    except SQLAlchemyError:
        logger.exception("Health check ping failed for %s", type(store).__name__)
        return "error"
    return "ok"


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and per-database reachability."""
    components = {
        "app": "ok",
        "auth_db": _component_status(request.app.state.user_store),
        "catalog_db": _component_status(request.app.state.catalog),
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)

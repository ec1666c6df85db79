"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
domain-error translation, and a lifespan that builds the service container
(SQL engine, Redis read cache, Google Sheets client) once at startup.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.crm.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.crm.api.v1.router import router as v1_router
from src.crm.config import get_settings
from src.crm.convergence.errors import (
    BusinessRuleViolation,
    CRMError,
    ForbiddenError,
    InvalidKeyError,
    MoveInconsistencyError,
    NotFoundError,
    SourceReadError,
    StoreNotConfiguredError,
)
from src.crm.core.database import close_db, get_session, init_db
from src.crm.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.crm.core.redis import ReadCache, close_redis, get_redis_pool
from src.crm.services.container import build_services
from src.crm.stores.sheets import SheetsAuthManager, SheetsClient

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire stores and services on startup, close on shutdown."""
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # SQL is the primary read source; an unreachable database only disables it.
    session_factory = None
    try:
        await init_db()
        session_factory = get_session
    except Exception:
        logger.warning("startup.sql_store_unavailable", exc_info=True)

    sa_path = settings.get_service_account_path()
    if not sa_path:
        logger.warning("startup.sheets_credentials_missing")
    sheets = SheetsClient(SheetsAuthManager(service_account_file=sa_path or ""))
    cache = ReadCache(get_redis_pool(), ttl_seconds=settings.READ_CACHE_TTL_SECONDS)

    app.state.services = build_services(
        settings, sheets, session_factory=session_factory, cache=cache
    )
    logger.info("startup.complete", environment=settings.ENVIRONMENT.value)

    yield

    await close_db()
    await close_redis()


# ── Error translation ───────────────────────────────────────────────────────

_STATUS_BY_ERROR: list[tuple[type[CRMError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (BusinessRuleViolation, status.HTTP_409_CONFLICT),
    (InvalidKeyError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MoveInconsistencyError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (SourceReadError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoreNotConfiguredError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def error_status(exc: CRMError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def crm_error_handler(request: Request, exc: CRMError) -> JSONResponse:
    """Render domain errors as {success: false, error, detail}."""
    code = error_status(exc)
    content: dict = {"success": False, "error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, BusinessRuleViolation) and exc.blocking_count:
        content["blockingCount"] = exc.blocking_count
        content["example"] = exc.example
    log_method = logger.error if code >= 500 else logger.warning
    log_method(
        "request.domain_error",
        path=request.url.path,
        status_code=code,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=code, content=content)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CRMError, crm_error_handler)  # type: ignore[arg-type]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CRM Convergence API",
        version="0.1.0",
        description="SQL-first CRM backend with Google Sheets fallback",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    install_error_handlers(app)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()

"""
Blip Soroban Metrics API
Main application entry point with middleware, routes, and startup configuration
"""

from contextlib import asynccontextmanager
import time
from typing import Any, Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST, Counter, Histogram
from starlette.exceptions import HTTPException as StarletteHTTPException

from blip.api import health, history, metrics, saved_contracts, users
from blip.config.settings import Settings, get_settings
from blip.middleware.authentication import AuthenticationMiddleware
from blip.middleware.security_headers import SecurityHeadersMiddleware
from blip.services.alert_email_scheduler import AlertEmailScheduler
from blip.services.database import DatabaseService
from blip.services.email_service import EmailService
from blip.services.history_service import HistoryService
from blip.services.identity_service import IdentityProviderClient
from blip.services.metrics_service import MetricsService
from blip.services.saved_contracts_service import SavedContractsService
from blip.services.warehouse import WarehouseClient
from blip.services.warehouse_queries import WarehouseQueries
from blip.utils.auth import initialize_authenticator
from blip.utils.errors import ErrorCode, create_error_response
from blip.utils.logging import setup_logging

logger = structlog.get_logger(__name__)

VERSION = "1.0.0"

STATUS_ERROR_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
}

# Prometheus metrics
request_count = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])


async def start_services(app: FastAPI, settings: Settings) -> None:
    """Create the shared services and store them on app.state."""
    db_service = DatabaseService(settings)
    try:
        await db_service.initialize()
        app.state.db = db_service
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e), exc_info=True)
        logger.warning("running_without_database")

    for issue in settings.validate_warehouse_configuration():
        logger.warning("warehouse_configuration_issue", issue=issue)

    warehouse = WarehouseClient(settings)
    app.state.warehouse = warehouse
    if not await warehouse.test_connection():
        logger.warning("warehouse_unreachable_at_startup")

    queries = WarehouseQueries(settings.athena_operations_table, settings.athena_contract_events_table)
    app.state.identity_client = IdentityProviderClient(settings)

    if getattr(app.state, "db", None) is None:
        return

    saved_contracts_service = SavedContractsService(app.state.db)
    history_service = HistoryService(warehouse, queries, saved_contracts_service, settings)
    app.state.saved_contracts_service = saved_contracts_service
    app.state.metrics_service = MetricsService(warehouse, queries, saved_contracts_service, settings)
    app.state.history_service = history_service

    scheduler = AlertEmailScheduler(
        saved_contracts_service,
        history_service,
        app.state.identity_client,
        EmailService(settings),
        settings,
    )
    scheduler.start()
    app.state.alert_scheduler = scheduler


async def stop_services(app: FastAPI) -> None:
    """Close everything start_services opened, in reverse order."""
    for name in ("alert_scheduler", "identity_client", "warehouse", "db"):
        service = getattr(app.state, name, None)
        if service is None:
            continue
        try:
            if name == "alert_scheduler":
                await service.stop()
            else:
                await service.close()
            logger.info("service_closed", service=name)
        except Exception as e:
            logger.error("service_close_failed", service=name, error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events"""
    settings = app.state.settings
    setup_logging(settings.log_level, settings.render_json_logs)
    logger.info("blip_api_starting", environment=settings.environment)

    initialize_authenticator(
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        leeway_seconds=settings.jwt_leeway_seconds,
    )
    await start_services(app, settings)

    logger.info(
        "blip_api_started",
        database_available=getattr(app.state, "db", None) is not None,
        alert_emails=settings.alert_emails_enabled,
    )

    yield

    logger.info("blip_api_shutting_down")
    await stop_services(app)


def create_app(settings: Optional[Settings] = None, with_lifespan: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        with_lifespan: Start and stop the shared services with the app
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Blip Soroban Metrics API",
        description="Transaction, event and error-rate metrics for Soroban smart contracts",
        version=VERSION,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan if with_lifespan else None,
    )
    app.state.settings = settings

    # Added innermost first: authentication runs after CORS and security headers
    app.add_middleware(AuthenticationMiddleware)
    if settings.security_headers_enabled:
        app.add_middleware(
            SecurityHeadersMiddleware,
            enable_hsts=settings.hsts_enabled,
            hsts_max_age=settings.hsts_max_age,
        )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        max_age=settings.cors_max_age,
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Prometheus metrics collection middleware"""
        started = time.perf_counter()
        response = await call_next(request)

        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        request_duration.labels(method=request.method, endpoint=endpoint).observe(
            time.perf_counter() - started
        )
        request_count.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        return response

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Request logging middleware"""
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None
        )

        response = await call_next(request)

        logger.info(
            "http_response",
            status_code=response.status_code,
            method=request.method,
            path=request.url.path
        )

        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Error envelopes from the raise_* helpers are returned unwrapped"""
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            content = exc.detail
        else:
            code = STATUS_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
            content = create_error_response(code, str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Invalid query, path or body parameters"""
        errors = [
            {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
            for error in exc.errors()
        ]
        logger.info("request_validation_failed", path=request.url.path, errors=errors)
        return JSONResponse(
            status_code=400,
            content=create_error_response(
                ErrorCode.VALIDATION_ERROR, "The request is invalid.", {"errors": errors}
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler"""
        logger.error(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method
        )

        details = None
        if not settings.is_production:
            details = {"type": exc.__class__.__name__, "message": str(exc)}
        return JSONResponse(
            status_code=500,
            content=create_error_response(ErrorCode.INTERNAL_ERROR, details=details),
        )

    # Include routers
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(metrics.router, prefix="/v1/metrics", tags=["Metrics"])
    app.include_router(history.router, prefix="/v1/history", tags=["History"])
    app.include_router(saved_contracts.router, prefix="/v1/saved-contracts", tags=["Saved Contracts"])
    app.include_router(users.router, prefix="/v1/users", tags=["Users"])

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics():
        """Prometheus metrics endpoint"""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root() -> Dict[str, Any]:
        """Root endpoint with API information"""
        return {
            "message": "Blip Soroban Metrics API",
            "version": VERSION,
            "docs_url": "/docs" if not settings.is_production else None,
            "health_check": "/health",
            "metrics": "/metrics"
        }

    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "blip.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )

"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from launch_studio.api.admin_routes import router as admin_router
from launch_studio.api.auth_routes import router as auth_router
from launch_studio.api.billing_routes import router as billing_router
from launch_studio.api.routes import router
from launch_studio.config import settings
from launch_studio.db.migration_runner import run_migrations
from launch_studio.db.session import Database
from launch_studio.models.api import HealthResponse
from launch_studio.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from launch_studio.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from launch_studio.services.completion import GeminiCompletionService, GeminiImageGenerator
from launch_studio.services.image_generation import ImageStudio
from launch_studio.services.pipeline import (
    PipelineOrchestrator,
    StageLockRegistry,
    build_stage_catalog,
)

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Builds the database handle and the generation services once per process
    and tears them down on shutdown.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    database = Database.from_settings(settings)
    instrument_sqlalchemy(database.engine)

    completion = GeminiCompletionService(settings.gemini_api_key, settings.gemini_text_model)
    image_generator = GeminiImageGenerator(settings.gemini_api_key, settings.gemini_image_model)

    app.state.database = database
    app.state.orchestrator = PipelineOrchestrator(
        session_scope=database.session,
        completion=completion,
        catalog=build_stage_catalog(settings),
        locks=StageLockRegistry(),
        generation_timeout=settings.generation_timeout_seconds,
    )
    app.state.image_studio = ImageStudio(
        session_scope=database.session,
        completion=completion,
        generator=image_generator,
        settings=settings,
    )

    yield

    logger.info("application_shutting_down")
    await app.state.orchestrator.aclose(timeout=settings.generation_timeout_seconds)
    await database.dispose()
    logger.info("database_engine_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


# Add validation error logging handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log detailed validation errors for debugging."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may hold non-serializable objects
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": sanitized_errors},
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Proxy headers middleware - trust X-Forwarded-* headers from the reverse proxy
class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to handle X-Forwarded-* headers from reverse proxy."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            request.scope["scheme"] = forwarded_proto

        response = await call_next(request)
        return response


app.add_middleware(ProxyHeadersMiddleware)

# Credentialed CORS cannot use a wildcard origin
_origins = settings.allowed_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials="*" not in _origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Credits-Remaining", "X-Request-ID"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    endpoint = request.url.path
    method = request.method
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)
        try:
            response = await call_next(request)
            duration = time.time() - start_time
            # Route template keeps metric label cardinality bounded
            route = request.scope.get("route")
            label = getattr(route, "path", endpoint)
            metrics.record_http_request(label, method, response.status_code, duration)

            logger.info(
                "request_completed",
                method=method,
                path=endpoint,
                status_code=response.status_code,
                duration_seconds=duration,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")

            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


# Register routes
app.include_router(auth_router)  # Register, login, logout, me
app.include_router(router)  # Products, pipeline stages, images
app.include_router(billing_router)  # Credit purchases and Stripe webhook
app.include_router(admin_router)  # Admin panel API


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    database: Database = request.app.state.database
    try:
        await database.ping()
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "launch_studio.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )

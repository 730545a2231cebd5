from contextlib import asynccontextmanager
from pathlib import Path
from uuid import uuid4

from fastapi import FastAPI, Request
from loguru import logger

from regionaccess_api.core.settings import settings
from regionaccess_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging, request_context
from .observability.tracing import configure_tracing
from .scheduling import JobScheduler
from .workers import GrantExpiryWorker


APP_VERSION = "0.1.0"
SERVICE_NAME = "regionaccess-api"


def _session_factory():
    return async_session()


def _resolve_schedule_path() -> Path:
    schedule_path = Path(settings.job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    expiry_worker = GrantExpiryWorker(
        session_factory=_session_factory,
        interval_seconds=settings.grant_expiry_interval_seconds,
        batch_size=settings.grant_expiry_batch_size,
    )
    schedule_path = _resolve_schedule_path()
    job_scheduler = JobScheduler(session_factory=_session_factory, config_path=schedule_path)

    app.state.grant_expiry_worker = expiry_worker
    app.state.job_scheduler = job_scheduler

    scheduler_enabled = settings.job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Job scheduler failed to start", error=str(exc))
        else:
            logger.info("Job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info("Job scheduler disabled", reason="job_scheduler_enabled is false")

    worker_enabled = settings.grant_expiry_worker_enabled
    if worker_enabled and not scheduler_enabled:
        expiry_worker.start()
        logger.info(
            "Grant expiry worker enabled",
            interval_seconds=expiry_worker.interval_seconds,
            batch_size=settings.grant_expiry_batch_size,
        )
    elif worker_enabled and scheduler_enabled:
        logger.info("Grant expiry sweeps managed via scheduler", schedule_path=str(schedule_path))
    else:
        logger.info("Grant expiry worker disabled", reason="grant_expiry_worker_enabled is false")

    try:
        yield
    finally:
        if expiry_worker.is_running:
            await expiry_worker.stop()
        if job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the region access FastAPI service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Region Access API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name=SERVICE_NAME,
            service_version=APP_VERSION,
            environment=settings.environment,
            exporter_endpoint=settings.otel_exporter_otlp_endpoint,
            exporter_headers=settings.otel_exporter_otlp_headers,
        )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        with request_context(request_id=request_id, actor_id=request.headers.get("X-Actor-Id")):
            response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app

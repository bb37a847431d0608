"""
FastAPI application entry point with health check route.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.routes import campaigns, segments, leads, scheduler
from src.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    domain_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from src.jobs.campaign_scheduler import register_campaign_jobs
from src.jobs.scheduler import get_scheduler
from src.lib.logging import get_logger, set_correlation_id
from src.lib.metrics import get_metrics_collector
from src.lib.settings import settings
from src.services.errors import DomainError

logger = get_logger(__name__)


# Correlation ID middleware
class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation_id to all requests for distributed tracing.
    Accepts X-Correlation-ID from incoming requests or generates a new one.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        logger.info(
            "Incoming request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            }
        )

        response = await call_next(request)

        response.headers["X-Correlation-ID"] = correlation_id

        logger.info("Response sent", extra={"status_code": response.status_code})

        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager: starts the campaign tick when enabled.
    """
    logger.info(f"{settings.app_name} starting up...")
    scheduler_manager = None
    if settings.scheduler_enabled:
        scheduler_manager = get_scheduler()
        register_campaign_jobs(scheduler_manager)
        scheduler_manager.start()
    yield
    if scheduler_manager is not None:
        scheduler_manager.shutdown(wait=False)
    logger.info(f"{settings.app_name} shutting down...")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Marketing campaign automation: scheduling, segments, A/B tests, funnels and lead conversion",
    lifespan=lifespan,
)


# CORS middleware - configure allowed origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # React dev server
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.add_middleware(CorrelationIdMiddleware)


# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(DomainError, domain_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


# Include routers
app.include_router(campaigns.router)
app.include_router(segments.router)
app.include_router(leads.router)
app.include_router(scheduler.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
    """
    Prometheus-compatible metrics endpoint.

    Metrics exposed:
    - campaign_runs_total: Scheduler tick outcomes per campaign
    - campaign_emails_total: Campaign email dispatches by status
    - funnel_steps_run_total: Funnel steps executed by type
    - lead_conversions_total: Lead conversions by kind

    Returns:
        Prometheus text format metrics
    """
    metrics = get_metrics_collector()
    return PlainTextResponse(
        content=metrics.export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )

"""
FastAPI application entry point with health check route.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from rebooking.api.routes import express_rebook, internal_rebooking
from rebooking.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from rebooking.jobs.rebooking_sweeps import register_rebooking_jobs
from rebooking.jobs.scheduler import get_scheduler
from rebooking.lib.logging import get_logger, set_correlation_id
from rebooking.lib.metrics import get_metrics_collector
from rebooking.lib.settings import settings

logger = get_logger(__name__)


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
    Application lifespan manager; runs the sweep scheduler when enabled.
    """
    logger.info(f"{settings.app_name} starting up...")
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = get_scheduler()
        register_rebooking_jobs(scheduler)
        scheduler.start()
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info(f"{settings.app_name} shutting down...")


app = FastAPI(
    title="Rebooking Engine",
    version="1.0.0",
    description="Booking preference learning and one-tap rebooking suggestions",
    lifespan=lifespan,
)


app.add_middleware(CorrelationIdMiddleware)


app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


app.include_router(express_rebook.router)
app.include_router(internal_rebooking.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
    """
    Prometheus-compatible metrics endpoint.

    Metrics exposed:
    - rebook_suggestions_generated_total / skipped_total{reason}
    - rebook_suggestions_shown_total / dismissed_total / expired_total
    - rebook_commits_total{source,outcome}
    - rebook_preference_updates_total
    """
    metrics = get_metrics_collector()
    return PlainTextResponse(
        content=metrics.export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )

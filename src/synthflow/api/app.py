"""FastAPI application with lifespan and router mounting."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from synthflow.api.routes import customers, health, webhooks
from synthflow.core.config import AppSettings
from synthflow.core.exceptions import ErrorCode, JobLifecycleError
from synthflow.core.logging import configure_logging
from synthflow.services import Services, create_services

HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.ALREADY_COMPLETED: 409,
    ErrorCode.CONCURRENCY_CONFLICT: 409,
    ErrorCode.JOB_NOT_FOUND: 404,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.COOLDOWN_PERIOD: 429,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.VALIDATION_ERROR: 422,
}


async def lifecycle_error_handler(request: Request, exc: JobLifecycleError) -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_STATUS.get(exc.code, 400),
        content={"code": exc.code.value, "message": exc.message, "details": exc.details},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing `services` skips building them from environment settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Initialize and tear down application resources."""
        svc = services or create_services(AppSettings())
        configure_logging(svc.settings.log_level)
        app.state.services = svc
        yield
        svc.close()

    app = FastAPI(
        title="Synthflow Job Orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(JobLifecycleError, lifecycle_error_handler)
    app.include_router(health.router)
    app.include_router(customers.router, prefix="/customers")
    app.include_router(webhooks.router, prefix="/webhooks")
    return app

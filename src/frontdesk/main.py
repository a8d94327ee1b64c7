"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from frontdesk.config import get_settings
from frontdesk.exclusions.router import router as exclusions_router
from frontdesk.operations.router import router as operations_router
from frontdesk.runtime import Runtime, build_runtime
from frontdesk.scheduling.router import router as scheduler_router
from frontdesk.scheduling.supervisor import SchedulerSupervisor
from frontdesk.shared.exceptions import ConflictError, NotFoundError, ValidationError
from frontdesk.shared.logging import get_logger, setup_logging
from frontdesk.telephony.router import router as outbound_router
from frontdesk.webhooks.router import router as webhooks_router

logger = get_logger(__name__)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runtime: Prebuilt engine (tests). Built from settings at startup when None,
            and then also closed at shutdown.
    """
    settings = runtime.settings if runtime is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        setup_logging()
        owns_runtime = runtime is None
        rt = runtime or build_runtime(settings)
        app.state.runtime = rt

        logger.info(
            "Application starting",
            extra={"env": settings.app_env, "kinds": rt.registry.kinds()},
        )

        if settings.database_create_tables:
            await rt.db.create_all()

        supervisor: SchedulerSupervisor | None = None
        if settings.scheduler_enabled and settings.scheduler_mode == "in_process":
            supervisor = SchedulerSupervisor(
                rt.db.engine,
                rt.registry,
                rt.sweeper,
                rt.waker,
                rt.housekeeper,
                lock_key=settings.scheduler_lock_key,
                housekeeping_interval=settings.housekeeping_interval_seconds,
            )
            await supervisor.start()
        else:
            logger.info(
                "In-process scheduler disabled",
                extra={"scheduler_mode": settings.scheduler_mode},
            )

        yield

        logger.info("Shutting down application")
        if supervisor is not None:
            await supervisor.stop()
        if owns_runtime:
            await rt.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Frontdesk Operations API",
        description="Durable retry and scheduling engine for outbound calls, webhook replay and token refresh",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    if runtime is not None:
        app.state.runtime = runtime

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def _conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(operations_router)
    app.include_router(scheduler_router)
    app.include_router(outbound_router)
    app.include_router(exclusions_router)
    app.include_router(webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()

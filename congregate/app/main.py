"""FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from congregate.app.api.errors import register_error_handlers
from congregate.app.api.routes.attendance import router as attendance_router
from congregate.app.api.routes.distribution import router as distribution_router
from congregate.app.api.routes.health import router as health_router
from congregate.app.api.routes.metrics import router as metrics_router
from congregate.app.audit.notary import ActivityNotary, ActivitySink
from congregate.app.audit.sinks import SqlActivitySink
from congregate.app.config import Settings, get_settings
from congregate.app.db.engine import create_async_engine_from_settings, create_unit_of_work
from congregate.app.services.attendance_recorder import AttendanceRecorder
from congregate.app.services.attendance_windows import AttendanceWindowManager
from congregate.app.services.distribution import DistributionAllocationEngine
from congregate.app.utils.clock import Clock, SystemClock
from congregate.app.utils.logging import configure_logging


def create_app(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    clock: Clock | None = None,
    sink: ActivitySink | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings (default: cached environment settings)
        engine: Async engine to use instead of one built from settings;
            the caller keeps ownership of it
        clock: Clock shared by all services (default: SystemClock)
        sink: Activity sink (default: SqlActivitySink on the same engine)
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level, settings.log_json)

        owns_engine = engine is None
        app_engine = engine or create_async_engine_from_settings(settings)
        uow = create_unit_of_work(app_engine, settings)

        notary = ActivityNotary(
            sink=sink or SqlActivitySink(uow),
            maxsize=settings.audit_queue_maxsize,
            enabled=settings.audit_enabled,
            clock=clock,
        )
        notary.start()

        app.state.engine = app_engine
        app.state.notary = notary
        app.state.windows = AttendanceWindowManager(uow, notary, clock)
        app.state.recorder = AttendanceRecorder(uow, notary, clock)
        app.state.distribution = DistributionAllocationEngine(uow, notary, clock)

        try:
            yield
        finally:
            await notary.stop()
            if owns_engine:
                await app_engine.dispose()

    app = FastAPI(title="Congregate API", version="0.1.0", lifespan=lifespan)
    register_error_handlers(app)

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(attendance_router)
    app.include_router(distribution_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Congregate API", "version": "0.1.0"}

    return app

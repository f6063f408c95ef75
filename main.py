import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.config import settings
from relay.database import Base, engine
from relay.exception_handlers import register_exception_handlers
from relay.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from relay.routes import hubs, push
from relay.scheduler import schedule_stale_connection_sweep, scheduler
from relay.services.connection_registry import get_hub_registry

setup_structured_logging(
    log_level="DEBUG" if settings.debug else "INFO",
    json_format=settings.environment != "development",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Tasks to run at application startup and shutdown."""
    logger.info("Starting up the application...")
    if settings.debug:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (if not existing).")

    schedule_stale_connection_sweep()
    scheduler.start()

    yield

    logger.info("Shutting down the application...")
    scheduler.shutdown(wait=False)
    await get_hub_registry().close_all()
    await engine.dispose()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Real-time delivery core: chat and notification hubs with push fallback",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(hubs.router)
    app.include_router(hubs.api_router)
    app.include_router(push.router)

    @app.get("/health", tags=["Root"])
    async def health():
        return {"status": "ok", "version": settings.app_version, **get_hub_registry().get_stats()}

    if settings.debug:
        logger.info(f"Running in {settings.environment} mode")
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)

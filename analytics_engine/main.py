import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import alembic.command
import alembic.config
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from analytics_engine.api.router import api_router
from analytics_engine.core.config import Settings, settings as default_settings
from analytics_engine.core.database import build_engine
from analytics_engine.core.errors import AnalyticsError
from analytics_engine.core.services import build_services

logger = logging.getLogger(__name__)


def run_migrations(database_url: str):
    """Sync function to run migrations"""
    alembic_cfg = alembic.config.Config("alembic.ini")
    alembic_cfg.attributes["database_url"] = database_url
    alembic_cfg.attributes["configure_logger"] = False
    alembic.command.upgrade(alembic_cfg, "head")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    # Build the engine and services on startup, release the pool on shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Apply any pending migrations automatically when the app starts
        if settings.RUN_MIGRATIONS:
            try:
                await asyncio.to_thread(run_migrations, settings.DATABASE_URL)
                logger.info("Migrations applied successfully (or already up-to-date)")
            except Exception as e:
                logger.error(f"Migration error during startup: {e}")

        engine = build_engine(settings)
        services = build_services(settings, engine)
        app.state.services = services
        await services.driver.start()

        yield

        await services.aclose()
        await engine.dispose()

    app = FastAPI(title="Analytics Job Engine", lifespan=lifespan)

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": exc.kind},
        )

    # Include the master router containing all our endpoints
    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {"message": "Welcome to the Analytics Job Engine"}

    return app


app = create_app()

"""Live Data API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import ConfigurationError, get_settings
from src.routers import auth, chat, cron, data, health
from src.services.database import apply_schema, close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("livedata")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Live Data API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    if settings.postgres_url:
        await init_pool(settings)
        if settings.auto_migrate:
            await apply_schema()
    else:
        # Keep serving /api/health so the missing URL is visible.
        logger.warning("POSTGRES_URL is not set; database features are unavailable")
    yield
    await close_pool()
    logger.info("Live Data API shut down")


async def _configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Live Data API",
        description=(
            "Keeps fitness provider tokens fresh and syncs Whoop and Strava "
            "records into Postgres on a schedule."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_exception_handler(ConfigurationError, _configuration_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(cron.router)
    app.include_router(auth.router)
    app.include_router(data.router)
    app.include_router(chat.router)

    return app


app = create_app()

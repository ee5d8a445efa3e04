"""PropertyChain API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery — ExMA anti-pattern)
    - Global error handlers map PropertyChainError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database initialized on startup via lifespan context manager
    - Event hub connections closed on shutdown before the engine is disposed

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Error handlers live in api/error_handlers.py (ADR: ExMA import fan-out < 10)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import app.infrastructure.database as database
from app.api.deps import get_event_hub
from app.api.error_handlers import register_error_handlers
from app.infrastructure.observability import setup_logging
from app.config import get_settings
from app.api.routes import event_stream, health, investments, properties

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    database.init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    logger.info("PropertyChain API started")
    yield
    logger.info("PropertyChain API shutting down")
    await get_event_hub().close()
    if database.db_manager:
        await database.db_manager.dispose()


app = FastAPI(
    title="PropertyChain API", version="1.0.0", lifespan=lifespan,
)

# CORS: configured from settings, not hardcoded
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes: explicit registration (ExMA: no convention-over-config)
app.include_router(health.router)
app.include_router(investments.router)
app.include_router(properties.router)
app.include_router(event_stream.router)

register_error_handlers(app)

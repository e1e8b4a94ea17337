"""
FastAPI application entry point.

This module instantiates the FastAPI app, registers API routers and
defines application startup and shutdown hooks. When run via ``uvicorn``
the app will be served as an ASGI application.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import get_settings
from ..core.db import dispose_engine, init_db_schema
from ..core.utils.logger import configure_logging
from .dependencies import build_engine
from .routers import negotiations as negotiations_router
from .routers import notifications as notifications_router
from .routers import publishers as publishers_router
from .routers import strategies as strategies_router


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    """Application lifespan hook.

    On startup this hook creates the database schema when running in dev
    or test; production relies on Alembic migrations. The negotiation
    engine is built once and shared by all requests.
    """
    settings = get_settings()
    if settings.env in {"dev", "test"}:
        logger.info("Initialising database schema…")
        await init_db_schema()
    app.state.engine = build_engine()
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    """Factory for the FastAPI app."""
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title="Licensing Negotiation API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(negotiations_router.router)
    app.include_router(strategies_router.router)
    app.include_router(publishers_router.router)
    app.include_router(notifications_router.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "healthy", "service": "licneg"}

    return app


app = create_app()

"""
API dependencies.

This module defines reusable dependencies for FastAPI endpoints: a
configured database session, the application's negotiation engine and
the translation of engine errors into HTTP responses.
"""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.db import get_async_session_factory, get_db_session
from ..core.errors import InvalidLLMResponse, InvalidState, NegotiationError, NoStrategyFound, NotFound
from ..core.services.engine import NegotiationEngine
from ..core.services.llm_provider import ProviderRegistry
from ..core.services.notifications import DatabaseNotificationPublisher


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency that yields a database session."""
    async with get_db_session() as session:
        yield session


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


def build_engine() -> NegotiationEngine:
    """Engine wired to the configured database and LiteLLM providers."""
    session_factory = get_async_session_factory()
    return NegotiationEngine(
        session_factory,
        ProviderRegistry(),
        notifier=DatabaseNotificationPublisher(session_factory),
    )


def get_negotiation_engine(request: Request) -> NegotiationEngine:
    """Dependency returning the app-wide engine, created on first use."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = build_engine()
        request.app.state.engine = engine
    return engine


Engine = Annotated[NegotiationEngine, Depends(get_negotiation_engine)]


def http_error(exc: NegotiationError) -> HTTPException:
    """Map an engine error to the HTTP error returned to the caller."""
    if isinstance(exc, (NotFound, NoStrategyFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidState):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InvalidLLMResponse):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

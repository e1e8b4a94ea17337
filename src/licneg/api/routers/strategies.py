"""
Strategy API router.

Publishers manage their negotiation strategies here. Strategies are
looked up by the engine when a negotiation is initiated.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Path, status
from pydantic import ValidationError

from ..dependencies import DatabaseSession, http_error
from ...core.errors import NegotiationError
from ...core.schemas import StrategyBase, StrategyCreate, StrategyOut, StrategyUpdate
from ...core.services import strategy_matcher as strategy_service


router = APIRouter(prefix="/strategies", tags=["strategies"])


@router.get("/publisher/{publisher_id}", response_model=list[StrategyOut])
async def list_strategies(
    db: DatabaseSession,
    publisher_id: int = Path(..., description="Identifier of the publisher."),
) -> list[StrategyOut]:
    """List a publisher's strategies, most specific first."""
    strategies = await strategy_service.list_publisher_strategies(db, publisher_id)
    return [StrategyOut.model_validate(strategy) for strategy in strategies]


@router.post("/publisher/{publisher_id}", response_model=StrategyOut, status_code=status.HTTP_201_CREATED)
async def create_strategy(
    req: StrategyBase,
    db: DatabaseSession,
    publisher_id: int = Path(..., description="Identifier of the publisher."),
) -> StrategyOut:
    """Create a strategy for a publisher."""
    create = StrategyCreate(publisher_id=publisher_id, **req.model_dump())
    strategy = await strategy_service.create_strategy(db, create)
    return StrategyOut.model_validate(strategy)


@router.put("/{strategy_id}", response_model=StrategyOut)
async def update_strategy(
    req: StrategyUpdate,
    db: DatabaseSession,
    strategy_id: int = Path(..., description="Identifier of the strategy."),
) -> StrategyOut:
    """Partially update a strategy."""
    try:
        strategy = await strategy_service.update_strategy(db, strategy_id, req)
    except NegotiationError as exc:
        raise http_error(exc) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return StrategyOut.model_validate(strategy)


@router.delete("/{strategy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_strategy(
    db: DatabaseSession,
    strategy_id: int = Path(..., description="Identifier of the strategy."),
) -> None:
    """Delete a strategy."""
    try:
        await strategy_service.delete_strategy(db, strategy_id)
    except NegotiationError as exc:
        raise http_error(exc) from exc
    return None

"""
Append-only ledger of negotiation rounds.

Rounds are never updated or deleted by the engine. Terminal accept and
reject entries use ``TERMINAL_ROUND`` so they do not count towards the
back-and-forth.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import NegotiationRound, RoundAction, RoundActor

TERMINAL_ROUND = -1


async def append_round(
    db: AsyncSession,
    negotiation_id: str,
    round_number: int,
    actor: RoundActor,
    action: RoundAction,
    terms: Optional[Dict[str, Any]],
    reasoning: Optional[str],
    llm_model: Optional[str] = None,
    llm_tokens_used: Optional[int] = None,
    llm_response_time_ms: Optional[int] = None,
) -> NegotiationRound:
    """Add a round entry to the session; the caller owns the transaction."""
    entry = NegotiationRound(
        negotiation_id=negotiation_id,
        round_number=round_number,
        actor=actor,
        action=action,
        proposed_terms=terms or {},
        reasoning=reasoning,
        llm_model=llm_model,
        llm_tokens_used=llm_tokens_used,
        llm_response_time_ms=llm_response_time_ms,
    )
    db.add(entry)
    return entry


async def list_rounds(db: AsyncSession, negotiation_id: str) -> List[NegotiationRound]:
    """Return rounds in the order they were recorded."""
    result = await db.execute(
        select(NegotiationRound)
        .where(NegotiationRound.negotiation_id == negotiation_id)
        .order_by(NegotiationRound.id)
    )
    return list(result.scalars().all())

"""
Read-side queries over negotiations for dashboards and analytics.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..errors import NotFound
from ..models import Negotiation, NegotiationStatus
from ..schemas import NegotiationStats, StatusStatistics


async def list_negotiations(
    db: AsyncSession,
    publisher_id: int,
    status: Optional[NegotiationStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Negotiation], int]:
    """Return one page of a publisher's negotiations (most recent activity first) and the total count."""
    conditions = [Negotiation.publisher_id == publisher_id]
    if status is not None:
        conditions.append(Negotiation.status == status)

    total = await db.execute(select(func.count(Negotiation.id)).where(*conditions))
    result = await db.execute(
        select(Negotiation)
        .where(*conditions)
        .order_by(Negotiation.last_activity_at.desc(), Negotiation.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), int(total.scalar_one())


async def get_negotiation_detail(db: AsyncSession, negotiation_id: str) -> Negotiation:
    """Load a negotiation with its rounds in recording order."""
    result = await db.execute(
        select(Negotiation).where(Negotiation.id == negotiation_id).options(selectinload(Negotiation.rounds))
    )
    negotiation = result.scalar_one_or_none()
    if negotiation is None:
        raise NotFound(f"Negotiation {negotiation_id} not found")
    return negotiation


async def negotiation_statistics(
    db: AsyncSession, publisher_id: int, days: int = 30, now: Optional[datetime] = None
) -> NegotiationStats:
    """Per-status counts, average rounds and average duration over the last ``days`` days."""
    since = (now or datetime.utcnow()) - timedelta(days=days)
    result = await db.execute(
        select(
            Negotiation.status,
            Negotiation.current_round,
            Negotiation.initiated_at,
            Negotiation.completed_at,
        ).where(Negotiation.publisher_id == publisher_id, Negotiation.initiated_at >= since)
    )

    rounds: Dict[NegotiationStatus, List[int]] = defaultdict(list)
    durations: Dict[NegotiationStatus, List[float]] = defaultdict(list)
    for status, current_round, initiated_at, completed_at in result.all():
        rounds[status].append(current_round or 0)
        if completed_at is not None and initiated_at is not None:
            durations[status].append((completed_at - initiated_at).total_seconds())

    statistics = []
    for status in NegotiationStatus:
        if status not in rounds:
            continue
        status_durations = durations.get(status)
        statistics.append(
            StatusStatistics(
                status=status,
                count=len(rounds[status]),
                avg_rounds=sum(rounds[status]) / len(rounds[status]),
                avg_duration_seconds=(
                    sum(status_durations) / len(status_durations) if status_durations else None
                ),
            )
        )
    return NegotiationStats(period_days=days, statistics=statistics)

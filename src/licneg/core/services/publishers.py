"""
Publisher lookup and registration.
"""
from __future__ import annotations

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidState, NotFound
from ..models import Publisher
from ..schemas import PublisherCreate

logger = logging.getLogger(__name__)


async def get_publisher_by_hostname(db: AsyncSession, hostname: str) -> Publisher:
    result = await db.execute(select(Publisher).where(Publisher.hostname == hostname.lower()))
    publisher = result.scalar_one_or_none()
    if publisher is None:
        raise NotFound(f"Publisher not found for hostname: {hostname}")
    return publisher


async def list_publishers(db: AsyncSession) -> List[Publisher]:
    result = await db.execute(select(Publisher).order_by(Publisher.id))
    return list(result.scalars().all())


async def create_publisher(db: AsyncSession, req: PublisherCreate) -> Publisher:
    """Register a publisher; hostnames are unique and stored lower-case."""
    publisher = Publisher(name=req.name, hostname=req.hostname.lower())
    db.add(publisher)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise InvalidState(f"Publisher with hostname {req.hostname} already exists") from exc
    logger.info("Created publisher id=%s hostname=%s", publisher.id, publisher.hostname)
    return publisher

"""
Publisher API router.
"""
from __future__ import annotations

from fastapi import APIRouter, status

from ..dependencies import DatabaseSession, http_error
from ...core.errors import NegotiationError
from ...core.schemas import PublisherCreate, PublisherOut
from ...core.services import publishers as publishers_service


router = APIRouter(prefix="/publishers", tags=["publishers"])


@router.get("", response_model=list[PublisherOut])
async def list_publishers(db: DatabaseSession) -> list[PublisherOut]:
    """List registered publishers."""
    publishers = await publishers_service.list_publishers(db)
    return [PublisherOut.model_validate(publisher) for publisher in publishers]


@router.post("", response_model=PublisherOut, status_code=status.HTTP_201_CREATED)
async def create_publisher(req: PublisherCreate, db: DatabaseSession) -> PublisherOut:
    """Register a publisher by hostname."""
    try:
        publisher = await publishers_service.create_publisher(db, req)
    except NegotiationError as exc:
        raise http_error(exc) from exc
    return PublisherOut.model_validate(publisher)

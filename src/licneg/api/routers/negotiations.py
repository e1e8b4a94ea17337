"""
Negotiation API router.

Endpoints through which AI companies negotiate with publishers and
publishers inspect the results.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Path, Query

from ..dependencies import DatabaseSession, Engine, http_error
from ...core.errors import NegotiationError
from ...core.models import NegotiationStatus
from ...core.schemas import (
    AcceptNegotiationRequest,
    CounterProposalRequest,
    InitiateNegotiationRequest,
    NegotiationDetail,
    NegotiationListResponse,
    NegotiationOut,
    NegotiationOutcome,
    NegotiationStats,
    PolicyOut,
    RejectNegotiationRequest,
)
from ...core.services import negotiations as negotiations_service
from ...core.services import publishers as publishers_service
from ...core.services.license_generator import policy_out


router = APIRouter(prefix="/negotiations", tags=["negotiations"])


@router.post("/initiate", response_model=NegotiationOutcome)
async def initiate_negotiation(
    req: InitiateNegotiationRequest,
    db: DatabaseSession,
    engine: Engine,
) -> NegotiationOutcome:
    """Open a negotiation with the publisher serving ``publisher_hostname``."""
    context = dict(req.context)
    if req.url_patterns:
        context["url_patterns"] = req.url_patterns
    try:
        publisher = await publishers_service.get_publisher_by_hostname(db, req.publisher_hostname)
        return await engine.initiate(
            req.proposed_terms,
            publisher.id,
            req.client_name,
            context=context,
            client_id=req.client_id,
        )
    except NegotiationError as exc:
        raise http_error(exc) from exc


@router.get("/analytics", response_model=NegotiationStats)
async def negotiation_analytics(
    db: DatabaseSession,
    publisher_id: int = Query(..., description="Publisher to report on."),
    days: int = Query(30, ge=1, le=365),
) -> NegotiationStats:
    """Per-status negotiation statistics for a publisher."""
    return await negotiations_service.negotiation_statistics(db, publisher_id, days)


@router.get("/publisher/{publisher_id}", response_model=NegotiationListResponse)
async def list_publisher_negotiations(
    db: DatabaseSession,
    publisher_id: int = Path(..., description="Identifier of the publisher."),
    status: Optional[NegotiationStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> NegotiationListResponse:
    """List a publisher's negotiations, most recently active first."""
    negotiations, total = await negotiations_service.list_negotiations(db, publisher_id, status, limit, offset)
    return NegotiationListResponse(
        negotiations=[NegotiationOut.model_validate(n) for n in negotiations],
        count=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{negotiation_id}", response_model=NegotiationDetail)
async def get_negotiation(
    db: DatabaseSession,
    negotiation_id: str = Path(..., description="Identifier of the negotiation."),
) -> NegotiationDetail:
    """Get a negotiation with its full round history."""
    try:
        negotiation = await negotiations_service.get_negotiation_detail(db, negotiation_id)
    except NegotiationError as exc:
        raise http_error(exc) from exc
    return NegotiationDetail.model_validate(negotiation)


@router.post("/{negotiation_id}/counter", response_model=NegotiationOutcome)
async def counter_negotiation(
    req: CounterProposalRequest,
    engine: Engine,
    negotiation_id: str = Path(..., description="Identifier of the negotiation."),
) -> NegotiationOutcome:
    """Submit the client's next counter-proposal."""
    try:
        return await engine.process_counter_proposal(negotiation_id, req.counter_terms)
    except NegotiationError as exc:
        raise http_error(exc) from exc


@router.post("/{negotiation_id}/accept", response_model=NegotiationOutcome)
async def accept_negotiation(
    req: AcceptNegotiationRequest,
    engine: Engine,
    negotiation_id: str = Path(..., description="Identifier of the negotiation."),
) -> NegotiationOutcome:
    """Accept the negotiation, optionally with explicit final terms."""
    try:
        return await engine.accept(negotiation_id, req.final_terms)
    except NegotiationError as exc:
        raise http_error(exc) from exc


@router.post("/{negotiation_id}/reject", response_model=NegotiationOutcome)
async def reject_negotiation(
    req: RejectNegotiationRequest,
    engine: Engine,
    negotiation_id: str = Path(..., description="Identifier of the negotiation."),
) -> NegotiationOutcome:
    """Reject the negotiation."""
    try:
        return await engine.reject(negotiation_id, req.reason)
    except NegotiationError as exc:
        raise http_error(exc) from exc


@router.post("/{negotiation_id}/generate-license", response_model=PolicyOut)
async def generate_license(
    engine: Engine,
    negotiation_id: str = Path(..., description="Identifier of the negotiation."),
) -> PolicyOut:
    """Create the license policy for an accepted negotiation."""
    try:
        policy = await engine.generate_license(negotiation_id)
    except NegotiationError as exc:
        raise http_error(exc) from exc
    return policy_out(policy)

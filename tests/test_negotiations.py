"""
Tests for negotiation listing, detail and analytics queries.
"""
from datetime import timedelta

import pytest

from licneg.core.errors import NotFound
from licneg.core.models import NegotiationStatus
from licneg.core.services import negotiations as negotiations_service

OPENING_OFFER = {"price_per_fetch_micro": 1000, "token_ttl_seconds": 600, "purposes": ["inference"]}


@pytest.mark.asyncio
async def test_list_detail_and_statistics(engine, make_strategy, publisher, session_factory, clock) -> None:
    await make_strategy()
    accepted = await engine.initiate({"price_per_fetch_micro": 5000}, publisher.id, "OpenAI")
    open_one = await engine.initiate(OPENING_OFFER, publisher.id, "Anthropic")
    clock.advance(minutes=10)
    rejected = await engine.initiate(OPENING_OFFER, publisher.id, "Google")
    clock.advance(minutes=5)
    await engine.process_counter_proposal(rejected.negotiation_id, OPENING_OFFER)
    await engine.reject(rejected.negotiation_id, "No deal")

    async with session_factory() as db:
        everything, total = await negotiations_service.list_negotiations(db, publisher.id)
        assert total == 3
        assert everything[0].id == rejected.negotiation_id

        only_open, open_total = await negotiations_service.list_negotiations(
            db, publisher.id, status=NegotiationStatus.negotiating
        )
        assert open_total == 1
        assert [n.id for n in only_open] == [open_one.negotiation_id]

        page, _ = await negotiations_service.list_negotiations(db, publisher.id, limit=1, offset=1)
        assert len(page) == 1

        detail = await negotiations_service.get_negotiation_detail(db, rejected.negotiation_id)
        assert [r.round_number for r in detail.rounds] == [0, 1, 1, 2, -1]

        with pytest.raises(NotFound):
            await negotiations_service.get_negotiation_detail(db, "missing")

        stats = await negotiations_service.negotiation_statistics(db, publisher.id, days=7, now=clock.now)

    by_status = {s.status: s for s in stats.statistics}
    assert stats.period_days == 7
    assert set(by_status) == {NegotiationStatus.accepted, NegotiationStatus.negotiating, NegotiationStatus.rejected}
    assert by_status[NegotiationStatus.accepted].avg_duration_seconds == 0.0
    assert by_status[NegotiationStatus.rejected].avg_rounds == 1.0
    assert by_status[NegotiationStatus.rejected].avg_duration_seconds == 300.0
    assert by_status[NegotiationStatus.negotiating].avg_duration_seconds is None

    async with session_factory() as db:
        later = await negotiations_service.negotiation_statistics(
            db, publisher.id, days=7, now=clock.now + timedelta(days=30)
        )
    assert later.statistics == []

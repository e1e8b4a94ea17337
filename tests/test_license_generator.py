"""
Tests for license policy generation from accepted negotiations.
"""
import pytest

from licneg.core.errors import InvalidState, NotFound
from licneg.core.models import Negotiation, NotificationType, Policy
from licneg.core.services.license_generator import build_policy_json, generate_license_from_negotiation

OPENING_OFFER = {"price_per_fetch_micro": 1000, "token_ttl_seconds": 600, "purposes": ["inference"]}


def test_build_policy_json_applies_defaults() -> None:
    policy = build_policy_json("news.example.com", "OpenAI", {"price_per_fetch_micro": 2500}, None, "https://lic/authorize", "neg-1")

    assert policy["publisher"] == "news.example.com"
    assert policy["default"] == {"allow": False, "action": "redirect"}
    assert policy["redirect_url"] == "https://lic/authorize"
    assert policy["negotiated"] is True
    assert policy["negotiation_id"] == "neg-1"
    rule = policy["rules"][0]
    assert rule["agent"] == "OpenAI"
    assert rule["purpose"] == ["inference"]
    assert rule["price_per_fetch"] == pytest.approx(0.0025)
    assert rule["token_ttl_seconds"] == 600
    assert rule["max_rps"] == 10
    assert rule["url_patterns"] is None


@pytest.mark.asyncio
async def test_engine_generates_license_once(engine, make_strategy, publisher, session_factory, notifier) -> None:
    await make_strategy()
    opened = await engine.initiate(
        OPENING_OFFER, publisher.id, "OpenAI", context={"url_patterns": ["/articles/*", "/news/*"]}
    )
    await engine.accept(opened.negotiation_id, {"price_per_fetch_micro": 3000, "burst_rps": 25})

    policy = await engine.generate_license(opened.negotiation_id)
    again = await engine.generate_license(opened.negotiation_id)

    assert again.id == policy.id
    assert policy.url_pattern == "/articles/*"
    assert policy.name == "Negotiated License - OpenAI"
    rule = policy.policy_json["rules"][0]
    assert rule["price_per_fetch"] == pytest.approx(0.003)
    assert rule["max_rps"] == 25
    assert rule["url_patterns"] == ["/articles/*", "/news/*"]
    assert policy.policy_json["redirect_url"] == "http://licensing-api:3000/authorize"

    async with session_factory() as db:
        negotiation = await db.get(Negotiation, opened.negotiation_id)
        assert negotiation.generated_policy_id == policy.id
    assert notifier.types.count(NotificationType.license_created) == 1
    assert notifier.events[-1][2]["policy_id"] == policy.id


@pytest.mark.asyncio
async def test_license_requires_accepted_negotiation(engine, make_strategy, publisher, session_factory) -> None:
    await make_strategy()
    opened = await engine.initiate(OPENING_OFFER, publisher.id, "OpenAI")

    with pytest.raises(InvalidState):
        await engine.generate_license(opened.negotiation_id)

    async with session_factory() as db:
        with pytest.raises(NotFound):
            await generate_license_from_negotiation(db, "missing")
        assert await db.get(Policy, 1) is None

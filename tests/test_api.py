"""
Integration tests for the HTTP API.

The application runs in-process over ``ASGITransport`` against a SQLite
file database. LiteLLM is never reached: ``acompletion_with_retry`` is
replaced with a fake that returns a canned counter-offer.
"""
import json

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from licneg.api.main import create_app
from licneg.core.db import dispose_engine, init_db_schema

COUNTER_OFFER = {
    "price": 0.0035,
    "pricing_model": "per_fetch",
    "terms": {"price_per_fetch_micro": 3500, "token_ttl_seconds": 600},
    "reasoning": "Premium archive access for a tier 1 partner.",
    "tone": "neutral",
}

STRATEGY = {
    "partner_type": "tier1_ai",
    "license_types": [1],
    "pricing_model": "per_fetch",
    "preferred_price_per_fetch_micro": 2000,
    "preferred_token_ttl_seconds": 600,
    "preferred_purposes": ["inference"],
    "auto_accept_threshold": 0.9,
    "deal_breakers": [{"field": "price_per_fetch_micro", "operator": "<", "value": 100}],
    "max_rounds": 5,
}

OPENING_OFFER = {"price_per_fetch_micro": 1000, "token_ttl_seconds": 600, "purposes": ["inference"]}


@pytest.fixture(autouse=True)
def mock_llm(monkeypatch: pytest.MonkeyPatch) -> dict:
    state = {"content": json.dumps(COUNTER_OFFER), "calls": 0}

    async def _fake_acompletion_with_retry(**kwargs):  # type: ignore[no-untyped-def]
        state["calls"] += 1
        return {
            "choices": [{"message": {"content": state["content"]}}],
            "usage": {"total_tokens": 321},
        }

    monkeypatch.setattr(
        "licneg.core.services.llm_provider.acompletion_with_retry",
        _fake_acompletion_with_retry,
    )
    return state


@pytest.fixture()
async def app() -> FastAPI:
    """Create and initialise the FastAPI app for testing."""
    application = create_app()
    await init_db_schema()
    yield application
    await dispose_engine()


@pytest.fixture()
async def client(app: FastAPI):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


async def _setup_publisher(client: AsyncClient) -> int:
    res = await client.post("/publishers", json={"name": "Example News", "hostname": "News.Example.com"})
    assert res.status_code == 201
    publisher = res.json()
    assert publisher["hostname"] == "news.example.com"
    res = await client.post(f"/strategies/publisher/{publisher['id']}", json=STRATEGY)
    assert res.status_code == 201
    return publisher["id"]


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_full_negotiation_flow(client: AsyncClient, mock_llm: dict) -> None:
    publisher_id = await _setup_publisher(client)

    res = await client.post(
        "/negotiations/initiate",
        json={
            "publisher_hostname": "news.example.com",
            "client_name": "OpenAI",
            "proposed_terms": OPENING_OFFER,
            "url_patterns": ["/articles/*"],
        },
    )
    assert res.status_code == 200
    opened = res.json()
    assert opened["status"] == "negotiating"
    assert opened["round"] == 1
    assert opened["counter_offer"]["price"] == COUNTER_OFFER["price"]
    negotiation_id = opened["negotiation_id"]

    res = await client.post(
        f"/negotiations/{negotiation_id}/counter",
        json={"counter_terms": {"price_per_fetch_micro": 1500, "token_ttl_seconds": 600}},
    )
    assert res.status_code == 200
    assert res.json()["round"] == 2

    res = await client.get(f"/negotiations/{negotiation_id}")
    assert res.status_code == 200
    detail = res.json()
    assert detail["current_round"] == 1
    assert detail["context"]["url_patterns"] == ["/articles/*"]
    assert [(r["round_number"], r["actor"]) for r in detail["rounds"]] == [
        (0, "client"),
        (1, "publisher"),
        (1, "client"),
        (2, "publisher"),
    ]
    assert detail["rounds"][1]["llm_tokens_used"] == 321

    res = await client.post(f"/negotiations/{negotiation_id}/accept", json={})
    assert res.status_code == 200
    assert res.json()["status"] == "accepted"
    assert res.json()["terms"] == {"price_per_fetch_micro": 1500, "token_ttl_seconds": 600}

    res = await client.post(f"/negotiations/{negotiation_id}/reject", json={"reason": "too late"})
    assert res.status_code == 409

    res = await client.post(f"/negotiations/{negotiation_id}/generate-license")
    assert res.status_code == 200
    policy = res.json()
    assert policy["negotiation_id"] == negotiation_id
    assert policy["policy_json"]["publisher"] == "news.example.com"
    assert policy["policy_json"]["rules"][0]["url_patterns"] == ["/articles/*"]

    res = await client.get("/notifications", params={"publisher_id": publisher_id})
    assert res.status_code == 200
    notifications = res.json()
    assert notifications["unread_count"] == 4
    assert {n["type"] for n in notifications["notifications"]} == {
        "negotiation_initiated",
        "negotiation_round",
        "negotiation_accepted",
        "license_created",
    }

    first_id = notifications["notifications"][0]["id"]
    res = await client.post(f"/notifications/{first_id}/read")
    assert res.status_code == 200
    assert res.json()["is_read"] is True
    res = await client.get("/notifications", params={"publisher_id": publisher_id, "is_read": "false"})
    assert res.json()["unread_count"] == 3

    res = await client.get(f"/negotiations/publisher/{publisher_id}", params={"status": "accepted"})
    assert res.status_code == 200
    assert res.json()["count"] == 1

    res = await client.get("/negotiations/analytics", params={"publisher_id": publisher_id})
    assert res.status_code == 200
    stats = res.json()["statistics"]
    assert [(s["status"], s["count"]) for s in stats] == [("accepted", 1)]
    assert mock_llm["calls"] == 2


@pytest.mark.asyncio
async def test_deal_breaker_rejection_is_a_normal_response(client: AsyncClient, mock_llm: dict) -> None:
    await _setup_publisher(client)

    res = await client.post(
        "/negotiations/initiate",
        json={
            "publisher_hostname": "news.example.com",
            "client_name": "OpenAI",
            "proposed_terms": {"price_per_fetch_micro": 50},
        },
    )
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "rejected"
    assert body["round"] == 0
    assert "price_per_fetch_micro < 100" in body["message"]
    assert mock_llm["calls"] == 0


@pytest.mark.asyncio
async def test_error_translation(client: AsyncClient, mock_llm: dict) -> None:
    await _setup_publisher(client)
    initiate = {
        "publisher_hostname": "news.example.com",
        "client_name": "OpenAI",
        "proposed_terms": OPENING_OFFER,
    }

    res = await client.post("/negotiations/initiate", json={**initiate, "publisher_hostname": "unknown.example"})
    assert res.status_code == 404

    res = await client.post("/negotiations/initiate", json={**initiate, "client_name": "Tiny Labs"})
    assert res.status_code == 404
    assert "No matching negotiation strategy" in res.json()["detail"]

    res = await client.post("/negotiations/initiate", json={**initiate, "context": {"license_type": 7}})
    assert res.status_code == 404
    assert "No matching negotiation strategy" in res.json()["detail"]

    res = await client.post("/negotiations/initiate", json={**initiate, "proposed_terms": {"price": -1}})
    assert res.status_code == 422

    res = await client.post("/negotiations/missing/counter", json={"counter_terms": OPENING_OFFER})
    assert res.status_code == 404

    mock_llm["content"] = "I would rather not say."
    res = await client.post("/negotiations/initiate", json=initiate)
    assert res.status_code == 502

    res = await client.get("/negotiations/publisher/1")
    assert res.json()["count"] == 0


@pytest.mark.asyncio
async def test_strategy_management(client: AsyncClient) -> None:
    publisher_id = await _setup_publisher(client)

    res = await client.get(f"/strategies/publisher/{publisher_id}")
    assert res.status_code == 200
    strategies = res.json()
    assert len(strategies) == 1
    strategy_id = strategies[0]["id"]
    assert strategies[0]["deal_breakers"] == STRATEGY["deal_breakers"]

    res = await client.put(f"/strategies/{strategy_id}", json={"max_rounds": 3, "negotiation_style": "firm"})
    assert res.status_code == 200
    assert res.json()["max_rounds"] == 3

    res = await client.put(f"/strategies/{strategy_id}", json={})
    assert res.status_code == 400

    res = await client.put(f"/strategies/{strategy_id}", json={"min_price": 5, "preferred_price": 1})
    assert res.status_code == 422

    res = await client.post(
        f"/strategies/publisher/{publisher_id}",
        json={"partner_type": "specific_partner", "license_types": [1]},
    )
    assert res.status_code == 422

    res = await client.delete(f"/strategies/{strategy_id}")
    assert res.status_code == 204
    res = await client.delete(f"/strategies/{strategy_id}")
    assert res.status_code == 404

    res = await client.get("/publishers")
    assert [p["hostname"] for p in res.json()] == ["news.example.com"]
    res = await client.post("/publishers", json={"name": "Dup", "hostname": "news.example.com"})
    assert res.status_code == 409

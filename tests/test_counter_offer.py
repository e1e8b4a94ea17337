"""
Tests for counter-offer prompts, generation and the LLM provider layer.
"""
import asyncio
import json
from types import SimpleNamespace

import pytest

from licneg.core.errors import InvalidLLMResponse
from licneg.core.models import Negotiation, RoundAction, RoundActor
from licneg.core.services import llm_utils
from licneg.core.services.counter_offer import (
    DEFAULT_SYSTEM_PROMPT,
    CounterOfferGenerator,
    PartnerInfo,
    build_negotiation_prompt,
)
from licneg.core.services.llm_provider import LLMProvider, ProviderRegistry
from licneg.core.services.rounds import list_rounds

from .fakes import FakeLLM


def _strategy(**overrides):
    values = dict(
        id=1,
        pricing_model="per_fetch",
        negotiation_style="firm",
        min_price=0.001,
        preferred_price=0.002,
        max_price=0.01,
        auto_accept_threshold=0.9,
        deal_breakers=[{"field": "burst_rps", "operator": ">", "value": 50}],
        preferred_terms={"attribution": True},
        preferred_price_per_fetch_micro=2000,
        preferred_token_ttl_seconds=600,
        preferred_burst_rps=None,
        preferred_purposes=[],
        system_prompt=None,
        llm_provider="openai",
        llm_model="gpt-4",
        llm_temperature=0.2,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


PARTNER = PartnerInfo(partner_type="tier1_ai", partner_name="OpenAI", use_case="training")


def test_prompt_embeds_strategy_partner_and_proposal() -> None:
    prompt = build_negotiation_prompt({"price_per_fetch_micro": 1000}, _strategy(), 3, PARTNER)

    assert "- Partner: OpenAI (Tier 1 AI Company" in prompt
    assert "- Use Case: training" in prompt
    assert "- Negotiation Style: firm" in prompt
    assert "- Preferred Price: $0.002 per fetch" in prompt
    assert "- burst_rps > 50" in prompt
    assert '"attribution": true' in prompt
    assert '"preferred_price_per_fetch_micro": 2000' in prompt
    assert "preferred_burst_rps" not in prompt
    assert "**Current Round:** 3" in prompt
    assert '"price_per_fetch_micro": 1000' in prompt


def test_prompt_without_deal_breakers() -> None:
    prompt = build_negotiation_prompt({}, _strategy(deal_breakers=[]), 1, PartnerInfo(None, None, None))
    assert "- None specified" in prompt
    assert "- Partner: AI Company" in prompt


@pytest.mark.asyncio
async def test_generator_records_publisher_round(session_factory, make_strategy, publisher) -> None:
    strategy = await make_strategy()
    fake = FakeLLM(model="gpt-4")
    generator = CounterOfferGenerator(ProviderRegistry(factory=lambda provider, model, temperature: fake))

    async with session_factory() as db:
        db.add(
            Negotiation(
                id="neg-1",
                publisher_id=publisher.id,
                client_name="OpenAI",
                strategy_id=strategy.id,
                initial_proposal={"price_per_fetch_micro": 1000},
            )
        )
        offer = await generator.generate(db, "neg-1", {"price_per_fetch_micro": 1000}, strategy, 1, PARTNER)
        await db.commit()

    assert offer.pricing_model == "per_fetch"
    assert fake.calls[0]["system"] == DEFAULT_SYSTEM_PROMPT
    async with session_factory() as db:
        rounds = await list_rounds(db, "neg-1")
    assert len(rounds) == 1
    assert (rounds[0].round_number, rounds[0].actor, rounds[0].action) == (1, RoundActor.publisher, RoundAction.counter)
    assert rounds[0].proposed_terms["price"] == offer.price
    assert rounds[0].reasoning == offer.reasoning
    assert rounds[0].llm_model == "gpt-4"


@pytest.mark.asyncio
async def test_generator_rejects_unexpected_shape() -> None:
    fake = FakeLLM(responses=[{"terms": {}, "reasoning": "no price"}])
    generator = CounterOfferGenerator(ProviderRegistry(factory=lambda provider, model, temperature: fake))

    with pytest.raises(InvalidLLMResponse):
        await generator.generate(None, "neg-1", {}, _strategy(system_prompt="Be brief."), 1, PARTNER)
    assert fake.calls[0]["system"] == "Be brief."


def _fake_completion(content, usage=None):
    async def _fake(**kwargs):
        _fake.calls.append(kwargs)
        response = {"choices": [{"message": {"content": content}}]}
        if usage is not None:
            response["usage"] = usage
        return response

    _fake.calls = []
    return _fake


@pytest.mark.asyncio
async def test_provider_complete_json(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_completion(
        json.dumps({"price": 0.003, "pricing_model": "per_fetch"}),
        usage={"prompt_tokens": 30, "completion_tokens": 12},
    )
    monkeypatch.setattr("licneg.core.services.llm_provider.acompletion_with_retry", fake)

    result = await LLMProvider("openai", "gpt-4", temperature=0.3).complete_json("system", "user")

    assert result.parsed == {"price": 0.003, "pricing_model": "per_fetch"}
    assert result.tokens_used == 42
    assert result.model == "gpt-4"
    call = fake.calls[0]
    assert call["model"] == "openai/gpt-4"
    assert call["temperature"] == 0.3
    assert call["response_format"] == {"type": "json_object"}
    assert call["timeout"] == 30
    assert call["attempts"] == 1
    assert call["messages"][0]["content"].endswith("You MUST respond with valid JSON only.")


@pytest.mark.asyncio
async def test_anthropic_provider_sets_max_tokens(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_completion('Here you go: {"price": 1, "pricing_model": "per_query"}')
    monkeypatch.setattr("licneg.core.services.llm_provider.acompletion_with_retry", fake)

    result = await LLMProvider("anthropic", "claude-3-5-sonnet").complete_json("system", "user")

    assert result.parsed["pricing_model"] == "per_query"
    assert result.tokens_used == 0
    assert fake.calls[0]["model"] == "anthropic/claude-3-5-sonnet"
    assert fake.calls[0]["max_tokens"] == 4096
    assert "response_format" not in fake.calls[0]


@pytest.mark.asyncio
async def test_provider_raises_on_non_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "licneg.core.services.llm_provider.acompletion_with_retry", _fake_completion("I cannot help with that.")
    )

    with pytest.raises(InvalidLLMResponse) as excinfo:
        await LLMProvider("openai", "gpt-4").complete_json("system", "user")
    assert excinfo.value.raw == "I cannot help with that."


def test_unsupported_provider() -> None:
    with pytest.raises(ValueError):
        LLMProvider("gemini", "pro")


def test_registry_caches_per_provider_and_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_DEFAULT_PROVIDER", "anthropic")
    monkeypatch.setenv("LLM_DEFAULT_MODEL", "claude-3-5-sonnet")
    registry = ProviderRegistry()

    first = registry.for_strategy(_strategy())
    second = registry.get("openai", "gpt-4")
    fallback = registry.for_strategy(_strategy(llm_provider=None, llm_model=None))

    assert first is second
    assert first.temperature == 0.2
    assert (fallback.provider, fallback.model) == ("anthropic", "claude-3-5-sonnet")
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_completion_retries_transient_errors_only(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    async def _flaky(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            raise asyncio.TimeoutError()
        return {"choices": [{"message": {"content": "{}"}}]}

    monkeypatch.setattr(llm_utils, "acompletion", _flaky)
    response = await llm_utils.acompletion_with_retry(timeout=5, attempts=2, model="openai/gpt-4", messages=[])
    assert llm_utils.extract_completion_text(response) == "{}"
    assert len(calls) == 2

    async def _broken(**kwargs):
        calls.append(kwargs)
        raise ValueError("bad request")

    calls.clear()
    monkeypatch.setattr(llm_utils, "acompletion", _broken)
    with pytest.raises(ValueError):
        await llm_utils.acompletion_with_retry(timeout=5, attempts=3, model="openai/gpt-4", messages=[])
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_completion_is_bounded_by_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _hang(**kwargs):
        await asyncio.sleep(10)

    monkeypatch.setattr(llm_utils, "acompletion", _hang)
    with pytest.raises(asyncio.TimeoutError):
        await llm_utils.acompletion_with_retry(timeout=0.05, attempts=1, model="openai/gpt-4", messages=[])


def test_extract_json_object_handles_fenced_output() -> None:
    assert llm_utils.extract_json_object('```json\n{"price": 2}\n```') == {"price": 2}
    assert llm_utils.extract_json_object("[1, 2]") is None
    assert llm_utils.extract_json_object("no json here") is None

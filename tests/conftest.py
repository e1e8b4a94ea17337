"""
Shared fixtures for the negotiation agent tests.

Every test gets its own SQLite database file, a fake LLM client behind a
``ProviderRegistry`` and a notifier that records what it is told, so
tests never reach a real model provider.
"""
from typing import Any, Callable, Dict

import pytest

from licneg.core.config import get_settings
from licneg.core.db import dispose_engine, get_async_session_factory, get_engine, init_db_schema
from licneg.core.models import NegotiationStrategy, PartnerType, Publisher
from licneg.core.services.engine import NegotiationEngine
from licneg.core.services.llm_provider import ProviderRegistry

from .fakes import FakeClock, FakeLLM, RecordingNotifier


@pytest.fixture(autouse=True)
def set_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Point the app at a per-test SQLite file and drop cached settings and engines."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("LICNEG_ENV", "test")
    monkeypatch.setenv("LLM_RETRY_ATTEMPTS", "1")
    monkeypatch.delenv("LANGFUSE_PUBLIC_KEY", raising=False)
    monkeypatch.delenv("LANGFUSE_SECRET_KEY", raising=False)
    get_settings.cache_clear()
    get_async_session_factory.cache_clear()
    get_engine.cache_clear()


@pytest.fixture()
async def session_factory(set_test_env):
    await init_db_schema()
    yield get_async_session_factory()
    await dispose_engine()


@pytest.fixture()
async def publisher(session_factory) -> Publisher:
    async with session_factory() as db:
        record = Publisher(name="Example News", hostname="news.example.com")
        db.add(record)
        await db.commit()
        return record


@pytest.fixture()
def make_strategy(session_factory, publisher) -> Callable[..., Any]:
    """Factory storing a strategy for the test publisher; keyword arguments override defaults."""

    async def _make(**overrides: Any) -> NegotiationStrategy:
        values: Dict[str, Any] = dict(
            partner_type=PartnerType.tier1_ai,
            partner_name=None,
            license_types=[1],
            pricing_model="per_fetch",
            preferred_price_per_fetch_micro=2000,
            preferred_token_ttl_seconds=600,
            preferred_burst_rps=10,
            preferred_purposes=["inference"],
            auto_accept_threshold=0.9,
            deal_breakers=[],
            max_rounds=5,
            timeout_seconds=3600,
            llm_provider="openai",
            llm_model="gpt-4",
        )
        values.update(overrides)
        async with session_factory() as db:
            strategy = NegotiationStrategy(publisher_id=publisher.id, **values)
            db.add(strategy)
            await db.commit()
            return strategy

    return _make


@pytest.fixture()
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture()
def registry(fake_llm: FakeLLM) -> ProviderRegistry:
    return ProviderRegistry(factory=lambda provider, model, temperature: fake_llm)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine(session_factory, registry, notifier, clock) -> NegotiationEngine:
    return NegotiationEngine(session_factory, registry, notifier=notifier, clock=clock)

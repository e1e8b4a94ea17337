"""
Unified LLM provider used for counter-offer generation.

Each strategy names a provider and a model. ``LLMProvider`` hides the
difference between backends (OpenAI and Anthropic, both reached through
LiteLLM) and reports the model, token usage and latency of every call.
``ProviderRegistry`` caches providers per ``(provider, model)`` and is
handed to the engine at construction so tests can substitute fakes.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from langfuse import Langfuse

from ..config import Settings, get_settings
from ..errors import InvalidLLMResponse
from .llm_utils import (
    acompletion_with_retry,
    extract_completion_text,
    extract_json_object,
    extract_token_usage,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "anthropic")
JSON_ONLY_SUFFIX = "\n\nYou MUST respond with valid JSON only."


@dataclass
class Completion:
    content: str
    tokens_used: int
    model: str
    response_time_ms: int


@dataclass
class JSONCompletion(Completion):
    parsed: Dict[str, Any] = field(default_factory=dict)


class CompletionClient(Protocol):
    """Capability the counter-offer generator depends on."""

    model: str

    async def complete_json(self, system_prompt: str, user_prompt: str, **options: Any) -> JSONCompletion:
        ...


_LANGFUSE_CLIENT: Optional[Any] = None


def _get_langfuse_client(settings: Settings) -> Optional[Any]:
    global _LANGFUSE_CLIENT
    if _LANGFUSE_CLIENT is not None:
        return _LANGFUSE_CLIENT
    if not settings.langfuse_public_key or not settings.langfuse_secret_key:
        return None
    _LANGFUSE_CLIENT = Langfuse(
        public_key=settings.langfuse_public_key,
        secret_key=settings.langfuse_secret_key,
        host=settings.langfuse_host,
    )
    return _LANGFUSE_CLIENT


def _log_langfuse_generation(
    settings: Settings,
    name: str,
    model: str,
    messages: List[Dict[str, str]],
    output: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    try:
        client = _get_langfuse_client(settings)
        if not client:
            return
        trace = client.trace(name=name, input=messages, metadata=metadata or {})
        trace.generation(name=name, model=model, input=messages, output=output, metadata=metadata or {})
    except Exception as exc:  # noqa: BLE001
        logger.debug("Langfuse logging failed: %s", exc)


class LLMProvider:
    """Completion client bound to one provider and model."""

    def __init__(
        self,
        provider: str,
        model: str,
        temperature: float = 0.7,
        settings: Optional[Settings] = None,
    ) -> None:
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.settings = settings or get_settings()

    @property
    def litellm_model(self) -> str:
        if self.model.startswith(f"{self.provider}/"):
            return self.model
        return f"{self.provider}/{self.model}"

    def _api_key(self) -> Optional[str]:
        if self.provider == "openai":
            return self.settings.openai_api_key
        return self.settings.anthropic_api_key

    async def complete(self, system_prompt: str, user_prompt: str, **options: Any) -> Completion:
        """Return the model's text answer with token usage and latency."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        completion_kwargs: Dict[str, Any] = {
            "model": self.litellm_model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if self.provider == "anthropic":
            completion_kwargs["max_tokens"] = options.pop("max_tokens", 4096)
        completion_kwargs.update(options)
        api_key = self._api_key()
        if api_key:
            completion_kwargs["api_key"] = api_key
        if self.settings.litellm_base_url:
            completion_kwargs["base_url"] = self.settings.litellm_base_url

        started = time.monotonic()
        try:
            response = await acompletion_with_retry(
                timeout=self.settings.llm_timeout_seconds,
                attempts=self.settings.llm_retry_attempts,
                **completion_kwargs,
            )
        except Exception as exc:
            logger.error("LLM completion error provider=%s model=%s: %s", self.provider, self.model, exc)
            raise
        elapsed_ms = int((time.monotonic() - started) * 1000)

        content = extract_completion_text(response) or ""
        tokens_used = extract_token_usage(response)
        logger.info(
            "LLM completion provider=%s model=%s tokens=%s response_time_ms=%s",
            self.provider,
            self.model,
            tokens_used,
            elapsed_ms,
        )
        _log_langfuse_generation(
            self.settings,
            "counter_offer",
            self.litellm_model,
            messages,
            content,
            metadata={"tokens_used": tokens_used, "response_time_ms": elapsed_ms},
        )
        return Completion(
            content=content,
            tokens_used=tokens_used,
            model=self.model,
            response_time_ms=elapsed_ms,
        )

    async def complete_json(self, system_prompt: str, user_prompt: str, **options: Any) -> JSONCompletion:
        """Like ``complete`` but require a JSON object answer.

        :raises InvalidLLMResponse: if the answer does not decode to an object.
        """
        if self.provider == "openai":
            options.setdefault("response_format", {"type": "json_object"})
        result = await self.complete(system_prompt + JSON_ONLY_SUFFIX, user_prompt, **options)
        parsed = extract_json_object(result.content)
        if parsed is None:
            logger.error("Failed to parse LLM JSON response model=%s", self.model)
            raise InvalidLLMResponse("LLM did not return valid JSON", raw=result.content)
        return JSONCompletion(
            content=result.content,
            tokens_used=result.tokens_used,
            model=result.model,
            response_time_ms=result.response_time_ms,
            parsed=parsed,
        )


ProviderFactory = Callable[[str, str, float], CompletionClient]


class ProviderRegistry:
    """Cache of completion clients keyed by ``(provider, model)``.

    Clients are stateless, so sharing one instance across concurrent
    negotiations is safe. The temperature of the first request for a key
    wins.
    """

    def __init__(self, factory: Optional[ProviderFactory] = None) -> None:
        self._factory: ProviderFactory = factory or (
            lambda provider, model, temperature: LLMProvider(provider, model, temperature)
        )
        self._providers: Dict[Tuple[str, str], CompletionClient] = {}

    def get(self, provider: str, model: str, temperature: float = 0.7) -> CompletionClient:
        key = (provider, model)
        client = self._providers.get(key)
        if client is None:
            client = self._factory(provider, model, temperature)
            self._providers[key] = client
        return client

    def for_strategy(self, strategy: Any) -> CompletionClient:
        provider = strategy.llm_provider
        model = strategy.llm_model
        if not provider or not model:
            settings = get_settings()
            provider = provider or settings.llm_default_provider
            model = model or settings.llm_default_model
        temperature = strategy.llm_temperature if strategy.llm_temperature is not None else 0.7
        return self.get(provider, model, float(temperature))

    def __len__(self) -> int:
        return len(self._providers)

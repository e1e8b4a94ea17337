"""
Shared helpers for LiteLLM calls and response parsing.

Completion calls are bounded by a timeout and retried only on transient
provider errors. Malformed output is never retried here: callers decide
what an unparseable response means.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

TRANSIENT_LLM_ERRORS = (
    asyncio.TimeoutError,
    APIConnectionError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)


async def acompletion_with_retry(*, timeout: float, attempts: int = 2, **kwargs: Any) -> Any:
    """Call ``litellm.acompletion`` with a hard timeout and bounded retries."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(min=1, max=8),
        retry=retry_if_exception_type(TRANSIENT_LLM_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            return await asyncio.wait_for(acompletion(**kwargs), timeout=timeout)


def extract_completion_text(response: Any) -> Optional[str]:
    """Extract the text content from a LiteLLM completion response."""
    try:
        return response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        pass
    try:
        return response.choices[0].message.content
    except (AttributeError, IndexError):
        return None


def extract_token_usage(response: Any) -> int:
    """Return total tokens used by a completion, 0 when the provider reports none."""
    usage = None
    if isinstance(response, dict):
        usage = response.get("usage")
    else:
        usage = getattr(response, "usage", None)
    if usage is None:
        return 0
    if not isinstance(usage, dict):
        usage = {
            "total_tokens": getattr(usage, "total_tokens", None),
            "prompt_tokens": getattr(usage, "prompt_tokens", None),
            "completion_tokens": getattr(usage, "completion_tokens", None),
        }
    total = usage.get("total_tokens")
    if total:
        return int(total)
    return int(usage.get("prompt_tokens") or 0) + int(usage.get("completion_tokens") or 0)


def extract_json_object(content: str) -> Optional[dict]:
    """Best-effort extraction of a JSON object from model output.

    Handles plain JSON and JSON wrapped in prose or markdown fences. Returns
    ``None`` when no object can be decoded.
    """
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    if not isinstance(content, str):
        return None
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        parsed = json.loads(content[start : end + 1])
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None

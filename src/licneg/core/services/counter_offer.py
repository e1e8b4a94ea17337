"""
LLM-generated counter-offers.

The generator renders the negotiation state and the publisher's strategy
into a prompt, asks the strategy's model for a JSON counter-offer,
validates it and records it as a publisher round. Nothing is recorded
when the model output cannot be validated.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import orjson
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidLLMResponse
from ..models import RoundAction, RoundActor
from ..schemas import CounterOffer
from .deal_breakers import rules_for_prompt
from .llm_provider import ProviderRegistry
from .rounds import append_round

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are a professional AI licensing negotiator representing a content publisher.
Your goal is to achieve fair compensation while maintaining positive relationships with AI companies.
You must negotiate firmly but fairly, always providing clear reasoning for your positions.
You understand both the value of quality content and the needs of AI companies.
Respond only with valid JSON."""

PARTNER_DESCRIPTIONS = {
    "tier1_ai": "Tier 1 AI Company - Premium partner with high volume potential",
    "tier2_ai": "Tier 2 AI Company - Growing partner with good potential",
    "startup": "Startup - Flexible partnership opportunity",
    "research": "Research Institution - Academic collaboration",
}

USE_CASE_DESCRIPTIONS = {
    "training": "Model Training - High value, bulk usage",
    "inference": "Production Inference - Ongoing usage",
    "search": "Search Engine - High volume, lower margin",
}

PRICE_UNITS = {"per_token": "token", "per_query": "query", "per_fetch": "fetch"}


@dataclass(frozen=True)
class PartnerInfo:
    partner_type: Optional[str] = None
    partner_name: Optional[str] = None
    use_case: Optional[str] = None


def _dumps(value: Any) -> str:
    return orjson.dumps(value, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode()


def _format_price(value: Optional[float]) -> str:
    return "not set" if value is None else f"${value}"


def build_negotiation_prompt(
    current_proposal: Dict[str, Any],
    strategy: Any,
    round_number: int,
    partner: PartnerInfo,
) -> str:
    """Render the user prompt for one counter-offer."""
    partner_type = partner.partner_type or "unknown"
    partner_name = partner.partner_name or "AI Company"
    use_case = partner.use_case or "general"
    unit = PRICE_UNITS.get(strategy.pricing_model, strategy.pricing_model)

    partner_line = f"- Partner: {partner_name}"
    if partner_type in PARTNER_DESCRIPTIONS:
        partner_line += f" ({PARTNER_DESCRIPTIONS[partner_type]})"
    use_case_line = f"- Use Case: {use_case}"
    if use_case in USE_CASE_DESCRIPTIONS:
        use_case_line += f" ({USE_CASE_DESCRIPTIONS[use_case]})"

    rules = rules_for_prompt(strategy)
    if rules:
        deal_breakers = "\n".join(f"- {rule['field']} {rule['operator']} {rule['value']}" for rule in rules)
    else:
        deal_breakers = "- None specified"

    preferred = dict(strategy.preferred_terms or {})
    for name in (
        "preferred_price_per_fetch_micro",
        "preferred_token_ttl_seconds",
        "preferred_burst_rps",
        "preferred_purposes",
    ):
        value = getattr(strategy, name, None)
        if value not in (None, []):
            preferred.setdefault(name, value)

    return f"""You are negotiating a content licensing agreement on behalf of a publisher.

**Partner Information:**
{partner_line}
{use_case_line}

**Publisher's Strategy for This Partner:**
- Negotiation Style: {strategy.negotiation_style}
- Minimum Price: {_format_price(strategy.min_price)} per {unit}
- Preferred Price: {_format_price(strategy.preferred_price)} per {unit}
- Max Price: {_format_price(strategy.max_price)} per {unit}
- Auto-Accept Score Threshold: {strategy.auto_accept_threshold * 100:.0f}%

**Deal Breakers:**
{deal_breakers}

**Preferred Terms:**
{_dumps(preferred)}

**Current Round:** {round_number}

**Current Proposal from {partner_name}:**
{_dumps(current_proposal)}

**Your Task:**
Generate a counter-offer that moves toward your preferred terms while considering:
1. Your negotiation style ({strategy.negotiation_style})
2. The partner's tier and use case (adjust strategy accordingly)
3. Building a positive long-term relationship
4. The specific value this partner brings

Respond with a JSON object containing:
{{
  "price": <number>,
  "pricing_model": "{strategy.pricing_model}",
  "terms": {{<any additional terms>}},
  "reasoning": "<your explanation for these terms, referencing partner tier and use case>",
  "tone": "<friendly|neutral|firm>"
}}

Be strategic: Consider the partner's position ({partner_type}) and intended use ({use_case}) when making concessions."""


class CounterOfferGenerator:
    """Produce and record the publisher's next counter-offer."""

    def __init__(self, providers: ProviderRegistry) -> None:
        self.providers = providers

    async def generate(
        self,
        db: AsyncSession,
        negotiation_id: str,
        current_proposal: Dict[str, Any],
        strategy: Any,
        round_number: int,
        partner: PartnerInfo,
    ) -> CounterOffer:
        """Ask the strategy's model for a counter-offer and append it as ``round_number``.

        :raises InvalidLLMResponse: if the output is not a valid counter-offer.
        """
        logger.info("Generating counter-offer negotiation=%s round=%s", negotiation_id, round_number)
        client = self.providers.for_strategy(strategy)
        system_prompt = strategy.system_prompt or DEFAULT_SYSTEM_PROMPT
        user_prompt = build_negotiation_prompt(current_proposal, strategy, round_number, partner)

        result = await client.complete_json(system_prompt, user_prompt)
        try:
            offer = CounterOffer.model_validate(result.parsed)
        except ValidationError as exc:
            logger.error("Counter-offer failed validation negotiation=%s: %s", negotiation_id, exc)
            raise InvalidLLMResponse(f"LLM counter-offer has an unexpected shape: {exc}", raw=result.content) from exc

        await append_round(
            db,
            negotiation_id,
            round_number,
            RoundActor.publisher,
            RoundAction.counter,
            offer.model_dump(mode="json"),
            offer.reasoning,
            llm_model=result.model,
            llm_tokens_used=result.tokens_used,
            llm_response_time_ms=result.response_time_ms,
        )
        return offer

"""
Strategy matching and strategy management.

A negotiation partner is identified by a domain, a company name or a
user-agent string. The matcher classifies it into a partner tier,
extracts a canonical company name and resolves the license type, then
looks strategies up in priority order:

1. ``specific_partner`` strategy for the canonical partner name;
2. tier-level strategy (no partner name) for the classified tier.

In both cases the requested license type must be one of the strategy's
license types. The first match wins.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NoStrategyFound, NotFound
from ..models import LicenseType, NegotiationStrategy, PartnerType
from ..schemas import StrategyBase, StrategyCreate, StrategyUpdate

logger = logging.getLogger(__name__)

TIER1_COMPANIES = ("openai", "anthropic", "google", "microsoft", "meta", "cohere", "amazon")
TIER2_COMPANIES = ("mistral", "together", "replicate", "huggingface", "perplexity", "character")

COMPANY_DISPLAY_NAMES = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "microsoft": "Microsoft",
    "meta": "Meta",
    "cohere": "Cohere",
    "amazon": "Amazon",
    "mistral": "Mistral",
    "together": "Together AI",
    "replicate": "Replicate",
    "huggingface": "Hugging Face",
    "perplexity": "Perplexity",
    "character": "Character AI",
}

RESEARCH_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"\.edu$", r"\.ac\.", r"university", r"research", r"institute", r"academic")
)

TRAINING_MARKERS = ("gptbot", "claudebot", "crawler", "scraper")
SEARCH_MARKERS = ("googlebot", "bingbot", "search", "perplexity")

PARTNER_TYPE_ORDER = [
    PartnerType.specific_partner,
    PartnerType.tier1_ai,
    PartnerType.tier2_ai,
    PartnerType.startup,
    PartnerType.research,
]


@dataclass(frozen=True)
class StrategyMatch:
    """A resolved strategy plus the partner classification used to find it."""

    strategy: NegotiationStrategy
    partner_type: PartnerType
    partner_name: Optional[str]
    license_type: LicenseType


class StrategyMatcher:
    """Resolve which publisher strategy applies to a negotiation partner."""

    def classify_partner(self, identifier: Optional[str]) -> PartnerType:
        """Classify a partner: research, then tier 1, then tier 2, else startup."""
        if not identifier:
            return PartnerType.startup
        if any(pattern.search(identifier) for pattern in RESEARCH_PATTERNS):
            return PartnerType.research
        lowered = identifier.lower()
        if any(company in lowered for company in TIER1_COMPANIES):
            return PartnerType.tier1_ai
        if any(company in lowered for company in TIER2_COMPANIES):
            return PartnerType.tier2_ai
        return PartnerType.startup

    def extract_partner_name(self, identifier: Optional[str]) -> Optional[str]:
        """Return the canonical display name of a known company, if any."""
        if not identifier:
            return None
        lowered = identifier.lower()
        for company in TIER1_COMPANIES + TIER2_COMPANIES:
            if company in lowered:
                return COMPANY_DISPLAY_NAMES[company]
        return None

    def infer_license_type(self, identifier: Optional[str]) -> LicenseType:
        """Guess the license type from a bot or client identifier."""
        if not identifier:
            return LicenseType.rag_unrestricted
        lowered = identifier.lower()
        if any(marker in lowered for marker in TRAINING_MARKERS):
            return LicenseType.training_display
        return LicenseType.rag_unrestricted

    def infer_use_case(self, identifier: Optional[str]) -> str:
        """Guess the intended use case; used for prompts and reporting only."""
        lowered = (identifier or "").lower()
        if any(marker in lowered for marker in TRAINING_MARKERS):
            return "training"
        if any(marker in lowered for marker in SEARCH_MARKERS):
            return "search"
        return "inference"

    async def find_matching_strategy(
        self,
        db: AsyncSession,
        publisher_id: int,
        partner_identifier: Optional[str],
        requested_license_type: Optional[int] = None,
    ) -> StrategyMatch:
        """Find the strategy for a partner.

        :raises NoStrategyFound: when neither lookup matches.
        """
        partner_type = self.classify_partner(partner_identifier)
        partner_name = self.extract_partner_name(partner_identifier)
        if requested_license_type is None:
            license_type = self.infer_license_type(partner_identifier)
        else:
            try:
                license_type = LicenseType(int(requested_license_type))
            except (TypeError, ValueError):
                logger.info("Unknown license type %r requested for publisher=%s", requested_license_type, publisher_id)
                raise NoStrategyFound(publisher_id, partner_identifier, requested_license_type)
        logger.info(
            "Matching strategy publisher=%s partner=%s type=%s license_type=%s",
            publisher_id,
            partner_name,
            partner_type.value,
            int(license_type),
        )

        strategy = None
        if partner_name is not None:
            strategy = await self._query_strategy(
                db, publisher_id, PartnerType.specific_partner, partner_name, license_type
            )
        if strategy is None:
            strategy = await self._query_strategy(db, publisher_id, partner_type, None, license_type)
        if strategy is None:
            logger.info(
                "No strategy found publisher=%s partner=%s type=%s",
                publisher_id,
                partner_name,
                partner_type.value,
            )
            raise NoStrategyFound(publisher_id, partner_identifier, int(license_type))

        logger.info(
            "Matched strategy id=%s %s/%s license_types=%s",
            strategy.id,
            strategy.partner_type.value,
            strategy.partner_name or "any",
            strategy.license_types,
        )
        return StrategyMatch(
            strategy=strategy,
            partner_type=partner_type,
            partner_name=partner_name,
            license_type=license_type,
        )

    async def _query_strategy(
        self,
        db: AsyncSession,
        publisher_id: int,
        partner_type: PartnerType,
        partner_name: Optional[str],
        license_type: LicenseType,
    ) -> Optional[NegotiationStrategy]:
        stmt = select(NegotiationStrategy).where(
            NegotiationStrategy.publisher_id == publisher_id,
            NegotiationStrategy.partner_type == partner_type,
        )
        if partner_name is None:
            stmt = stmt.where(NegotiationStrategy.partner_name.is_(None))
        else:
            stmt = stmt.where(NegotiationStrategy.partner_name == partner_name)
        result = await db.execute(stmt.order_by(NegotiationStrategy.id))
        # license_types is a JSON array; containment is checked here to stay portable.
        for strategy in result.scalars():
            if int(license_type) in {int(value) for value in strategy.license_types or []}:
                return strategy
        return None


async def list_publisher_strategies(db: AsyncSession, publisher_id: int) -> List[NegotiationStrategy]:
    """Return a publisher's strategies, most specific partner types first."""
    ordering = case(
        *[
            (NegotiationStrategy.partner_type == partner_type, index)
            for index, partner_type in enumerate(PARTNER_TYPE_ORDER)
        ],
        else_=len(PARTNER_TYPE_ORDER),
    )
    result = await db.execute(
        select(NegotiationStrategy)
        .where(NegotiationStrategy.publisher_id == publisher_id)
        .order_by(ordering, NegotiationStrategy.partner_name.is_(None), NegotiationStrategy.partner_name, NegotiationStrategy.id)
    )
    return list(result.scalars().all())


async def get_strategy(db: AsyncSession, strategy_id: int) -> NegotiationStrategy:
    """Return a strategy by ID or raise ``NotFound``."""
    strategy = await db.get(NegotiationStrategy, strategy_id)
    if strategy is None:
        raise NotFound(f"Strategy {strategy_id} not found")
    return strategy


def _strategy_columns(data: StrategyBase) -> dict:
    values = data.model_dump(mode="json", exclude={"publisher_id"})
    values["partner_type"] = data.partner_type
    return values


async def create_strategy(db: AsyncSession, req: StrategyCreate) -> NegotiationStrategy:
    """Create a strategy for a publisher."""
    strategy = NegotiationStrategy(publisher_id=req.publisher_id, **_strategy_columns(req))
    db.add(strategy)
    await db.flush()
    logger.info("Created strategy id=%s publisher=%s", strategy.id, req.publisher_id)
    return strategy


async def update_strategy(db: AsyncSession, strategy_id: int, req: StrategyUpdate) -> NegotiationStrategy:
    """Apply a partial update; the merged strategy must still be valid.

    :raises ValueError: when the update carries no fields.
    :raises pydantic.ValidationError: when the merged strategy is invalid.
    """
    updates = req.model_dump(exclude_unset=True)
    if not updates:
        raise ValueError("No fields to update")
    strategy = await get_strategy(db, strategy_id)
    current = {name: getattr(strategy, name) for name in StrategyBase.model_fields}
    merged = StrategyBase.model_validate({**current, **updates})
    for name, value in _strategy_columns(merged).items():
        setattr(strategy, name, value)
    await db.flush()
    await db.refresh(strategy)
    return strategy


async def delete_strategy(db: AsyncSession, strategy_id: int) -> None:
    """Delete a strategy. Negotiations keep their history with a null strategy."""
    strategy = await get_strategy(db, strategy_id)
    await db.delete(strategy)
    await db.flush()

"""
Score how well a proposal fits a strategy's preferred terms.

The score is a weighted blend of up to four sub-scores. A sub-score only
counts when the proposal carries the field and the strategy has a usable
preference for it; weights are renormalised over the counted parts. A
proposal with nothing to score gets 0, so it never auto-accepts.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Tuple, Union

from ..schemas import Terms

PRICE_WEIGHT = 0.4
TTL_WEIGHT = 0.2
RPS_WEIGHT = 0.2
PURPOSE_WEIGHT = 0.2
PRICE_CAP = 2.0


def _deviation_score(actual: float, preferred: float) -> float:
    return 1.0 - min(abs(actual - preferred) / preferred, 1.0)


def _price_score(terms: Terms, strategy: Any) -> Optional[float]:
    pairs: List[Tuple[Optional[float], Optional[float]]] = [
        (terms.price_per_fetch_micro, strategy.preferred_price_per_fetch_micro),
        (terms.price, strategy.preferred_price),
    ]
    for offered, preferred in pairs:
        if offered is not None and preferred:
            return min(offered / preferred, PRICE_CAP) / PRICE_CAP
    return None


def score_proposal(proposal: Union[Terms, Mapping[str, Any]], strategy: Any) -> float:
    """Return a deterministic fitness score in ``[0, 1]``."""
    terms = proposal if isinstance(proposal, Terms) else Terms.model_validate(proposal)
    parts: List[Tuple[float, float]] = []

    price = _price_score(terms, strategy)
    if price is not None:
        parts.append((price, PRICE_WEIGHT))

    if terms.token_ttl_seconds is not None and strategy.preferred_token_ttl_seconds:
        parts.append((_deviation_score(terms.token_ttl_seconds, strategy.preferred_token_ttl_seconds), TTL_WEIGHT))

    if terms.burst_rps is not None and strategy.preferred_burst_rps:
        parts.append((_deviation_score(terms.burst_rps, strategy.preferred_burst_rps), RPS_WEIGHT))

    preferred_purposes = list(strategy.preferred_purposes or [])
    if terms.purposes is not None and preferred_purposes:
        offered = set(terms.purposes)
        matching = sum(1 for purpose in preferred_purposes if purpose in offered)
        parts.append((matching / len(preferred_purposes), PURPOSE_WEIGHT))

    total_weight = sum(weight for _, weight in parts)
    if total_weight == 0:
        return 0.0
    score = sum(value * weight for value, weight in parts) / total_weight
    return max(0.0, min(score, 1.0))

"""
Evaluate a proposal against a strategy's hard-stop rules.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Union

from pydantic import ValidationError

from ..schemas import DealBreakerRule, Terms

logger = logging.getLogger(__name__)


def _as_mapping(proposal: Union[Terms, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(proposal, Terms):
        return proposal.as_payload()
    return proposal


def _violates(rule: DealBreakerRule, value: Any) -> bool:
    op = rule.operator
    expected = rule.value
    if op == "<":
        return value < expected
    if op == ">":
        return value > expected
    if op in ("=", "=="):
        return value == expected
    if op == "contains":
        return isinstance(value, list) and expected in value
    return False


def evaluate_deal_breakers(proposal: Union[Terms, Mapping[str, Any]], strategy: Any) -> List[str]:
    """Return one description per violated rule; empty means no hard stop.

    Rules whose field is absent from the proposal never fire.
    """
    terms: Mapping[str, Any] = _as_mapping(proposal)
    violations: List[str] = []
    for raw_rule in strategy.deal_breakers or []:
        try:
            rule = raw_rule if isinstance(raw_rule, DealBreakerRule) else DealBreakerRule.model_validate(raw_rule)
        except ValidationError as exc:
            logger.warning("Skipping malformed deal breaker %r on strategy %s: %s", raw_rule, getattr(strategy, "id", None), exc)
            continue
        value = terms.get(rule.field)
        if value is None:
            continue
        try:
            violated = _violates(rule, value)
        except TypeError:
            logger.warning("Deal breaker %s cannot compare value %r", rule.describe(), value)
            continue
        if violated:
            violations.append(f"Deal breaker: {rule.describe()}")
    return violations


def rules_for_prompt(strategy: Any) -> List[Dict[str, Any]]:
    """Deal breakers as plain dicts for prompt rendering."""
    rules = []
    for raw_rule in strategy.deal_breakers or []:
        if isinstance(raw_rule, DealBreakerRule):
            rules.append(raw_rule.model_dump())
        else:
            rules.append(dict(raw_rule))
    return rules

"""
Service subpackage aggregating domain logic.

This package exposes the negotiation engine and the services it composes:
strategy matching, deal-breaker gating, proposal scoring, counter-offer
generation, the round ledger, notifications and license generation. See
individual modules for details.
"""
from . import (  # noqa: F401
    counter_offer,
    deal_breakers,
    engine,
    license_generator,
    llm_provider,
    llm_utils,
    locks,
    negotiations,
    notifications,
    publishers,
    rounds,
    scoring,
    strategy_matcher,
)

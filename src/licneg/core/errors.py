"""
Domain errors raised by the negotiation engine.

Business outcomes such as a deal-breaker rejection are *not* errors: they
produce a negotiation in ``rejected`` status and callers must inspect the
returned status. The exceptions below signal caller mistakes or
infrastructure failures.
"""
from __future__ import annotations

from typing import List, Optional


class NegotiationError(Exception):
    """Base class for all negotiation engine errors."""


class NoStrategyFound(NegotiationError):
    """No configured strategy matches the publisher, partner and license type."""

    def __init__(self, publisher_id: int, partner_identifier: Optional[str], license_type: int) -> None:
        self.publisher_id = publisher_id
        self.partner_identifier = partner_identifier
        self.license_type = license_type
        super().__init__(
            f"No matching negotiation strategy found for publisher {publisher_id}, "
            f"partner {partner_identifier!r}, license type {license_type}"
        )


class NotFound(NegotiationError):
    """Unknown negotiation, strategy, publisher or policy id."""


class InvalidState(NegotiationError):
    """A transition was attempted on a negotiation in the wrong status."""


class InvalidLLMResponse(NegotiationError):
    """The model did not return the expected structured counter-offer."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        self.raw = raw
        super().__init__(message)


class DealBreakerViolation(NegotiationError):
    """Describes a hard-stop rule match.

    The engine turns this into a ``rejected`` negotiation instead of
    propagating it.
    """

    def __init__(self, violations: List[str]) -> None:
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))

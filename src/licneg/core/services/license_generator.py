"""
Turn accepted negotiations into license policy documents.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..errors import InvalidState, NotFound
from ..models import Negotiation, NegotiationStatus, NotificationType, Policy, Publisher
from ..schemas import PolicyOut
from .notifications import NegotiationEvent

logger = logging.getLogger(__name__)

POLICY_VERSION = "1.0"
DEFAULT_PURPOSES = ["inference"]
DEFAULT_TOKEN_TTL_SECONDS = 600
DEFAULT_MAX_RPS = 10


def build_policy_json(
    publisher_hostname: str,
    client_name: str,
    terms: Dict[str, Any],
    url_patterns: Optional[List[str]],
    redirect_url: str,
    negotiation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the policy document granting ``client_name`` the agreed terms.

    Everything not matched by the rule is denied and redirected to the
    licensing endpoint. ``price_per_fetch`` is in dollars.
    """
    micro = terms.get("price_per_fetch_micro")
    return {
        "version": POLICY_VERSION,
        "publisher": publisher_hostname,
        "default": {"allow": False, "action": "redirect"},
        "rules": [
            {
                "agent": client_name,
                "allow": True,
                "purpose": terms.get("purposes") or list(DEFAULT_PURPOSES),
                "price_per_fetch": micro / 1_000_000 if micro is not None else None,
                "token_ttl_seconds": terms.get("token_ttl_seconds") or DEFAULT_TOKEN_TTL_SECONDS,
                "max_rps": terms.get("burst_rps") or DEFAULT_MAX_RPS,
                "url_patterns": url_patterns or None,
            }
        ],
        "redirect_url": redirect_url,
        "negotiated": True,
        "negotiation_id": negotiation_id,
    }


def policy_out(policy: Policy) -> PolicyOut:
    return PolicyOut(policy_id=policy.id, negotiation_id=policy.negotiation_id, policy_json=policy.policy_json)


async def generate_license_from_negotiation(
    db: AsyncSession,
    negotiation_id: str,
    settings: Optional[Settings] = None,
    events: Optional[List[NegotiationEvent]] = None,
) -> Policy:
    """Create (once) the policy for an accepted negotiation.

    Calling it again returns the stored policy. When ``events`` is given a
    ``license_created`` event is appended for a newly created policy; the
    caller dispatches it after committing.

    :raises NotFound: unknown negotiation.
    :raises InvalidState: negotiation is not accepted.
    """
    settings = settings or get_settings()
    negotiation = await db.get(Negotiation, negotiation_id)
    if negotiation is None:
        raise NotFound(f"Negotiation {negotiation_id} not found")
    if negotiation.status != NegotiationStatus.accepted:
        raise InvalidState(f"Cannot generate license: negotiation status is {negotiation.status.value}")

    if negotiation.generated_policy_id is not None:
        existing = await db.get(Policy, negotiation.generated_policy_id)
        if existing is None:
            raise NotFound(f"Policy {negotiation.generated_policy_id} not found")
        logger.info("License already exists negotiation=%s policy=%s", negotiation_id, existing.id)
        return existing

    publisher = await db.get(Publisher, negotiation.publisher_id)
    if publisher is None:
        raise NotFound(f"Publisher {negotiation.publisher_id} not found")

    terms = negotiation.final_terms or {}
    url_patterns = (negotiation.context or {}).get("url_patterns")
    policy = Policy(
        publisher_id=negotiation.publisher_id,
        negotiation_id=negotiation.id,
        policy_json=build_policy_json(
            publisher.hostname,
            negotiation.client_name,
            terms,
            url_patterns,
            settings.license_redirect_url,
            negotiation.id,
        ),
        version=POLICY_VERSION,
        url_pattern=url_patterns[0] if url_patterns else None,
        name=f"Negotiated License - {negotiation.client_name}",
        description=f"Auto-generated from negotiation {negotiation.id}",
    )
    db.add(policy)
    await db.flush()
    negotiation.generated_policy_id = policy.id
    await db.flush()
    logger.info("License generated negotiation=%s policy=%s", negotiation_id, policy.id)

    if events is not None:
        price = terms.get("price")
        if price is None and terms.get("price_per_fetch_micro") is not None:
            price = terms["price_per_fetch_micro"] / 1_000_000
        events.append(
            NegotiationEvent(
                negotiation.publisher_id,
                NotificationType.license_created,
                negotiation.id,
                {"client_name": negotiation.client_name, "policy_id": policy.id, "price": price},
            )
        )
    return policy

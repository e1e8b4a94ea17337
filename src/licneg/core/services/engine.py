"""
Negotiation state machine.

``NegotiationEngine`` owns the negotiation lifecycle::

    (none) --initiate--> negotiating --> accepted | rejected | timeout

Every public operation runs in its own transaction. Mutations of an
existing negotiation are serialised per negotiation id in this process
and guarded across processes by the optimistic ``version`` column; a
lost race is retried from a fresh read. Notifications are dispatched
only after the transaction commits and never affect its outcome.

Business rejections (deal breakers) and timeouts are returned as normal
outcomes. Only caller mistakes and infrastructure failures raise.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from ..config import Settings
from ..errors import DealBreakerViolation, InvalidState, NotFound
from ..models import (
    Negotiation,
    NegotiationStatus,
    NegotiationStrategy,
    NotificationType,
    Policy,
    RoundAction,
    RoundActor,
)
from ..schemas import NegotiationOutcome, Terms
from .counter_offer import CounterOfferGenerator, PartnerInfo
from .deal_breakers import evaluate_deal_breakers
from .license_generator import generate_license_from_negotiation
from .llm_provider import ProviderRegistry
from .locks import KeyedLock
from .notifications import NegotiationEvent, NotificationPublisher, dispatch_events
from .rounds import TERMINAL_ROUND, append_round
from .scoring import score_proposal
from .strategy_matcher import StrategyMatcher

logger = logging.getLogger(__name__)

STALE_RETRY_ATTEMPTS = 3
AUTO_ACCEPT_REASON = "Auto-accepted: Proposal meets acceptance threshold"
COUNTER_ACCEPT_REASON = "Counter-proposal meets acceptance threshold"
MANUAL_ACCEPT_REASON = "Final terms accepted"
MANUAL_REJECT_REASON = "Rejected by publisher"

Clock = Callable[[], datetime]
ProposalInput = Union[Terms, Mapping[str, Any]]
Operation = Callable[..., Awaitable[Tuple[Any, List[NegotiationEvent]]]]


def _coerce_terms(proposal: ProposalInput) -> Terms:
    if isinstance(proposal, Terms):
        return proposal
    return Terms.model_validate(proposal)


class NegotiationEngine:
    """Compose matching, gating, scoring and counter-offers into the negotiation lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        providers: ProviderRegistry,
        notifier: Optional[NotificationPublisher] = None,
        matcher: Optional[StrategyMatcher] = None,
        clock: Clock = datetime.utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._clock = clock
        self._locks = KeyedLock()
        self.matcher = matcher or StrategyMatcher()
        self.generator = CounterOfferGenerator(providers)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def initiate(
        self,
        proposal: ProposalInput,
        publisher_id: int,
        client_name: str,
        context: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> NegotiationOutcome:
        """Open a negotiation for an initial proposal.

        The whole step is atomic: if the first counter-offer cannot be
        generated nothing is stored and the error propagates.

        :raises NoStrategyFound: when no strategy applies.
        :raises InvalidLLMResponse: when the counter-offer output is invalid.
        """
        terms = _coerce_terms(proposal)
        payload = terms.as_payload()
        context = dict(context or {})
        partner_identifier = context.get("partner_identifier") or client_name
        logger.info("Initiating negotiation publisher=%s client=%s", publisher_id, client_name)

        events: List[NegotiationEvent] = []
        async with self._session_factory() as db, db.begin():
            match = await self.matcher.find_matching_strategy(
                db, publisher_id, partner_identifier, context.get("license_type")
            )
            strategy = match.strategy
            use_case = context.get("use_case") or terms.use_case or self.matcher.infer_use_case(partner_identifier)
            now = self._clock()
            negotiation = Negotiation(
                id=str(uuid.uuid4()),
                publisher_id=publisher_id,
                client_id=client_id,
                client_name=client_name,
                strategy_id=strategy.id,
                status=NegotiationStatus.negotiating,
                current_round=0,
                initial_proposal=payload,
                current_terms=payload,
                context=context,
                partner_type=match.partner_type,
                partner_name=match.partner_name,
                use_case=use_case,
                license_type=int(match.license_type),
                initiated_at=now,
                last_activity_at=now,
            )
            db.add(negotiation)
            await append_round(
                db, negotiation.id, 0, RoundActor.client, RoundAction.propose, payload, "Initial proposal"
            )

            violations = evaluate_deal_breakers(terms, strategy)
            if violations:
                reason = str(DealBreakerViolation(violations))
                await self._mark_rejected(db, negotiation, reason, 0, now, events)
                outcome = NegotiationOutcome(
                    negotiation_id=negotiation.id,
                    status=NegotiationStatus.rejected,
                    round=0,
                    reasons=violations,
                    message=reason,
                )
            else:
                score = score_proposal(terms, strategy)
                logger.info("Scored initial proposal negotiation=%s score=%.3f", negotiation.id, score)
                if score >= strategy.auto_accept_threshold:
                    await self._mark_accepted(db, negotiation, payload, AUTO_ACCEPT_REASON, 0, now, events)
                    outcome = NegotiationOutcome(
                        negotiation_id=negotiation.id,
                        status=NegotiationStatus.accepted,
                        round=0,
                        terms=payload,
                        message=AUTO_ACCEPT_REASON,
                    )
                else:
                    partner = PartnerInfo(
                        partner_type=match.partner_type.value,
                        partner_name=match.partner_name or client_name,
                        use_case=use_case,
                    )
                    offer = await self.generator.generate(db, negotiation.id, payload, strategy, 1, partner)
                    events.append(
                        NegotiationEvent(
                            publisher_id,
                            NotificationType.negotiation_initiated,
                            negotiation.id,
                            {
                                "client_name": client_name,
                                "partner_type": match.partner_type.value,
                                "use_case": use_case,
                                "proposed_price": terms.headline_price(),
                                "round": 1,
                                "counter_offer": offer.model_dump(mode="json"),
                            },
                        )
                    )
                    outcome = NegotiationOutcome(
                        negotiation_id=negotiation.id,
                        status=NegotiationStatus.negotiating,
                        round=1,
                        counter_offer=offer,
                    )

        logger.info("Negotiation %s initiated with status %s", outcome.negotiation_id, outcome.status.value)
        await dispatch_events(self._notifier, events)
        return outcome

    async def process_counter_proposal(self, negotiation_id: str, counter_proposal: ProposalInput) -> NegotiationOutcome:
        """Handle the client's next counter-proposal.

        :raises NotFound: unknown negotiation or strategy.
        :raises InvalidState: the negotiation is already resolved.
        :raises InvalidLLMResponse: counter-offer output invalid; nothing is stored.
        """
        terms = _coerce_terms(counter_proposal)
        logger.info("Processing counter-proposal negotiation=%s", negotiation_id)
        return await self._serialised(negotiation_id, self._process_counter_once, terms)

    async def accept(self, negotiation_id: str, final_terms: Optional[ProposalInput] = None) -> NegotiationOutcome:
        """Accept a negotiation manually; defaults to its current terms.

        :raises InvalidState: the negotiation is already resolved.
        """
        terms = _coerce_terms(final_terms) if final_terms is not None else None
        return await self._serialised(negotiation_id, self._accept_once, terms)

    async def reject(self, negotiation_id: str, reason: Optional[str] = None) -> NegotiationOutcome:
        """Reject a negotiation manually.

        :raises InvalidState: the negotiation is already resolved.
        """
        return await self._serialised(negotiation_id, self._reject_once, reason or MANUAL_REJECT_REASON)

    async def generate_license(self, negotiation_id: str, settings: Optional[Settings] = None) -> Policy:
        """Create or return the license policy of an accepted negotiation.

        :raises InvalidState: the negotiation is not accepted.
        """
        return await self._serialised(negotiation_id, self._license_once, settings)

    # ------------------------------------------------------------------
    # Single attempts, run under the per-negotiation lock
    # ------------------------------------------------------------------

    async def _serialised(self, negotiation_id: str, operation: Operation, *args: Any) -> Any:
        async with self._locks.hold(negotiation_id):
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(StaleDataError),
                stop=stop_after_attempt(STALE_RETRY_ATTEMPTS),
                wait=wait_random(0, 0.2),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning("Retrying negotiation %s after concurrent update", negotiation_id)
                    outcome, events = await operation(negotiation_id, *args)
        await dispatch_events(self._notifier, events)
        return outcome

    async def _process_counter_once(
        self, negotiation_id: str, terms: Terms
    ) -> Tuple[NegotiationOutcome, List[NegotiationEvent]]:
        payload = terms.as_payload()
        events: List[NegotiationEvent] = []
        async with self._session_factory() as db, db.begin():
            negotiation, strategy = await self._load(db, negotiation_id)
            self._require_active(negotiation)
            now = self._clock()

            if negotiation.current_round >= strategy.max_rounds:
                self._mark_timeout(negotiation, "Maximum rounds reached", now, events)
                return self._timeout_outcome(negotiation, "Maximum rounds reached"), events
            idle_seconds = (now - negotiation.last_activity_at).total_seconds()
            if idle_seconds > strategy.timeout_seconds:
                self._mark_timeout(negotiation, "Negotiation timeout", now, events)
                return self._timeout_outcome(negotiation, "Negotiation timeout"), events

            new_round = negotiation.current_round + 1
            await append_round(
                db, negotiation.id, new_round, RoundActor.client, RoundAction.counter, payload, "Client counter-proposal"
            )
            negotiation.current_round = new_round
            negotiation.current_terms = payload
            negotiation.last_activity_at = now

            violations = evaluate_deal_breakers(terms, strategy)
            if violations:
                reason = str(DealBreakerViolation(violations))
                await self._mark_rejected(db, negotiation, reason, TERMINAL_ROUND, now, events)
                outcome = NegotiationOutcome(
                    negotiation_id=negotiation.id,
                    status=NegotiationStatus.rejected,
                    round=new_round,
                    reasons=violations,
                    message=reason,
                )
                return outcome, events

            score = score_proposal(terms, strategy)
            logger.info("Scored counter-proposal negotiation=%s round=%s score=%.3f", negotiation.id, new_round, score)
            if score >= strategy.auto_accept_threshold:
                await self._mark_accepted(db, negotiation, payload, COUNTER_ACCEPT_REASON, TERMINAL_ROUND, now, events)
                outcome = NegotiationOutcome(
                    negotiation_id=negotiation.id,
                    status=NegotiationStatus.accepted,
                    round=new_round,
                    terms=payload,
                    message=COUNTER_ACCEPT_REASON,
                )
                return outcome, events

            partner = PartnerInfo(
                partner_type=negotiation.partner_type.value if negotiation.partner_type else None,
                partner_name=negotiation.partner_name or negotiation.client_name,
                use_case=negotiation.use_case,
            )
            offer = await self.generator.generate(db, negotiation.id, payload, strategy, new_round + 1, partner)
            events.append(
                NegotiationEvent(
                    negotiation.publisher_id,
                    NotificationType.negotiation_round,
                    negotiation.id,
                    {
                        "client_name": negotiation.client_name,
                        "round_number": new_round,
                        "action": RoundAction.counter.value,
                        "proposed_price": terms.headline_price(),
                        "counter_offer": offer.model_dump(mode="json"),
                    },
                )
            )
            outcome = NegotiationOutcome(
                negotiation_id=negotiation.id,
                status=NegotiationStatus.negotiating,
                round=new_round + 1,
                counter_offer=offer,
            )
        return outcome, events

    async def _accept_once(
        self, negotiation_id: str, terms: Optional[Terms]
    ) -> Tuple[NegotiationOutcome, List[NegotiationEvent]]:
        events: List[NegotiationEvent] = []
        async with self._session_factory() as db, db.begin():
            negotiation = await self._load_negotiation(db, negotiation_id)
            self._require_active(negotiation)
            final_terms = terms.as_payload() if terms is not None else {}
            if not final_terms:
                # An empty payload accepts what is on the table.
                final_terms = dict(negotiation.current_terms or negotiation.initial_proposal)
            await self._mark_accepted(
                db, negotiation, final_terms, MANUAL_ACCEPT_REASON, TERMINAL_ROUND, self._clock(), events
            )
            outcome = NegotiationOutcome(
                negotiation_id=negotiation.id,
                status=NegotiationStatus.accepted,
                round=negotiation.current_round,
                terms=final_terms,
                message=MANUAL_ACCEPT_REASON,
            )
        return outcome, events

    async def _license_once(
        self, negotiation_id: str, settings: Optional[Settings]
    ) -> Tuple[Policy, List[NegotiationEvent]]:
        events: List[NegotiationEvent] = []
        async with self._session_factory() as db, db.begin():
            policy = await generate_license_from_negotiation(db, negotiation_id, settings, events)
        return policy, events

    async def _reject_once(self, negotiation_id: str, reason: str) -> Tuple[NegotiationOutcome, List[NegotiationEvent]]:
        events: List[NegotiationEvent] = []
        async with self._session_factory() as db, db.begin():
            negotiation = await self._load_negotiation(db, negotiation_id)
            self._require_active(negotiation)
            await self._mark_rejected(db, negotiation, reason, TERMINAL_ROUND, self._clock(), events)
            outcome = NegotiationOutcome(
                negotiation_id=negotiation.id,
                status=NegotiationStatus.rejected,
                round=negotiation.current_round,
                reasons=[reason],
                message=reason,
            )
        return outcome, events

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _mark_accepted(
        self,
        db: AsyncSession,
        negotiation: Negotiation,
        final_terms: Dict[str, Any],
        reason: str,
        round_number: int,
        now: datetime,
        events: List[NegotiationEvent],
    ) -> None:
        negotiation.status = NegotiationStatus.accepted
        negotiation.final_terms = final_terms
        negotiation.current_terms = final_terms
        negotiation.completed_at = now
        negotiation.last_activity_at = now
        await append_round(
            db, negotiation.id, round_number, RoundActor.publisher, RoundAction.accept, final_terms, reason
        )
        events.append(
            NegotiationEvent(
                negotiation.publisher_id,
                NotificationType.negotiation_accepted,
                negotiation.id,
                {
                    "client_name": negotiation.client_name,
                    "final_price": Terms.model_validate(final_terms).headline_price(),
                    "final_terms": final_terms,
                },
            )
        )
        logger.info("Negotiation %s accepted: %s", negotiation.id, reason)

    async def _mark_rejected(
        self,
        db: AsyncSession,
        negotiation: Negotiation,
        reason: str,
        round_number: int,
        now: datetime,
        events: List[NegotiationEvent],
    ) -> None:
        negotiation.status = NegotiationStatus.rejected
        negotiation.rejection_reason = reason
        negotiation.completed_at = now
        negotiation.last_activity_at = now
        terms = negotiation.current_terms if round_number == 0 else {}
        await append_round(db, negotiation.id, round_number, RoundActor.publisher, RoundAction.reject, terms, reason)
        events.append(
            NegotiationEvent(
                negotiation.publisher_id,
                NotificationType.negotiation_rejected,
                negotiation.id,
                {"client_name": negotiation.client_name, "reason": reason},
            )
        )
        logger.info("Negotiation %s rejected: %s", negotiation.id, reason)

    def _mark_timeout(
        self, negotiation: Negotiation, reason: str, now: datetime, events: List[NegotiationEvent]
    ) -> None:
        negotiation.status = NegotiationStatus.timeout
        negotiation.completed_at = now
        events.append(
            NegotiationEvent(
                negotiation.publisher_id,
                NotificationType.negotiation_timeout,
                negotiation.id,
                {"client_name": negotiation.client_name, "reason": reason},
            )
        )
        logger.info("Negotiation %s timed out: %s", negotiation.id, reason)

    @staticmethod
    def _timeout_outcome(negotiation: Negotiation, message: str) -> NegotiationOutcome:
        return NegotiationOutcome(
            negotiation_id=negotiation.id,
            status=NegotiationStatus.timeout,
            round=negotiation.current_round,
            message=message,
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @staticmethod
    def _require_active(negotiation: Negotiation) -> None:
        if negotiation.status != NegotiationStatus.negotiating:
            raise InvalidState(
                f"Negotiation {negotiation.id} is not active (status: {negotiation.status.value})"
            )

    @staticmethod
    async def _load_negotiation(db: AsyncSession, negotiation_id: str) -> Negotiation:
        negotiation = await db.get(Negotiation, negotiation_id)
        if negotiation is None:
            raise NotFound(f"Negotiation {negotiation_id} not found")
        return negotiation

    async def _load(self, db: AsyncSession, negotiation_id: str) -> Tuple[Negotiation, NegotiationStrategy]:
        negotiation = await self._load_negotiation(db, negotiation_id)
        strategy = None
        if negotiation.strategy_id is not None:
            strategy = await db.get(NegotiationStrategy, negotiation.strategy_id)
        if strategy is None:
            raise NotFound(f"Strategy {negotiation.strategy_id} not found")
        return negotiation, strategy

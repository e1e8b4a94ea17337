"""
Database models for the negotiation agent.

The engine reads strategies and owns negotiations and their rounds once
created. Publishers, notifications and generated policies are thin
records used by the management surface and the license generator.

If you modify these models, remember to add an Alembic revision for
persistent databases. For tests and development the ``init_db_schema``
helper can create tables on the fly.
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class PartnerType(enum.Enum):
    """Partner classification a strategy applies to."""

    specific_partner = "specific_partner"
    tier1_ai = "tier1_ai"
    tier2_ai = "tier2_ai"
    startup = "startup"
    research = "research"


class LicenseType(enum.IntEnum):
    """License types a strategy can cover."""

    training_display = 0
    rag_unrestricted = 1
    rag_max_words = 2
    rag_attribution = 3
    rag_no_display = 4


LICENSE_TYPE_NAMES = {
    LicenseType.training_display: "Training + Display",
    LicenseType.rag_unrestricted: "RAG Display (Unrestricted)",
    LicenseType.rag_max_words: "RAG Display (Max Words)",
    LicenseType.rag_attribution: "RAG Display (Attribution)",
    LicenseType.rag_no_display: "RAG No Display",
}


class NegotiationStatus(enum.Enum):
    """Lifecycle status of a negotiation. Everything but ``negotiating`` is terminal."""

    negotiating = "negotiating"
    accepted = "accepted"
    rejected = "rejected"
    timeout = "timeout"


TERMINAL_STATUSES = frozenset(
    {NegotiationStatus.accepted, NegotiationStatus.rejected, NegotiationStatus.timeout}
)


class RoundActor(enum.Enum):
    """Side that produced a round entry."""

    publisher = "publisher"
    client = "client"


class RoundAction(enum.Enum):
    """What a round entry did."""

    propose = "propose"
    counter = "counter"
    accept = "accept"
    reject = "reject"


class NotificationType(enum.Enum):
    """Publisher-facing notification types."""

    negotiation_initiated = "negotiation_initiated"
    negotiation_round = "negotiation_round"
    negotiation_accepted = "negotiation_accepted"
    negotiation_rejected = "negotiation_rejected"
    negotiation_timeout = "negotiation_timeout"
    license_created = "license_created"


class Publisher(Base):
    """A content publisher that negotiates licenses."""

    __tablename__ = "publishers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(length=200), nullable=False)
    hostname: Mapped[str] = mapped_column(String(length=255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    strategies: Mapped[list["NegotiationStrategy"]] = relationship(
        "NegotiationStrategy", back_populates="publisher", cascade="all, delete-orphan"
    )


class NegotiationStrategy(Base):
    """Publisher-scoped negotiation policy for a partner tier or a specific partner."""

    __tablename__ = "negotiation_strategies"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    publisher_id: Mapped[int] = mapped_column(ForeignKey("publishers.id"), nullable=False, index=True)
    partner_type: Mapped[PartnerType] = mapped_column(Enum(PartnerType), nullable=False)
    partner_name: Mapped[Optional[str]] = mapped_column(String(length=100), nullable=True)
    license_types: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=lambda: [1])

    pricing_model: Mapped[str] = mapped_column(String(length=30), default="per_fetch")
    min_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    preferred_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    preferred_price_per_fetch_micro: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    min_token_ttl_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    preferred_token_ttl_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_token_ttl_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_burst_rps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    preferred_burst_rps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_burst_rps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    preferred_purposes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    negotiation_style: Mapped[str] = mapped_column(String(length=200), default="balanced")
    auto_accept_threshold: Mapped[float] = mapped_column(Float, default=0.9)
    deal_breakers: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    preferred_terms: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    llm_provider: Mapped[str] = mapped_column(String(length=30), default="openai")
    llm_model: Mapped[str] = mapped_column(String(length=100), default="gpt-4")
    llm_temperature: Mapped[float] = mapped_column(Float, default=0.7)
    max_rounds: Mapped[int] = mapped_column(Integer, default=5)
    timeout_seconds: Mapped[int] = mapped_column(Integer, default=3600)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    publisher: Mapped[Publisher] = relationship("Publisher", back_populates="strategies")


class Negotiation(Base):
    """One negotiation between a publisher strategy and an AI company.

    ``version`` is the optimistic concurrency token: SQLAlchemy adds it to
    the WHERE clause of every UPDATE and raises ``StaleDataError`` when a
    concurrent writer got there first.
    """

    __tablename__ = "negotiations"
    id: Mapped[str] = mapped_column(String(length=36), primary_key=True)
    publisher_id: Mapped[int] = mapped_column(ForeignKey("publishers.id"), nullable=False, index=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(length=100), nullable=True)
    client_name: Mapped[str] = mapped_column(String(length=200), nullable=False)
    strategy_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("negotiation_strategies.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[NegotiationStatus] = mapped_column(
        Enum(NegotiationStatus), default=NegotiationStatus.negotiating, index=True
    )
    current_round: Mapped[int] = mapped_column(Integer, default=0)
    initial_proposal: Mapped[dict] = mapped_column(JSON, nullable=False)
    current_terms: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    final_terms: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    partner_type: Mapped[Optional[PartnerType]] = mapped_column(Enum(PartnerType), nullable=True)
    partner_name: Mapped[Optional[str]] = mapped_column(String(length=100), nullable=True)
    use_case: Mapped[Optional[str]] = mapped_column(String(length=50), nullable=True)
    license_type: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    initiated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    generated_policy_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("policies.id"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    rounds: Mapped[list["NegotiationRound"]] = relationship(
        "NegotiationRound",
        back_populates="negotiation",
        cascade="all, delete-orphan",
        order_by="NegotiationRound.id",
    )


class NegotiationRound(Base):
    """Append-only record of one proposal, counter or terminal decision."""

    __tablename__ = "negotiation_rounds"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    negotiation_id: Mapped[str] = mapped_column(ForeignKey("negotiations.id"), nullable=False, index=True)
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    actor: Mapped[RoundActor] = mapped_column(Enum(RoundActor), nullable=False)
    action: Mapped[RoundAction] = mapped_column(Enum(RoundAction), nullable=False)
    proposed_terms: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    llm_model: Mapped[Optional[str]] = mapped_column(String(length=100), nullable=True)
    llm_tokens_used: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    llm_response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    negotiation: Mapped[Negotiation] = relationship("Negotiation", back_populates="rounds")


class Notification(Base):
    """Publisher-facing notification about a negotiation or license."""

    __tablename__ = "notifications"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    publisher_id: Mapped[int] = mapped_column(ForeignKey("publishers.id"), nullable=False, index=True)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(length=255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    related_entity_type: Mapped[Optional[str]] = mapped_column(String(length=50), nullable=True)
    related_entity_id: Mapped[Optional[str]] = mapped_column(String(length=100), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Policy(Base):
    """Licensing policy document generated from accepted terms."""

    __tablename__ = "policies"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    publisher_id: Mapped[int] = mapped_column(ForeignKey("publishers.id"), nullable=False, index=True)
    negotiation_id: Mapped[Optional[str]] = mapped_column(String(length=36), nullable=True)
    policy_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    version: Mapped[str] = mapped_column(String(length=20), default="1.0")
    url_pattern: Mapped[Optional[str]] = mapped_column(String(length=500), nullable=True)
    name: Mapped[str] = mapped_column(String(length=200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

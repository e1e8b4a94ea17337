"""
Pydantic models for domain values, API requests and responses.

``Terms`` is the single proposal shape the engine negotiates over. It is
validated at the boundary (non-negative numbers, string purposes) but
every field is optional and unknown fields are preserved, so partial
proposals flow through unchanged.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import LicenseType, NegotiationStatus, NotificationType, PartnerType, RoundAction, RoundActor

DealBreakerOperator = Literal["<", ">", "=", "==", "contains"]


class Terms(BaseModel):
    """Proposed or agreed licensing terms."""

    model_config = ConfigDict(extra="allow")

    price: Optional[float] = Field(None, ge=0, description="Price in the strategy's pricing model units.")
    price_per_fetch_micro: Optional[int] = Field(None, ge=0, description="Price per fetch in micro-dollars.")
    token_ttl_seconds: Optional[int] = Field(None, ge=0, description="Access token lifetime in seconds.")
    burst_rps: Optional[int] = Field(None, ge=0, description="Maximum requests per second.")
    purposes: Optional[List[str]] = Field(None, description="Intended purposes, e.g. inference or training.")
    use_case: Optional[str] = Field(None, description="Free-form intended use case.")

    def as_payload(self) -> Dict[str, Any]:
        """Return the JSON-shaped dict without unset fields, extras included."""
        return self.model_dump(mode="json", exclude_none=True)

    def headline_price(self) -> Optional[float]:
        """Price used in notifications: explicit price first, then per-fetch micro price."""
        if self.price is not None:
            return self.price
        if self.price_per_fetch_micro is not None:
            return float(self.price_per_fetch_micro)
        return None


class DealBreakerRule(BaseModel):
    """Hard-stop rule evaluated against a proposal field."""

    field: str = Field(..., min_length=1)
    operator: DealBreakerOperator
    value: Any = None

    def describe(self) -> str:
        return f"{self.field} {self.operator} {self.value}"


class StrategyBase(BaseModel):
    """Fields shared by strategy create and response models."""

    partner_type: PartnerType
    partner_name: Optional[str] = None
    license_types: List[LicenseType] = Field(default_factory=lambda: [LicenseType.rag_unrestricted])
    pricing_model: str = "per_fetch"
    min_price: Optional[float] = Field(None, ge=0)
    preferred_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    preferred_price_per_fetch_micro: Optional[int] = Field(None, ge=0)
    min_token_ttl_seconds: Optional[int] = Field(None, ge=0)
    preferred_token_ttl_seconds: Optional[int] = Field(None, ge=0)
    max_token_ttl_seconds: Optional[int] = Field(None, ge=0)
    min_burst_rps: Optional[int] = Field(None, ge=0)
    preferred_burst_rps: Optional[int] = Field(None, ge=0)
    max_burst_rps: Optional[int] = Field(None, ge=0)
    preferred_purposes: List[str] = Field(default_factory=list)
    negotiation_style: str = "balanced"
    auto_accept_threshold: float = Field(0.9, ge=0.0, le=1.0)
    deal_breakers: List[DealBreakerRule] = Field(default_factory=list)
    preferred_terms: Dict[str, Any] = Field(default_factory=dict)
    system_prompt: Optional[str] = None
    llm_provider: str = "openai"
    llm_model: str = "gpt-4"
    llm_temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_rounds: int = Field(5, ge=1)
    timeout_seconds: int = Field(3600, ge=1)

    @model_validator(mode="after")
    def check_partner_and_bounds(self) -> "StrategyBase":
        if self.partner_type == PartnerType.specific_partner and not self.partner_name:
            raise ValueError("partner_name is required when partner_type is specific_partner")
        if self.partner_type != PartnerType.specific_partner and self.partner_name:
            raise ValueError("partner_name is only allowed when partner_type is specific_partner")
        if not self.license_types:
            raise ValueError("license_types must not be empty")
        for label, bounds in (
            ("price", (self.min_price, self.preferred_price, self.max_price)),
            ("token_ttl_seconds", (self.min_token_ttl_seconds, self.preferred_token_ttl_seconds, self.max_token_ttl_seconds)),
            ("burst_rps", (self.min_burst_rps, self.preferred_burst_rps, self.max_burst_rps)),
        ):
            present = [value for value in bounds if value is not None]
            if present != sorted(present):
                raise ValueError(f"{label} bounds must satisfy min <= preferred <= max")
        return self


class StrategyCreate(StrategyBase):
    """Request model for creating a strategy."""

    publisher_id: int


class StrategyUpdate(BaseModel):
    """Partial update of a strategy. The merged result is re-validated."""

    partner_type: Optional[PartnerType] = None
    partner_name: Optional[str] = None
    license_types: Optional[List[LicenseType]] = None
    pricing_model: Optional[str] = None
    min_price: Optional[float] = None
    preferred_price: Optional[float] = None
    max_price: Optional[float] = None
    preferred_price_per_fetch_micro: Optional[int] = None
    min_token_ttl_seconds: Optional[int] = None
    preferred_token_ttl_seconds: Optional[int] = None
    max_token_ttl_seconds: Optional[int] = None
    min_burst_rps: Optional[int] = None
    preferred_burst_rps: Optional[int] = None
    max_burst_rps: Optional[int] = None
    preferred_purposes: Optional[List[str]] = None
    negotiation_style: Optional[str] = None
    auto_accept_threshold: Optional[float] = None
    deal_breakers: Optional[List[DealBreakerRule]] = None
    preferred_terms: Optional[Dict[str, Any]] = None
    system_prompt: Optional[str] = None
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    llm_temperature: Optional[float] = None
    max_rounds: Optional[int] = None
    timeout_seconds: Optional[int] = None


class StrategyOut(StrategyBase):
    """Response model for a strategy."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    publisher_id: int
    created_at: datetime
    updated_at: datetime


class CounterOffer(BaseModel):
    """Structured counter-offer returned by the model."""

    model_config = ConfigDict(extra="ignore")

    price: float = Field(..., ge=0)
    pricing_model: str
    terms: Dict[str, Any] = Field(default_factory=dict)
    reasoning: str = "LLM-generated counter-offer"
    tone: Literal["friendly", "neutral", "firm"] = "neutral"

    @field_validator("tone", mode="before")
    @classmethod
    def normalise_tone(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class NegotiationOutcome(BaseModel):
    """Result of an engine operation. Callers inspect ``status``."""

    negotiation_id: str
    status: NegotiationStatus
    round: Optional[int] = None
    counter_offer: Optional[CounterOffer] = None
    terms: Optional[Dict[str, Any]] = None
    reasons: List[str] = Field(default_factory=list)
    message: Optional[str] = None


class InitiateNegotiationRequest(BaseModel):
    """Request payload for opening a negotiation."""

    publisher_hostname: str = Field(..., description="Hostname identifying the publisher.")
    client_name: str = Field(..., description="AI company name, e.g. OpenAI.")
    proposed_terms: Terms
    client_id: Optional[str] = None
    url_patterns: Optional[List[str]] = Field(None, description="URL patterns the license would cover.")
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extra context: partner_identifier, use_case, license_type.",
    )


class CounterProposalRequest(BaseModel):
    """Request payload for a client counter-proposal."""

    counter_terms: Terms


class AcceptNegotiationRequest(BaseModel):
    """Manual acceptance; current terms are used when none are given."""

    final_terms: Optional[Terms] = None


class RejectNegotiationRequest(BaseModel):
    """Manual rejection."""

    reason: Optional[str] = None


class RoundOut(BaseModel):
    """Response model for a negotiation round."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    round_number: int
    actor: RoundActor
    action: RoundAction
    proposed_terms: Dict[str, Any]
    reasoning: Optional[str] = None
    llm_model: Optional[str] = None
    llm_tokens_used: Optional[int] = None
    llm_response_time_ms: Optional[int] = None
    created_at: datetime


class NegotiationOut(BaseModel):
    """Response model for a negotiation."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    publisher_id: int
    client_name: str
    strategy_id: Optional[int] = None
    status: NegotiationStatus
    current_round: int
    initial_proposal: Dict[str, Any]
    current_terms: Optional[Dict[str, Any]] = None
    final_terms: Optional[Dict[str, Any]] = None
    partner_type: Optional[PartnerType] = None
    partner_name: Optional[str] = None
    use_case: Optional[str] = None
    license_type: Optional[int] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    rejection_reason: Optional[str] = None
    initiated_at: datetime
    last_activity_at: datetime
    completed_at: Optional[datetime] = None
    generated_policy_id: Optional[int] = None


class NegotiationDetail(NegotiationOut):
    """Negotiation with its round history."""

    rounds: List[RoundOut] = Field(default_factory=list)


class NegotiationListResponse(BaseModel):
    negotiations: List[NegotiationOut]
    count: int
    limit: int
    offset: int


class StatusStatistics(BaseModel):
    status: NegotiationStatus
    count: int
    avg_rounds: float
    avg_duration_seconds: Optional[float] = None


class NegotiationStats(BaseModel):
    period_days: int
    statistics: List[StatusStatistics]


class PublisherCreate(BaseModel):
    name: str = Field(..., min_length=1)
    hostname: str = Field(..., min_length=1)


class PublisherOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    hostname: str
    created_at: datetime


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    publisher_id: int
    type: NotificationType
    title: str
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: List[NotificationOut]
    count: int
    unread_count: int


class PolicyOut(BaseModel):
    """Generated license policy."""

    policy_id: int
    negotiation_id: str
    policy_json: Dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str

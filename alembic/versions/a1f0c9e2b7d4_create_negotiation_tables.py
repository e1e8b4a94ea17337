"""Create publisher, strategy, negotiation, round, notification and policy tables.

Revision ID: a1f0c9e2b7d4
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "a1f0c9e2b7d4"
down_revision = None
branch_labels = None
depends_on = None

PARTNER_TYPES = ("specific_partner", "tier1_ai", "tier2_ai", "startup", "research")
STATUSES = ("negotiating", "accepted", "rejected", "timeout")
NOTIFICATION_TYPES = (
    "negotiation_initiated",
    "negotiation_round",
    "negotiation_accepted",
    "negotiation_rejected",
    "negotiation_timeout",
    "license_created",
)


def upgrade() -> None:
    op.create_table(
        "publishers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("hostname", sa.String(length=255), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "negotiation_strategies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("publisher_id", sa.Integer(), sa.ForeignKey("publishers.id"), nullable=False),
        sa.Column("partner_type", sa.Enum(*PARTNER_TYPES, name="partnertype"), nullable=False),
        sa.Column("partner_name", sa.String(length=100), nullable=True),
        sa.Column("license_types", sa.JSON(), nullable=False),
        sa.Column("pricing_model", sa.String(length=30), nullable=True),
        sa.Column("min_price", sa.Float(), nullable=True),
        sa.Column("preferred_price", sa.Float(), nullable=True),
        sa.Column("max_price", sa.Float(), nullable=True),
        sa.Column("preferred_price_per_fetch_micro", sa.Integer(), nullable=True),
        sa.Column("min_token_ttl_seconds", sa.Integer(), nullable=True),
        sa.Column("preferred_token_ttl_seconds", sa.Integer(), nullable=True),
        sa.Column("max_token_ttl_seconds", sa.Integer(), nullable=True),
        sa.Column("min_burst_rps", sa.Integer(), nullable=True),
        sa.Column("preferred_burst_rps", sa.Integer(), nullable=True),
        sa.Column("max_burst_rps", sa.Integer(), nullable=True),
        sa.Column("preferred_purposes", sa.JSON(), nullable=False),
        sa.Column("negotiation_style", sa.String(length=200), nullable=True),
        sa.Column("auto_accept_threshold", sa.Float(), nullable=True),
        sa.Column("deal_breakers", sa.JSON(), nullable=False),
        sa.Column("preferred_terms", sa.JSON(), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=True),
        sa.Column("llm_provider", sa.String(length=30), nullable=True),
        sa.Column("llm_model", sa.String(length=100), nullable=True),
        sa.Column("llm_temperature", sa.Float(), nullable=True),
        sa.Column("max_rounds", sa.Integer(), nullable=True),
        sa.Column("timeout_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_negotiation_strategies_publisher_id", "negotiation_strategies", ["publisher_id"])

    op.create_table(
        "policies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("publisher_id", sa.Integer(), sa.ForeignKey("publishers.id"), nullable=False),
        sa.Column("negotiation_id", sa.String(length=36), nullable=True),
        sa.Column("policy_json", sa.JSON(), nullable=False),
        sa.Column("version", sa.String(length=20), nullable=True),
        sa.Column("url_pattern", sa.String(length=500), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_policies_publisher_id", "policies", ["publisher_id"])

    op.create_table(
        "negotiations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("publisher_id", sa.Integer(), sa.ForeignKey("publishers.id"), nullable=False),
        sa.Column("client_id", sa.String(length=100), nullable=True),
        sa.Column("client_name", sa.String(length=200), nullable=False),
        sa.Column(
            "strategy_id",
            sa.Integer(),
            sa.ForeignKey("negotiation_strategies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.Enum(*STATUSES, name="negotiationstatus"), nullable=True),
        sa.Column("current_round", sa.Integer(), nullable=True),
        sa.Column("initial_proposal", sa.JSON(), nullable=False),
        sa.Column("current_terms", sa.JSON(), nullable=True),
        sa.Column("final_terms", sa.JSON(), nullable=True),
        sa.Column("partner_type", postgresql.ENUM(*PARTNER_TYPES, name="partnertype", create_type=False), nullable=True),
        sa.Column("partner_name", sa.String(length=100), nullable=True),
        sa.Column("use_case", sa.String(length=50), nullable=True),
        sa.Column("license_type", sa.Integer(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("initiated_at", sa.DateTime(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("generated_policy_id", sa.Integer(), sa.ForeignKey("policies.id"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_negotiations_publisher_id", "negotiations", ["publisher_id"])
    op.create_index("ix_negotiations_status", "negotiations", ["status"])

    op.create_table(
        "negotiation_rounds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("negotiation_id", sa.String(length=36), sa.ForeignKey("negotiations.id"), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("actor", sa.Enum("publisher", "client", name="roundactor"), nullable=False),
        sa.Column("action", sa.Enum("propose", "counter", "accept", "reject", name="roundaction"), nullable=False),
        sa.Column("proposed_terms", sa.JSON(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("llm_model", sa.String(length=100), nullable=True),
        sa.Column("llm_tokens_used", sa.Integer(), nullable=True),
        sa.Column("llm_response_time_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_negotiation_rounds_negotiation_id", "negotiation_rounds", ["negotiation_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("publisher_id", sa.Integer(), sa.ForeignKey("publishers.id"), nullable=False),
        sa.Column("type", sa.Enum(*NOTIFICATION_TYPES, name="notificationtype"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("related_entity_type", sa.String(length=50), nullable=True),
        sa.Column("related_entity_id", sa.String(length=100), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_notifications_publisher_id", "notifications", ["publisher_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("negotiation_rounds")
    op.drop_table("negotiations")
    op.drop_table("policies")
    op.drop_table("negotiation_strategies")
    op.drop_table("publishers")
    bind = op.get_bind()
    for enum_name in ("notificationtype", "roundaction", "roundactor", "negotiationstatus", "partnertype"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)

"""create_metering_tables

Revision ID: 5c1e7a9b3d20
Revises:
Create Date: 2026-01-12 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "5c1e7a9b3d20"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create pricing, balance, ledger credit, usage, package, purchase and quota tables."""

    op.create_table(
        "metering_pricing_configs",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("divisor", sa.Integer(), nullable=False),
        sa.Column("markup", sa.Numeric(12, 4), nullable=False),
        sa.Column("min_tokens_minor", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("key", name="uq_metering_pricing_configs_key"),
        sa.CheckConstraint("divisor > 0", name="ck_metering_pricing_divisor_positive"),
        sa.CheckConstraint("markup >= 0", name="ck_metering_pricing_markup_non_negative"),
        sa.CheckConstraint("min_tokens_minor >= 0", name="ck_metering_pricing_min_non_negative"),
    )

    op.create_table(
        "metering_tenant_balances",
        sa.Column("tenant_id", sa.String(length=255), primary_key=True),
        sa.Column("balance_minor", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("balance_minor >= 0", name="ck_metering_balance_non_negative"),
    )

    op.create_table(
        "metering_ledger_credits",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_metering_ledger_credits_key"),
    )
    op.create_index(
        "ix_metering_ledger_credits_tenant_id", "metering_ledger_credits", ["tenant_id"]
    )

    op.create_table(
        "metering_usage_records",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("feature_key", sa.String(length=100), nullable=False),
        sa.Column("raw_units", sa.BigInteger(), nullable=False),
        sa.Column("charged_minor", sa.BigInteger(), nullable=False),
        sa.Column("reference_id", sa.String(length=255), nullable=True),
        sa.Column("usage_metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "tenant_id", "feature_key", "reference_id", name="uq_metering_usage_reference"
        ),
    )
    op.create_index("ix_metering_usage_records_tenant_id", "metering_usage_records", ["tenant_id"])
    op.create_index(
        "ix_metering_usage_tenant_created", "metering_usage_records", ["tenant_id", "created_at"]
    )
    op.create_index(
        "ix_metering_usage_tenant_feature", "metering_usage_records", ["tenant_id", "feature_key"]
    )

    op.create_table(
        "metering_token_packages",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("token_amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("bonus_tokens_minor", sa.BigInteger(), nullable=False),
        sa.Column("price_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_popular", sa.Boolean(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "metering_purchases",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column(
            "package_id",
            sa.String(length=50),
            sa.ForeignKey("metering_token_packages.id"),
            nullable=False,
        ),
        sa.Column("payment_reference", sa.String(length=100), nullable=False),
        sa.Column("token_amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("price_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("transaction_id", sa.String(length=100), nullable=True),
        sa.Column("payment_type", sa.String(length=50), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("payment_reference", name="uq_metering_purchases_reference"),
        sa.CheckConstraint(
            "status IN ('pending', 'success', 'failed', 'expired')",
            name="ck_metering_purchases_status",
        ),
    )
    op.create_index("ix_metering_purchases_tenant_id", "metering_purchases", ["tenant_id"])
    op.create_index(
        "ix_metering_purchases_tenant_created", "metering_purchases", ["tenant_id", "created_at"]
    )

    op.create_table(
        "metering_subscription_quotas",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("subscription_id", sa.String(length=50), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("monthly_cap", sa.Integer(), nullable=False),
        sa.Column("daily_cap", sa.Integer(), nullable=False),
        sa.Column("used_monthly", sa.Integer(), nullable=False),
        sa.Column("used_today", sa.Integer(), nullable=False),
        sa.Column("last_usage_date", sa.Date(), nullable=True),
        sa.Column("cycle_start", sa.Date(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "subscription_id", "kind", name="uq_metering_quota_subscription_kind"
        ),
        sa.CheckConstraint("used_monthly >= 0", name="ck_metering_quota_used_monthly"),
        sa.CheckConstraint("used_today >= 0", name="ck_metering_quota_used_today"),
    )
    op.create_index(
        "ix_metering_subscription_quotas_tenant_id", "metering_subscription_quotas", ["tenant_id"]
    )


def downgrade() -> None:
    """Drop the metering tables."""
    op.drop_index(
        "ix_metering_subscription_quotas_tenant_id", table_name="metering_subscription_quotas"
    )
    op.drop_table("metering_subscription_quotas")
    op.drop_index("ix_metering_purchases_tenant_created", table_name="metering_purchases")
    op.drop_index("ix_metering_purchases_tenant_id", table_name="metering_purchases")
    op.drop_table("metering_purchases")
    op.drop_table("metering_token_packages")
    op.drop_index("ix_metering_usage_tenant_feature", table_name="metering_usage_records")
    op.drop_index("ix_metering_usage_tenant_created", table_name="metering_usage_records")
    op.drop_index("ix_metering_usage_records_tenant_id", table_name="metering_usage_records")
    op.drop_table("metering_usage_records")
    op.drop_index("ix_metering_ledger_credits_tenant_id", table_name="metering_ledger_credits")
    op.drop_table("metering_ledger_credits")
    op.drop_table("metering_tenant_balances")
    op.drop_table("metering_pricing_configs")

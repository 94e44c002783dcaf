"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CREDITS = sa.Numeric(18, 4)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    # --- accounts ---
    op.create_table(
        "accounts",
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("balance", CREDITS, nullable=False, server_default="0"),
        sa.Column("total_purchased", CREDITS, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("account_id"),
        sa.CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    # --- transactions (append-only) ---
    op.create_table(
        "transactions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("type", sa.Enum("debit", "credit", name="transactiontype"), nullable=False),
        sa.Column("amount", CREDITS, nullable=True),
        sa.Column("balance_before", CREDITS, nullable=False),
        sa.Column("balance_after", CREDITS, nullable=False),
        sa.Column(
            "source",
            sa.Enum(
                "usage",
                "stripe_payment",
                "bitcoin_payment",
                "voucher",
                "admin_adjustment",
                "registration_bonus",
                "registration_bonus_denied",
                name="transactionsource",
            ),
            nullable=False,
        ),
        sa.Column("external_event_id", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("related_job_id", sa.String(128), nullable=True),
        sa.Column("flagged_for_audit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.account_id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source", "external_event_id", name="uq_transactions_source_event"),
        sa.CheckConstraint(
            "(source = 'registration_bonus_denied' AND amount IS NULL) OR (amount IS NOT NULL AND amount > 0)",
            name="ck_transactions_amount_positive",
        ),
    )
    op.create_index("ix_transactions_account_created", "transactions", ["account_id", "created_at"])
    op.create_index("ix_transactions_related_job_id", "transactions", ["related_job_id"])

    # --- vouchers ---
    op.create_table(
        "vouchers",
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("credit_amount", CREDITS, nullable=False),
        sa.Column("usage_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("campaign_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_by", sa.String(320), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("code"),
        sa.CheckConstraint("used_count <= usage_limit", name="ck_vouchers_usage_within_limit"),
        sa.CheckConstraint("credit_amount > 0", name="ck_vouchers_credit_amount_positive"),
    )
    op.create_index("ix_vouchers_campaign_name", "vouchers", ["campaign_name"])

    op.create_table(
        "voucher_redemptions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("voucher_code", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("transaction_id", sa.UUID(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["voucher_code"], ["vouchers.code"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("voucher_code", "account_id", name="uq_voucher_account"),
    )
    op.create_index("ix_voucher_redemptions_voucher_code", "voucher_redemptions", ["voucher_code"])
    op.create_index("ix_voucher_redemptions_account_id", "voucher_redemptions", ["account_id"])

    # --- registration_tracking ---
    op.create_table(
        "registration_tracking",
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=False, server_default=""),
        sa.Column("browser_fingerprint", sa.String(255), nullable=False, server_default=""),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("registration_method", sa.String(32), nullable=False, server_default="email"),
        sa.Column("suspicious_score", sa.Integer(), nullable=False),
        sa.Column("duplicate_ip_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicate_fingerprint_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_awarded", CREDITS, nullable=False),
        sa.Column("credits_reduced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("transaction_id", sa.UUID(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("account_id"),
    )
    op.create_index("ix_registration_ip_created", "registration_tracking", ["ip_address", "created_at"])
    op.create_index(
        "ix_registration_fingerprint_created",
        "registration_tracking",
        ["browser_fingerprint", "created_at"],
    )
    op.create_index("ix_registration_score", "registration_tracking", ["suspicious_score"])

    # --- credit_holds ---
    op.create_table(
        "credit_holds",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("related_job_id", sa.String(128), nullable=False),
        sa.Column("units_estimate", sa.Integer(), nullable=False),
        sa.Column("amount", CREDITS, nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "settled", "released", "expired", name="holdstatus"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("units_processed", sa.Integer(), nullable=True),
        sa.Column("settled_amount", CREDITS, nullable=True),
        sa.Column("shortfall", CREDITS, nullable=True),
        sa.Column("transaction_id", sa.UUID(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.account_id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("related_job_id"),
    )
    op.create_index("ix_credit_holds_account_status", "credit_holds", ["account_id", "status"])
    op.create_index("ix_credit_holds_status_expires", "credit_holds", ["status", "expires_at"])

    # --- webhook_events ---
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.Enum("stripe", "opennode", name="webhookprovider"), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=True),
        sa.Column("event_type", sa.String(128), nullable=True),
        sa.Column(
            "outcome",
            sa.Enum(
                "processed", "duplicate", "ignored", "rejected", "failed",
                name="webhookoutcome",
            ),
            nullable=False,
        ),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_events_provider_event", "webhook_events", ["provider", "event_id"])
    op.create_index("ix_webhook_events_created_at", "webhook_events", ["created_at"])

    # --- rate_limit_buckets ---
    op.create_table(
        "rate_limit_buckets",
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    # --- audit_logs ---
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("actor", sa.String(320), nullable=False),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(128), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"])
    op.create_index("ix_audit_logs_event_type", "audit_logs", ["event_type"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("rate_limit_buckets")
    op.drop_table("webhook_events")
    op.drop_table("credit_holds")
    op.drop_table("registration_tracking")
    op.drop_table("voucher_redemptions")
    op.drop_table("vouchers")
    op.drop_table("transactions")
    op.drop_table("accounts")
    op.execute("DROP TYPE IF EXISTS webhookoutcome")
    op.execute("DROP TYPE IF EXISTS webhookprovider")
    op.execute("DROP TYPE IF EXISTS holdstatus")
    op.execute("DROP TYPE IF EXISTS transactionsource")
    op.execute("DROP TYPE IF EXISTS transactiontype")

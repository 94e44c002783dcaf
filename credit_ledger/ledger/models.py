import enum
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.db.base import Base, CreditAmount, TimestampMixin, UUIDMixin


class TransactionType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionSource(str, enum.Enum):
    USAGE = "usage"
    STRIPE_PAYMENT = "stripe_payment"
    BITCOIN_PAYMENT = "bitcoin_payment"
    VOUCHER = "voucher"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    REGISTRATION_BONUS = "registration_bonus"
    # Audit marker: no amount, never moves the balance.
    REGISTRATION_BONUS_DENIED = "registration_bonus_denied"


# Channels where the customer paid money; these grow Account.total_purchased.
PAID_SOURCES = frozenset({TransactionSource.STRIPE_PAYMENT, TransactionSource.BITCOIN_PAYMENT})

# Sources that must carry an external idempotency key.
KEYED_SOURCES = frozenset(
    {
        TransactionSource.STRIPE_PAYMENT,
        TransactionSource.BITCOIN_PAYMENT,
        TransactionSource.VOUCHER,
        TransactionSource.REGISTRATION_BONUS,
        TransactionSource.REGISTRATION_BONUS_DENIED,
    }
)


class Transaction(UUIDMixin, TimestampMixin, Base):
    """Append-only ledger row. Never updated or deleted."""

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("source", "external_event_id", name="uq_transactions_source_event"),
        Index("ix_transactions_account_created", "account_id", "created_at"),
        CheckConstraint(
            "(source = 'registration_bonus_denied' AND amount IS NULL) OR (amount IS NOT NULL AND amount > 0)",
            name="ck_transactions_amount_positive",
        ),
    )

    account_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.account_id"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, values_callable=lambda e: [m.value for m in e]), nullable=False
    )
    # Always positive; direction comes from `type`
    amount: Mapped[Decimal | None] = mapped_column(CreditAmount, nullable=True)
    balance_before: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    source: Mapped[TransactionSource] = mapped_column(
        Enum(TransactionSource, values_callable=lambda e: [m.value for m in e]), nullable=False
    )
    external_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    related_job_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    flagged_for_audit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

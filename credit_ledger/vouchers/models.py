import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.db.base import Base, CreditAmount, TimestampMixin, UUIDMixin


class Voucher(TimestampMixin, Base):
    __tablename__ = "vouchers"
    __table_args__ = (
        CheckConstraint("used_count <= usage_limit", name="ck_vouchers_usage_within_limit"),
        CheckConstraint("credit_amount > 0", name="ck_vouchers_credit_amount_positive"),
    )

    # Canonical form: uppercase, dash-segmented (XXXX-XXXX-XXXX)
    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    credit_amount: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    usage_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    campaign_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(320), nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class VoucherRedemption(UUIDMixin, TimestampMixin, Base):
    """One row per (voucher, account): the voucher's `usedBy` set."""
    __tablename__ = "voucher_redemptions"
    __table_args__ = (
        UniqueConstraint("voucher_code", "account_id", name="uq_voucher_account"),
    )

    voucher_code: Mapped[str] = mapped_column(
        String(64), ForeignKey("vouchers.code"), nullable=False, index=True
    )
    account_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )

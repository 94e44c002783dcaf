import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.db.base import Base, CreditAmount, TimestampMixin, UUIDMixin


class HoldStatus(str, enum.Enum):
    ACTIVE = "active"
    SETTLED = "settled"
    RELEASED = "released"
    # Lapsed before settlement; the finished job is still charged.
    EXPIRED = "expired"


class CreditHold(UUIDMixin, TimestampMixin, Base):
    """Credits reserved for a translation job before the paid work starts."""
    __tablename__ = "credit_holds"
    __table_args__ = (
        Index("ix_credit_holds_account_status", "account_id", "status"),
        Index("ix_credit_holds_status_expires", "status", "expires_at"),
    )

    account_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.account_id"), nullable=False
    )
    related_job_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    units_estimate: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    status: Mapped[HoldStatus] = mapped_column(
        Enum(HoldStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=HoldStatus.ACTIVE,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Filled in on settlement
    units_processed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    settled_amount: Mapped[Decimal | None] = mapped_column(CreditAmount, nullable=True)
    shortfall: Mapped[Decimal | None] = mapped_column(CreditAmount, nullable=True)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

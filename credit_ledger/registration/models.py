import uuid
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.db.base import Base, CreditAmount, TimestampMixin


class RegistrationTracking(TimestampMixin, Base):
    """Written once when the registration bonus is decided; never mutated."""
    __tablename__ = "registration_tracking"
    __table_args__ = (
        Index("ix_registration_ip_created", "ip_address", "created_at"),
        Index("ix_registration_fingerprint_created", "browser_fingerprint", "created_at"),
        Index("ix_registration_score", "suspicious_score"),
    )

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    browser_fingerprint: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    registration_method: Mapped[str] = mapped_column(String(32), nullable=False, default="email")
    # 0-100
    suspicious_score: Mapped[int] = mapped_column(Integer, nullable=False)
    duplicate_ip_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicate_fingerprint_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_awarded: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    credits_reduced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True
    )

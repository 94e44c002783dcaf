from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.db.base import Base, CreditAmount, TimestampMixin, utcnow


class Account(TimestampMixin, Base):
    """Running balance per external account. Rows are created lazily on first mutation."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    # Opaque id owned by the auth collaborator
    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False, default=Decimal("0"))
    total_purchased: Mapped[Decimal] = mapped_column(
        CreditAmount, nullable=False, default=Decimal("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    # Compare-and-set counter: every flush checks and bumps it.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.db.base import Base


class RateLimitBucket(Base):
    """Fixed-window counter shared by every worker process."""
    __tablename__ = "rate_limit_buckets"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

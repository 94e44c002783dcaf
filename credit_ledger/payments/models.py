import enum

from sqlalchemy import Enum, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.db.base import Base, TimestampMixin, UUIDMixin


class WebhookProvider(str, enum.Enum):
    STRIPE = "stripe"
    OPENNODE = "opennode"


class WebhookOutcome(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"


class WebhookEvent(UUIDMixin, TimestampMixin, Base):
    """One row per delivery attempt; shared by every worker process."""
    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_provider_event", "provider", "event_id"),
        Index("ix_webhook_events_created_at", "created_at"),
    )

    provider: Mapped[WebhookProvider] = mapped_column(
        Enum(WebhookProvider, values_callable=lambda e: [m.value for m in e]), nullable=False
    )
    event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    outcome: Mapped[WebhookOutcome] = mapped_column(
        Enum(WebhookOutcome, values_callable=lambda e: [m.value for m in e]), nullable=False
    )
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

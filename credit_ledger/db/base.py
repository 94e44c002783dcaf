import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Credits are stored with four decimal places (0.7 credits per chunk etc).
CREDIT_PRECISION = Decimal("0.0001")
CreditAmount = Numeric(18, 4)


class Base(DeclarativeBase):
    pass


class UUIDMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=lambda: datetime.now(timezone.utc),
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands timestamps back naive; treat those as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_credits(value: object) -> Decimal:
    """Normalise a numeric DB/API value into a quantized credit Decimal."""
    if value is None:
        return Decimal("0").quantize(CREDIT_PRECISION)
    return Decimal(str(value)).quantize(CREDIT_PRECISION)

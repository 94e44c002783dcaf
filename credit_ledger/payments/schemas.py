from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from credit_ledger.payments.models import WebhookOutcome, WebhookProvider


class PaymentEvent(BaseModel):
    """Normalized, already-verified payment-completed event from any rail."""

    account_id: str = Field(min_length=1)
    credits: Decimal = Field(gt=0)
    external_event_id: str = Field(min_length=1)
    amount_paid_minor: int | None = None
    currency: str | None = None
    package_name: str | None = None


class WebhookAck(BaseModel):
    received: bool = True
    outcome: WebhookOutcome
    event_id: str | None = None
    credits_added: Decimal | None = None
    new_balance: Decimal | None = None


class WebhookEventResponse(BaseModel):
    model_config = {"from_attributes": True}

    provider: WebhookProvider
    event_id: str | None
    event_type: str | None
    outcome: WebhookOutcome
    detail: str | None
    created_at: datetime

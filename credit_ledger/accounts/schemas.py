import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from credit_ledger.ledger.models import TransactionSource, TransactionType


class AccountSummaryResponse(BaseModel):
    model_config = {"from_attributes": True}

    account_id: str
    balance: Decimal
    total_purchased: Decimal
    transaction_count: int
    held: Decimal
    available: Decimal


class TransactionResponse(BaseModel):
    model_config = {"from_attributes": True, "populate_by_name": True}

    id: uuid.UUID
    account_id: str
    type: TransactionType
    amount: Decimal | None
    balance_before: Decimal
    balance_after: Decimal
    source: TransactionSource
    external_event_id: str | None
    description: str
    related_job_id: str | None
    flagged_for_audit: bool
    metadata: dict | None = Field(default=None, validation_alias="metadata_")
    created_at: datetime


class TransactionPageResponse(BaseModel):
    items: list[TransactionResponse]
    next_cursor: str | None

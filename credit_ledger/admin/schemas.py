import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class AdjustCreditsRequest(BaseModel):
    account_id: str = Field(min_length=1, max_length=128)
    delta_credits: Decimal
    description: str = Field(min_length=1, max_length=500)


class AdjustCreditsResponse(BaseModel):
    account_id: str
    previous_credits: Decimal
    new_credits_balance: Decimal
    transaction_id: uuid.UUID


class DiscrepancyResponse(BaseModel):
    model_config = {"from_attributes": True}

    account_id: str
    recorded_balance: Decimal
    ledger_balance: Decimal
    difference: Decimal
    has_discrepancy: bool


class LedgerTotalsResponse(BaseModel):
    credited_by_source: dict[str, Decimal]
    total_debited: Decimal
    outstanding_balance: Decimal
    account_count: int
    flagged_transactions: int


class AuditLogResponse(BaseModel):
    model_config = {"from_attributes": True, "populate_by_name": True}

    id: uuid.UUID
    actor: str
    event_type: str
    resource_type: str | None
    resource_id: str | None
    description: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_")
    created_at: datetime

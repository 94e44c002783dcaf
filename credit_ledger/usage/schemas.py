import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from credit_ledger.usage.models import HoldStatus


class ReserveRequest(BaseModel):
    units_estimate: int = Field(gt=0)
    related_job_id: str = Field(min_length=1, max_length=128)


class HoldResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    account_id: str
    related_job_id: str
    units_estimate: int
    amount: Decimal
    status: HoldStatus
    expires_at: datetime
    settled_amount: Decimal | None
    shortfall: Decimal | None
    created_at: datetime


class UsageReport(BaseModel):
    units_processed: int = Field(gt=0)
    related_job_id: str = Field(min_length=1, max_length=128)
    hold_id: uuid.UUID | None = None


class SettlementResponse(BaseModel):
    related_job_id: str
    cost: Decimal
    credits_charged: Decimal
    new_balance: Decimal
    shortfall: Decimal
    clamped: bool
    replayed: bool
    transaction_id: uuid.UUID | None
    hold_id: uuid.UUID | None


class CostEstimate(BaseModel):
    units: int
    chunks: int
    cost: Decimal

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class RedeemVoucherRequest(BaseModel):
    voucher_code: str = Field(min_length=1, max_length=64)


class RedeemVoucherResponse(BaseModel):
    success: bool = True
    code: str
    credits_added: Decimal
    new_balance: Decimal
    campaign_name: str
    description: str


class GenerateVouchersRequest(BaseModel):
    credit_amount: Decimal = Field(gt=0)
    quantity: int = Field(gt=0)
    campaign_name: str = Field(min_length=1, max_length=255)
    expiration_days: int | None = Field(default=None, gt=0)
    usage_limit: int = Field(default=1, ge=1)
    description: str = ""


class VoucherResponse(BaseModel):
    model_config = {"from_attributes": True}

    code: str
    credit_amount: Decimal
    usage_limit: int
    used_count: int
    is_active: bool
    expires_at: datetime | None
    campaign_name: str
    description: str
    created_by: str
    created_at: datetime


class GenerateVouchersResponse(BaseModel):
    vouchers: list[VoucherResponse]
    quantity: int
    total_credits: Decimal
    campaign_name: str


class VoucherActiveUpdate(BaseModel):
    is_active: bool


class CampaignStats(BaseModel):
    name: str
    total_vouchers: int = 0
    active_vouchers: int = 0
    used_vouchers: int = 0
    expired_vouchers: int = 0
    total_credits: Decimal = Decimal("0")
    redeemed_credits: Decimal = Decimal("0")
    redemption_rate: float = 0.0


class VoucherStatsResponse(BaseModel):
    total_vouchers: int
    active_vouchers: int
    expired_vouchers: int
    used_vouchers: int
    total_credits_generated: Decimal
    total_credits_redeemed: Decimal
    redemption_rate: float
    campaigns: list[CampaignStats]

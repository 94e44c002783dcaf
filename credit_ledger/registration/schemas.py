from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class RegistrationCheckRequest(BaseModel):
    browser_fingerprint: str = Field(min_length=1, max_length=255)
    ip_address: str | None = None


class RegistrationCheckResponse(BaseModel):
    is_allowed: bool
    suspicious_score: int
    credits_to_award: Decimal
    duplicate_ip_count: int
    duplicate_fingerprint_count: int
    reasons: list[str]


class RegistrationRecordRequest(BaseModel):
    browser_fingerprint: str = Field(min_length=1, max_length=255)
    user_agent: str | None = Field(default=None, max_length=512)
    registration_method: Literal["email", "google"] = "email"


class RegistrationRecordResponse(BaseModel):
    account_id: str
    suspicious_score: int
    credits_awarded: Decimal
    new_balance: Decimal
    replayed: bool
    reasons: list[str] = []


class RegistrationTrackingResponse(BaseModel):
    model_config = {"from_attributes": True}

    account_id: str
    email: str | None
    ip_address: str
    browser_fingerprint: str
    suspicious_score: int
    duplicate_ip_count: int
    duplicate_fingerprint_count: int
    credits_awarded: Decimal
    credits_reduced: bool
    registration_method: str
    created_at: datetime


class RegistrationStatsResponse(BaseModel):
    days: int
    total_registrations: int
    suspicious_registrations: int
    credits_awarded: Decimal
    credits_saved: Decimal
    average_score: float

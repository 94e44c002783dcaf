from fastapi import APIRouter, Depends, Request

from credit_ledger.config import settings
from credit_ledger.core.dependencies import CurrentIdentity, DbSession
from credit_ledger.ratelimit.service import client_identifier, rate_limit
from credit_ledger.registration import service as registration_service
from credit_ledger.registration.schemas import (
    RegistrationCheckRequest,
    RegistrationCheckResponse,
    RegistrationRecordRequest,
    RegistrationRecordResponse,
)

router = APIRouter(prefix="/registration", tags=["registration"])

registration_quota = rate_limit(
    "registration",
    settings.rate_limit_registration,
    settings.rate_limit_registration_window_seconds,
)


@router.post("/check", response_model=RegistrationCheckResponse)
async def check_registration(
    body: RegistrationCheckRequest, request: Request, db: DbSession
) -> RegistrationCheckResponse:
    ip_address = body.ip_address or client_identifier(request)
    check = await registration_service.score_registration(db, ip_address, body.browser_fingerprint)
    return RegistrationCheckResponse(
        is_allowed=check.is_allowed,
        suspicious_score=check.suspicious_score,
        credits_to_award=check.credits_to_award,
        duplicate_ip_count=check.duplicate_ip_count,
        duplicate_fingerprint_count=check.duplicate_fingerprint_count,
        reasons=check.reasons,
    )


@router.post(
    "/record",
    response_model=RegistrationRecordResponse,
    dependencies=[Depends(registration_quota)],
)
async def record_registration(
    body: RegistrationRecordRequest,
    request: Request,
    identity: CurrentIdentity,
    db: DbSession,
) -> RegistrationRecordResponse:
    ip_address = client_identifier(request)
    check = await registration_service.score_registration(db, ip_address, body.browser_fingerprint)
    award = await registration_service.award_registration_bonus(
        db,
        identity.account_id,
        check.suspicious_score,
        ip_address=ip_address,
        browser_fingerprint=body.browser_fingerprint,
        email=identity.email,
        user_agent=body.user_agent or request.headers.get("user-agent"),
        registration_method=body.registration_method,
        duplicate_ip_count=check.duplicate_ip_count,
        duplicate_fingerprint_count=check.duplicate_fingerprint_count,
    )
    return RegistrationRecordResponse(
        account_id=identity.account_id,
        suspicious_score=award.record.suspicious_score,
        credits_awarded=award.record.credits_awarded,
        new_balance=award.new_balance,
        replayed=award.replayed,
        reasons=[] if award.replayed else check.reasons,
    )

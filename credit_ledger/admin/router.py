from decimal import Decimal

from fastapi import APIRouter, Query

from credit_ledger.accounts.schemas import AccountSummaryResponse
from credit_ledger.admin import service as admin_service
from credit_ledger.admin.schemas import (
    AdjustCreditsRequest,
    AdjustCreditsResponse,
    AuditLogResponse,
    DiscrepancyResponse,
    LedgerTotalsResponse,
)
from credit_ledger.audit import service as audit_service
from credit_ledger.core.dependencies import CurrentAdmin, DbSession
from credit_ledger.payments import service as payment_service
from credit_ledger.payments.models import WebhookProvider
from credit_ledger.payments.schemas import WebhookEventResponse
from credit_ledger.registration import service as registration_service
from credit_ledger.registration.schemas import (
    RegistrationStatsResponse,
    RegistrationTrackingResponse,
)
from credit_ledger.reporting import service as reporting_service
from credit_ledger.vouchers import service as voucher_service
from credit_ledger.vouchers.schemas import (
    GenerateVouchersRequest,
    GenerateVouchersResponse,
    VoucherActiveUpdate,
    VoucherResponse,
    VoucherStatsResponse,
)

router = APIRouter(prefix="/admin", tags=["admin"])


def _actor(admin) -> str:
    return admin.email or admin.account_id


# ── Credits ───────────────────────────────────────────────────────────────────

@router.post("/credits/adjust", response_model=AdjustCreditsResponse)
async def adjust_credits(
    body: AdjustCreditsRequest, admin: CurrentAdmin, db: DbSession
) -> AdjustCreditsResponse:
    change = await admin_service.adjust_credits(
        db, body.account_id, body.delta_credits, body.description, _actor(admin)
    )
    return AdjustCreditsResponse(
        account_id=body.account_id,
        previous_credits=change.previous_balance,
        new_credits_balance=change.new_balance,
        transaction_id=change.transaction.id,
    )


@router.get("/accounts/{account_id}", response_model=AccountSummaryResponse)
async def account_summary(account_id: str, admin: CurrentAdmin, db: DbSession):
    summary = await reporting_service.get_account_summary(db, account_id)
    return AccountSummaryResponse.model_validate(summary)


@router.get("/accounts/{account_id}/discrepancy", response_model=DiscrepancyResponse)
async def account_discrepancy(account_id: str, admin: CurrentAdmin, db: DbSession):
    return DiscrepancyResponse.model_validate(
        await reporting_service.detect_discrepancy(db, account_id)
    )


@router.get("/ledger/totals", response_model=LedgerTotalsResponse)
async def ledger_totals(admin: CurrentAdmin, db: DbSession) -> LedgerTotalsResponse:
    return LedgerTotalsResponse(**await reporting_service.get_ledger_totals(db))


# ── Registrations ─────────────────────────────────────────────────────────────

@router.get("/registrations/suspicious", response_model=list[RegistrationTrackingResponse])
async def suspicious_registrations(
    admin: CurrentAdmin,
    db: DbSession,
    min_score: int = Query(default=50, ge=0, le=100),
    limit: int = Query(default=100, ge=1, le=500),
):
    return await reporting_service.list_suspicious_registrations(db, min_score, limit)


@router.get("/registrations/stats", response_model=RegistrationStatsResponse)
async def registration_stats(
    admin: CurrentAdmin, db: DbSession, days: int = Query(default=30, ge=1, le=365)
) -> RegistrationStatsResponse:
    return RegistrationStatsResponse(**await registration_service.get_registration_stats(db, days))


# ── Vouchers ──────────────────────────────────────────────────────────────────

@router.post("/vouchers", response_model=GenerateVouchersResponse, status_code=201)
async def generate_vouchers(
    body: GenerateVouchersRequest, admin: CurrentAdmin, db: DbSession
) -> GenerateVouchersResponse:
    vouchers = await voucher_service.generate_vouchers(
        db,
        credit_amount=body.credit_amount,
        quantity=body.quantity,
        campaign_name=body.campaign_name,
        created_by=_actor(admin),
        expiration_days=body.expiration_days,
        usage_limit=body.usage_limit,
        description=body.description,
    )
    return GenerateVouchersResponse(
        vouchers=[VoucherResponse.model_validate(v) for v in vouchers],
        quantity=len(vouchers),
        total_credits=sum((v.credit_amount for v in vouchers), Decimal("0")),
        campaign_name=body.campaign_name.strip(),
    )


@router.get("/vouchers", response_model=list[VoucherResponse])
async def list_vouchers(
    admin: CurrentAdmin,
    db: DbSession,
    campaign_name: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    return await voucher_service.list_vouchers(db, campaign_name, limit, offset)


@router.get("/vouchers/stats", response_model=VoucherStatsResponse)
async def voucher_stats(admin: CurrentAdmin, db: DbSession) -> VoucherStatsResponse:
    return await voucher_service.get_voucher_stats(db)


@router.patch("/vouchers/{code}", response_model=VoucherResponse)
async def set_voucher_active(
    code: str, body: VoucherActiveUpdate, admin: CurrentAdmin, db: DbSession
):
    return await voucher_service.set_voucher_active(db, code, body.is_active, _actor(admin))


# ── Logs ──────────────────────────────────────────────────────────────────────

@router.get("/webhooks", response_model=list[WebhookEventResponse])
async def webhook_events(
    admin: CurrentAdmin,
    db: DbSession,
    provider: WebhookProvider | None = None,
    limit: int = Query(default=50, ge=1, le=500),
):
    return await payment_service.list_webhook_events(db, provider, limit)


@router.get("/audit", response_model=list[AuditLogResponse])
async def audit_events(
    admin: CurrentAdmin,
    db: DbSession,
    event_type: str | None = None,
    resource_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
):
    return await audit_service.list_events(db, event_type, resource_id, limit)

import uuid

from fastapi import APIRouter, Query

from credit_ledger.core.dependencies import CurrentIdentity, DbSession
from credit_ledger.usage import service as usage_service
from credit_ledger.usage.schemas import (
    CostEstimate,
    HoldResponse,
    ReserveRequest,
    SettlementResponse,
    UsageReport,
)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/estimate", response_model=CostEstimate)
async def estimate(units: int = Query(gt=0)) -> CostEstimate:
    return CostEstimate(
        units=units,
        chunks=usage_service.chunk_count(units),
        cost=usage_service.estimate_cost(units),
    )


@router.post("/holds", response_model=HoldResponse, status_code=201)
async def reserve(body: ReserveRequest, identity: CurrentIdentity, db: DbSession):
    return await usage_service.reserve_credits(
        db, identity.account_id, body.units_estimate, body.related_job_id
    )


@router.delete("/holds/{hold_id}", response_model=HoldResponse)
async def release(hold_id: uuid.UUID, identity: CurrentIdentity, db: DbSession):
    return await usage_service.release_hold(db, hold_id, account_id=identity.account_id)


@router.post("/report", response_model=SettlementResponse)
async def report_usage(
    body: UsageReport, identity: CurrentIdentity, db: DbSession
) -> SettlementResponse:
    settlement = await usage_service.settle_usage(
        db,
        identity.account_id,
        body.units_processed,
        body.related_job_id,
        hold_id=body.hold_id,
    )
    return SettlementResponse(
        related_job_id=settlement.related_job_id,
        cost=settlement.cost,
        credits_charged=settlement.charged,
        new_balance=settlement.new_balance,
        shortfall=settlement.shortfall,
        clamped=settlement.clamped,
        replayed=settlement.replayed,
        transaction_id=settlement.transaction_id,
        hold_id=settlement.hold_id,
    )

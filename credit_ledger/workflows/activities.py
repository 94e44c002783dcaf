"""
Temporal activities for usage settlement.

Business rejections (insufficient credits, released hold) are returned as
results, not raised, so Temporal does not retry them. Storage errors are
raised and retried by the activity retry policy.
"""
import uuid
from dataclasses import dataclass

from temporalio import activity

from credit_ledger.core.exceptions import AppError
from credit_ledger.db import session as db_session
from credit_ledger.usage import service as usage_service


@dataclass
class SettleUsageInput:
    account_id: str
    related_job_id: str
    units_processed: int
    hold_id: str | None = None


@dataclass
class SettleUsageOutput:
    success: bool
    cost: str = "0"  # Decimal as string for serialization
    credits_charged: str = "0"
    new_balance: str = "0"
    shortfall: str = "0"
    clamped: bool = False
    replayed: bool = False
    transaction_id: str = ""
    error: str = ""
    error_code: str = ""


@dataclass
class ReleaseHoldInput:
    hold_id: str
    account_id: str | None = None


@activity.defn
async def settle_usage(input: SettleUsageInput) -> SettleUsageOutput:
    hold_id = uuid.UUID(input.hold_id) if input.hold_id else None
    async with db_session.async_session_factory() as db:
        try:
            settlement = await usage_service.settle_usage(
                db,
                input.account_id,
                input.units_processed,
                input.related_job_id,
                hold_id=hold_id,
            )
        except AppError as exc:
            activity.logger.warning("Settlement of %s rejected: %s", input.related_job_id, exc.message)
            return SettleUsageOutput(success=False, error=exc.message, error_code=exc.code)

    return SettleUsageOutput(
        success=True,
        cost=str(settlement.cost),
        credits_charged=str(settlement.charged),
        new_balance=str(settlement.new_balance),
        shortfall=str(settlement.shortfall),
        clamped=settlement.clamped,
        replayed=settlement.replayed,
        transaction_id=str(settlement.transaction_id or ""),
    )


@activity.defn
async def release_hold(input: ReleaseHoldInput) -> bool:
    """Returns False when the hold could not be released (already settled)."""
    async with db_session.async_session_factory() as db:
        try:
            await usage_service.release_hold(db, uuid.UUID(input.hold_id), input.account_id)
        except AppError as exc:
            activity.logger.warning("Hold %s not released: %s", input.hold_id, exc.message)
            return False
    return True

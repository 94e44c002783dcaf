"""
Usage debit calculator with reserve-then-commit settlement.

1. reserve_credits  - before the translation call, hold the estimated cost
2. settle_usage     - after the result exists, debit the exact cost
3. release_hold     - the translation failed, free the hold
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.balance import service as balance_service
from credit_ledger.config import settings
from credit_ledger.core.exceptions import InsufficientCreditsError, NotFoundError, ValidationError
from credit_ledger.db.base import to_credits, utcnow
from credit_ledger.ledger import service as ledger_service
from credit_ledger.usage.models import CreditHold, HoldStatus

logger = logging.getLogger(__name__)


@dataclass
class Settlement:
    related_job_id: str
    cost: Decimal
    charged: Decimal
    new_balance: Decimal
    shortfall: Decimal = Decimal("0")
    clamped: bool = False
    replayed: bool = False
    transaction_id: uuid.UUID | None = None
    hold_id: uuid.UUID | None = None


def chunk_count(units: int) -> int:
    if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
        raise ValidationError("units must be a positive integer")
    return -(-units // settings.usage_chunk_size)


def estimate_cost(units: int) -> Decimal:
    """ceil(units / chunk_size) * credits_per_chunk, e.g. 47 lines -> 3 * 0.7 = 2.1."""
    return to_credits(chunk_count(units) * to_credits(settings.usage_credits_per_chunk))


async def get_held_credits(db: AsyncSession, account_id: str) -> Decimal:
    """Sum of active, unexpired holds on an account."""
    result = await db.execute(
        select(func.coalesce(func.sum(CreditHold.amount), 0)).where(
            CreditHold.account_id == account_id,
            CreditHold.status == HoldStatus.ACTIVE,
            CreditHold.expires_at > utcnow(),
        )
    )
    return to_credits(result.scalar_one())


async def _lock_hold(db: AsyncSession, hold_id: uuid.UUID) -> CreditHold:
    result = await db.execute(
        select(CreditHold)
        .where(CreditHold.id == hold_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    hold = result.scalar_one_or_none()
    if hold is None:
        raise NotFoundError("Hold", str(hold_id))
    return hold


async def get_hold_for_job(db: AsyncSession, related_job_id: str) -> CreditHold | None:
    result = await db.execute(
        select(CreditHold).where(CreditHold.related_job_id == related_job_id)
    )
    return result.scalar_one_or_none()


async def reserve_credits(
    db: AsyncSession, account_id: str, units_estimate: int, related_job_id: str
) -> CreditHold:
    """
    Hold the estimated cost of a job. Reserving the same job twice returns the
    existing hold.
    """
    cost = estimate_cost(units_estimate)

    async def _reserve() -> CreditHold:
        existing = await get_hold_for_job(db, related_job_id)
        if existing is not None:
            if existing.account_id != account_id:
                raise ValidationError(f"Job {related_job_id} belongs to another account")
            return existing

        account = await ledger_service.load_account_for_update(db, account_id)
        balance = to_credits(account.balance)
        available = balance - await get_held_credits(db, account_id)
        if available < cost:
            ledger_service.discard_if_new(db, account)
            raise InsufficientCreditsError(balance=available, required=cost)

        now = utcnow()
        # Touch the account so concurrent reservations collide on its version.
        account.updated_at = now
        hold = CreditHold(
            account_id=account_id,
            related_job_id=related_job_id,
            units_estimate=units_estimate,
            amount=cost,
            status=HoldStatus.ACTIVE,
            expires_at=now + timedelta(minutes=settings.usage_hold_ttl_minutes),
            created_at=now,
        )
        db.add(hold)
        await ledger_service.flush(db)
        logger.info(
            "Held %s credits on %s for job %s (available %s)",
            cost, account_id, related_job_id, available,
        )
        return hold

    return await balance_service.run_atomic(db, _reserve)


def usage_event_id(related_job_id: str) -> str:
    """Idempotency key of the usage debit for a job."""
    return f"usage:{related_job_id}"


def _recorded(hold: CreditHold, balance: Decimal) -> Settlement:
    charged = to_credits(hold.settled_amount)
    shortfall = to_credits(hold.shortfall)
    return Settlement(
        related_job_id=hold.related_job_id,
        cost=charged + shortfall,
        charged=charged,
        new_balance=balance,
        shortfall=shortfall,
        clamped=shortfall > 0,
        replayed=True,
        transaction_id=hold.transaction_id,
        hold_id=hold.id,
    )


async def _settle_hold(
    db: AsyncSession, account_id: str, units_processed: int, cost: Decimal, hold_id: uuid.UUID
) -> Settlement:
    hold = await _lock_hold(db, hold_id)
    if hold.account_id != account_id:
        raise ValidationError(f"Hold {hold_id} belongs to another account")
    if hold.status is HoldStatus.SETTLED:
        logger.warning("Hold %s already settled, returning recorded result", hold_id)
        return _recorded(hold, await ledger_service.get_balance(db, account_id))
    if hold.status is HoldStatus.RELEASED:
        raise ValidationError(f"Hold {hold_id} was released")

    lapsed = hold.status is HoldStatus.EXPIRED
    if lapsed:
        logger.warning(
            "Hold %s for job %s expired before settlement, charging what the balance allows",
            hold_id, hold.related_job_id,
        )
    balance = await ledger_service.get_balance(db, account_id)
    now = utcnow()
    hold.status = HoldStatus.SETTLED
    hold.units_processed = units_processed
    hold.closed_at = now
    if balance <= 0:
        # Nothing left to charge: the whole cost is written off and flagged on the hold.
        logger.warning(
            "Settling job %s on %s with empty balance, shortfall %s",
            hold.related_job_id, account_id, cost,
        )
        hold.settled_amount = Decimal("0")
        hold.shortfall = cost
        await ledger_service.flush(db)
        return Settlement(
            related_job_id=hold.related_job_id,
            cost=cost,
            charged=Decimal("0"),
            new_balance=balance,
            shortfall=cost,
            clamped=True,
            hold_id=hold.id,
        )

    metadata: dict = {"units": units_processed, "hold_id": str(hold.id)}
    if lapsed:
        metadata["hold_expired"] = True
    change = await balance_service.debit(
        db,
        account_id,
        cost,
        description=f"Translation usage: {units_processed} lines",
        related_job_id=hold.related_job_id,
        external_event_id=usage_event_id(hold.related_job_id),
        metadata=metadata,
        allow_clamp=True,
        flag_for_audit=lapsed,
    )
    charged = to_credits(change.transaction.amount)
    hold.settled_amount = charged
    hold.shortfall = cost - charged
    hold.transaction_id = change.transaction.id
    await ledger_service.flush(db)
    return Settlement(
        related_job_id=hold.related_job_id,
        cost=cost,
        charged=charged,
        new_balance=change.new_balance,
        shortfall=cost - charged,
        clamped=change.clamped,
        replayed=change.replayed,
        transaction_id=change.transaction.id,
        hold_id=hold.id,
    )


async def settle_usage(
    db: AsyncSession,
    account_id: str,
    units_processed: int,
    related_job_id: str,
    hold_id: uuid.UUID | None = None,
) -> Settlement:
    """
    Debit the exact cost of finished work, once per job. With a hold (passed
    in, or found by job id) the debit may clamp to the remaining balance;
    without one an insufficient balance is an error. Reporting a job again
    returns the recorded settlement.
    """
    cost = estimate_cost(units_processed)

    async def _settle() -> Settlement:
        if hold_id is not None:
            return await _settle_hold(db, account_id, units_processed, cost, hold_id)

        hold = await get_hold_for_job(db, related_job_id)
        if hold is not None:
            return await _settle_hold(db, account_id, units_processed, cost, hold.id)

        change = await balance_service.debit(
            db,
            account_id,
            cost,
            description=f"Translation usage: {units_processed} lines",
            related_job_id=related_job_id,
            external_event_id=usage_event_id(related_job_id),
            metadata={"units": units_processed},
        )
        if change.transaction.account_id != account_id:
            raise ValidationError(f"Job {related_job_id} belongs to another account")
        charged = to_credits(change.transaction.amount)
        return Settlement(
            related_job_id=related_job_id,
            cost=charged if change.replayed else cost,
            charged=charged,
            new_balance=change.new_balance,
            replayed=change.replayed,
            transaction_id=change.transaction.id,
        )

    return await balance_service.run_atomic(db, _settle)


async def release_hold(
    db: AsyncSession, hold_id: uuid.UUID, account_id: str | None = None
) -> CreditHold:
    """
    Free a hold because the job failed. Releasing an already released hold is
    a no-op; an expired hold is marked released so the job is never charged.
    """

    async def _release() -> CreditHold:
        hold = await _lock_hold(db, hold_id)
        if account_id is not None and hold.account_id != account_id:
            raise NotFoundError("Hold", str(hold_id))
        if hold.status is HoldStatus.SETTLED:
            raise ValidationError(f"Hold {hold_id} is already settled")
        if hold.status in (HoldStatus.ACTIVE, HoldStatus.EXPIRED):
            hold.status = HoldStatus.RELEASED
            hold.closed_at = utcnow()
            await ledger_service.flush(db)
            logger.info("Released hold %s (%s credits) on %s", hold.id, hold.amount, hold.account_id)
        return hold

    return await balance_service.run_atomic(db, _release)


async def release_expired_holds(db: AsyncSession) -> int:
    """Stop counting lapsed holds against the balance. Their jobs can still settle."""
    now = utcnow()
    result = await db.execute(
        update(CreditHold)
        .where(CreditHold.status == HoldStatus.ACTIVE, CreditHold.expires_at <= now)
        .values(status=HoldStatus.EXPIRED, closed_at=now)
    )
    await db.commit()
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d lapsed holds", expired)
    return expired

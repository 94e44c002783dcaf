"""
Admin/reporting read model. Read-only: discrepancies are reported, never corrected.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.accounts.models import Account
from credit_ledger.db.base import to_credits
from credit_ledger.ledger import service as ledger_service
from credit_ledger.ledger.models import Transaction, TransactionType
from credit_ledger.registration import service as registration_service
from credit_ledger.registration.models import RegistrationTracking
from credit_ledger.usage import service as usage_service

logger = logging.getLogger(__name__)


@dataclass
class AccountSummary:
    account_id: str
    balance: Decimal
    total_purchased: Decimal
    transaction_count: int
    held: Decimal
    available: Decimal


@dataclass
class Discrepancy:
    account_id: str
    recorded_balance: Decimal
    ledger_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded_balance - self.ledger_balance

    @property
    def has_discrepancy(self) -> bool:
        return self.difference != 0


async def get_account_summary(db: AsyncSession, account_id: str) -> AccountSummary:
    """Unknown accounts report zeros, same as get_balance."""
    account = await ledger_service.get_account(db, account_id)
    balance = to_credits(account.balance if account else None)
    held = await usage_service.get_held_credits(db, account_id)
    return AccountSummary(
        account_id=account_id,
        balance=balance,
        total_purchased=to_credits(account.total_purchased if account else None),
        transaction_count=await ledger_service.count_transactions(db, account_id),
        held=held,
        available=max(balance - held, Decimal("0")),
    )


async def detect_discrepancy(db: AsyncSession, account_id: str) -> Discrepancy:
    result = Discrepancy(
        account_id=account_id,
        recorded_balance=await ledger_service.get_balance(db, account_id),
        ledger_balance=await ledger_service.sum_transactions(db, account_id),
    )
    if result.has_discrepancy:
        logger.warning(
            "Balance discrepancy on %s: recorded %s, ledger %s (diff %s)",
            account_id, result.recorded_balance, result.ledger_balance, result.difference,
        )
    return result


async def sweep_discrepancies(db: AsyncSession, batch_size: int = 500) -> list[Discrepancy]:
    """Check every account; returns only the mismatching ones."""
    found: list[Discrepancy] = []
    last_id = ""
    while True:
        result = await db.execute(
            select(Account.account_id)
            .where(Account.account_id > last_id)
            .order_by(Account.account_id)
            .limit(batch_size)
        )
        ids = list(result.scalars().all())
        if not ids:
            break
        for account_id in ids:
            discrepancy = await detect_discrepancy(db, account_id)
            if discrepancy.has_discrepancy:
                found.append(discrepancy)
        last_id = ids[-1]
    logger.info("Discrepancy sweep finished: %d mismatching account(s)", len(found))
    return found


async def list_suspicious_registrations(
    db: AsyncSession, min_score: int = 50, limit: int = 100
) -> list[RegistrationTracking]:
    return await registration_service.list_registrations(db, min_score=min_score, limit=limit)


async def get_ledger_totals(db: AsyncSession) -> dict:
    credited = await db.execute(
        select(Transaction.source, func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.type == TransactionType.CREDIT, Transaction.amount.is_not(None))
        .group_by(Transaction.source)
    )
    debited = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.type == TransactionType.DEBIT
        )
    )
    accounts = await db.execute(
        select(func.count(), func.coalesce(func.sum(Account.balance), 0)).select_from(Account)
    )
    flagged = await db.execute(
        select(func.count(Transaction.id)).where(Transaction.flagged_for_audit.is_(True))
    )
    account_count, outstanding = accounts.one()
    return {
        "credited_by_source": {source.value: to_credits(total) for source, total in credited.all()},
        "total_debited": to_credits(debited.scalar_one()),
        "outstanding_balance": to_credits(outstanding),
        "account_count": int(account_count),
        "flagged_transactions": int(flagged.scalar_one()),
    }

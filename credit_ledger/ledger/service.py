"""
Ledger store: the append-only transaction log and the account rows it feeds.

Rules:
- NEVER update or delete transactions (append-only).
- A (source, external_event_id) pair is recorded at most once.
- The account row and its transaction are written in the same flush.
- Only balance.service calls the mutating functions here.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from credit_ledger.accounts.models import Account
from credit_ledger.core.exceptions import DuplicateEventError, LedgerWriteConflict, ValidationError
from credit_ledger.db.base import to_credits, utcnow
from credit_ledger.ledger.models import (
    PAID_SOURCES,
    Transaction,
    TransactionSource,
    TransactionType,
)

logger = logging.getLogger(__name__)


@dataclass
class TransactionPage:
    items: list[Transaction]
    next_cursor: str | None


async def flush(db: AsyncSession) -> None:
    """Flush pending writes, classifying storage failures as write conflicts."""
    try:
        await db.flush()
    except (IntegrityError, StaleDataError, OperationalError) as exc:
        logger.warning("Ledger flush lost a race: %s", exc.__class__.__name__)
        raise LedgerWriteConflict() from exc


async def get_account(db: AsyncSession, account_id: str) -> Account | None:
    result = await db.execute(
        select(Account)
        .where(Account.account_id == account_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def load_account_for_update(db: AsyncSession, account_id: str) -> Account:
    """
    Load (or stage a new) account row under a row lock.
    The version counter still guards engines without FOR UPDATE.
    """
    result = await db.execute(
        select(Account)
        .where(Account.account_id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        now = utcnow()
        account = Account(
            account_id=account_id,
            balance=Decimal("0"),
            total_purchased=Decimal("0"),
            created_at=now,
            updated_at=now,
        )
        db.add(account)
    return account


async def get_balance(db: AsyncSession, account_id: str) -> Decimal:
    """Current recorded balance. Unknown accounts have a zero balance."""
    result = await db.execute(
        select(Account.balance).where(Account.account_id == account_id)
    )
    return to_credits(result.scalar_one_or_none())


async def find_event_transaction(
    db: AsyncSession, source: TransactionSource, external_event_id: str
) -> Transaction | None:
    result = await db.execute(
        select(Transaction).where(
            Transaction.source == source,
            Transaction.external_event_id == external_event_id,
        )
    )
    return result.scalar_one_or_none()


async def append_transaction(
    db: AsyncSession,
    account: Account,
    *,
    type: TransactionType,
    amount: Decimal | None,
    balance_after: Decimal,
    source: TransactionSource,
    external_event_id: str | None = None,
    description: str = "",
    related_job_id: str | None = None,
    flagged_for_audit: bool = False,
    metadata: dict[str, Any] | None = None,
) -> Transaction:
    """
    Append a transaction and move the account to `balance_after` in one flush.
    Raises DuplicateEventError (nothing written) if the event key is taken.
    """
    if external_event_id is not None:
        existing = await find_event_transaction(db, source, external_event_id)
        if existing is not None:
            raise DuplicateEventError(existing)
    if balance_after < 0:
        raise ValidationError("Balance cannot go below zero")

    now = utcnow()
    tx = Transaction(
        account_id=account.account_id,
        type=type,
        amount=amount,
        balance_before=account.balance,
        balance_after=balance_after,
        source=source,
        external_event_id=external_event_id,
        description=description,
        related_job_id=related_job_id,
        flagged_for_audit=flagged_for_audit,
        metadata_=metadata,
        created_at=now,
    )
    account.balance = balance_after
    if source in PAID_SOURCES and amount is not None:
        account.total_purchased = to_credits(account.total_purchased) + amount
    account.updated_at = now
    db.add(tx)
    await flush(db)
    return tx


async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction | None:
    return await db.get(Transaction, transaction_id)


async def list_transactions(
    db: AsyncSession, account_id: str, limit: int = 50, cursor: str | None = None
) -> TransactionPage:
    """Newest-first page. `cursor` is the id of the last item of the previous page."""
    q = select(Transaction).where(Transaction.account_id == account_id)
    if cursor is not None:
        try:
            anchor = await get_transaction(db, uuid.UUID(cursor))
        except ValueError:
            anchor = None
        if anchor is None or anchor.account_id != account_id:
            raise ValidationError("Invalid cursor")
        q = q.where(
            or_(
                Transaction.created_at < anchor.created_at,
                and_(Transaction.created_at == anchor.created_at, Transaction.id < anchor.id),
            )
        )
    result = await db.execute(
        q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit + 1)
    )
    rows = list(result.scalars().all())
    next_cursor = str(rows[limit - 1].id) if len(rows) > limit else None
    return TransactionPage(items=rows[:limit], next_cursor=next_cursor)


def _signed_amount():
    return case(
        (Transaction.type == TransactionType.DEBIT, -Transaction.amount),
        else_=Transaction.amount,
    )


async def sum_transactions(db: AsyncSession, account_id: str) -> Decimal:
    """Recompute the balance from the log. O(n): reporting path only."""
    result = await db.execute(
        select(func.coalesce(func.sum(_signed_amount()), 0)).where(
            Transaction.account_id == account_id
        )
    )
    return to_credits(result.scalar_one())


async def count_transactions(db: AsyncSession, account_id: str) -> int:
    result = await db.execute(
        select(func.count(Transaction.id)).where(Transaction.account_id == account_id)
    )
    return int(result.scalar_one())


def discard_if_new(db: AsyncSession, account: Account) -> None:
    """Drop an account row staged by load_account_for_update but never written to."""
    if account in db.new:
        db.expunge(account)

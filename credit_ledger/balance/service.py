"""
Balance service: the only entry point that moves an account balance.

Every mutation is: lock/read account -> validate -> append transaction and
update the account in one flush. Callers wrap one or more of these in
`run_atomic`, which owns commit, rollback and conflict retries.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from credit_ledger.config import settings
from credit_ledger.core.exceptions import (
    DuplicateEventError,
    InsufficientCreditsError,
    LedgerWriteConflict,
    ValidationError,
)
from credit_ledger.db.base import to_credits
from credit_ledger.ledger import service as ledger_service
from credit_ledger.ledger.models import (
    KEYED_SOURCES,
    Transaction,
    TransactionSource,
    TransactionType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CREDIT_SOURCES = frozenset(TransactionSource) - {
    TransactionSource.USAGE,
    TransactionSource.REGISTRATION_BONUS_DENIED,
}
_DEBIT_SOURCES = frozenset({TransactionSource.USAGE, TransactionSource.ADMIN_ADJUSTMENT})


@dataclass
class BalanceChange:
    previous_balance: Decimal
    new_balance: Decimal
    transaction: Transaction
    replayed: bool = False
    clamped: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


def validate_amount(amount: Decimal | int | str) -> Decimal:
    try:
        value = to_credits(amount)
    except ArithmeticError:
        raise ValidationError(f"Invalid amount: {amount!r}")
    if value <= 0:
        raise ValidationError("Amount must be greater than 0")
    return value


def _replay(tx: Transaction) -> BalanceChange:
    logger.warning(
        "Idempotent replay for %s/%s on account %s",
        tx.source.value, tx.external_event_id, tx.account_id,
    )
    return BalanceChange(
        previous_balance=to_credits(tx.balance_before),
        new_balance=to_credits(tx.balance_after),
        transaction=tx,
        replayed=True,
        clamped=tx.flagged_for_audit,
    )


async def run_atomic(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
) -> T:
    """
    Run `operation` as one unit of work and commit it.

    On a lost race the whole operation is rolled back and re-run, so its
    preconditions (balance, voucher limits, event keys) are checked again.
    """
    max_attempts = attempts if attempts is not None else settings.ledger_write_attempts
    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except (LedgerWriteConflict, IntegrityError, StaleDataError, OperationalError) as exc:
            await db.rollback()
            if attempt >= max_attempts:
                logger.error("Giving up after %d conflicting ledger writes", attempt)
                if isinstance(exc, LedgerWriteConflict):
                    raise
                raise LedgerWriteConflict() from exc
            logger.warning("Ledger write conflict (attempt %d/%d), retrying", attempt, max_attempts)
            await asyncio.sleep(settings.ledger_retry_backoff_seconds * attempt)
        except Exception:
            await db.rollback()
            raise
    raise LedgerWriteConflict()


async def credit(
    db: AsyncSession,
    account_id: str,
    amount: Decimal | int | str,
    source: TransactionSource,
    *,
    external_event_id: str | None = None,
    description: str = "",
    related_job_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> BalanceChange:
    """
    Add credits. A repeated (source, external_event_id) returns the recorded
    result and writes nothing. Does not commit: run inside `run_atomic`.
    """
    value = validate_amount(amount)
    if source not in _CREDIT_SOURCES:
        raise ValidationError(f"Source {source.value} cannot credit an account")
    if source in KEYED_SOURCES and not external_event_id:
        raise ValidationError(f"external_event_id is required for {source.value}")

    account = await ledger_service.load_account_for_update(db, account_id)
    before = to_credits(account.balance)
    try:
        tx = await ledger_service.append_transaction(
            db,
            account,
            type=TransactionType.CREDIT,
            amount=value,
            balance_after=before + value,
            source=source,
            external_event_id=external_event_id,
            description=description,
            related_job_id=related_job_id,
            metadata=metadata,
        )
    except DuplicateEventError as exc:
        ledger_service.discard_if_new(db, account)
        return _replay(exc.transaction)

    logger.info(
        "Credited %s to %s via %s (balance %s -> %s)",
        value, account_id, source.value, before, tx.balance_after,
    )
    return BalanceChange(previous_balance=before, new_balance=to_credits(tx.balance_after), transaction=tx)


async def debit(
    db: AsyncSession,
    account_id: str,
    amount: Decimal | int | str,
    *,
    description: str = "",
    related_job_id: str | None = None,
    source: TransactionSource = TransactionSource.USAGE,
    external_event_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    allow_clamp: bool = False,
    flag_for_audit: bool = False,
) -> BalanceChange:
    """
    Remove credits. Raises InsufficientCreditsError when the balance is short,
    unless `allow_clamp` (settling already-authorised work): then the debit is
    cut to the remaining balance and flagged for audit.
    A repeated (source, external_event_id) returns the recorded debit before
    the balance is checked. Does not commit: run inside `run_atomic`.
    """
    value = validate_amount(amount)
    if source not in _DEBIT_SOURCES:
        raise ValidationError(f"Source {source.value} cannot debit an account")
    if external_event_id is not None:
        existing = await ledger_service.find_event_transaction(db, source, external_event_id)
        if existing is not None:
            return _replay(existing)

    account = await ledger_service.load_account_for_update(db, account_id)
    before = to_credits(account.balance)
    charged = value
    clamped = False
    if before < value:
        if not allow_clamp or before <= 0:
            raise InsufficientCreditsError(balance=before, required=value)
        charged = before
        clamped = True
        metadata = {**(metadata or {}), "requested_amount": str(value)}
        logger.warning(
            "Clamped debit on %s: requested %s, balance %s", account_id, value, before
        )

    try:
        tx = await ledger_service.append_transaction(
            db,
            account,
            type=TransactionType.DEBIT,
            amount=charged,
            balance_after=before - charged,
            source=source,
            external_event_id=external_event_id,
            description=description,
            related_job_id=related_job_id,
            flagged_for_audit=clamped or flag_for_audit,
            metadata=metadata,
        )
    except DuplicateEventError as exc:
        ledger_service.discard_if_new(db, account)
        return _replay(exc.transaction)
    logger.info(
        "Debited %s from %s via %s (balance %s -> %s)",
        charged, account_id, source.value, before, tx.balance_after,
    )
    return BalanceChange(
        previous_balance=before,
        new_balance=to_credits(tx.balance_after),
        transaction=tx,
        clamped=clamped,
    )


async def record_marker(
    db: AsyncSession,
    account_id: str,
    source: TransactionSource,
    *,
    external_event_id: str,
    description: str = "",
    metadata: dict[str, Any] | None = None,
) -> BalanceChange:
    """Write an amount-less audit marker. The balance is left untouched."""
    if source is not TransactionSource.REGISTRATION_BONUS_DENIED:
        raise ValidationError(f"Source {source.value} requires an amount")

    account = await ledger_service.load_account_for_update(db, account_id)
    before = to_credits(account.balance)
    try:
        tx = await ledger_service.append_transaction(
            db,
            account,
            type=TransactionType.CREDIT,
            amount=None,
            balance_after=before,
            source=source,
            external_event_id=external_event_id,
            description=description,
            metadata=metadata,
        )
    except DuplicateEventError as exc:
        ledger_service.discard_if_new(db, account)
        return _replay(exc.transaction)
    return BalanceChange(previous_balance=before, new_balance=before, transaction=tx)

"""Admin manual adjustment reconciler."""
import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.audit import service as audit_service
from credit_ledger.balance import service as balance_service
from credit_ledger.balance.service import BalanceChange
from credit_ledger.core.exceptions import ValidationError
from credit_ledger.db.base import to_credits
from credit_ledger.ledger.models import TransactionSource

logger = logging.getLogger(__name__)


async def adjust_credits(
    db: AsyncSession,
    account_id: str,
    delta_credits: Decimal | int | str,
    description: str,
    admin_identity: str,
) -> BalanceChange:
    """
    Positive delta credits the account, negative debits it. Not idempotent:
    every call is a new transaction, audited under `admin_identity`.
    """
    delta = to_credits(delta_credits)
    if delta == 0:
        raise ValidationError("deltaCredits must be non-zero")
    if not description or not description.strip():
        raise ValidationError("Description is required")
    if not admin_identity:
        raise ValidationError("Admin identity is required")

    text = f"{description.strip()} (by {admin_identity})"
    metadata = {"admin": admin_identity}

    async def _adjust() -> BalanceChange:
        if delta > 0:
            change = await balance_service.credit(
                db,
                account_id,
                delta,
                TransactionSource.ADMIN_ADJUSTMENT,
                description=text,
                metadata=metadata,
            )
        else:
            change = await balance_service.debit(
                db,
                account_id,
                -delta,
                description=text,
                source=TransactionSource.ADMIN_ADJUSTMENT,
                metadata=metadata,
            )
        await audit_service.log_event(
            db,
            admin_identity,
            "credits.adjusted",
            resource_type="account",
            resource_id=account_id,
            description=text,
            metadata={
                "delta_credits": str(delta),
                "previous_balance": str(change.previous_balance),
                "new_balance": str(change.new_balance),
                "transaction_id": str(change.transaction.id),
            },
        )
        return change

    change = await balance_service.run_atomic(db, _adjust)
    logger.info(
        "%s adjusted %s by %s (%s -> %s)",
        admin_identity, account_id, delta, change.previous_balance, change.new_balance,
    )
    return change

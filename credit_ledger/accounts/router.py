from fastapi import APIRouter, Query

from credit_ledger.accounts.schemas import (
    AccountSummaryResponse,
    TransactionPageResponse,
    TransactionResponse,
)
from credit_ledger.core.dependencies import CurrentIdentity, DbSession
from credit_ledger.ledger import service as ledger_service
from credit_ledger.reporting import service as reporting_service

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("/me", response_model=AccountSummaryResponse)
async def my_account(identity: CurrentIdentity, db: DbSession) -> AccountSummaryResponse:
    summary = await reporting_service.get_account_summary(db, identity.account_id)
    return AccountSummaryResponse.model_validate(summary)


@router.get("/me/transactions", response_model=TransactionPageResponse)
async def my_transactions(
    identity: CurrentIdentity,
    db: DbSession,
    limit: int = Query(default=50, ge=1, le=200),
    cursor: str | None = None,
) -> TransactionPageResponse:
    page = await ledger_service.list_transactions(db, identity.account_id, limit, cursor)
    return TransactionPageResponse(
        items=[TransactionResponse.model_validate(tx) for tx in page.items],
        next_cursor=page.next_cursor,
    )

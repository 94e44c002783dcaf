from fastapi import APIRouter, Depends

from credit_ledger.config import settings
from credit_ledger.core.dependencies import CurrentIdentity, DbSession
from credit_ledger.ratelimit.service import rate_limit
from credit_ledger.vouchers import service as voucher_service
from credit_ledger.vouchers.schemas import RedeemVoucherRequest, RedeemVoucherResponse

router = APIRouter(prefix="/vouchers", tags=["vouchers"])

redeem_quota = rate_limit(
    "voucher_redeem",
    settings.rate_limit_voucher_redeem,
    settings.rate_limit_voucher_redeem_window_seconds,
)


@router.post(
    "/redeem",
    response_model=RedeemVoucherResponse,
    dependencies=[Depends(redeem_quota)],
)
async def redeem(
    body: RedeemVoucherRequest, identity: CurrentIdentity, db: DbSession
) -> RedeemVoucherResponse:
    redemption = await voucher_service.redeem_voucher(db, body.voucher_code, identity.account_id)
    voucher = redemption.voucher
    return RedeemVoucherResponse(
        code=voucher.code,
        credits_added=redemption.change.transaction.amount,
        new_balance=redemption.change.new_balance,
        campaign_name=voucher.campaign_name,
        description=voucher.description,
    )

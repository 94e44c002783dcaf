"""
Voucher reconciler: redeem a human-entered code for a fixed credit amount.

The credit, the usage counter and the redemption row are one unit of work;
the ledger key `<code>:<account>` backs up the per-account uniqueness.
"""
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.audit import service as audit_service
from credit_ledger.balance import service as balance_service
from credit_ledger.balance.service import BalanceChange
from credit_ledger.config import settings
from credit_ledger.core.exceptions import (
    NotFoundError,
    ValidationError,
    VoucherInvalidError,
    VoucherRejection,
)
from credit_ledger.db.base import as_utc, to_credits, utcnow
from credit_ledger.ledger import service as ledger_service
from credit_ledger.ledger.models import TransactionSource
from credit_ledger.vouchers.models import Voucher, VoucherRedemption
from credit_ledger.vouchers.schemas import CampaignStats, VoucherStatsResponse

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_SEGMENT = 4
CODE_SEGMENTS = 3
_CODE_RE = re.compile(r"^[A-Z0-9]{4}(?:-[A-Z0-9]{4})+$")


@dataclass
class Redemption:
    voucher: Voucher
    change: BalanceChange


def canonicalize_code(raw: str) -> str | None:
    """'abcd efgh-ijkl' -> 'ABCD-EFGH-IJKL'. None if it cannot be a voucher code."""
    compact = re.sub(r"[\s-]", "", raw or "").upper()
    if not compact or len(compact) % CODE_SEGMENT:
        return None
    code = "-".join(
        compact[i:i + CODE_SEGMENT] for i in range(0, len(compact), CODE_SEGMENT)
    )
    return code if _CODE_RE.match(code) else None


def generate_code() -> str:
    return "-".join(
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SEGMENT))
        for _ in range(CODE_SEGMENTS)
    )


def _invalid_code(raw: str) -> NotFoundError:
    # Same answer for malformed and unknown codes.
    return NotFoundError("Voucher", raw, code="invalid_code")


async def get_voucher(db: AsyncSession, raw_code: str) -> Voucher:
    code = canonicalize_code(raw_code)
    if code is None:
        raise _invalid_code(raw_code)
    result = await db.execute(
        select(Voucher)
        .where(Voucher.code == code)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    voucher = result.scalar_one_or_none()
    if voucher is None:
        raise _invalid_code(raw_code)
    return voucher


async def has_redeemed(db: AsyncSession, code: str, account_id: str) -> bool:
    result = await db.execute(
        select(VoucherRedemption.id).where(
            VoucherRedemption.voucher_code == code,
            VoucherRedemption.account_id == account_id,
        )
    )
    return result.scalar_one_or_none() is not None


def check_redeemable(
    voucher: Voucher, *, already_redeemed: bool, now: datetime | None = None
) -> None:
    now = now or utcnow()
    if not voucher.is_active:
        raise VoucherInvalidError(VoucherRejection.INACTIVE)
    expires_at = as_utc(voucher.expires_at)
    if expires_at is not None and now > expires_at:
        raise VoucherInvalidError(VoucherRejection.EXPIRED)
    if already_redeemed:
        raise VoucherInvalidError(VoucherRejection.ALREADY_REDEEMED)
    if voucher.used_count >= voucher.usage_limit:
        raise VoucherInvalidError(VoucherRejection.EXHAUSTED)


async def redeem_voucher(db: AsyncSession, raw_code: str, account_id: str) -> Redemption:
    async def _redeem() -> Redemption:
        voucher = await get_voucher(db, raw_code)
        check_redeemable(
            voucher, already_redeemed=await has_redeemed(db, voucher.code, account_id)
        )
        change = await balance_service.credit(
            db,
            account_id,
            voucher.credit_amount,
            TransactionSource.VOUCHER,
            external_event_id=f"{voucher.code}:{account_id}",
            description=f"Voucher redemption: {voucher.code}",
            metadata={"voucher_code": voucher.code, "campaign_name": voucher.campaign_name},
        )
        if not change.replayed:
            voucher.used_count += 1
            voucher.last_used_at = utcnow()
            db.add(
                VoucherRedemption(
                    voucher_code=voucher.code,
                    account_id=account_id,
                    transaction_id=change.transaction.id,
                )
            )
            await audit_service.log_event(
                db,
                account_id,
                "voucher.redeemed",
                resource_type="voucher",
                resource_id=voucher.code,
                metadata={
                    "credit_amount": str(voucher.credit_amount),
                    "campaign_name": voucher.campaign_name,
                },
            )
            await ledger_service.flush(db)
        return Redemption(voucher=voucher, change=change)

    redemption = await balance_service.run_atomic(db, _redeem)
    logger.info(
        "Voucher %s redeemed by %s (+%s)",
        redemption.voucher.code, account_id, redemption.voucher.credit_amount,
    )
    return redemption


async def generate_vouchers(
    db: AsyncSession,
    *,
    credit_amount: Decimal,
    quantity: int,
    campaign_name: str,
    created_by: str,
    expiration_days: int | None = None,
    usage_limit: int = 1,
    description: str = "",
) -> list[Voucher]:
    amount = to_credits(credit_amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")
    if quantity <= 0 or quantity > settings.voucher_max_batch:
        raise ValidationError(f"Quantity must be between 1 and {settings.voucher_max_batch}")
    if not campaign_name or not campaign_name.strip():
        raise ValidationError("Campaign name is required")
    if usage_limit < 1:
        raise ValidationError("Usage limit must be at least 1")

    now = utcnow()
    expires_at = now + timedelta(days=expiration_days) if expiration_days else None

    codes: set[str] = set()
    while len(codes) < quantity:
        codes.add(generate_code())
    taken = await db.execute(select(Voucher.code).where(Voucher.code.in_(codes)))
    codes -= set(taken.scalars().all())
    while len(codes) < quantity:
        candidate = generate_code()
        if await db.get(Voucher, candidate) is None:
            codes.add(candidate)

    vouchers = [
        Voucher(
            code=code,
            credit_amount=amount,
            usage_limit=usage_limit,
            used_count=0,
            is_active=True,
            expires_at=expires_at,
            campaign_name=campaign_name.strip(),
            description=description.strip(),
            created_by=created_by,
            created_at=now,
        )
        for code in sorted(codes)
    ]
    db.add_all(vouchers)
    await audit_service.log_event(
        db,
        created_by,
        "voucher.generated",
        resource_type="campaign",
        resource_id=campaign_name.strip(),
        metadata={
            "quantity": quantity,
            "credit_amount": str(amount),
            "total_credits": str(amount * quantity),
        },
    )
    await db.commit()
    logger.info("%s generated %d vouchers for %s", created_by, quantity, campaign_name)
    return vouchers


async def set_voucher_active(
    db: AsyncSession, raw_code: str, is_active: bool, actor: str
) -> Voucher:
    voucher = await get_voucher(db, raw_code)
    voucher.is_active = is_active
    await audit_service.log_event(
        db,
        actor,
        "voucher.activated" if is_active else "voucher.deactivated",
        resource_type="voucher",
        resource_id=voucher.code,
    )
    await db.commit()
    return voucher


async def list_vouchers(
    db: AsyncSession, campaign_name: str | None = None, limit: int = 100, offset: int = 0
) -> list[Voucher]:
    q = select(Voucher)
    if campaign_name is not None:
        q = q.where(Voucher.campaign_name == campaign_name)
    result = await db.execute(
        q.order_by(Voucher.created_at.desc(), Voucher.code).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


def _rate(used: int, capacity: int) -> float:
    return round(used / capacity * 100, 2) if capacity else 0.0


async def get_voucher_stats(db: AsyncSession) -> VoucherStatsResponse:
    result = await db.execute(select(Voucher))
    now = utcnow()
    campaigns: dict[str, CampaignStats] = {}
    capacity: dict[str, int] = {}
    redemptions: dict[str, int] = {}
    for voucher in result.scalars().all():
        expires_at = as_utc(voucher.expires_at)
        expired = expires_at is not None and now > expires_at
        used_up = voucher.used_count >= voucher.usage_limit
        amount = to_credits(voucher.credit_amount)

        stats = campaigns.setdefault(voucher.campaign_name, CampaignStats(name=voucher.campaign_name))
        stats.total_vouchers += 1
        stats.total_credits += amount
        stats.redeemed_credits += amount * voucher.used_count
        if voucher.is_active and not expired and not used_up:
            stats.active_vouchers += 1
        if expired:
            stats.expired_vouchers += 1
        if used_up:
            stats.used_vouchers += 1
        capacity[voucher.campaign_name] = capacity.get(voucher.campaign_name, 0) + voucher.usage_limit
        redemptions[voucher.campaign_name] = redemptions.get(voucher.campaign_name, 0) + voucher.used_count

    for name, stats in campaigns.items():
        stats.redemption_rate = _rate(redemptions[name], capacity[name])

    ordered = sorted(campaigns.values(), key=lambda c: c.redeemed_credits, reverse=True)
    return VoucherStatsResponse(
        total_vouchers=sum(c.total_vouchers for c in ordered),
        active_vouchers=sum(c.active_vouchers for c in ordered),
        expired_vouchers=sum(c.expired_vouchers for c in ordered),
        used_vouchers=sum(c.used_vouchers for c in ordered),
        total_credits_generated=sum((c.total_credits for c in ordered), Decimal("0")),
        total_credits_redeemed=sum((c.redeemed_credits for c in ordered), Decimal("0")),
        redemption_rate=_rate(sum(redemptions.values()), sum(capacity.values())),
        campaigns=ordered,
    )

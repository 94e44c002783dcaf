"""
Registration bonus reconciler and the duplicate-signup scoring behind it.

Score tiers (configurable):
- score < 50        -> full bonus (100)
- 50 <= score < 80  -> reduced bonus (20)
- score >= 80       -> no bonus; an amount-less `registration_bonus_denied`
                       marker is written so the decision is auditable
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.balance import service as balance_service
from credit_ledger.balance.service import BalanceChange
from credit_ledger.config import settings
from credit_ledger.core.exceptions import ValidationError
from credit_ledger.db.base import to_credits, utcnow
from credit_ledger.ledger import service as ledger_service
from credit_ledger.ledger.models import TransactionSource
from credit_ledger.registration.models import RegistrationTracking

logger = logging.getLogger(__name__)

MAX_SCORE = 100


@dataclass
class RegistrationCheck:
    is_allowed: bool
    suspicious_score: int
    credits_to_award: Decimal
    duplicate_ip_count: int = 0
    duplicate_fingerprint_count: int = 0
    reasons: list[str] = field(default_factory=list)


@dataclass
class BonusAward:
    record: RegistrationTracking
    new_balance: Decimal
    replayed: bool = False
    change: BalanceChange | None = None


def bonus_for_score(score: int) -> Decimal:
    if score >= settings.registration_denied_threshold:
        return Decimal("0")
    if score >= settings.registration_suspicious_threshold:
        return to_credits(settings.registration_reduced_credits)
    return to_credits(settings.registration_default_credits)


async def _count_since(db: AsyncSession, column, value: str, since: datetime) -> int:
    if not value:
        return 0
    result = await db.execute(
        select(func.count())
        .select_from(RegistrationTracking)
        .where(column == value, RegistrationTracking.created_at >= since)
    )
    return int(result.scalar_one())


async def score_registration(
    db: AsyncSession, ip_address: str, browser_fingerprint: str
) -> RegistrationCheck:
    """Score a signup by how many earlier accounts share its IP and browser."""
    now = utcnow()
    ip_count = await _count_since(
        db,
        RegistrationTracking.ip_address,
        ip_address,
        now - timedelta(days=settings.registration_ip_window_days),
    )
    fp_count = await _count_since(
        db,
        RegistrationTracking.browser_fingerprint,
        browser_fingerprint,
        now - timedelta(days=settings.registration_fingerprint_window_days),
    )

    score = 0
    reasons: list[str] = []
    if ip_count:
        score += min(40, ip_count * 15)
        reasons.append(f"{ip_count} previous registration(s) from this IP")
    if fp_count:
        score += min(50, fp_count * 25)
        reasons.append(f"{fp_count} previous registration(s) from this browser")
    if ip_count and fp_count:
        score += 20
        reasons.append("Both IP and browser fingerprint match previous registrations")
    score = min(MAX_SCORE, score)

    credits = bonus_for_score(score)
    if credits < to_credits(settings.registration_default_credits):
        reasons.append(f"Credits reduced to {credits} (score: {score})")

    return RegistrationCheck(
        is_allowed=score < settings.registration_block_threshold,
        suspicious_score=score,
        credits_to_award=credits,
        duplicate_ip_count=ip_count,
        duplicate_fingerprint_count=fp_count,
        reasons=reasons,
    )


async def award_registration_bonus(
    db: AsyncSession,
    account_id: str,
    suspicious_score: int,
    *,
    ip_address: str = "",
    browser_fingerprint: str = "",
    email: str | None = None,
    user_agent: str | None = None,
    registration_method: str = "email",
    duplicate_ip_count: int = 0,
    duplicate_fingerprint_count: int = 0,
) -> BonusAward:
    """Decide and book the signup bonus exactly once per account."""
    if not 0 <= suspicious_score <= MAX_SCORE:
        raise ValidationError("suspicious_score must be between 0 and 100")

    async def _award() -> BonusAward:
        existing = await db.get(RegistrationTracking, account_id)
        if existing is not None:
            return BonusAward(
                record=existing,
                new_balance=await ledger_service.get_balance(db, account_id),
                replayed=True,
            )

        amount = bonus_for_score(suspicious_score)
        if amount > 0:
            change = await balance_service.credit(
                db,
                account_id,
                amount,
                TransactionSource.REGISTRATION_BONUS,
                external_event_id=account_id,
                description=f"Registration bonus (score {suspicious_score})",
                metadata={"suspicious_score": suspicious_score},
            )
        else:
            change = await balance_service.record_marker(
                db,
                account_id,
                TransactionSource.REGISTRATION_BONUS_DENIED,
                external_event_id=account_id,
                description=f"Registration bonus denied (score {suspicious_score})",
                metadata={"suspicious_score": suspicious_score},
            )

        awarded = to_credits(change.transaction.amount)
        record = RegistrationTracking(
            account_id=account_id,
            email=email,
            ip_address=ip_address,
            browser_fingerprint=browser_fingerprint,
            user_agent=user_agent,
            registration_method=registration_method,
            suspicious_score=suspicious_score,
            duplicate_ip_count=duplicate_ip_count,
            duplicate_fingerprint_count=duplicate_fingerprint_count,
            credits_awarded=awarded,
            credits_reduced=awarded < to_credits(settings.registration_default_credits),
            transaction_id=change.transaction.id,
            created_at=utcnow(),
        )
        db.add(record)
        await ledger_service.flush(db)
        return BonusAward(
            record=record, new_balance=change.new_balance, replayed=change.replayed, change=change
        )

    award = await balance_service.run_atomic(db, _award)
    if award.replayed:
        logger.warning("Registration bonus for %s already decided", account_id)
    else:
        logger.info(
            "Registration bonus for %s: %s credits (score %d)",
            account_id, award.record.credits_awarded, suspicious_score,
        )
    return award


async def list_registrations(
    db: AsyncSession, min_score: int = 0, limit: int = 100
) -> list[RegistrationTracking]:
    result = await db.execute(
        select(RegistrationTracking)
        .where(RegistrationTracking.suspicious_score >= min_score)
        .order_by(
            RegistrationTracking.suspicious_score.desc(),
            RegistrationTracking.created_at.desc(),
        )
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_registration_stats(db: AsyncSession, days: int = 30) -> dict:
    """Aggregate registrations of the last `days` days for the admin dashboard."""
    if days <= 0:
        raise ValidationError("days must be positive")
    since = utcnow() - timedelta(days=days)
    default = to_credits(settings.registration_default_credits)
    result = await db.execute(
        select(
            func.count(),
            func.coalesce(
                func.sum(
                    case(
                        (
                            RegistrationTracking.suspicious_score
                            >= settings.registration_suspicious_threshold,
                            1,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(func.sum(RegistrationTracking.credits_awarded), 0),
            func.coalesce(func.avg(RegistrationTracking.suspicious_score), 0),
        ).where(RegistrationTracking.created_at >= since)
    )
    total, suspicious, awarded, avg_score = result.one()
    awarded = to_credits(awarded)
    return {
        "days": days,
        "total_registrations": int(total),
        "suspicious_registrations": int(suspicious),
        "credits_awarded": awarded,
        "credits_saved": to_credits(default * int(total) - awarded),
        "average_score": round(float(avg_score), 1),
    }

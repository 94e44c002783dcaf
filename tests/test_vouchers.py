"""Tests for voucher redemption, generation and statistics."""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from credit_ledger.audit.models import AuditLog
from credit_ledger.core.exceptions import (
    NotFoundError,
    ValidationError,
    VoucherInvalidError,
    VoucherRejection,
)
from credit_ledger.db.base import utcnow
from credit_ledger.ledger import service as ledger_service
from credit_ledger.ledger.models import TransactionSource
from credit_ledger.vouchers import service as voucher_service
from credit_ledger.vouchers.models import Voucher, VoucherRedemption


async def _voucher(db, code="ABCD-EFGH-IJKL", credit_amount="50", usage_limit=1, **fields):
    voucher = Voucher(
        code=code,
        credit_amount=Decimal(credit_amount),
        usage_limit=usage_limit,
        used_count=0,
        is_active=fields.pop("is_active", True),
        campaign_name=fields.pop("campaign_name", "launch"),
        created_by="admin@example.com",
        **fields,
    )
    db.add(voucher)
    await db.commit()
    return voucher


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("ABCD-EFGH-IJKL", "ABCD-EFGH-IJKL"),
        ("abcd efgh ijkl", "ABCD-EFGH-IJKL"),
        ("abcdefghijkl", "ABCD-EFGH-IJKL"),
        ("  ab cd-ef gh  ", "ABCD-EFGH"),
        ("ABC", None),
        ("ABCD-EFG!-IJKL", None),
        ("", None),
    ],
)
def test_canonicalize_code(raw, expected):
    assert voucher_service.canonicalize_code(raw) == expected


def test_generated_codes_are_canonical():
    code = voucher_service.generate_code()
    assert voucher_service.canonicalize_code(code) == code
    assert len(code) == 14


@pytest.mark.asyncio
async def test_single_use_voucher(db):
    """A redeems once; A again is 'already used'; B is 'usage limit reached'."""
    await _voucher(db)

    redemption = await voucher_service.redeem_voucher(db, "abcd-efgh-ijkl", "account-a")
    assert redemption.change.previous_balance == Decimal("0")
    assert redemption.change.new_balance == Decimal("50")
    assert redemption.change.transaction.source is TransactionSource.VOUCHER
    assert redemption.change.transaction.external_event_id == "ABCD-EFGH-IJKL:account-a"

    with pytest.raises(VoucherInvalidError) as again:
        await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-a")
    assert again.value.code == "already_redeemed"
    assert again.value.message == "You have already used this voucher"

    with pytest.raises(VoucherInvalidError) as other:
        await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-b")
    assert other.value.code == "exhausted"

    assert await ledger_service.get_balance(db, "account-a") == Decimal("50")
    assert await ledger_service.get_balance(db, "account-b") == Decimal("0")

    voucher = await db.get(Voucher, "ABCD-EFGH-IJKL")
    await db.refresh(voucher)
    assert voucher.used_count == 1
    redemptions = (await db.execute(select(VoucherRedemption))).scalars().all()
    assert [r.account_id for r in redemptions] == ["account-a"]


@pytest.mark.asyncio
async def test_multi_use_voucher(db):
    await _voucher(db, usage_limit=2)
    await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-a")
    await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-b")
    with pytest.raises(VoucherInvalidError) as exc_info:
        await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-c")
    assert exc_info.value.code == "exhausted"


@pytest.mark.asyncio
async def test_unknown_and_malformed_codes_look_the_same(db):
    for raw in ("ZZZZ-ZZZZ-ZZZZ", "not a code!"):
        with pytest.raises(NotFoundError) as exc_info:
            await voucher_service.redeem_voucher(db, raw, "account-a")
        assert exc_info.value.code == "invalid_code"


@pytest.mark.asyncio
async def test_inactive_voucher(db):
    await _voucher(db, is_active=False)
    with pytest.raises(VoucherInvalidError) as exc_info:
        await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-a")
    assert exc_info.value.code == "inactive"


@pytest.mark.asyncio
async def test_expired_voucher(db):
    await _voucher(db, expires_at=utcnow() - timedelta(days=1))
    with pytest.raises(VoucherInvalidError) as exc_info:
        await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-a")
    assert exc_info.value.code == "expired"
    assert await ledger_service.count_transactions(db, "account-a") == 0


@pytest.mark.asyncio
async def test_redemption_is_audited(db):
    await _voucher(db)
    await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-a")
    entry = (
        await db.execute(select(AuditLog).where(AuditLog.event_type == "voucher.redeemed"))
    ).scalars().one()
    assert entry.actor == "account-a"
    assert entry.resource_id == "ABCD-EFGH-IJKL"


@pytest.mark.asyncio
async def test_generate_vouchers(db):
    vouchers = await voucher_service.generate_vouchers(
        db,
        credit_amount=Decimal("25"),
        quantity=5,
        campaign_name=" spring ",
        created_by="admin@example.com",
        expiration_days=30,
    )
    assert len(vouchers) == 5
    assert len({v.code for v in vouchers}) == 5
    assert all(v.campaign_name == "spring" for v in vouchers)
    assert all(v.expires_at is not None for v in vouchers)

    redemption = await voucher_service.redeem_voucher(db, vouchers[0].code, "account-a")
    assert redemption.change.new_balance == Decimal("25")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount, quantity",
    [(Decimal("0"), 1), (Decimal("10"), 0), (Decimal("10"), 1001)],
)
async def test_generate_vouchers_validation(db, amount, quantity):
    with pytest.raises(ValidationError):
        await voucher_service.generate_vouchers(
            db,
            credit_amount=amount,
            quantity=quantity,
            campaign_name="bad",
            created_by="admin@example.com",
        )


@pytest.mark.asyncio
async def test_deactivate_then_reactivate(db):
    await _voucher(db)
    await voucher_service.set_voucher_active(db, "ABCD-EFGH-IJKL", False, "admin@example.com")
    with pytest.raises(VoucherInvalidError):
        await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-a")

    await voucher_service.set_voucher_active(db, "abcdefghijkl", True, "admin@example.com")
    redemption = await voucher_service.redeem_voucher(db, "ABCD-EFGH-IJKL", "account-a")
    assert redemption.change.new_balance == Decimal("50")


@pytest.mark.asyncio
async def test_voucher_stats(db):
    await _voucher(db, code="AAAA-AAAA-AAAA", campaign_name="launch")
    await _voucher(db, code="BBBB-BBBB-BBBB", campaign_name="launch")
    await _voucher(db, code="CCCC-CCCC-CCCC", campaign_name="partners", credit_amount="10")
    await voucher_service.redeem_voucher(db, "AAAA-AAAA-AAAA", "account-a")

    stats = await voucher_service.get_voucher_stats(db)
    assert stats.total_vouchers == 3
    assert stats.used_vouchers == 1
    assert stats.active_vouchers == 2
    assert stats.total_credits_generated == Decimal("110")
    assert stats.total_credits_redeemed == Decimal("50")

    launch = next(c for c in stats.campaigns if c.name == "launch")
    assert launch.redemption_rate == 50.0


@pytest.mark.asyncio
async def test_redeem_endpoint(client, db, auth_headers):
    await _voucher(db)
    headers = auth_headers("account-a")

    ok = await client.post("/vouchers/redeem", json={"voucher_code": "abcd efgh ijkl"}, headers=headers)
    assert ok.status_code == 200
    assert Decimal(ok.json()["credits_added"]) == Decimal("50")
    assert Decimal(ok.json()["new_balance"]) == Decimal("50")

    again = await client.post("/vouchers/redeem", json={"voucher_code": "ABCD-EFGH-IJKL"}, headers=headers)
    assert again.status_code == 400
    assert again.json()["code"] == "already_redeemed"

    missing = await client.post("/vouchers/redeem", json={"voucher_code": "NOPE-NOPE-NOPE"}, headers=headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "invalid_code"


@pytest.mark.asyncio
async def test_concurrent_redemptions_respect_usage_limit(db, session_factory):
    """Two accounts race for a single-use voucher: one wins, the other sees it exhausted."""
    await _voucher(db, code="RACE-RACE-RACE")

    async def _redeem(account_id):
        async with session_factory() as session:
            return await voucher_service.redeem_voucher(session, "RACE-RACE-RACE", account_id)

    results = await asyncio.gather(
        _redeem("account-a"), _redeem("account-b"), return_exceptions=True
    )

    won = [r for r in results if not isinstance(r, BaseException)]
    lost = [r for r in results if isinstance(r, BaseException)]
    assert len(won) == 1
    assert len(lost) == 1
    assert isinstance(lost[0], VoucherInvalidError)
    assert lost[0].reason is VoucherRejection.EXHAUSTED

    async with session_factory() as check:
        voucher = await check.get(Voucher, "RACE-RACE-RACE")
        assert voucher.used_count == 1
        redemptions = (await check.execute(select(VoucherRedemption))).scalars().all()
        assert len(redemptions) == 1
        balances = [await ledger_service.get_balance(check, a) for a in ("account-a", "account-b")]
        assert sorted(balances) == [Decimal("0"), Decimal("50")]

"""Tests for admin adjustments, reporting and the admin API."""
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from credit_ledger.accounts.models import Account
from credit_ledger.admin import service as admin_service
from credit_ledger.audit.models import AuditLog
from credit_ledger.core.exceptions import InsufficientCreditsError, ValidationError
from credit_ledger.ledger import service as ledger_service
from credit_ledger.ledger.models import TransactionSource, TransactionType
from credit_ledger.registration import service as registration_service
from credit_ledger.reporting import service as reporting_service
from credit_ledger.usage import service as usage_service


@pytest.mark.asyncio
async def test_negative_adjustment_audit_trail(db, funded_account):
    """-15 becomes a debit of 15 naming the admin."""
    change = await admin_service.adjust_credits(
        db, funded_account, Decimal("-15"), "Refund chargeback", "ops@example.com"
    )
    tx = change.transaction
    assert tx.type is TransactionType.DEBIT
    assert tx.amount == Decimal("15")
    assert tx.source is TransactionSource.ADMIN_ADJUSTMENT
    assert "ops@example.com" in tx.description
    assert tx.external_event_id is None
    assert (change.previous_balance, change.new_balance) == (Decimal("100"), Decimal("85"))

    entry = (await db.execute(select(AuditLog))).scalars().one()
    assert entry.event_type == "credits.adjusted"
    assert entry.actor == "ops@example.com"
    assert entry.metadata_["delta_credits"] == "-15.0000"


@pytest.mark.asyncio
async def test_positive_adjustment_is_not_idempotent(db):
    for _ in range(2):
        await admin_service.adjust_credits(db, "user-1", Decimal("10"), "Goodwill", "ops@example.com")
    assert await ledger_service.get_balance(db, "user-1") == Decimal("20")
    account = await ledger_service.get_account(db, "user-1")
    assert account.total_purchased == Decimal("0")


@pytest.mark.asyncio
async def test_adjustment_validation(db, funded_account):
    with pytest.raises(ValidationError):
        await admin_service.adjust_credits(db, funded_account, Decimal("0"), "noop", "ops@example.com")
    with pytest.raises(ValidationError):
        await admin_service.adjust_credits(db, funded_account, Decimal("5"), " ", "ops@example.com")
    with pytest.raises(InsufficientCreditsError):
        await admin_service.adjust_credits(db, funded_account, Decimal("-500"), "too much", "ops@example.com")
    assert (await db.execute(select(AuditLog))).scalars().all() == []


# ── Reporting ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_account_summary(db, funded_account):
    await usage_service.settle_usage(db, funded_account, 47, "job-1")
    await usage_service.reserve_credits(db, funded_account, 200, "job-2")

    summary = await reporting_service.get_account_summary(db, funded_account)
    assert summary.balance == Decimal("97.9")
    assert summary.total_purchased == Decimal("100")
    assert summary.transaction_count == 2
    assert summary.held == Decimal("7")
    assert summary.available == Decimal("90.9")


@pytest.mark.asyncio
async def test_summary_for_unknown_account(db):
    summary = await reporting_service.get_account_summary(db, "nobody")
    assert summary.balance == Decimal("0")
    assert summary.transaction_count == 0


@pytest.mark.asyncio
async def test_detect_discrepancy_reports_without_correcting(db, funded_account):
    clean = await reporting_service.detect_discrepancy(db, funded_account)
    assert clean.has_discrepancy is False

    # Out-of-band mutation
    await db.execute(
        update(Account).where(Account.account_id == funded_account).values(balance=Decimal("90"))
    )
    await db.commit()

    found = await reporting_service.detect_discrepancy(db, funded_account)
    assert found.has_discrepancy is True
    assert found.difference == Decimal("-10")
    assert await ledger_service.get_balance(db, funded_account) == Decimal("90")

    swept = await reporting_service.sweep_discrepancies(db, batch_size=1)
    assert [d.account_id for d in swept] == [funded_account]


@pytest.mark.asyncio
async def test_suspicious_registrations_sorted_by_score(db):
    for account_id, score in [("a", 10), ("b", 90), ("c", 60)]:
        await registration_service.award_registration_bonus(db, account_id, score)
    rows = await reporting_service.list_suspicious_registrations(db, min_score=50)
    assert [(r.account_id, r.suspicious_score) for r in rows] == [("b", 90), ("c", 60)]


@pytest.mark.asyncio
async def test_ledger_totals(db, funded_account):
    await usage_service.settle_usage(db, funded_account, 47, "job-1")
    await registration_service.award_registration_bonus(db, "new-user", 90)

    totals = await reporting_service.get_ledger_totals(db)
    assert totals["credited_by_source"] == {"stripe_payment": Decimal("100")}
    assert totals["total_debited"] == Decimal("2.1")
    assert totals["account_count"] == 2
    assert totals["outstanding_balance"] == Decimal("97.9")
    assert totals["flagged_transactions"] == 0


# ── Admin API ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_endpoints_require_admin(client, auth_headers):
    response = await client.get("/admin/ledger/totals", headers=auth_headers("user-1", "user@example.com"))
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"

    anonymous = await client.get("/admin/ledger/totals")
    assert anonymous.status_code in (401, 403)


@pytest.mark.asyncio
async def test_admin_adjust_endpoint(client, funded_account, admin_headers):
    response = await client.post(
        "/admin/credits/adjust",
        json={"account_id": funded_account, "delta_credits": "-15", "description": "Chargeback"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["previous_credits"]) == Decimal("100")
    assert Decimal(body["new_credits_balance"]) == Decimal("85")

    audit = await client.get("/admin/audit", headers=admin_headers)
    assert audit.json()[0]["event_type"] == "credits.adjusted"
    assert audit.json()[0]["actor"] == "admin@example.com"


@pytest.mark.asyncio
async def test_admin_voucher_lifecycle(client, admin_headers, auth_headers):
    created = await client.post(
        "/admin/vouchers",
        json={"credit_amount": "50", "quantity": 2, "campaign_name": "launch"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    assert created.json()["quantity"] == 2
    assert Decimal(created.json()["total_credits"]) == Decimal("100")
    code = created.json()["vouchers"][0]["code"]

    disabled = await client.patch(
        f"/admin/vouchers/{code}", json={"is_active": False}, headers=admin_headers
    )
    assert disabled.json()["is_active"] is False

    redeem = await client.post(
        "/vouchers/redeem", json={"voucher_code": code}, headers=auth_headers("user-1")
    )
    assert redeem.json()["code"] == "inactive"

    stats = await client.get("/admin/vouchers/stats", headers=admin_headers)
    assert stats.json()["total_vouchers"] == 2

    listed = await client.get("/admin/vouchers", params={"campaign_name": "launch"}, headers=admin_headers)
    assert len(listed.json()) == 2


@pytest.mark.asyncio
async def test_admin_discrepancy_and_summary(client, funded_account, admin_headers):
    summary = await client.get(f"/admin/accounts/{funded_account}", headers=admin_headers)
    assert Decimal(summary.json()["balance"]) == Decimal("100")

    check = await client.get(f"/admin/accounts/{funded_account}/discrepancy", headers=admin_headers)
    assert check.json()["has_discrepancy"] is False

    stats = await client.get("/admin/registrations/stats", headers=admin_headers)
    assert stats.json()["total_registrations"] == 0

    webhooks = await client.get("/admin/webhooks", headers=admin_headers)
    assert webhooks.json() == []

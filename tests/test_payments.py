"""Tests for the card and Bitcoin webhook reconcilers."""
import asyncio
import hashlib
import hmac
import json
import time
from decimal import Decimal
from urllib.parse import urlencode

import pytest
from sqlalchemy import select

from credit_ledger.core.exceptions import ValidationError, WebhookSignatureError
from credit_ledger.ledger import service as ledger_service
from credit_ledger.payments import service as payment_service
from credit_ledger.payments.models import WebhookEvent, WebhookOutcome
from credit_ledger.payments.schemas import PaymentEvent
from credit_ledger.payments.signatures import opennode_order_hash, verify_stripe_signature


def _checkout_session(session_id="cs_test_123", user_id="user-1", credits="100", event_type=None):
    return {
        "id": f"evt_{session_id}",
        "object": "event",
        "type": event_type or "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": "paid",
                "amount_total": 999,
                "currency": "usd",
                "metadata": {"userId": user_id, "credits": credits, "packageName": "Starter"},
            }
        },
    }


def _checkout_event(**kwargs) -> bytes:
    return json.dumps(_checkout_session(**kwargs)).encode()


def _sign(payload: bytes, secret: str, timestamp: int) -> str:
    """Stripe-Signature value: t=<ts>,v1=<hex hmac-sha256 of "<ts>.<body>">."""
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _stripe_headers(payload: bytes, secret="whsec_test", timestamp=None):
    ts = int(time.time()) if timestamp is None else timestamp
    return {"Stripe-Signature": _sign(payload, secret, ts)}


def _opennode_body(charge_id="charge_1", status="paid", key="opennode_test_key", **extra):
    fields = {
        "id": charge_id,
        "status": status,
        "price": "25000",
        "hashed_order": opennode_order_hash(charge_id, key),
        **extra,
    }
    return urlencode(fields)


# ── Signatures ────────────────────────────────────────────────────────────────

def test_stripe_signature_returns_event():
    payload = _checkout_event()
    header = _sign(payload, "whsec_test", int(time.time()))
    event = verify_stripe_signature(payload, header, "whsec_test", 300)
    assert event.to_dict()["id"] == "evt_cs_test_123"


def test_stripe_signature_rejects_tampering_and_stale_timestamps():
    payload = _checkout_event()
    now = int(time.time())
    header = _sign(payload, "whsec_test", now)
    with pytest.raises(WebhookSignatureError):
        verify_stripe_signature(_checkout_event(credits="100000"), header, "whsec_test")
    with pytest.raises(WebhookSignatureError):
        verify_stripe_signature(payload, _sign(payload, "whsec_test", now - 1000), "whsec_test", 300)
    with pytest.raises(WebhookSignatureError):
        verify_stripe_signature(payload, "garbage", "whsec_test")
    with pytest.raises(WebhookSignatureError):
        verify_stripe_signature(payload, None, "whsec_test")


def test_stripe_signed_body_must_be_json():
    payload = b"not json"
    with pytest.raises(ValidationError):
        verify_stripe_signature(payload, _sign(payload, "whsec_test", int(time.time())), "whsec_test")


# ── Parsing ───────────────────────────────────────────────────────────────────

def test_parse_checkout_session():
    event_type, event_id, event = payment_service.parse_stripe_event(_checkout_session())
    assert event_type == "checkout.session.completed"
    assert event_id == "evt_cs_test_123"
    assert event.account_id == "user-1"
    assert event.credits == Decimal("100")
    assert event.external_event_id == "cs_test_123"
    assert event.amount_paid_minor == 999
    assert event.currency == "usd"


def test_parse_ignores_other_event_types():
    _, _, event = payment_service.parse_stripe_event(
        _checkout_session(event_type="invoice.paid")
    )
    assert event is None


def test_opennode_metadata_from_success_url():
    event = payment_service.opennode_payment_event(
        {
            "id": "charge_9",
            "status": "paid",
            "success_url": "https://app.example.com/payment/success?userId=user-7&credits=250",
        }
    )
    assert event.account_id == "user-7"
    assert event.credits == Decimal("250")
    assert event.currency == "BTC"


# ── Stripe endpoint ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stripe_webhook_credits_once(client, db):
    payload = _checkout_event()

    first = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert first.status_code == 200
    assert first.json()["received"] is True
    assert first.json()["outcome"] == "processed"
    assert Decimal(first.json()["new_balance"]) == Decimal("100")

    retry = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert retry.status_code == 200
    assert retry.json()["outcome"] == "duplicate"

    assert await ledger_service.get_balance(db, "user-1") == Decimal("100")
    assert await ledger_service.count_transactions(db, "user-1") == 1

    outcomes = (await db.execute(select(WebhookEvent.outcome))).scalars().all()
    assert sorted(o.value for o in outcomes) == ["duplicate", "processed"]


@pytest.mark.asyncio
async def test_stripe_webhook_bad_signature(client, db):
    payload = _checkout_event()
    response = await client.post(
        "/webhooks/stripe", content=payload, headers=_stripe_headers(payload, secret="wrong")
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_signature"
    assert await ledger_service.get_balance(db, "user-1") == Decimal("0")

    logged = (await db.execute(select(WebhookEvent))).scalars().one()
    assert logged.outcome is WebhookOutcome.REJECTED


@pytest.mark.asyncio
async def test_stripe_webhook_missing_metadata(client):
    payload = _checkout_event(user_id="")
    response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_stripe_webhook_ignores_unrelated_events(client):
    payload = _checkout_event(event_type="customer.created")
    response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"


@pytest.mark.asyncio
async def test_stripe_webhook_processing_failure_returns_500(client, db, monkeypatch):
    async def _boom(db, event):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(payment_service, "apply_card_payment", _boom)
    payload = _checkout_event()
    response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert response.status_code == 500

    logged = (await db.execute(select(WebhookEvent))).scalars().one()
    assert logged.outcome is WebhookOutcome.FAILED


# ── OpenNode endpoint ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_opennode_paid_charge_credits_once(client, db):
    body = _opennode_body(metadata_userId="user-2", metadata_credits="300")
    headers = {"Content-Type": "application/x-www-form-urlencoded"}

    first = await client.post("/webhooks/opennode", content=body, headers=headers)
    assert first.status_code == 200
    assert first.json()["outcome"] == "processed"

    second = await client.post("/webhooks/opennode", content=body, headers=headers)
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"

    assert await ledger_service.get_balance(db, "user-2") == Decimal("300")
    account = await ledger_service.get_account(db, "user-2")
    assert account.total_purchased == Decimal("300")


@pytest.mark.asyncio
async def test_opennode_unpaid_status_is_acknowledged(client, db):
    body = _opennode_body(status="expired", metadata_userId="user-2", metadata_credits="300")
    response = await client.post(
        "/webhooks/opennode",
        content=body,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"
    assert await ledger_service.get_balance(db, "user-2") == Decimal("0")


@pytest.mark.asyncio
async def test_opennode_bad_hash(client):
    body = _opennode_body(key="someone-else", metadata_userId="user-2", metadata_credits="300")
    response = await client.post(
        "/webhooks/opennode",
        content=body,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_concurrent_duplicate_deliveries_credit_once(session_factory, funded_account):
    """The same checkout delivered twice at once: the first writer wins, the other replays."""
    event = PaymentEvent(
        account_id=funded_account, credits=Decimal("100"), external_event_id="cs_concurrent"
    )

    async def _deliver():
        async with session_factory() as session:
            return await payment_service.apply_card_payment(session, event)

    results = await asyncio.gather(_deliver(), _deliver())

    assert sorted(r.replayed for r in results) == [False, True]
    assert results[0].transaction.id == results[1].transaction.id
    async with session_factory() as check:
        assert await ledger_service.get_balance(check, funded_account) == Decimal("200")
        assert await ledger_service.count_transactions(check, funded_account) == 2

"""Tests for the account holder read endpoints."""
from decimal import Decimal

import pytest

from credit_ledger.usage import service as usage_service


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_requires_token(client):
    response = await client.get("/accounts/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_for_new_account(client, auth_headers):
    response = await client.get("/accounts/me", headers=auth_headers("brand-new"))
    assert response.status_code == 200
    body = response.json()
    assert body["account_id"] == "brand-new"
    assert Decimal(body["balance"]) == Decimal("0")
    assert body["transaction_count"] == 0


@pytest.mark.asyncio
async def test_me_shows_held_and_available(client, db, funded_account, auth_headers):
    await usage_service.reserve_credits(db, funded_account, 200, "job-1")
    body = (await client.get("/accounts/me", headers=auth_headers(funded_account))).json()
    assert Decimal(body["balance"]) == Decimal("100")
    assert Decimal(body["held"]) == Decimal("7")
    assert Decimal(body["available"]) == Decimal("93")


@pytest.mark.asyncio
async def test_transaction_pages(client, db, funded_account, auth_headers):
    for job in range(3):
        await usage_service.settle_usage(db, funded_account, 20, f"job-{job}")
    headers = auth_headers(funded_account)

    first = await client.get("/accounts/me/transactions", params={"limit": 2}, headers=headers)
    assert first.status_code == 200
    page = first.json()
    assert [tx["related_job_id"] for tx in page["items"]] == ["job-2", "job-1"]
    assert page["items"][0]["type"] == "debit"
    assert page["items"][0]["metadata"] == {"units": 20}

    second = await client.get(
        "/accounts/me/transactions",
        params={"limit": 2, "cursor": page["next_cursor"]},
        headers=headers,
    )
    rest = second.json()
    assert [tx["source"] for tx in rest["items"]] == ["usage", "stripe_payment"]
    assert rest["next_cursor"] is None

    bad = await client.get("/accounts/me/transactions", params={"cursor": "nope"}, headers=headers)
    assert bad.status_code == 400

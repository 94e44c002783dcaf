"""
Test fixtures using async SQLite for fast, isolated tests.
No PostgreSQL required for unit tests.

Each test gets its own database file so that several sessions (concurrent
writers, HTTP requests) can share it.
"""
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from credit_ledger.config import settings
from credit_ledger.core.security import create_access_token
from credit_ledger.db.base import Base
# Import all models so Base.metadata knows every table
from credit_ledger.accounts.models import Account  # noqa: F401
from credit_ledger.audit.models import AuditLog  # noqa: F401
from credit_ledger.ledger.models import Transaction  # noqa: F401
from credit_ledger.payments.models import WebhookEvent  # noqa: F401
from credit_ledger.ratelimit.models import RateLimitBucket  # noqa: F401
from credit_ledger.registration.models import RegistrationTracking  # noqa: F401
from credit_ledger.usage.models import CreditHold  # noqa: F401
from credit_ledger.vouchers.models import Voucher, VoucherRedemption  # noqa: F401

ADMIN_EMAIL = "admin@example.com"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings; no retry back-off sleeps."""
    monkeypatch.setattr(settings, "admin_emails", [ADMIN_EMAIL])
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
    monkeypatch.setattr(settings, "opennode_api_key", "opennode_test_key")
    monkeypatch.setattr(settings, "ledger_retry_backoff_seconds", 0.01)
    return settings


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def funded_account(db) -> str:
    """An account holding 100 credits bought by card."""
    from credit_ledger.balance.service import credit, run_atomic
    from credit_ledger.ledger.models import TransactionSource

    account_id = "user-funded"
    await run_atomic(
        db,
        lambda: credit(
            db, account_id, Decimal("100"), TransactionSource.STRIPE_PAYMENT,
            external_event_id="cs_seed",
        ),
    )
    return account_id


@pytest_asyncio.fixture
async def client(session_factory):
    """In-process HTTP client bound to the test database. Rate limits are off."""
    from credit_ledger.core.dependencies import get_db
    from credit_ledger.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.state.disable_rate_limits = True
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.disable_rate_limits = False


@pytest.fixture
def auth_headers():
    """Bearer headers as minted by the auth collaborator."""

    def _headers(account_id: str, email: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(account_id, email)}"}

    return _headers


@pytest.fixture
def admin_headers(auth_headers) -> dict[str, str]:
    return auth_headers("admin-1", ADMIN_EMAIL)

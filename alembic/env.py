import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from credit_ledger.config import settings
from credit_ledger.db.base import Base
# Every model module must be imported for autogenerate to see its table
from credit_ledger.accounts.models import Account  # noqa: F401
from credit_ledger.audit.models import AuditLog  # noqa: F401
from credit_ledger.ledger.models import Transaction  # noqa: F401
from credit_ledger.payments.models import WebhookEvent  # noqa: F401
from credit_ledger.ratelimit.models import RateLimitBucket  # noqa: F401
from credit_ledger.registration.models import RegistrationTracking  # noqa: F401
from credit_ledger.usage.models import CreditHold  # noqa: F401
from credit_ledger.vouchers.models import Voucher, VoucherRedemption  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    """DATABASE_URL from the app settings wins over alembic.ini."""
    return settings.database_url or config.get_main_option("sqlalchemy.url")


def _context_options(url: str) -> dict:
    return {
        "target_metadata": Base.metadata,
        # Numeric precision and enum changes matter for the ledger columns
        "compare_type": True,
        # SQLite cannot ALTER constraints in place
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = _database_url()
    context.configure(url=url, literal_binds=True, **_context_options(url))
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection, url: str) -> None:
    context.configure(connection=connection, **_context_options(url))
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    url = _database_url()
    engine = create_async_engine(url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate, url)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())

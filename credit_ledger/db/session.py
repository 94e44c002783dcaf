from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from credit_ledger.config import settings


def _engine_options(database_url: str) -> dict:
    # SQLite (local dev) has no connection pool to size
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(settings.database_url, echo=False, **_engine_options(settings.database_url))

# Reconcilers hand ORM rows back after commit; keep them loaded.
async_session_factory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

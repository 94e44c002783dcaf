"""Database-backed rate limiting dependency."""
import logging
from datetime import timedelta
from typing import Callable

from fastapi import Request
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.config import settings
from credit_ledger.core.dependencies import DbSession
from credit_ledger.core.exceptions import RateLimitExceededError
from credit_ledger.db.base import as_utc, utcnow
from credit_ledger.ratelimit.models import RateLimitBucket

logger = logging.getLogger(__name__)


def client_identifier(request: Request) -> str:
    """
    The peer address. Behind a trusted proxy, the nearest X-Forwarded-For hop
    that is not itself a trusted proxy.
    """
    peer = request.client.host if request.client and request.client.host else None
    if peer is None:
        return "unknown"
    trusted = set(settings.trusted_proxies)
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


async def consume(db: AsyncSession, key: str, limit: int, window_seconds: int) -> bool:
    """Count one hit against `key`. Returns False once the window's quota is spent."""
    for _ in range(2):
        now = utcnow()
        result = await db.execute(
            select(RateLimitBucket)
            .where(RateLimitBucket.key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        bucket = result.scalar_one_or_none()
        if bucket is None:
            bucket = RateLimitBucket(key=key, count=0, window_ends_at=now)
            db.add(bucket)
        if as_utc(bucket.window_ends_at) <= now:
            bucket.count = 0
            bucket.window_ends_at = now + timedelta(seconds=window_seconds)
        bucket.count += 1
        try:
            await db.commit()
        except IntegrityError:
            # Another process created the bucket first; count against theirs.
            await db.rollback()
            continue
        return bucket.count <= limit
    return False


async def purge_expired(db: AsyncSession) -> int:
    result = await db.execute(
        delete(RateLimitBucket).where(RateLimitBucket.window_ends_at <= utcnow())
    )
    await db.commit()
    return result.rowcount or 0


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable:
    """Return a FastAPI dependency that enforces per-client request quotas."""

    async def _dependency(request: Request, db: DbSession) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return
        key = f"{prefix}:{client_identifier(request)}"
        if not await consume(db, key, limit, window_seconds):
            logger.warning("Rate limit hit for %s", key)
            raise RateLimitExceededError(f"Rate limit exceeded for {prefix}. Try again later.")

    return _dependency

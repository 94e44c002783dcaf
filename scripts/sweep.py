"""Periodic maintenance sweep. Run with: python -m scripts.sweep

Reports balance discrepancies (never corrects them), expires lapsed usage
holds and purges expired rate-limit windows. Exits 1 if any discrepancy exists.
"""
import asyncio
import logging
import sys

from credit_ledger.config import settings
from credit_ledger.core.logging import configure_logging
from credit_ledger.db.session import async_session_factory, engine
from credit_ledger.ratelimit import service as ratelimit_service
from credit_ledger.reporting import service as reporting_service
from credit_ledger.usage import service as usage_service

logger = logging.getLogger("scripts.sweep")


async def main() -> int:
    configure_logging(settings.log_level)
    async with async_session_factory() as db:
        expired = await usage_service.release_expired_holds(db)
        purged = await ratelimit_service.purge_expired(db)
        discrepancies = await reporting_service.sweep_discrepancies(db)

    await engine.dispose()

    print(f"  Expired holds: {expired}")
    print(f"  Purged rate-limit windows: {purged}")
    for d in discrepancies:
        print(
            f"  MISMATCH {d.account_id}: recorded={d.recorded_balance} "
            f"ledger={d.ledger_balance} diff={d.difference}"
        )
    print(f"Done. {len(discrepancies)} discrepancy(ies).")
    return 1 if discrepancies else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

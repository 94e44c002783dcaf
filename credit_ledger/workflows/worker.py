"""Temporal worker entrypoint. Run with: python -m credit_ledger.workflows.worker"""
import asyncio
import logging

from temporalio.client import Client
from temporalio.worker import Worker

from credit_ledger.config import settings
from credit_ledger.core.logging import configure_logging
from credit_ledger.workflows.activities import release_hold, settle_usage
from credit_ledger.workflows.settle_usage import SettleUsageWorkflow

logger = logging.getLogger(__name__)


async def main() -> None:
    configure_logging(settings.log_level)
    client = await Client.connect(settings.temporal_host)

    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=[SettleUsageWorkflow],
        activities=[settle_usage, release_hold],
    )

    logger.info("Worker started on task queue: %s", settings.temporal_task_queue)
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())

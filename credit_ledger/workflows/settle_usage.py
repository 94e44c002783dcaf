"""
SettleUsageWorkflow: charge (or release) a translation job once its outcome is known.

Workflow ID = usage-<related_job_id>, so a job is settled at most once
even if the pipeline reports it twice.
"""
from dataclasses import dataclass
from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from credit_ledger.workflows.activities import (
        ReleaseHoldInput,
        SettleUsageInput,
        SettleUsageOutput,
        release_hold,
        settle_usage,
    )


@dataclass
class JobOutcome:
    account_id: str
    related_job_id: str
    succeeded: bool
    units_processed: int = 0
    hold_id: str | None = None


def workflow_id(related_job_id: str) -> str:
    return f"usage-{related_job_id}"


@workflow.defn
class SettleUsageWorkflow:
    @workflow.run
    async def run(self, input: JobOutcome) -> SettleUsageOutput:
        if not input.succeeded:
            if input.hold_id:
                await workflow.execute_activity(
                    release_hold,
                    ReleaseHoldInput(hold_id=input.hold_id, account_id=input.account_id),
                    start_to_close_timeout=timedelta(seconds=10),
                    retry_policy=RetryPolicy(maximum_attempts=5),
                )
            return SettleUsageOutput(success=True)

        return await workflow.execute_activity(
            settle_usage,
            SettleUsageInput(
                account_id=input.account_id,
                related_job_id=input.related_job_id,
                units_processed=input.units_processed,
                hold_id=input.hold_id,
            ),
            start_to_close_timeout=timedelta(seconds=15),
            retry_policy=RetryPolicy(maximum_attempts=5),
        )

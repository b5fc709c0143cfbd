"""Retry sweep for blueprint generation jobs.

Polls for jobs whose next_retry_at has passed and runs them through
process_blueprint_job one at a time. On startup it also re-enqueues orphaned
blueprints: rows left pending with no job because the process died during
their detached initial attempt.
"""

import asyncio
from dataclasses import dataclass, field

import httpx
import structlog

from consum.core.config import Settings
from consum.services.generation.processor import ProcessResult, process_blueprint_job
from consum.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)

ERROR_BACKOFF_SECONDS = 5


@dataclass
class SweepSummary:
    """Counts of job outcomes for one sweep batch."""

    fetched: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    failed: int = 0
    crashed: int = 0
    results: list[ProcessResult] = field(default_factory=list)

    def record(self, result: ProcessResult) -> None:
        self.results.append(result)
        if result.status == "success":
            self.succeeded += 1
        elif result.status == "retry_scheduled":
            self.rescheduled += 1
        else:
            self.failed += 1


async def process_due_jobs(
    uow_factory: UnitOfWorkFactory,
    settings: Settings,
    limit: int | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SweepSummary:
    """Process one batch of due jobs.

    Jobs are claimed one at a time, earliest-due first, so each claim lease
    only has to cover a single attempt and concurrent sweeps (one per API
    process) never run the same job. A crash on one job is logged, the job
    stays leased until RETRY_CLAIM_LEASE_SECONDS pass, and the batch continues.

    Args:
        uow_factory: Factory for database units of work
        settings: Application settings (batch size, provider config)
        limit: Batch size override (default: settings.retry_batch_size)
        http_client: Optional shared HTTP client for provider calls

    Returns:
        SweepSummary for the batch
    """
    batch_size = limit if limit is not None else settings.retry_batch_size
    summary = SweepSummary()

    for _ in range(batch_size):
        async with await uow_factory() as uow:
            claimed = await uow.generation_jobs.claim_due_jobs(
                limit=1, lease_seconds=settings.retry_claim_lease_seconds
            )
        if not claimed:
            break

        job = claimed[0]
        summary.fetched += 1
        try:
            result = await process_blueprint_job(
                job, uow_factory, settings, http_client=http_client
            )
            summary.record(result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            summary.crashed += 1
            logger.error(
                "generation_job.crashed",
                job_id=str(job.id),
                blueprint_id=str(job.blueprint_id),
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )

    if summary.fetched:
        logger.info(
            "retry_worker.batch_processed",
            fetched=summary.fetched,
            succeeded=summary.succeeded,
            rescheduled=summary.rescheduled,
            failed=summary.failed,
            crashed=summary.crashed,
        )
    return summary


async def recover_orphaned_blueprints(
    uow_factory: UnitOfWorkFactory, stale_after_seconds: int, limit: int = 100
) -> int:
    """Create immediately-due jobs for pending blueprints that lost their attempt.

    A blueprint qualifies when it is still pending, has not been updated for
    stale_after_seconds (creation and user retries both count), and has no
    live job. Blueprints without a stored request cannot be regenerated and
    are marked failed instead.

    Args:
        uow_factory: Factory for database units of work
        stale_after_seconds: Minimum time since the last update before a blueprint is orphaned
        limit: Maximum blueprints to recover per call

    Returns:
        Number of jobs created
    """
    recovered = 0
    abandoned = 0

    async with await uow_factory() as uow:
        orphans = await uow.blueprints.get_orphaned_pending(stale_after_seconds, limit=limit)
        for blueprint in orphans:
            request = blueprint.generation_request
            if request is None:
                await uow.blueprints.mark_failed(blueprint.id)
                abandoned += 1
                continue
            await uow.generation_jobs.create_job(blueprint.id, request, retry_count=0)
            recovered += 1

    if recovered or abandoned:
        logger.info("worker.recovery", orphaned_blueprints_requeued=recovered, abandoned=abandoned)
    return recovered


async def run_retry_worker(
    uow_factory: UnitOfWorkFactory,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> None:
    """Main loop for the retry sweep.

    Runs orphan recovery once, then polls every RETRY_POLL_INTERVAL_SECONDS.
    Cancellation propagates for graceful shutdown.

    Args:
        uow_factory: Factory for database units of work
        settings: Application settings (poll interval, batch size)
        http_client: Optional shared HTTP client for provider calls
    """
    await recover_orphaned_blueprints(uow_factory, settings.orphan_stale_after_seconds)

    logger.info(
        "worker.started",
        worker="retry",
        poll_interval=settings.retry_poll_interval_seconds,
        batch_size=settings.retry_batch_size,
    )

    try:
        while True:
            try:
                await process_due_jobs(uow_factory, settings, http_client=http_client)
                await asyncio.sleep(settings.retry_poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker="retry",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="retry")
        raise

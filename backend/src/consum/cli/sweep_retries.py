"""CLI command for running one retry sweep outside the API process.

Usage:
    python -m consum.cli.sweep_retries [OPTIONS]

Examples:
    # Process one batch of due jobs
    python -m consum.cli.sweep_retries

    # Larger batch
    python -m consum.cli.sweep_retries --limit 50

    # Show due jobs without calling any provider
    python -m consum.cli.sweep_retries --dry-run

    # Re-enqueue orphaned pending blueprints first
    python -m consum.cli.sweep_retries --recover-orphans
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from consum.core.config import Settings, configure_logging
from consum.core.database import setup_db_session
from consum.core.timezone import utcnow
from consum.uow import UnitOfWorkFactory, create_uow_factory
from consum.workers.retry_worker import process_due_jobs, recover_orphaned_blueprints

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Process due blueprint generation retry jobs",
        epilog="Jobs are processed earliest-due first, one at a time",
    )

    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of jobs to process (default: RETRY_BATCH_SIZE)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List due jobs without running generation attempts",
    )

    parser.add_argument(
        "--recover-orphans",
        action="store_true",
        help="Re-enqueue pending blueprints that have no retry job before sweeping",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def list_due_jobs(uow_factory: UnitOfWorkFactory, limit: int) -> int:
    """Print due jobs without processing them. Returns the number listed."""
    async with await uow_factory() as uow:
        jobs = await uow.generation_jobs.fetch_due_jobs(limit=limit)

    now = utcnow()
    for job in jobs:
        overdue = int((now - job.next_retry_at).total_seconds())
        print(
            f"  job={job.id} blueprint={job.blueprint_id} retry_count={job.retry_count} "
            f"overdue={overdue}s error_type={job.error_type or '-'}"
        )
    return len(jobs)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (some jobs crashed)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    limit = args.limit if args.limit is not None else settings.retry_batch_size

    logger.info(
        "cli.started",
        limit=limit,
        dry_run=args.dry_run,
        recover_orphans=args.recover_orphans,
    )

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        print("\n" + "=" * 60)
        print("Generation Retry Sweep")
        print("=" * 60)

        if args.recover_orphans and not args.dry_run:
            recovered = await recover_orphaned_blueprints(
                uow_factory, settings.orphan_stale_after_seconds
            )
            print(f"Orphaned blueprints re-enqueued: {recovered}")

        if args.dry_run:
            listed = await list_due_jobs(uow_factory, limit)
            print(f"Due jobs: {listed}")
            print("\n[DRY RUN] No generation attempts were made")
            print("=" * 60 + "\n")
            return 0

        summary = await process_due_jobs(uow_factory, settings, limit=limit)

        print(f"Jobs fetched: {summary.fetched}")
        print(f"Succeeded: {summary.succeeded}")
        print(f"Retry scheduled: {summary.rescheduled}")
        print(f"Failed permanently: {summary.failed}")
        if summary.crashed:
            print(f"Crashed (retried once the claim lease expires): {summary.crashed}")
        print("=" * 60 + "\n")

        if summary.crashed:
            logger.warning("cli.partial_success", crashed=summary.crashed)
            return 2
        logger.info("cli.success")
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nSweep interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await session_factory.kw["bind"].dispose()


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()

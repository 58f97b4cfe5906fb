"""CLI command for failing generation jobs stuck past their deadline.

Jobs that never reach a terminal status (worker crash mid-upload, lost
wake-up) are failed with "Generation timed out" and their credits refunded.
An uploading job that already stored images is completed with them instead.

Usage:
    python -m pixorly.cli.expire_jobs [OPTIONS]

Examples:
    # Expire jobs older than JOB_DEADLINE_SECONDS
    python -m pixorly.cli.expire_jobs

    # Custom deadline and batch size
    python -m pixorly.cli.expire_jobs --deadline-seconds 1800 --limit 500

    # Dry run (report only)
    python -m pixorly.cli.expire_jobs --dry-run
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from datetime import timedelta
from typing import Optional, Sequence

import structlog

from pixorly.core.clock import utcnow
from pixorly.core.config import Settings, configure_logging
from pixorly.core.database import setup_db_session
from pixorly.services.generation_jobs import expire_stale_jobs
from pixorly.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Fail and refund generation jobs stuck past their deadline",
    )

    parser.add_argument(
        "--deadline-seconds",
        type=int,
        help="Age after which a non-terminal job is expired (default: JOB_DEADLINE_SECONDS)",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of jobs to expire (default: 100)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report stale jobs without changing them",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    deadline_seconds = args.deadline_seconds or settings.job_deadline_seconds
    logger.info(
        "cli.started", deadline_seconds=deadline_seconds, limit=args.limit, dry_run=args.dry_run
    )

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        if args.dry_run:
            async with await uow_factory() as uow:
                cutoff = utcnow() - timedelta(seconds=deadline_seconds)
                stale = await uow.jobs.get_expired(cutoff, limit=args.limit)
            expired = len(stale)
        else:
            async with await uow_factory() as uow:
                expired = await expire_stale_jobs(uow, deadline_seconds, limit=args.limit)

        print("\n" + "=" * 60)
        print("Stale Job Sweep Summary")
        print("=" * 60)
        print(f"Deadline: {deadline_seconds}s")
        print(f"Jobs {'found' if args.dry_run else 'finalised'}: {expired}")
        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")
        print("=" * 60 + "\n")

        logger.info("cli.success", expired=expired, dry_run=args.dry_run)
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nSweep interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()

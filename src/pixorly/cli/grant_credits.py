"""CLI command for granting credits or switching a user's plan.

Usage:
    python -m pixorly.cli.grant_credits USER_SUBJECT [--amount N] [--plan PLAN]

Examples:
    # Add 100 credits
    python -m pixorly.cli.grant_credits user_2abc --amount 100

    # Move to the pro plan (resets credits and storage quota to the plan grant)
    python -m pixorly.cli.grant_credits user_2abc --plan pro
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

import structlog

from pixorly.core.config import Settings, configure_logging
from pixorly.core.database import setup_db_session
from pixorly.models.user import PlanTier
from pixorly.services.billing import credit_ledger
from pixorly.services.exceptions import UserNotFoundError
from pixorly.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Grant credits or change a user's plan")

    parser.add_argument("subject", help="Identity-provider subject (Clerk user id)")
    parser.add_argument("--amount", type=int, help="Credits to add")
    parser.add_argument(
        "--plan",
        choices=[plan.value for plan in PlanTier],
        help="Plan to apply (credits and quota reset to the plan grant)",
    )

    args = parser.parse_args(argv)
    if args.amount is None and args.plan is None:
        parser.error("one of --amount or --plan is required")
    if args.amount is not None and args.amount < 0:
        parser.error("--amount must not be negative")
    return args


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        async with await uow_factory() as uow:
            user = await uow.users.get_by_external_id(args.subject)
            if user is None:
                raise UserNotFoundError(f"User not found: {args.subject}")

            if args.plan is not None:
                await credit_ledger.apply_plan(uow, user.id, args.plan)
            if args.amount is not None:
                await credit_ledger.grant(uow, user.id, args.amount)

            balance = await uow.users.get_credits(user.id)

        print(f"User {args.subject}: balance is now {balance} credits")
        return 0

    except UserNotFoundError as e:
        logger.error("cli.user_not_found", subject=args.subject)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()

"""Credit ledger: reserve, refund and grant operations on a user's balance.

Every operation is a single UPDATE statement executed inside the caller's
unit of work, so a reservation commits or rolls back together with the job
record it pays for.
"""

from uuid import UUID

import structlog

from pixorly.models.user import PlanTier
from pixorly.services.billing.plans import grant_for
from pixorly.services.exceptions import InsufficientCreditsError, UserNotFoundError
from pixorly.uow import UnitOfWork

logger = structlog.get_logger(__name__)


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise ValueError(f"Credit amount must be a non-negative integer, got {amount!r}")


async def reserve(uow: UnitOfWork, user_id: UUID, amount: int) -> int:
    """Atomically debit `amount` credits if the balance covers it.

    Two concurrent reservations whose sum exceeds the balance cannot both
    succeed: the conditional UPDATE serialises on the user row.

    Args:
        uow: Active unit of work
        user_id: User to charge
        amount: Credits to reserve

    Returns:
        Remaining balance after the debit

    Raises:
        InsufficientCreditsError: Balance lower than amount (nothing changed)
        UserNotFoundError: No such user
    """
    _check_amount(amount)

    remaining = await uow.users.debit_credits(user_id, amount)
    if remaining is None:
        available = await uow.users.get_credits(user_id)
        if available is None:
            raise UserNotFoundError("User not found")
        logger.info(
            "credits.reserve_rejected",
            user_id=str(user_id),
            required=amount,
            available=available,
        )
        raise InsufficientCreditsError(required=amount, available=available)

    logger.info("credits.reserved", user_id=str(user_id), amount=amount, remaining=remaining)
    return remaining


async def refund(uow: UnitOfWork, user_id: UUID, amount: int) -> int:
    """Atomically credit `amount` back to the user.

    Callers guarantee at most one refund per job.

    Returns:
        New balance
    """
    _check_amount(amount)

    balance = await uow.users.credit_credits(user_id, amount)
    if balance is None:
        raise UserNotFoundError("User not found")

    logger.info("credits.refunded", user_id=str(user_id), amount=amount, balance=balance)
    return balance


async def grant(uow: UnitOfWork, user_id: UUID, amount: int) -> int:
    """Add purchased or promotional credits."""
    _check_amount(amount)

    balance = await uow.users.credit_credits(user_id, amount)
    if balance is None:
        raise UserNotFoundError("User not found")

    logger.info("credits.granted", user_id=str(user_id), amount=amount, balance=balance)
    return balance


async def apply_plan(uow: UnitOfWork, user_id: UUID, plan: PlanTier | str) -> None:
    """Switch a user's plan, resetting credits and storage quota to its grant."""
    plan = PlanTier(plan)
    plan_grant = grant_for(plan)
    await uow.users.set_plan(
        user_id,
        plan=plan,
        credits=plan_grant.credits,
        storage_quota_bytes=plan_grant.storage_quota_bytes,
    )
    logger.info(
        "credits.plan_applied",
        user_id=str(user_id),
        plan=plan.value,
        credits=plan_grant.credits,
        storage_quota_bytes=plan_grant.storage_quota_bytes,
    )

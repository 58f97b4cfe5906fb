"""Per-user daily usage counters."""

from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from pixorly.core.clock import utc_today, utcnow
from pixorly.models.daily_usage import DailyUsage
from pixorly.uow import UnitOfWork

logger = structlog.get_logger(__name__)


class UsageOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


async def record_event(
    uow: UnitOfWork,
    user_id: UUID,
    outcome: UsageOutcome,
    credits_charged: int,
    model: str,
    date: Optional[str] = None,
) -> DailyUsage:
    """Increment the (user, date) usage row for one finished job.

    The row is created with zero counters if missing, then locked and
    incremented, so concurrent events for the same day never overwrite
    each other.

    Args:
        uow: Active unit of work (the event commits with the job transition)
        user_id: Job owner
        outcome: Whether the job completed or failed
        credits_charged: Credits actually spent (0 for refunded failures)
        model: Model key counted in the per-model map
        date: ISO date key, defaults to today (UTC)

    Returns:
        The updated DailyUsage row
    """
    date = date or utc_today().isoformat()

    await uow.usage.ensure_row(user_id, date)
    usage = await uow.usage.get_for_update(user_id, date)
    if usage is None:
        raise RuntimeError(f"Usage row for {user_id} on {date} vanished after upsert")

    usage.generations_count += 1
    if outcome == UsageOutcome.SUCCESS:
        usage.generations_success += 1
    else:
        usage.generations_failed += 1
    usage.credits_used += credits_charged

    model_usage = dict(usage.model_usage or {})
    model_usage[model] = model_usage.get(model, 0) + 1
    usage.model_usage = model_usage
    usage.updated_at = utcnow()

    uow.session.add(usage)
    await uow.session.flush()

    logger.info(
        "usage.recorded",
        user_id=str(user_id),
        date=date,
        outcome=outcome.value,
        credits_charged=credits_charged,
        model=model,
    )
    return usage

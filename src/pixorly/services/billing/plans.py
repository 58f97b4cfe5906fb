"""Plan tiers and their credit and storage grants."""

from dataclasses import dataclass

from pixorly.models.user import PlanTier

GIB = 1024 * 1024 * 1024


@dataclass(frozen=True)
class PlanGrant:
    credits: int
    storage_quota_bytes: int


PLAN_GRANTS: dict[PlanTier, PlanGrant] = {
    PlanTier.FREE: PlanGrant(credits=10, storage_quota_bytes=1 * GIB),
    PlanTier.PRO: PlanGrant(credits=500, storage_quota_bytes=100 * GIB),
    PlanTier.ENTERPRISE: PlanGrant(credits=2000, storage_quota_bytes=500 * GIB),
}


def grant_for(plan: PlanTier | str) -> PlanGrant:
    """Look up the grant for a plan tier.

    Raises:
        ValueError: If the plan name is not a known tier
    """
    return PLAN_GRANTS[PlanTier(plan)]

"""Storage quota check performed before every upload."""

from pixorly.services.exceptions import QuotaExceededError


def ensure_quota(used: int, quota: int, incoming: int) -> None:
    """Reject an upload that would push usage past the quota.

    Raises:
        QuotaExceededError: If used + incoming > quota
    """
    if used + incoming > quota:
        raise QuotaExceededError(used=used, quota=quota, incoming=incoming)

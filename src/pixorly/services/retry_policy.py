"""Retry and refund policy for failed generation attempts."""

from dataclasses import dataclass
from typing import Optional

from pixorly.services.exceptions import ServiceError

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 2000

# Failure messages attributable to the server side when the error was not
# classified (unexpected exceptions).
REFUND_MESSAGE_PATTERNS = (
    "internal server error",
    "503",
    "502",
    "500",
    "temporarily unavailable",
    "failed to upload",
)


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a failed attempt: reschedule, or fail with or without refund."""

    retry: bool
    delay_ms: Optional[int] = None
    refund: bool = False


def backoff_delay_ms(retry_count: int, base_delay_ms: int = DEFAULT_BASE_DELAY_MS) -> int:
    """Delay before the next attempt: base * 2^retry_count (2s, 4s, 8s by default)."""
    return base_delay_ms * (2**retry_count)


def is_refundable(error: BaseException) -> bool:
    """Whether a terminating error returns the reserved credits.

    Retryable errors refund once retries are exhausted. Classified errors
    carry their own flag; anything else is judged by its message.
    """
    if isinstance(error, ServiceError):
        return error.retryable or error.refundable
    message = str(error).lower()
    return any(pattern in message for pattern in REFUND_MESSAGE_PATTERNS)


def decide(
    error: BaseException,
    retry_count: int,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
) -> RetryDecision:
    """Apply the retry policy to a failed attempt.

    Args:
        error: Failure raised by the attempt
        retry_count: Retries already scheduled for the job
        max_retries: Retry cap
        base_delay_ms: Backoff base

    Returns:
        RetryDecision. When retrying, delay_ms uses the count before increment.
    """
    if getattr(error, "retryable", False) and retry_count < max_retries:
        return RetryDecision(retry=True, delay_ms=backoff_delay_ms(retry_count, base_delay_ms))
    return RetryDecision(retry=False, refund=is_refundable(error))

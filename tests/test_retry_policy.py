"""Retry and refund policy tests."""

import pytest

from pixorly.services.exceptions import (
    GenerationValidationError,
    ImageDownloadError,
    NoImagesProducedError,
    ProviderPermanentError,
    ProviderTransientError,
    QuotaExceededError,
    StorageUploadError,
)
from pixorly.services.retry_policy import backoff_delay_ms, decide, is_refundable


def test_backoff_schedule():
    assert [backoff_delay_ms(n) for n in range(3)] == [2000, 4000, 8000]


def test_transient_errors_retry_with_backoff_until_cap():
    error = ProviderTransientError("OpenRouter service temporarily unavailable (503)", 503)

    decisions = [decide(error, retry_count) for retry_count in range(3)]
    assert [d.retry for d in decisions] == [True, True, True]
    assert [d.delay_ms for d in decisions] == [2000, 4000, 8000]

    exhausted = decide(error, 3)
    assert exhausted.retry is False
    assert exhausted.refund is True


@pytest.mark.parametrize("status_code", [400, 401, 403, 404, 422])
def test_client_side_provider_errors_fail_without_refund(status_code):
    decision = decide(ProviderPermanentError("Invalid request", status_code), 0)
    assert decision.retry is False
    assert decision.refund is False


def test_server_side_permanent_error_refunds():
    decision = decide(ProviderPermanentError("OpenRouter API error (501)", 501), 0)
    assert decision == decision.__class__(retry=False, refund=True)


def test_no_images_produced_does_not_refund():
    assert decide(NoImagesProducedError(), 0).refund is False


@pytest.mark.parametrize(
    "error",
    [
        StorageUploadError("Failed to upload image to S3: timeout"),
        QuotaExceededError(used=500_000, quota=1_000_000, incoming=600_000),
        ImageDownloadError("Image download failed (404)", status_code=404),
    ],
)
def test_storage_failures_fail_immediately_with_refund(error):
    decision = decide(error, 0)
    assert decision.retry is False
    assert decision.refund is True


def test_unclassified_errors_refund_by_message():
    assert is_refundable(RuntimeError("Internal Server Error")) is True
    assert is_refundable(RuntimeError("upstream returned 502")) is True
    assert is_refundable(KeyError("images")) is False
    assert decide(RuntimeError("boom"), 0).retry is False


def test_admission_errors_are_not_refundable():
    assert is_refundable(GenerationValidationError("Prompt cannot be empty")) is False


def test_custom_cap_and_base():
    error = ProviderTransientError("Rate limit exceeded (429)", 429)
    assert decide(error, 0, max_retries=1, base_delay_ms=100).delay_ms == 100
    assert decide(error, 1, max_retries=1).retry is False

"""Service error hierarchy for generation, billing and storage operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- AdmissionError: Rejected at job creation, nothing persisted
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)
- StorageError: Download, upload and quota failures while storing artifacts
- JobNotActiveError: Job finalised by someone else mid-upload
- NotFoundError: Missing records, or records owned by someone else

Every class carries `retryable` and `refundable` flags. The retry policy reads
them to decide between rescheduling a job and failing it, and whether the
reserved credits go back to the user.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    retryable: bool = False
    refundable: bool = False


# Admission errors (surfaced synchronously at creation time)
class AdmissionError(ServiceError):
    """Base exception for requests rejected before a job exists."""

    pass


class GenerationValidationError(AdmissionError):
    """Invalid prompt, dimensions or image count."""

    pass


class InsufficientCreditsError(AdmissionError):
    """Credit balance is lower than the job cost."""

    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient credits. Required: {required}, Available: {available}")
        self.required = required
        self.available = available


# Provider errors
class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts and connection resets
    - Rate limit exceeded (429)
    - Bad gateway / service unavailable (502, 503)
    """

    retryable = True
    refundable = True


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Provider returned no images
    """

    pass


class ProviderTransientError(TransientError):
    """Retryable failure talking to the image generation provider."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderPermanentError(PermanentError):
    """Terminal failure reported by the image generation provider.

    Server-side (5xx) failures that are not worth retrying still refund.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.refundable = status_code is not None and status_code >= 500


class NoImagesProducedError(PermanentError):
    """Provider answered successfully but returned zero images."""

    def __init__(self, message: str = "No images produced"):
        super().__init__(message)


# Storage errors
class StorageError(ServiceError):
    """Base exception for artifact storage failures.

    Raised once the job has moved to uploading, so they are never retried.
    """

    refundable = True


class StorageUploadError(StorageError):
    """Object storage rejected or failed the upload."""

    pass


class ImageDownloadError(StorageError):
    """A provider-hosted image could not be fetched for upload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class QuotaExceededError(StorageError):
    """Upload would push the user past their storage quota."""

    def __init__(self, used: int, quota: int, incoming: int):
        super().__init__(
            f"Storage quota exceeded: {used} + {incoming} bytes exceeds quota of {quota} bytes"
        )
        self.used = used
        self.quota = quota
        self.incoming = incoming


class JobNotActiveError(ServiceError):
    """Job was finalised elsewhere (e.g. by the expiry sweep) while images were being stored."""

    def __init__(self, job_id, status):
        super().__init__(f"Job {job_id} is no longer uploading (status: {status})")
        self.job_id = job_id
        self.status = status


# Lookup errors
class NotFoundError(ServiceError):
    """Base exception for missing or foreign records."""

    pass


class UserNotFoundError(NotFoundError):
    """No user row for the caller's identity subject."""

    pass


class JobNotFoundError(NotFoundError):
    """Job does not exist or belongs to another user."""

    pass


class ImageNotFoundError(NotFoundError):
    """Image does not exist or is private to another user."""

    pass

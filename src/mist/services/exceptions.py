"""Service error hierarchy for the generation lifecycle.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)
- SubmissionError: Pre-dispatch rejections carrying an HTTP status code
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (500, 502, 503, 504)
    - Expired blob store authorization
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Provider reported a faulted or canceled job
    """

    pass


# Submission errors (rejected before any persistence, nothing is charged)
class SubmissionError(PermanentError):
    """Base exception for rejected submissions."""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidParametersError(SubmissionError):
    """Bad size/count/model combination or unknown provider."""

    status_code = 400


class ModerationRejectedError(SubmissionError):
    """Prompt was flagged by the moderation service."""

    status_code = 400


class InsufficientInkError(SubmissionError):
    """Spendable ink does not cover the reservation."""

    status_code = 402


class UserNotFoundError(SubmissionError):
    """Submitting user does not exist."""

    status_code = 404


class MaintenanceError(SubmissionError):
    """API is in maintenance mode."""

    status_code = 503


# Provider errors
class ProviderTransientError(TransientError):
    """Network failure, rate limit or 5xx from a provider."""

    pass


class ProviderFatalError(PermanentError):
    """Provider rejected the job or reported a fault/cancel state."""

    pass


class GenerationTimeoutError(PermanentError):
    """Remote job did not finish within the polling budget."""

    pass


class NoImagesGeneratedError(PermanentError):
    """No image survived generation, download and upload."""

    pass


# Blob storage errors
class StorageTransientError(TransientError):
    """Network timeout, 5xx, or expired authorization token."""

    pass


class StorageAuthError(PermanentError):
    """Authentication failure (401 on authorize, 403)."""

    pass


class StorageNotFoundError(PermanentError):
    """File does not exist in the bucket."""

    pass


class ReconciliationError(ServiceError):
    """Finalizing a request failed after every retry; ink may be stuck in pending."""

    pass

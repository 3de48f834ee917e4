"""Classified errors raised by the recognition engine."""

from typing import Any, Optional


class RecognitionError(Exception):
    """Base class for every error the engine reports to callers.

    Attributes:
        code: Stable machine-readable error code
        retryable: Whether the retry executor may attempt the call again
        status_code: HTTP status used when the error is rendered as a response envelope
    """

    code = "RECOGNITION_FAILED"
    retryable = False
    status_code = 500


class ConfigurationError(RecognitionError):
    """Model configuration is unusable; raised before any network call."""

    code = "CONFIGURATION_INVALID"
    status_code = 400


class ImageTooLargeError(RecognitionError):
    """Image payload exceeds the configured ceiling."""

    code = "IMAGE_TOO_LARGE"
    status_code = 413

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Image too large: {size:,} bytes (limit {limit:,} bytes)")


class ImageNotFoundError(RecognitionError):
    """Referenced local image or uploaded file id does not exist."""

    code = "IMAGE_NOT_FOUND"
    status_code = 404


class NetworkTransportError(RecognitionError):
    """Connection failure or timeout; no response was received."""

    code = "NETWORK_TRANSPORT_ERROR"
    retryable = True
    status_code = 503


class ImageDownloadError(NetworkTransportError):
    """Image could not be downloaded from its URL."""

    code = "IMAGE_DOWNLOAD_FAILED"
    status_code = 502


class RetryExhaustedError(NetworkTransportError):
    """All attempts failed with transport errors."""

    code = "RETRY_EXHAUSTED"
    retryable = False

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


class ProviderHttpError(RecognitionError):
    """Provider answered with an HTTP error status.

    The response is the provider's authoritative answer and is never retried.
    """

    code = "PROVIDER_HTTP_ERROR"
    status_code = 502

    def __init__(self, provider: str, status: int, body: str, message: Optional[str] = None) -> None:
        self.provider = provider
        self.status = status
        self.body = body
        detail = message or body[:200] or "unknown error"
        super().__init__(f"{provider} API error (HTTP {status}): {detail}")


class InvalidProviderResponseError(RecognitionError):
    """Provider response lacks the field path the adapter reads."""

    code = "INVALID_PROVIDER_RESPONSE"
    status_code = 502


def provider_error_message(payload: Any, reason: str = "") -> str:
    """Pick the most useful message out of a provider error body.

    Looks at ``error.message``, then ``message``, then falls back to the
    HTTP reason phrase.
    """
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if payload.get("message"):
            return str(payload["message"])
    return reason

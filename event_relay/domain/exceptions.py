"""Custom exception hierarchy for the WhatsApp event relay.

Following error taxonomy: retryable, non-retryable, validation, rate-limit.
"""

from typing import Final

HTTP_STATUS_TOO_MANY_REQUESTS: Final[int] = 429
RATE_LIMIT_MARKER: Final[str] = "rate-overlimit"


class EventRelayError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(EventRelayError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(EventRelayError):
    """Errors that should not be retried (validation, auth, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Malformed external data (LLM output, bridge payloads, persisted files)."""

    pass


class RateLimitError(RetryableError):
    """Upstream rate limit exceeded."""

    def __init__(self, retry_after: float | None = None) -> None:
        """Initialize with optional retry_after seconds."""
        self.retry_after = retry_after
        self.data = HTTP_STATUS_TOO_MANY_REQUESTS
        super().__init__(f"{RATE_LIMIT_MARKER}: retry after {retry_after}s")


class WhatsAppAPIError(RetryableError):
    """WhatsApp bridge communication errors."""

    pass


class LLMAPIError(RetryableError):
    """LLM API communication errors."""

    pass


def is_rate_limit_error(error: BaseException) -> bool:
    """Return True if the error is the collaborator's rate-limit signal.

    The protocol layer reports throttling either as an error carrying
    ``data == 429`` or as a message containing ``rate-overlimit``.
    """
    if isinstance(error, RateLimitError):
        return True
    if getattr(error, "data", None) == HTTP_STATUS_TOO_MANY_REQUESTS:
        return True
    return RATE_LIMIT_MARKER in str(error)

"""Error taxonomy for calls to the video-generation API.

Every failure is mapped onto one ErrorKind. Each kind carries a fixed
retryability flag plus a short message for end users and a suggested
action for operators.
"""

from enum import Enum
from typing import Any, List, Optional

from reelcall.domain.interfaces.raw_error import os_error_code


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    INVALID_INPUT = "invalid_input"
    MODEL_NOT_FOUND = "model_not_found"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    WEBHOOK_ERROR = "webhook_error"
    PREDICTION_ERROR = "prediction_error"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS

    @property
    def description(self) -> str:
        return _KIND_DETAILS[self][0]

    @property
    def user_message(self) -> str:
        return _KIND_DETAILS[self][1]

    @property
    def suggested_action(self) -> str:
        return _KIND_DETAILS[self][2]


RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMIT,
    ErrorKind.SERVER_ERROR,
    ErrorKind.NETWORK_ERROR,
    ErrorKind.TIMEOUT,
    ErrorKind.WEBHOOK_ERROR,
})

# kind -> (technical description, user message, suggested action)
_KIND_DETAILS = {
    ErrorKind.AUTHENTICATION: (
        "Authentication failed with the generation API",
        "There was an authentication issue with the AI service. Please try again later.",
        "Check API token configuration",
    ),
    ErrorKind.RATE_LIMIT: (
        "Rate limit exceeded",
        "The AI service is currently busy. Your request will be retried automatically.",
        "Wait and retry with exponential backoff",
    ),
    ErrorKind.INVALID_INPUT: (
        "Invalid input provided to model",
        "There was an issue with your request. Please check your inputs and try again.",
        "Validate input parameters against model schema",
    ),
    ErrorKind.MODEL_NOT_FOUND: (
        "Requested model not found",
        "The selected AI model is currently unavailable. Please try a different model.",
        "Check model availability and update model configuration",
    ),
    ErrorKind.INSUFFICIENT_CREDITS: (
        "Insufficient credits or payment required",
        "There was a billing issue with the AI service. Please contact support.",
        "Check API account billing and credits",
    ),
    ErrorKind.NETWORK_ERROR: (
        "Network connectivity issue",
        "There was a connection issue. Your request will be retried automatically.",
        "Check network connectivity and retry",
    ),
    ErrorKind.SERVER_ERROR: (
        "Server error",
        "The AI service is experiencing issues. Your request will be retried automatically.",
        "Retry with exponential backoff",
    ),
    ErrorKind.TIMEOUT: (
        "Request timed out",
        "The request took too long to complete. It will be retried automatically.",
        "Increase timeout or retry with backoff",
    ),
    ErrorKind.WEBHOOK_ERROR: (
        "Webhook processing error",
        "There was an issue processing the response. The system will handle this automatically.",
        "Check webhook endpoint and retry processing",
    ),
    ErrorKind.PREDICTION_ERROR: (
        "Video generation failed",
        "The video generation failed. Your credits have been refunded.",
        "Check input parameters and model status",
    ),
    ErrorKind.UNKNOWN: (
        "Unknown error",
        "An unexpected error occurred. Please try again or contact support if the issue persists.",
        "Log error details and investigate",
    ),
}


# --- Exceptions ---

class ClassifiedError(Exception):
    """A raw failure wrapped with its ErrorKind and display metadata.

    Attributes are read-only; build one per failure occurrence, usually via
    ``ErrorClassifier.classify``.
    """

    def __init__(
        self,
        kind: ErrorKind,
        original_error: Any,
        status_code: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self._kind = kind
        self._original_error = original_error
        self._status_code = status_code
        self._message = message or kind.description
        super().__init__(self._message)

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def original_error(self) -> Any:
        return self._original_error

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def message(self) -> str:
        return self._message

    @property
    def retryable(self) -> bool:
        return self._kind.retryable

    @property
    def user_message(self) -> str:
        return self._kind.user_message

    @property
    def suggested_action(self) -> str:
        return self._kind.suggested_action

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self._kind.value!r}, status_code={self._status_code!r}, "
            f"message={self._message!r})"
        )


class AggregateError(Exception):
    """Raised when every attempt allowed by a retry policy has failed."""

    def __init__(self, errors: List[BaseException], attempts: int, total_duration_ms: int):
        if not errors:
            raise ValueError("AggregateError requires at least one underlying error")
        self.errors = list(errors)
        self.attempts = attempts
        self.total_duration_ms = total_duration_ms
        self.last_error = self.errors[-1]
        # Surface the last error's status/code for callers and the classifier
        self.status_code: Optional[int] = _status_of(self.last_error)
        self.code: Optional[str] = _code_of(self.last_error)
        super().__init__(
            f"Operation failed after {attempts} attempts. Last error: {self.last_error}"
        )


class RetryCancelledError(Exception):
    """Raised when a retry loop is cancelled before its next attempt."""

    def __init__(self, attempts: int, errors: List[BaseException]):
        self.attempts = attempts
        self.errors = list(errors)
        super().__init__(f"Retry cancelled after {attempts} attempt(s)")


def _status_of(error: Any) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if callable(value):
            value = value()
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _code_of(error: Any) -> Optional[str]:
    value = getattr(error, "code", None)
    if callable(value):
        value = value()
    if not isinstance(value, str):
        value = os_error_code(error)
    return value if isinstance(value, str) else None

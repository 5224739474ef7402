"""Classifies raw API failures into the ErrorKind taxonomy.

Rules are evaluated in a fixed priority order and the first match wins, so
classification is deterministic and total: anything that matches no rule is
``ErrorKind.UNKNOWN``.
"""

import logging
import random
from typing import Any, Callable, Dict, List, Optional, Tuple

from reelcall.domain.interfaces.raw_error import RawError, as_raw_error
from reelcall.domain.models.errors import AggregateError, ClassifiedError, ErrorKind

logger = logging.getLogger(__name__)

NETWORK_ERROR_CODES = (
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "EAI_AGAIN",
    "EPIPE",
    "ECONNABORTED",
)

# kind -> (base delay ms, max delay ms) for recommended_delay
_KIND_DELAYS: Dict[ErrorKind, Tuple[int, int]] = {
    ErrorKind.RATE_LIMIT: (5000, 60000),
    ErrorKind.SERVER_ERROR: (2000, 30000),
    ErrorKind.NETWORK_ERROR: (1000, 15000),
    ErrorKind.TIMEOUT: (3000, 20000),
    ErrorKind.WEBHOOK_ERROR: (2000, 30000),
}
_DEFAULT_KIND_DELAY = (1000, 30000)
_KIND_JITTER_RATIO = 0.1

_Rule = Tuple[ErrorKind, Callable[[Optional[int], Optional[str], str, str], bool]]


def _mentions(text: str, *needles: str) -> bool:
    return any(needle in text for needle in needles)


def _is_network(code: Optional[str], message: str) -> bool:
    return code in NETWORK_ERROR_CODES or any(c in message for c in NETWORK_ERROR_CODES)


# Each predicate receives (status, code, original message, lowercased message)
_RULES: List[_Rule] = [
    (ErrorKind.AUTHENTICATION,
     lambda s, c, m, lm: s == 401 or _mentions(lm, "authentication", "unauthorized")),
    (ErrorKind.RATE_LIMIT,
     lambda s, c, m, lm: s == 429 or _mentions(lm, "rate limit", "too many requests")),
    (ErrorKind.INVALID_INPUT,
     lambda s, c, m, lm: s == 400 or _mentions(lm, "invalid input", "validation")),
    (ErrorKind.MODEL_NOT_FOUND,
     lambda s, c, m, lm: s == 404 or _mentions(lm, "model not found")),
    (ErrorKind.INSUFFICIENT_CREDITS,
     lambda s, c, m, lm: s == 402 or _mentions(lm, "insufficient credits", "payment")),
    (ErrorKind.SERVER_ERROR,
     lambda s, c, m, lm: s is not None and 500 <= s <= 599),
    (ErrorKind.NETWORK_ERROR,
     lambda s, c, m, lm: _is_network(c, m)),
    (ErrorKind.TIMEOUT,
     lambda s, c, m, lm: c == "ETIMEDOUT" or "timeout" in lm),
    (ErrorKind.WEBHOOK_ERROR,
     lambda s, c, m, lm: _mentions(lm, "webhook", "callback")),
    (ErrorKind.PREDICTION_ERROR,
     lambda s, c, m, lm: _mentions(lm, "prediction", "generation failed")),
]


class ErrorClassifier:
    """Maps any failure onto exactly one ErrorKind."""

    def kind_of(self, error: Any) -> ErrorKind:
        """Returns only the ErrorKind for a failure."""
        if isinstance(error, ClassifiedError):
            return error.kind
        raw = as_raw_error(_failure_detail(error))
        return self._match(raw)[0]

    def classify(self, error: Any) -> ClassifiedError:
        """Classifies a failure and wraps it in a ClassifiedError.

        Args:
            error: Anything that was raised or reported as a failure. Objects
                implementing RawError are used directly; other values are adapted.
                An AggregateError is classified by its last error.

        Returns:
            A ClassifiedError whose ``original_error`` is ``error`` itself.
        """
        if isinstance(error, ClassifiedError):
            return error
        raw = as_raw_error(_failure_detail(error))
        kind, status = self._match(raw)
        message = kind.description
        if kind == ErrorKind.SERVER_ERROR:
            message = f"Server error: {status}"
        elif kind == ErrorKind.UNKNOWN:
            message = f"Unknown error: {raw.message() or type(error).__name__}"
        return ClassifiedError(kind=kind, original_error=error, status_code=status, message=message)

    def _match(self, raw: RawError) -> Tuple[ErrorKind, Optional[int]]:
        try:
            status = raw.status_code()
            code = raw.code()
            message = raw.message() or ""
        except Exception as e:
            # A misbehaving RawError implementation must not break classification
            logger.warning(f"Could not read failure details from {type(raw).__name__}: {e}")
            return ErrorKind.UNKNOWN, None
        lowered = message.lower()
        for kind, predicate in _RULES:
            if predicate(status, code, message, lowered):
                return kind, status
        return ErrorKind.UNKNOWN, status

    @staticmethod
    def should_retry(classified: ClassifiedError) -> bool:
        return classified.retryable

    @staticmethod
    def recommended_delay(kind: ErrorKind, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Kind-specific backoff in milliseconds for the given 0-based attempt."""
        base_delay, max_delay = _KIND_DELAYS.get(kind, _DEFAULT_KIND_DELAY)
        exponential = base_delay * (2 ** max(attempt, 0))
        jitter = (rng or random).random() * _KIND_JITTER_RATIO * exponential
        return min(max_delay, exponential + jitter)


def classify_error(error: Any) -> ClassifiedError:
    """Convenience wrapper around ``ErrorClassifier().classify``."""
    return ErrorClassifier().classify(error)


def user_message_for(error: Any) -> str:
    """Returns the end-user message for any failure."""
    return classify_error(error).user_message


def log_classified_error(error: Any, context: Optional[Dict[str, Any]] = None) -> ClassifiedError:
    """Logs a failure at a level matching its severity and returns its classification."""
    classified = classify_error(error)
    details = (
        f"kind={classified.kind.value} status={classified.status_code} "
        f"retryable={classified.retryable} message={classified.message!r} context={context or {}}"
    )
    if classified.retryable:
        logger.warning(f"Retryable generation API error: {details}")
    elif classified.kind in (ErrorKind.AUTHENTICATION, ErrorKind.INSUFFICIENT_CREDITS):
        logger.error(f"Critical generation API error: {details}")
    else:
        logger.error(f"Generation API error: {details}")
    return classified


def _failure_detail(error: Any) -> Any:
    # An exhausted retry is classified by its final attempt
    if isinstance(error, AggregateError):
        return error.last_error
    return error

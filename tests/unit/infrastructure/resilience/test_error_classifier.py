import errno
import logging
import random

import pytest

from reelcall.domain.interfaces.raw_error import as_raw_error
from reelcall.domain.models.errors import AggregateError, ClassifiedError, ErrorKind
from reelcall.infrastructure.resilience.error_classifier import (
    ErrorClassifier,
    classify_error,
    log_classified_error,
    user_message_for,
)
from reelcall.infrastructure.transport.http_api import ApiTransportError


@pytest.fixture
def classifier():
    return ErrorClassifier()


@pytest.mark.parametrize("status, expected", [
    (400, ErrorKind.INVALID_INPUT),
    (401, ErrorKind.AUTHENTICATION),
    (402, ErrorKind.INSUFFICIENT_CREDITS),
    (404, ErrorKind.MODEL_NOT_FOUND),
    (429, ErrorKind.RATE_LIMIT),
    (500, ErrorKind.SERVER_ERROR),
    (502, ErrorKind.SERVER_ERROR),
    (503, ErrorKind.SERVER_ERROR),
])
def test_classifies_http_status(classifier: ErrorClassifier, status: int, expected: ErrorKind):
    result = classifier.classify({"status": status, "message": "boom"})
    assert result.kind == expected
    assert result.status_code == status


@pytest.mark.parametrize("kind", list(ErrorKind))
def test_retryable_set_is_fixed(kind: ErrorKind):
    expected = kind in {
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER_ERROR,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.TIMEOUT,
        ErrorKind.WEBHOOK_ERROR,
    }
    assert kind.retryable is expected
    assert kind.user_message
    assert kind.suggested_action


@pytest.mark.parametrize("message, expected", [
    ("Unauthorized: bad token", ErrorKind.AUTHENTICATION),
    ("Authentication required", ErrorKind.AUTHENTICATION),
    ("Rate limit reached", ErrorKind.RATE_LIMIT),
    ("429 Too Many Requests", ErrorKind.RATE_LIMIT),
    ("Invalid input: prompt missing", ErrorKind.INVALID_INPUT),
    ("validation failed for field fps", ErrorKind.INVALID_INPUT),
    ("Model not found", ErrorKind.MODEL_NOT_FOUND),
    ("Insufficient credits", ErrorKind.INSUFFICIENT_CREDITS),
    ("payment required", ErrorKind.INSUFFICIENT_CREDITS),
    ("socket hang up ECONNRESET", ErrorKind.NETWORK_ERROR),
    ("Request timeout after 60s", ErrorKind.TIMEOUT),
    ("webhook delivery failed", ErrorKind.WEBHOOK_ERROR),
    ("callback URL rejected", ErrorKind.WEBHOOK_ERROR),
    ("Prediction failed: CUDA out of memory", ErrorKind.PREDICTION_ERROR),
    ("generation failed", ErrorKind.PREDICTION_ERROR),
    ("something odd happened", ErrorKind.UNKNOWN),
])
def test_classifies_by_message(classifier: ErrorClassifier, message: str, expected: ErrorKind):
    assert classifier.classify(Exception(message)).kind == expected


def test_status_rules_take_priority_over_message(classifier: ErrorClassifier):
    """A 401 whose message mentions rate limits is still an authentication failure."""
    error = ApiTransportError("rate limit exceeded", status=401)
    assert classifier.classify(error).kind == ErrorKind.AUTHENTICATION


def test_generic_not_found_message_is_not_a_missing_model(classifier: ErrorClassifier):
    assert classifier.classify("file not found").kind == ErrorKind.UNKNOWN


@pytest.mark.parametrize("code", ["ECONNRESET", "ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND", "EAI_AGAIN", "EPIPE"])
def test_network_codes(classifier: ErrorClassifier, code: str):
    result = classifier.classify(ApiTransportError("connection failed", error_code=code))
    assert result.kind == ErrorKind.NETWORK_ERROR
    assert result.retryable


def test_etimedout_code_is_network_not_timeout(classifier: ErrorClassifier):
    """The network rule is checked before the timeout rule."""
    assert classifier.classify({"code": "ETIMEDOUT"}).kind == ErrorKind.NETWORK_ERROR


def test_os_error_errno_is_used_as_code(classifier: ErrorClassifier):
    error = ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")
    assert classifier.classify(error).kind == ErrorKind.NETWORK_ERROR


@pytest.mark.parametrize("error, code", [
    (ConnectionResetError("Connection lost"), "ECONNRESET"),
    (ConnectionRefusedError("refused"), "ECONNREFUSED"),
    (ConnectionAbortedError(), "ECONNABORTED"),
    (BrokenPipeError(), "EPIPE"),
])
def test_connection_errors_without_errno_are_network_errors(classifier: ErrorClassifier, error, code: str):
    assert error.errno is None
    assert as_raw_error(error).code() == code
    result = classifier.classify(error)
    assert result.kind == ErrorKind.NETWORK_ERROR
    assert result.retryable


def test_status_read_from_attached_response(classifier: ErrorClassifier):
    class Response:
        status_code = 503

    class HttpError(Exception):
        response = Response()

    assert classifier.classify(HttpError("upstream")).kind == ErrorKind.SERVER_ERROR


def test_sdk_style_attributes_are_adapted(classifier: ErrorClassifier):
    """Plain status_code/code/message attributes (not callables) still classify."""

    class SdkError(Exception):
        def __init__(self):
            super().__init__("slow down")
            self.status_code = 429
            self.code = None
            self.message = "slow down"

    assert classifier.classify(SdkError()).kind == ErrorKind.RATE_LIMIT


@pytest.mark.parametrize("value", [None, "", 42, object(), {}, []])
def test_classification_is_total(classifier: ErrorClassifier, value):
    result = classifier.classify(value)
    assert isinstance(result.kind, ErrorKind)
    assert result.original_error is value


def test_misbehaving_raw_error_falls_back_to_unknown(classifier: ErrorClassifier):
    class Broken:
        def status_code(self):
            raise RuntimeError("nope")

        def code(self):
            return None

        def message(self):
            return ""

    assert classifier.classify(Broken()).kind == ErrorKind.UNKNOWN


def test_classified_error_passes_through(classifier: ErrorClassifier):
    original = ClassifiedError(ErrorKind.TIMEOUT, original_error=TimeoutError())
    assert classifier.classify(original) is original
    assert classifier.kind_of(original) == ErrorKind.TIMEOUT


def test_aggregate_error_classified_by_last_error(classifier: ErrorClassifier):
    aggregate = AggregateError(
        [ApiTransportError("API error 503", status=503), ApiTransportError("API error 429", status=429)],
        attempts=2,
        total_duration_ms=10,
    )
    result = classifier.classify(aggregate)
    assert result.kind == ErrorKind.RATE_LIMIT
    assert result.original_error is aggregate


def test_aggregate_of_bare_timeouts_stays_a_timeout(classifier: ErrorClassifier):
    """Bare TimeoutError() attempts carry no message of their own."""
    aggregate = AggregateError([TimeoutError(), TimeoutError()], attempts=2, total_duration_ms=10)
    result = classifier.classify(aggregate)
    assert result.kind == ErrorKind.TIMEOUT
    assert result.retryable
    assert result.original_error is aggregate
    assert classifier.kind_of(aggregate) == ErrorKind.TIMEOUT


def test_aggregate_of_connection_resets_keeps_the_code():
    aggregate = AggregateError([ConnectionResetError("Connection lost")], attempts=1, total_duration_ms=0)
    assert aggregate.code == "ECONNRESET"
    assert classify_error(aggregate).kind == ErrorKind.NETWORK_ERROR


def test_server_error_message_includes_status(classifier: ErrorClassifier):
    assert classifier.classify({"status": 502}).message == "Server error: 502"


def test_classified_error_exposes_user_facing_text():
    result = classify_error(ApiTransportError("API error 402", status=402))
    assert result.user_message == ErrorKind.INSUFFICIENT_CREDITS.user_message
    assert result.suggested_action == "Check API account billing and credits"
    assert not result.retryable
    assert user_message_for({"status": 429}) == ErrorKind.RATE_LIMIT.user_message


def test_recommended_delay_is_capped_per_kind():
    rng = random.Random(7)
    assert ErrorClassifier.recommended_delay(ErrorKind.RATE_LIMIT, 10, rng) == 60000
    assert ErrorClassifier.recommended_delay(ErrorKind.NETWORK_ERROR, 10, rng) == 15000
    assert ErrorClassifier.recommended_delay(ErrorKind.UNKNOWN, 10, rng) == 30000


def test_recommended_delay_jitter_bounds():
    rng = random.Random(3)
    for attempt in range(3):
        delay = ErrorClassifier.recommended_delay(ErrorKind.SERVER_ERROR, attempt, rng)
        exponential = 2000 * 2 ** attempt
        assert exponential <= delay < exponential * 1.1


def test_log_levels_follow_severity(caplog):
    with caplog.at_level(logging.WARNING, logger="reelcall.infrastructure.resilience.error_classifier"):
        log_classified_error({"status": 503}, {"operation": "create_prediction"})
        log_classified_error({"status": 401})
        log_classified_error({"status": 400})

    levels = [(r.levelno, r.getMessage()) for r in caplog.records]
    assert levels[0][0] == logging.WARNING
    assert levels[1][0] == logging.ERROR and "Critical" in levels[1][1]
    assert levels[2][0] == logging.ERROR and "Critical" not in levels[2][1]

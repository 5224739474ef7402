import asyncio
import random

import pytest

from reelcall.domain.events.api_events import (
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    RetryScheduled,
)
from reelcall.domain.models.errors import AggregateError, RetryCancelledError
from reelcall.domain.models.retry import RetryPolicy
from reelcall.infrastructure.resilience.retry_engine import RetryEngine
from reelcall.infrastructure.transport.http_api import ApiTransportError

NO_JITTER = RetryPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=30000, backoff_multiplier=2.0, jitter_factor=0.0)


class FlakyOperation:
    """Fails with the given errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def server_error():
    return ApiTransportError("API error 503: unavailable", status=503)


@pytest.fixture
def events():
    return []


@pytest.fixture
def engine(sleeper, events):
    return RetryEngine(rng=random.Random(42), sleep_func=sleeper, event_listener=events.append)


@pytest.mark.asyncio
async def test_success_on_first_attempt(engine: RetryEngine, sleeper):
    op = FlakyOperation()
    assert await engine.execute(op, NO_JITTER) == "ok"
    assert op.calls == 1
    assert sleeper.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [1, 2, 3])
async def test_success_after_k_retryable_failures(engine: RetryEngine, sleeper, failures: int):
    op = FlakyOperation(*[server_error() for _ in range(failures)])
    assert await engine.execute(op, NO_JITTER) == "ok"
    assert op.calls == failures + 1
    assert len(sleeper.calls) == failures


@pytest.mark.asyncio
@pytest.mark.parametrize("max_retries", [0, 1, 3])
async def test_exhaustion_raises_aggregate(engine: RetryEngine, max_retries: int):
    policy = NO_JITTER.with_overrides(max_retries=max_retries)
    errors = [server_error() for _ in range(max_retries + 1)]
    op = FlakyOperation(*errors)

    with pytest.raises(AggregateError) as exc_info:
        await engine.execute(op, policy)

    aggregate = exc_info.value
    assert op.calls == max_retries + 1
    assert aggregate.attempts == max_retries + 1
    assert aggregate.errors == errors
    assert aggregate.last_error is errors[-1]
    assert aggregate.status_code == 503
    assert str(aggregate).startswith(f"Operation failed after {max_retries + 1} attempts. Last error:")


@pytest.mark.asyncio
async def test_non_retryable_error_is_reraised_unchanged(engine: RetryEngine, sleeper):
    auth_error = ApiTransportError("API error 401: bad token", status=401)
    op = FlakyOperation(auth_error)

    with pytest.raises(ApiTransportError) as exc_info:
        await engine.execute(op, NO_JITTER)

    assert exc_info.value is auth_error
    assert op.calls == 1
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_non_retryable_on_last_attempt_still_aggregates(engine: RetryEngine):
    """The exhaustion check runs before the retryability check."""
    op = FlakyOperation(server_error(), ApiTransportError("API error 400", status=400))
    with pytest.raises(AggregateError) as exc_info:
        await engine.execute(op, NO_JITTER.with_overrides(max_retries=1))
    assert exc_info.value.attempts == 2


@pytest.mark.asyncio
async def test_sleeps_follow_backoff(engine: RetryEngine, sleeper):
    op = FlakyOperation(server_error(), server_error(), server_error())
    await engine.execute(op, NO_JITTER)
    assert sleeper.calls == [1.0, 2.0, 4.0]


@pytest.mark.parametrize("attempt, expected", [(0, 1000), (1, 2000), (2, 4000), (5, 30000), (10, 30000)])
def test_delay_without_jitter(engine: RetryEngine, attempt: int, expected: int):
    assert engine.compute_delay(attempt, NO_JITTER) == expected


def test_delay_with_jitter_stays_in_band():
    engine = RetryEngine(rng=random.Random(1))
    policy = RetryPolicy(base_delay_ms=1000, jitter_factor=0.1)
    for _ in range(50):
        assert 900 <= engine.compute_delay(0, policy) <= 1100


def test_negative_base_delay_never_sleeps_negative():
    engine = RetryEngine(rng=random.Random(5))
    policy = RetryPolicy(base_delay_ms=-500, jitter_factor=1.0)
    assert all(engine.compute_delay(n, policy) == 0 for n in range(4))


def test_full_jitter_never_negative():
    engine = RetryEngine(rng=random.Random(9))
    policy = RetryPolicy(base_delay_ms=1000, jitter_factor=1.0)
    assert all(engine.compute_delay(0, policy) >= 0 for _ in range(100))


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", [None, "not callable", 42])
async def test_invalid_operation_raises_type_error(engine: RetryEngine, operation):
    with pytest.raises(TypeError):
        await engine.execute(operation, NO_JITTER)
    with pytest.raises(TypeError):
        await engine.execute_with_stats(operation, NO_JITTER)


@pytest.mark.asyncio
async def test_execute_with_stats_reports_attempts(engine: RetryEngine):
    first, second = server_error(), server_error()
    result = await engine.execute_with_stats(FlakyOperation(first, second), NO_JITTER)
    assert result.result == "ok"
    assert result.attempts == 3
    assert result.errors == [first, second]
    assert result.total_duration_ms >= 0


@pytest.mark.asyncio
async def test_execute_with_stats_aggregates_non_retryable(engine: RetryEngine):
    op = FlakyOperation(ApiTransportError("API error 404", status=404))
    with pytest.raises(AggregateError) as exc_info:
        await engine.execute_with_stats(op, NO_JITTER)
    assert exc_info.value.attempts == 1
    assert op.calls == 1


@pytest.mark.asyncio
async def test_cancel_event_stops_before_next_attempt(sleeper):
    cancel = asyncio.Event()

    async def cancelling_sleep(seconds):
        await sleeper(seconds)
        cancel.set()

    engine = RetryEngine(rng=random.Random(0), sleep_func=cancelling_sleep)
    op = FlakyOperation(server_error(), server_error())

    with pytest.raises(RetryCancelledError) as exc_info:
        await engine.execute(op, NO_JITTER, cancel_event=cancel)

    assert op.calls == 1
    assert exc_info.value.attempts == 1
    assert len(exc_info.value.errors) == 1


@pytest.mark.asyncio
async def test_task_cancellation_during_backoff_propagates():
    engine = RetryEngine(rng=random.Random(0))
    policy = NO_JITTER.with_overrides(base_delay_ms=60_000, max_delay_ms=60_000)
    task = asyncio.create_task(engine.execute(FlakyOperation(server_error()), policy))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_events_are_published(engine: RetryEngine, events):
    await engine.execute(FlakyOperation(server_error()), NO_JITTER, operation_name="create_prediction")

    kinds = [type(e) for e in events]
    assert kinds == [ApiCallInitiated, RetryScheduled, ApiCallInitiated, ApiCallSucceeded]
    scheduled = events[1]
    assert scheduled.operation == "create_prediction"
    assert scheduled.delay_ms == 1000
    assert scheduled.error_kind == "server_error"
    assert scheduled.status_code == 503
    assert events[-1].attempts == 2


@pytest.mark.asyncio
async def test_failed_event_marks_exhaustion(engine: RetryEngine, events):
    with pytest.raises(ApiTransportError):
        await engine.execute(FlakyOperation(ApiTransportError("bad", status=400)), NO_JITTER)
    failed = [e for e in events if isinstance(e, ApiCallFailed)]
    assert len(failed) == 1
    assert failed[0].exhausted is False
    assert failed[0].error_kind == "invalid_input"


@pytest.mark.asyncio
async def test_broken_listener_does_not_break_the_call(sleeper):
    def listener(event):
        raise RuntimeError("listener exploded")

    engine = RetryEngine(sleep_func=sleeper, event_listener=listener)
    assert await engine.execute(FlakyOperation(), NO_JITTER) == "ok"


@pytest.mark.asyncio
async def test_concurrent_calls_keep_separate_state(engine: RetryEngine):
    ops = [FlakyOperation(*[server_error() for _ in range(n)]) for n in range(3)]
    results = await asyncio.gather(*(engine.execute(op, NO_JITTER) for op in ops))
    assert results == ["ok", "ok", "ok"]
    assert [op.calls for op in ops] == [1, 2, 3]


@pytest.mark.asyncio
async def test_default_policy_used_when_none_given(sleeper):
    engine = RetryEngine(default_policy=NO_JITTER.with_overrides(max_retries=1), sleep_func=sleeper)
    with pytest.raises(AggregateError) as exc_info:
        await engine.execute(FlakyOperation(server_error(), server_error()))
    assert exc_info.value.attempts == 2

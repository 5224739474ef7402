"""Service for executing API calls with automatic retries.

Implements exponential backoff with jitter for transient failures such as
rate limits (429), server errors (5xx), network drops and timeouts. Whether
a failure is transient is decided by the ErrorClassifier.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, List, Optional, TypeVar

from reelcall.domain.events.api_events import (
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    DomainEvent,
    RetryScheduled,
)
from reelcall.domain.models.errors import AggregateError, RetryCancelledError
from reelcall.domain.models.retry import DEFAULT_RETRY_POLICY, RetryPolicy, RetryResult
from reelcall.infrastructure.resilience.error_classifier import ErrorClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
SleepFunc = Callable[[float], Awaitable[None]]
EventListener = Callable[[DomainEvent], None]


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class RetryEngine:
    """Runs an async operation under a bounded retry policy.

    One engine may serve many concurrent calls: every ``execute`` call keeps
    its attempt counter and error list on its own stack.
    """

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        default_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        rng: Optional[random.Random] = None,
        sleep_func: Optional[SleepFunc] = None,
        event_listener: Optional[EventListener] = None,
    ):
        """Initializes the RetryEngine.

        Args:
            classifier: Decides which failures are retryable.
            default_policy: Policy used when a call does not pass its own.
            rng: Random source for jitter (inject a seeded one for tests).
            sleep_func: Awaitable sleep taking seconds; defaults to asyncio.sleep.
            event_listener: Receives domain events; defaults to debug logging.
        """
        self.classifier = classifier or ErrorClassifier()
        self.default_policy = default_policy
        self._rng = rng or random.Random()
        self._sleep = sleep_func or asyncio.sleep
        self._event_listener = event_listener

    def _dispatch(self, event: DomainEvent) -> None:
        if self._event_listener is None:
            logger.debug(f"EVENT: {event}")
            return
        try:
            self._event_listener(event)
        except Exception as e:
            logger.warning(f"Event listener failed for {type(event).__name__}: {e}", exc_info=True)

    def compute_delay(self, attempt: int, policy: RetryPolicy) -> int:
        """Backoff in milliseconds before the retry that follows ``attempt`` (0-based)."""
        exponential = policy.base_delay_ms * (policy.backoff_multiplier ** attempt)
        capped = max(0.0, min(exponential, policy.max_delay_ms))
        jitter = capped * policy.jitter_factor * (self._rng.random() - 0.5) * 2
        return int(round(max(0.0, capped + jitter)))

    async def execute(
        self,
        operation: Operation,
        policy: Optional[RetryPolicy] = None,
        operation_name: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Executes ``operation`` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument coroutine function (use a lambda for args).
            policy: Retry policy; the engine default when None.
            operation_name: Label used in logs and events.
            cancel_event: When set, no further attempt is started.

        Returns:
            The operation's result.

        Raises:
            AggregateError: If the final permitted attempt failed.
            RetryCancelledError: If ``cancel_event`` was set between attempts.
            Exception: The raw error, unchanged, on a non-retryable failure.
        """
        if operation is None or not callable(operation):
            raise TypeError("operation must be a zero-argument coroutine function")
        config = policy or self.default_policy
        name = operation_name or getattr(operation, "__name__", "operation")
        errors: List[BaseException] = []
        start = time.perf_counter()

        for attempt in range(config.max_retries + 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Retry loop for {name} cancelled before attempt {attempt + 1}")
                raise RetryCancelledError(attempt, errors)

            self._dispatch(ApiCallInitiated(operation=name, attempt_number=attempt + 1))
            try:
                result = await operation()
            except Exception as e:
                errors.append(e)
                classified = self.classifier.classify(e)

                if attempt == config.max_retries:
                    duration = _elapsed_ms(start)
                    logger.error(
                        f"{name} failed after {attempt + 1} attempts in {duration}ms. "
                        f"Errors: {[str(err) for err in errors]}"
                    )
                    self._dispatch(ApiCallFailed(
                        operation=name, attempts=attempt + 1, error_kind=classified.kind.value,
                        error_message=str(e), exhausted=True,
                    ))
                    raise AggregateError(errors, attempt + 1, duration) from e

                if not classified.retryable:
                    logger.error(
                        f"Non-retryable error in {name} on attempt {attempt + 1}: "
                        f"{classified.kind.value}: {e}"
                    )
                    self._dispatch(ApiCallFailed(
                        operation=name, attempts=attempt + 1, error_kind=classified.kind.value,
                        error_message=str(e), exhausted=False,
                    ))
                    raise

                delay_ms = self.compute_delay(attempt, config)
                logger.warning(
                    f"{name} failed on attempt {attempt + 1}/{config.max_retries + 1} "
                    f"({classified.kind.value}: {e}). Retrying in {delay_ms}ms..."
                )
                self._dispatch(RetryScheduled(
                    operation=name, attempt_number=attempt + 1, delay_ms=delay_ms,
                    error_kind=classified.kind.value, status_code=classified.status_code,
                ))
                await self._sleep(delay_ms / 1000.0)
                continue

            duration = _elapsed_ms(start)
            if attempt > 0:
                logger.info(
                    f"{name} succeeded after {attempt} retries "
                    f"(attempts={attempt + 1}, duration={duration}ms, previous_errors={len(errors)})"
                )
            self._dispatch(ApiCallSucceeded(operation=name, attempts=attempt + 1, duration_ms=duration))
            return result

        # range() always ends in a return or raise above
        raise RuntimeError("Unexpected retry loop exit")

    async def execute_with_stats(
        self,
        operation: Operation,
        policy: Optional[RetryPolicy] = None,
        operation_name: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RetryResult:
        """Like ``execute`` but returns retry telemetry alongside the result.

        Any terminal failure, exhausted or non-retryable, raises AggregateError.
        """
        if operation is None or not callable(operation):
            raise TypeError("operation must be a zero-argument coroutine function")
        config = policy or self.default_policy
        name = operation_name or getattr(operation, "__name__", "operation")
        errors: List[BaseException] = []
        start = time.perf_counter()

        for attempt in range(config.max_retries + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise RetryCancelledError(attempt, errors)
            try:
                result = await operation()
            except Exception as e:
                errors.append(e)
                if attempt == config.max_retries or not self.classifier.classify(e).retryable:
                    raise AggregateError(errors, attempt + 1, _elapsed_ms(start)) from e
                delay_ms = self.compute_delay(attempt, config)
                logger.debug(f"{name} attempt {attempt + 1} failed ({e}); retrying in {delay_ms}ms")
                await self._sleep(delay_ms / 1000.0)
                continue
            return RetryResult(
                result=result,
                attempts=attempt + 1,
                total_duration_ms=_elapsed_ms(start),
                errors=list(errors),
            )

        raise RuntimeError("Unexpected retry loop exit")

"""Domain models for retry behaviour.

Includes the retry policy value object, the per-error-kind presets and the
telemetry record returned by ``RetryEngine.execute_with_stats``.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Generic, List, TypeVar

from .errors import ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Value Object representing retry backoff configuration."""
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1  # 0 disables jitter, 1 allows +/-100%

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be within [0, 1], got {self.jitter_factor}")

    def with_overrides(self, **overrides: Any) -> "RetryPolicy":
        """Returns a copy with the given fields replaced; None values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


DEFAULT_RETRY_POLICY = RetryPolicy()

# Presets for callers that want backoff tuned to the failure they just saw
_ERROR_KIND_POLICIES = {
    ErrorKind.RATE_LIMIT: RetryPolicy(
        max_retries=5, base_delay_ms=5000, max_delay_ms=60000, backoff_multiplier=2.0, jitter_factor=0.2
    ),
    ErrorKind.SERVER_ERROR: RetryPolicy(
        max_retries=3, base_delay_ms=2000, max_delay_ms=30000, backoff_multiplier=2.0, jitter_factor=0.1
    ),
    ErrorKind.NETWORK_ERROR: RetryPolicy(
        max_retries=4, base_delay_ms=1000, max_delay_ms=15000, backoff_multiplier=2.0, jitter_factor=0.15
    ),
    ErrorKind.TIMEOUT: RetryPolicy(
        max_retries=2, base_delay_ms=3000, max_delay_ms=20000, backoff_multiplier=2.0, jitter_factor=0.1
    ),
}
_FALLBACK_KIND_POLICY = RetryPolicy(
    max_retries=3, base_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2.0, jitter_factor=0.1
)


def policy_for_error_kind(kind: ErrorKind) -> RetryPolicy:
    """Gets the retry preset for a given error kind."""
    return _ERROR_KIND_POLICIES.get(kind, _FALLBACK_KIND_POLICY)


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation together with its retry telemetry."""
    result: T
    attempts: int
    total_duration_ms: int
    errors: List[BaseException] = field(default_factory=list)


# Built-in policy per operation category used by ResilientClient
OPERATION_POLICIES = {
    "create": RetryPolicy(max_retries=5, base_delay_ms=2000, max_delay_ms=30000),
    "read": RetryPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=10000),
    "cancel": RetryPolicy(max_retries=2, base_delay_ms=1000, max_delay_ms=5000),
}


def policy_for_operation(category: str) -> RetryPolicy:
    """Gets the built-in policy for an operation category ('create', 'read', 'cancel')."""
    return OPERATION_POLICIES.get(category, DEFAULT_RETRY_POLICY)

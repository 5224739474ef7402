"""Domain Events related to API calls and resilience.

Emitted by the retry engine as an operation moves through its attempts.
"""

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


# --- Specific API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an attempt is about to be made."""
    operation: str  # e.g., 'create_prediction'
    attempt_number: int  # 1-based
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when an operation succeeds (possibly after retries)."""
    operation: str
    attempts: int
    duration_ms: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when an operation fails definitively."""
    operation: str
    attempts: int
    error_kind: str
    error_message: str
    exhausted: bool  # False when aborted on a non-retryable error
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed attempt."""
    operation: str
    attempt_number: int
    delay_ms: int
    error_kind: str
    status_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

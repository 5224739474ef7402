"""Domain models for performance monitoring.

PerformanceMetric is the only stored record. Everything else here is derived
from a window of metrics at query time.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict

from .common import MetricContext, TargetId
from .errors import ErrorKind


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class PerformanceMetric:
    """One completed call (all of its retries included) against a target."""
    target_id: TargetId
    operation: str
    duration_ms: float
    success: bool
    timestamp_ms: int
    error_kind: Optional[ErrorKind] = None
    context: Optional[MetricContext] = None

    def __post_init__(self) -> None:
        if not self.success and self.error_kind is None:
            raise ValueError("Failed metrics must carry an error_kind")

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["error_kind"] = self.error_kind.value if self.error_kind else None
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PerformanceMetric":
        kind = record.get("error_kind")
        return cls(
            target_id=TargetId(record["target_id"]),
            operation=record["operation"],
            duration_ms=record["duration_ms"],
            success=record["success"],
            timestamp_ms=record["timestamp_ms"],
            error_kind=ErrorKind(kind) if kind else None,
            context=record.get("context"),
        )


@dataclass(frozen=True)
class HealthThresholds:
    """Limits used to derive a health status from a window of metrics."""
    min_success_rate: float = 95.0
    critical_success_rate: float = 50.0
    max_avg_response_time_ms: float = 30000.0
    critical_response_time_ms: float = 60000.0

    def __post_init__(self) -> None:
        if self.critical_success_rate > self.min_success_rate:
            raise ValueError("critical_success_rate must not exceed min_success_rate")
        if self.critical_response_time_ms < self.max_avg_response_time_ms:
            raise ValueError("critical_response_time_ms must not be below max_avg_response_time_ms")


@dataclass
class ModelHealth:
    """Health of a target over the trailing health window."""
    target_id: TargetId
    success_rate: float
    avg_response_time_ms: float
    total_requests: int
    successful_requests: int
    failed_requests: int
    status: HealthStatus
    last_checked_ms: int
    issues: List[str] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        # No recent data is reported as healthy-but-unknown, not as a failure
        return self.status in (HealthStatus.HEALTHY, HealthStatus.UNKNOWN)

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["status"] = self.status.value
        record["is_healthy"] = self.is_healthy
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ModelHealth":
        return cls(
            target_id=TargetId(record["target_id"]),
            success_rate=record["success_rate"],
            avg_response_time_ms=record["avg_response_time_ms"],
            total_requests=record["total_requests"],
            successful_requests=record["successful_requests"],
            failed_requests=record["failed_requests"],
            status=HealthStatus(record["status"]),
            last_checked_ms=record["last_checked_ms"],
            issues=list(record.get("issues", [])),
        )


@dataclass
class Trends:
    success_rate_trend: Trend = Trend.STABLE
    response_time_trend: Trend = Trend.STABLE


@dataclass
class ModelStatistics:
    """Aggregate view of a target over a reporting window."""
    target_id: TargetId
    time_window: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    avg_response_time_ms: float
    median_response_time_ms: float
    p95_response_time_ms: float
    error_breakdown: Dict[ErrorKind, int]
    requests_per_hour: float
    trends: Trends = field(default_factory=Trends)


@dataclass
class HealthAlert:
    target_id: TargetId
    severity: AlertSeverity
    message: str
    timestamp_ms: int


@dataclass
class HealthCheckSummary:
    """Result of a sweep over every active target."""
    total_targets: int
    healthy_targets: int
    unhealthy_targets: int
    alerts: int
    timestamp_ms: int


class ErrorShare(TypedDict):
    count: int
    percentage: float


class TrendBucket(TypedDict):
    timestamp_ms: int
    total_requests: int
    success_rate: float
    avg_response_time_ms: float

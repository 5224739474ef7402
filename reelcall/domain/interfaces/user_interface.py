"""Interface for presenting monitoring results to an operator.

Defines the contract for displaying information, errors and warnings plus
the report views used by the CLI, allowing different UI implementations.
"""

import abc
from typing import Any, Dict, List

from reelcall.domain.models.common import TargetId
from reelcall.domain.models.errors import ErrorKind
from reelcall.domain.models.monitoring import (
    ErrorShare,
    HealthAlert,
    HealthCheckSummary,
    ModelHealth,
    ModelStatistics,
    PerformanceMetric,
    TrendBucket,
)


class UserInterface(abc.ABC):
    """Abstract Base Class for operator-facing output."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The text to display.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    # --- Report views (optional for non-console implementations) ---

    def display_health(self, health: List[ModelHealth]) -> None:
        """Displays health rows, one per target."""
        pass

    def display_statistics(self, stats: ModelStatistics) -> None:
        pass

    def display_alerts(self, alerts: List[HealthAlert]) -> None:
        pass

    def display_check_summary(self, summary: HealthCheckSummary) -> None:
        pass

    def display_metrics(self, target_id: TargetId, metrics: List[PerformanceMetric]) -> None:
        pass

    def display_error_breakdown(self, target_id: TargetId, breakdown: Dict[ErrorKind, ErrorShare]) -> None:
        pass

    def display_trends(self, target_id: TargetId, buckets: List[TrendBucket]) -> None:
        pass

    def display_payload(self, title: str, payload: Dict[str, Any]) -> None:
        """Displays a raw API payload (e.g., a job or model listing)."""
        pass

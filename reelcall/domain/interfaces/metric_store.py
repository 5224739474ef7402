"""Interface for the metric persistence layer.

The store is an opaque append/query service: metrics are inserted, never
updated, and read back by target and time range. It may additionally cache
the latest health snapshot per target.
"""

import abc
from typing import List, Optional

from ..models.common import TargetId
from ..models.monitoring import ModelHealth, PerformanceMetric


class MetricStore(abc.ABC):
    """Abstract Base Class for metric storage operations."""

    @abc.abstractmethod
    async def insert_metric(self, metric: PerformanceMetric) -> None:
        """Appends one metric record."""
        pass

    @abc.abstractmethod
    async def query_metrics(
        self,
        target_id: TargetId,
        since_ms: int,
        until_ms: Optional[int] = None,
    ) -> List[PerformanceMetric]:
        """Returns the target's metrics with since_ms <= timestamp (<= until_ms).

        Results are ordered oldest first.
        """
        pass

    @abc.abstractmethod
    async def recent_metrics(self, target_id: TargetId, limit: int = 100) -> List[PerformanceMetric]:
        """Returns up to ``limit`` of the target's metrics, newest first."""
        pass

    @abc.abstractmethod
    async def active_targets(self) -> List[TargetId]:
        """Lists targets that have metrics and were not deactivated, sorted."""
        pass

    @abc.abstractmethod
    async def set_target_active(self, target_id: TargetId, active: bool) -> None:
        """Registers a target or excludes it from ``active_targets``."""
        pass

    @abc.abstractmethod
    async def save_health_snapshot(self, health: ModelHealth) -> None:
        """Caches the most recent health computation for a target."""
        pass

    @abc.abstractmethod
    async def get_health_snapshot(self, target_id: TargetId) -> Optional[ModelHealth]:
        """Returns the cached health snapshot, or None if never computed."""
        pass

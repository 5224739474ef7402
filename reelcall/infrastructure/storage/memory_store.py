"""In-memory MetricStore, used by tests and by embedders without a disk."""

import logging
from typing import Dict, List, Optional

from reelcall.domain.interfaces.metric_store import MetricStore
from reelcall.domain.models.common import TargetId
from reelcall.domain.models.monitoring import ModelHealth, PerformanceMetric

logger = logging.getLogger(__name__)


class InMemoryMetricStore(MetricStore):
    """Keeps metrics in per-target lists for the lifetime of the process."""

    def __init__(self) -> None:
        self._metrics: Dict[TargetId, List[PerformanceMetric]] = {}
        self._targets: Dict[TargetId, bool] = {}
        self._snapshots: Dict[TargetId, ModelHealth] = {}

    async def insert_metric(self, metric: PerformanceMetric) -> None:
        self._metrics.setdefault(metric.target_id, []).append(metric)
        self._targets.setdefault(metric.target_id, True)

    async def query_metrics(
        self,
        target_id: TargetId,
        since_ms: int,
        until_ms: Optional[int] = None,
    ) -> List[PerformanceMetric]:
        matching = [
            m for m in self._metrics.get(target_id, [])
            if m.timestamp_ms >= since_ms and (until_ms is None or m.timestamp_ms <= until_ms)
        ]
        return sorted(matching, key=lambda m: m.timestamp_ms)

    async def recent_metrics(self, target_id: TargetId, limit: int = 100) -> List[PerformanceMetric]:
        ordered = sorted(self._metrics.get(target_id, []), key=lambda m: m.timestamp_ms, reverse=True)
        return ordered[:max(limit, 0)]

    async def active_targets(self) -> List[TargetId]:
        return sorted(t for t, active in self._targets.items() if active)

    async def set_target_active(self, target_id: TargetId, active: bool) -> None:
        self._targets[target_id] = active
        logger.debug(f"Target {target_id} marked {'active' if active else 'inactive'}")

    async def save_health_snapshot(self, health: ModelHealth) -> None:
        self._snapshots[health.target_id] = health

    async def get_health_snapshot(self, target_id: TargetId) -> Optional[ModelHealth]:
        return self._snapshots.get(target_id)

    def clear(self) -> None:
        """Drops every metric, registration and snapshot."""
        self._metrics.clear()
        self._targets.clear()
        self._snapshots.clear()

"""Disk-backed MetricStore built on diskcache.

Layout inside the cache directory:
    ("buckets", target_id)            -> sorted hour-bucket starts holding metrics
    ("metrics", target_id, bucket_ms) -> metric records of that hour, append order
    ("health", target_id)             -> latest health snapshot record
    "targets"                         -> {target_id: active flag}

An insert only rewrites its own hour bucket. Retention drops whole buckets on
insert and filters the partially expired one on read.

diskcache is synchronous, so every public method runs its work in a thread
via asyncio.to_thread.
"""

import asyncio
import bisect
import logging
import os
from typing import Any, Callable, Dict, List, Optional

import diskcache as dc

from reelcall.domain.interfaces.metric_store import MetricStore
from reelcall.domain.models.common import MS_PER_DAY, MS_PER_HOUR, TargetId, now_ms
from reelcall.domain.models.monitoring import ModelHealth, PerformanceMetric

logger = logging.getLogger(__name__)

DEFAULT_METRICS_DIR = os.path.join(os.path.expanduser("~"), ".reelcall", "metrics")
DEFAULT_RETENTION_DAYS = 30
TARGETS_KEY = "targets"
BUCKET_MS = MS_PER_HOUR


def _buckets_key(target_id: str):
    return ("buckets", target_id)


def _metrics_key(target_id: str, bucket_ms: int):
    return ("metrics", target_id, bucket_ms)


def _health_key(target_id: str):
    return ("health", target_id)


def _bucket_of(timestamp_ms: int) -> int:
    return timestamp_ms - timestamp_ms % BUCKET_MS


class DiskMetricStore(MetricStore):
    """Persists metrics and health snapshots across CLI invocations."""

    def __init__(
        self,
        directory: str = DEFAULT_METRICS_DIR,
        retention_days: Optional[int] = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], int] = now_ms,
    ):
        """Opens (or creates) the cache directory.

        Args:
            directory: Cache directory path.
            retention_days: Metrics older than this are pruned on insert and
                hidden from reads; None or 0 keeps everything.
            clock: Returns the current time in epoch milliseconds.
        """
        self.retention_ms = retention_days * MS_PER_DAY if retention_days else None
        self._clock = clock
        self.cache = dc.Cache(directory, timeout=1)
        logger.info(f"Initialized metric store at: {self.cache.directory}")

    def _cutoff(self) -> Optional[int]:
        return self._clock() - self.retention_ms if self.retention_ms is not None else None

    # --- Sync implementations (run in worker threads) ---

    def _insert_sync(self, metric: PerformanceMetric) -> None:
        bucket = _bucket_of(metric.timestamp_ms)
        with self.cache.transact():
            buckets: List[int] = self.cache.get(_buckets_key(metric.target_id), default=[])
            key = _metrics_key(metric.target_id, bucket)
            records: List[Dict[str, Any]] = self.cache.get(key, default=[])
            records.append(metric.to_record())
            self.cache.set(key, records)

            changed = False
            if bucket not in buckets:
                bisect.insort(buckets, bucket)
                changed = True
            cutoff = self._cutoff()
            if cutoff is not None:
                expired = [b for b in buckets if b + BUCKET_MS <= cutoff]
                for b in expired:
                    self.cache.delete(_metrics_key(metric.target_id, b))
                if expired:
                    logger.debug(f"Pruned {len(expired)} expired metric buckets for {metric.target_id}")
                    buckets = buckets[len(expired):]
                    changed = True
            if changed:
                self.cache.set(_buckets_key(metric.target_id), buckets)

            targets: Dict[str, bool] = self.cache.get(TARGETS_KEY, default={})
            if metric.target_id not in targets:
                targets[metric.target_id] = True
                self.cache.set(TARGETS_KEY, targets)

    def _load_sync(
        self, target_id: TargetId, since_ms: int, until_ms: Optional[int]
    ) -> List[PerformanceMetric]:
        cutoff = self._cutoff()
        if cutoff is not None:
            since_ms = max(since_ms, cutoff)
        buckets: List[int] = self.cache.get(_buckets_key(target_id), default=[])
        metrics: List[PerformanceMetric] = []
        for bucket in buckets[bisect.bisect_right(buckets, since_ms - BUCKET_MS):]:
            if until_ms is not None and bucket > until_ms:
                break
            for record in self.cache.get(_metrics_key(target_id, bucket), default=[]):
                timestamp = record["timestamp_ms"]
                if timestamp >= since_ms and (until_ms is None or timestamp <= until_ms):
                    metrics.append(PerformanceMetric.from_record(record))
        return metrics

    def _recent_sync(self, target_id: TargetId, limit: int) -> List[PerformanceMetric]:
        cutoff = self._cutoff()
        buckets: List[int] = self.cache.get(_buckets_key(target_id), default=[])
        metrics: List[PerformanceMetric] = []
        # Buckets are disjoint hours, so the newest ones hold the newest metrics
        for bucket in reversed(buckets):
            if len(metrics) >= limit:
                break
            for record in self.cache.get(_metrics_key(target_id, bucket), default=[]):
                if cutoff is None or record["timestamp_ms"] >= cutoff:
                    metrics.append(PerformanceMetric.from_record(record))
        metrics.sort(key=lambda m: m.timestamp_ms, reverse=True)
        return metrics[:limit]

    def _set_active_sync(self, target_id: TargetId, active: bool) -> None:
        with self.cache.transact():
            targets: Dict[str, bool] = self.cache.get(TARGETS_KEY, default={})
            targets[target_id] = active
            self.cache.set(TARGETS_KEY, targets)

    def _active_sync(self) -> List[TargetId]:
        targets: Dict[str, bool] = self.cache.get(TARGETS_KEY, default={})
        return sorted(TargetId(t) for t, active in targets.items() if active)

    def _save_health_sync(self, health: ModelHealth) -> None:
        self.cache.set(_health_key(health.target_id), health.to_record())

    def _get_health_sync(self, target_id: TargetId) -> Optional[ModelHealth]:
        record = self.cache.get(_health_key(target_id), default=None)
        return ModelHealth.from_record(record) if record else None

    # --- MetricStore port ---

    async def insert_metric(self, metric: PerformanceMetric) -> None:
        await asyncio.to_thread(self._insert_sync, metric)

    async def query_metrics(
        self,
        target_id: TargetId,
        since_ms: int,
        until_ms: Optional[int] = None,
    ) -> List[PerformanceMetric]:
        metrics = await asyncio.to_thread(self._load_sync, target_id, since_ms, until_ms)
        return sorted(metrics, key=lambda m: m.timestamp_ms)

    async def recent_metrics(self, target_id: TargetId, limit: int = 100) -> List[PerformanceMetric]:
        return await asyncio.to_thread(self._recent_sync, target_id, max(limit, 0))

    async def active_targets(self) -> List[TargetId]:
        return await asyncio.to_thread(self._active_sync)

    async def set_target_active(self, target_id: TargetId, active: bool) -> None:
        await asyncio.to_thread(self._set_active_sync, target_id, active)

    async def save_health_snapshot(self, health: ModelHealth) -> None:
        await asyncio.to_thread(self._save_health_sync, health)

    async def get_health_snapshot(self, target_id: TargetId) -> Optional[ModelHealth]:
        return await asyncio.to_thread(self._get_health_sync, target_id)

    def close(self) -> None:
        self.cache.close()

"""Performance and health monitoring for generation API targets.

Every completed call is recorded as a PerformanceMetric. Health, statistics,
alerts and trends are computed at read time from a window of those metrics,
so they are pure functions of the stored data and need no locking.
"""

import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Set

from reelcall.domain.interfaces.metric_store import MetricStore
from reelcall.domain.models.common import (
    MS_PER_DAY,
    MS_PER_HOUR,
    MetricContext,
    TargetId,
    now_ms,
)
from reelcall.domain.models.errors import ErrorKind
from reelcall.domain.models.monitoring import (
    AlertSeverity,
    ErrorShare,
    HealthAlert,
    HealthCheckSummary,
    HealthStatus,
    HealthThresholds,
    ModelHealth,
    ModelStatistics,
    PerformanceMetric,
    Trend,
    TrendBucket,
    Trends,
)
from reelcall.infrastructure.resilience.error_classifier import ErrorClassifier

logger = logging.getLogger(__name__)

HEALTH_WINDOW_MS = MS_PER_HOUR
DEFAULT_STATS_WINDOW = "24h"
DEFAULT_TRENDS_WINDOW = "7d"
NO_DATA_ISSUE = "No recent data available"

# Trend detection
MIN_METRICS_FOR_TREND = 10
SUCCESS_RATE_TREND_POINTS = 2.0
RESPONSE_TIME_TREND_MS = 1000.0

_WINDOW_PATTERN = re.compile(r"^(\d+)([hd])$")
_GRANULARITY_MS = {"hour": MS_PER_HOUR, "day": MS_PER_DAY}


def parse_time_window(window: Optional[str]) -> int:
    """Converts '<N>h' or '<N>d' into milliseconds; anything else means 24h."""
    match = _WINDOW_PATTERN.match((window or "").strip())
    if not match or int(match.group(1)) == 0:
        logger.debug(f"Unrecognized time window '{window}', using {DEFAULT_STATS_WINDOW}")
        return 24 * MS_PER_HOUR
    value, unit = int(match.group(1)), match.group(2)
    return value * (MS_PER_HOUR if unit == "h" else MS_PER_DAY)


def normalize_time_window(window: Optional[str]) -> str:
    """Returns the window actually applied for ``window``: itself when valid, else '24h'."""
    text = (window or "").strip()
    match = _WINDOW_PATTERN.match(text)
    if not match or int(match.group(1)) == 0:
        return DEFAULT_STATS_WINDOW
    return text


def _response_times(metrics: List[PerformanceMetric]) -> List[float]:
    # Failed calls and zero durations never count towards latency
    return [m.duration_ms for m in metrics if m.success and m.duration_ms > 0]


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _success_rate(metrics: List[PerformanceMetric]) -> float:
    if not metrics:
        return 100.0
    return sum(1 for m in metrics if m.success) / len(metrics) * 100


class PerformanceMonitor:
    """Records call outcomes and derives health, statistics and alerts."""

    def __init__(
        self,
        store: MetricStore,
        thresholds: Optional[HealthThresholds] = None,
        classifier: Optional[ErrorClassifier] = None,
        clock: Callable[[], int] = now_ms,
        refresh_on_record: bool = False,
    ):
        """Initializes the PerformanceMonitor.

        Args:
            store: Where metrics and health snapshots live.
            thresholds: Health limits; defaults to HealthThresholds().
            classifier: Used to derive the error kind of recorded failures.
            clock: Returns the current time in epoch milliseconds.
            refresh_on_record: Recompute the target's health snapshot inline
                after each record instead of leaving it to refresh_health_cache.
        """
        self.store = store
        self.thresholds = thresholds or HealthThresholds()
        self.classifier = classifier or ErrorClassifier()
        self._clock = clock
        self.refresh_on_record = refresh_on_record
        self._dirty_targets: Set[TargetId] = set()
        logger.debug(f"PerformanceMonitor initialized with thresholds {self.thresholds}")

    @property
    def pending_refresh(self) -> Set[TargetId]:
        """Targets recorded since the last health cache refresh."""
        return set(self._dirty_targets)

    # --- Recording ---

    async def record_success(
        self,
        target_id: TargetId,
        operation: str,
        duration_ms: float,
        context: Optional[MetricContext] = None,
    ) -> None:
        metric = PerformanceMetric(
            target_id=target_id,
            operation=operation,
            duration_ms=duration_ms,
            success=True,
            timestamp_ms=self._clock(),
            context=dict(context) if context else None,
        )
        await self._store_metric(metric)

    async def record_failure(
        self,
        target_id: TargetId,
        operation: str,
        error: Any,
        duration_ms: Optional[float] = None,
        context: Optional[MetricContext] = None,
    ) -> None:
        """Records a failed call, classifying ``error`` to get its kind.

        The error's message and status code are merged into the context.
        """
        classified = self.classifier.classify(error)
        merged: Dict[str, Any] = dict(context or {})
        merged["error_message"] = str(error) if error is not None else classified.message
        merged["error_status"] = classified.status_code
        metric = PerformanceMetric(
            target_id=target_id,
            operation=operation,
            duration_ms=duration_ms or 0,
            success=False,
            timestamp_ms=self._clock(),
            error_kind=classified.kind,
            context=merged,
        )
        await self._store_metric(metric)

    async def _store_metric(self, metric: PerformanceMetric) -> None:
        try:
            await self.store.insert_metric(metric)
        except Exception as e:
            # Telemetry must never mask the outcome of the call being recorded
            logger.warning(f"Failed to store metric for {metric.target_id}/{metric.operation}: {e}", exc_info=True)
            return
        self._dirty_targets.add(metric.target_id)
        if self.refresh_on_record:
            await self.refresh_health_cache([metric.target_id])

    async def refresh_health_cache(self, targets: Optional[List[TargetId]] = None) -> List[ModelHealth]:
        """Recomputes and saves health snapshots.

        Args:
            targets: Targets to refresh; defaults to every target recorded since
                the previous refresh.

        Returns:
            The freshly computed health of each refreshed target.
        """
        pending = list(targets) if targets is not None else sorted(self._dirty_targets)
        refreshed: List[ModelHealth] = []
        for target_id in pending:
            self._dirty_targets.discard(target_id)
            try:
                health = await self.get_health(target_id)
                await self.store.save_health_snapshot(health)
            except Exception as e:
                logger.warning(f"Failed to refresh health snapshot for {target_id}: {e}", exc_info=True)
                continue
            refreshed.append(health)
        if refreshed:
            logger.info(f"Refreshed health snapshots for {len(refreshed)} target(s)")
        return refreshed

    async def get_cached_health(self, target_id: TargetId) -> Optional[ModelHealth]:
        """Returns the last saved health snapshot without recomputing it."""
        return await self.store.get_health_snapshot(target_id)

    # --- Health ---

    async def get_health(self, target_id: TargetId) -> ModelHealth:
        """Computes the target's health over the trailing hour."""
        now = self._clock()
        metrics = await self.store.query_metrics(target_id, now - HEALTH_WINDOW_MS, now)

        if not metrics:
            return ModelHealth(
                target_id=target_id,
                success_rate=100.0,
                avg_response_time_ms=0.0,
                total_requests=0,
                successful_requests=0,
                failed_requests=0,
                status=HealthStatus.UNKNOWN,
                last_checked_ms=now,
                issues=[NO_DATA_ISSUE],
            )

        total = len(metrics)
        successful = sum(1 for m in metrics if m.success)
        success_rate = successful / total * 100
        avg_response_time = _mean(_response_times(metrics))
        status, issues = self._derive_status(success_rate, avg_response_time)

        return ModelHealth(
            target_id=target_id,
            success_rate=success_rate,
            avg_response_time_ms=avg_response_time,
            total_requests=total,
            successful_requests=successful,
            failed_requests=total - successful,
            status=status,
            last_checked_ms=now,
            issues=issues,
        )

    def _derive_status(self, success_rate: float, avg_response_time_ms: float):
        limits = self.thresholds
        status = HealthStatus.HEALTHY
        issues: List[str] = []

        if success_rate < limits.critical_success_rate:
            status = HealthStatus.CRITICAL
            issues.append(f"Success rate critically low: {success_rate:.1f}%")
        elif success_rate < limits.min_success_rate:
            status = HealthStatus.DEGRADED
            issues.append(f"Success rate below threshold: {success_rate:.1f}%")

        seconds = avg_response_time_ms / 1000
        if avg_response_time_ms > limits.critical_response_time_ms:
            status = HealthStatus.CRITICAL
            issues.append(f"Response time critically high: {seconds:.1f}s")
        elif avg_response_time_ms > limits.max_avg_response_time_ms:
            if status != HealthStatus.CRITICAL:
                status = HealthStatus.DEGRADED
            issues.append(f"Response time above threshold: {seconds:.1f}s")

        return status, issues

    async def get_all_health(self) -> List[ModelHealth]:
        """Computes health for every active target concurrently."""
        targets = await self.store.active_targets()
        if not targets:
            return []
        return list(await asyncio.gather(*(self.get_health(t) for t in targets)))

    async def get_alerts(self) -> List[HealthAlert]:
        """One alert per degraded or critical target."""
        alerts: List[HealthAlert] = []
        for health in await self.get_all_health():
            if health.status == HealthStatus.CRITICAL:
                severity, prefix = AlertSeverity.CRITICAL, "Model is in critical state"
            elif health.status == HealthStatus.DEGRADED:
                severity, prefix = AlertSeverity.WARNING, "Model performance is degraded"
            else:
                continue
            alerts.append(HealthAlert(
                target_id=health.target_id,
                severity=severity,
                message=f"{prefix}: {', '.join(health.issues)}",
                timestamp_ms=self._clock(),
            ))
        return alerts

    async def perform_health_check(self) -> HealthCheckSummary:
        """Sweeps all active targets and logs a summary."""
        logger.info("Starting model health check...")
        all_health = await self.get_all_health()
        alerts = await self.get_alerts()

        healthy = sum(1 for h in all_health if h.is_healthy)
        unhealthy = len(all_health) - healthy
        logger.info(f"Health check complete: {healthy} healthy, {unhealthy} unhealthy targets")
        if alerts:
            logger.warning(
                f"Found {len(alerts)} health alerts: "
                f"{[f'{a.target_id}: {a.message}' for a in alerts]}"
            )

        return HealthCheckSummary(
            total_targets=len(all_health),
            healthy_targets=healthy,
            unhealthy_targets=unhealthy,
            alerts=len(alerts),
            timestamp_ms=self._clock(),
        )

    # --- Statistics ---

    async def get_statistics(self, target_id: TargetId, window: str = DEFAULT_STATS_WINDOW) -> ModelStatistics:
        """Aggregates the target's metrics over ``window`` ('<N>h' or '<N>d')."""
        window = normalize_time_window(window)
        window_ms = parse_time_window(window)
        now = self._clock()
        metrics = await self.store.query_metrics(target_id, now - window_ms, now)
        breakdown: Dict[ErrorKind, int] = {kind: 0 for kind in ErrorKind}

        if not metrics:
            return ModelStatistics(
                target_id=target_id,
                time_window=window,
                total_requests=0,
                successful_requests=0,
                failed_requests=0,
                success_rate=100.0,
                avg_response_time_ms=0.0,
                median_response_time_ms=0.0,
                p95_response_time_ms=0.0,
                error_breakdown=breakdown,
                requests_per_hour=0.0,
            )

        total = len(metrics)
        successful = sum(1 for m in metrics if m.success)
        times = sorted(_response_times(metrics))
        median = times[len(times) // 2] if times else 0.0
        p95 = times[min(int(len(times) * 0.95), len(times) - 1)] if times else 0.0

        for metric in metrics:
            if not metric.success and metric.error_kind is not None:
                breakdown[metric.error_kind] += 1

        return ModelStatistics(
            target_id=target_id,
            time_window=window,
            total_requests=total,
            successful_requests=successful,
            failed_requests=total - successful,
            success_rate=successful / total * 100,
            avg_response_time_ms=_mean(times),
            median_response_time_ms=median,
            p95_response_time_ms=p95,
            error_breakdown=breakdown,
            requests_per_hour=total / (window_ms / MS_PER_HOUR),
            trends=self._calculate_trends(metrics),
        )

    @staticmethod
    def _calculate_trends(metrics: List[PerformanceMetric]) -> Trends:
        if len(metrics) < MIN_METRICS_FOR_TREND:
            return Trends()

        ordered = sorted(metrics, key=lambda m: m.timestamp_ms)
        midpoint = len(ordered) // 2
        first, second = ordered[:midpoint], ordered[midpoint:]

        rate_diff = _success_rate(second) - _success_rate(first)
        time_diff = _mean(_response_times(second)) - _mean(_response_times(first))

        if rate_diff > SUCCESS_RATE_TREND_POINTS:
            rate_trend = Trend.IMPROVING
        elif rate_diff < -SUCCESS_RATE_TREND_POINTS:
            rate_trend = Trend.DECLINING
        else:
            rate_trend = Trend.STABLE

        # Lower latency is an improvement
        if time_diff < -RESPONSE_TIME_TREND_MS:
            time_trend = Trend.IMPROVING
        elif time_diff > RESPONSE_TIME_TREND_MS:
            time_trend = Trend.DECLINING
        else:
            time_trend = Trend.STABLE

        return Trends(success_rate_trend=rate_trend, response_time_trend=time_trend)

    async def get_recent_metrics(self, target_id: TargetId, limit: int = 100) -> List[PerformanceMetric]:
        """Latest metrics for a target, newest first."""
        if limit <= 0:
            return []
        return await self.store.recent_metrics(target_id, limit)

    async def get_error_breakdown(
        self, target_id: TargetId, window: str = DEFAULT_STATS_WINDOW
    ) -> Dict[ErrorKind, ErrorShare]:
        """Share of each error kind among the failures in ``window``."""
        window_ms = parse_time_window(window)
        now = self._clock()
        metrics = await self.store.query_metrics(target_id, now - window_ms, now)
        failures = [m for m in metrics if not m.success]
        if not failures:
            return {}

        counts: Dict[ErrorKind, int] = {}
        for metric in failures:
            kind = metric.error_kind or ErrorKind.UNKNOWN
            counts[kind] = counts.get(kind, 0) + 1

        return {
            kind: ErrorShare(count=count, percentage=count / len(failures) * 100)
            for kind, count in counts.items()
        }

    async def get_performance_trends(
        self,
        target_id: TargetId,
        window: str = DEFAULT_TRENDS_WINDOW,
        granularity: str = "hour",
    ) -> List[TrendBucket]:
        """Buckets the target's metrics by hour or day, oldest bucket first.

        Raises:
            ValueError: If granularity is not 'hour' or 'day'.
        """
        if granularity not in _GRANULARITY_MS:
            raise ValueError(f"granularity must be 'hour' or 'day', got '{granularity}'")
        bucket_ms = _GRANULARITY_MS[granularity]
        window_ms = parse_time_window(window)
        now = self._clock()
        metrics = await self.store.query_metrics(target_id, now - window_ms, now)

        buckets: Dict[int, List[PerformanceMetric]] = {}
        for metric in metrics:
            start = (metric.timestamp_ms // bucket_ms) * bucket_ms
            buckets.setdefault(start, []).append(metric)

        return [
            TrendBucket(
                timestamp_ms=start,
                total_requests=len(bucket),
                success_rate=_success_rate(bucket),
                avg_response_time_ms=_mean(_response_times(bucket)),
            )
            for start, bucket in sorted(buckets.items())
        ]


class HealthCacheRefresher:
    """Runs PerformanceMonitor.refresh_health_cache periodically in the background."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        interval_seconds: float = 60.0,
        sleep_func: Optional[Callable[[float], Any]] = None,
        all_targets: bool = False,
    ):
        """Initializes the refresher.

        Args:
            monitor: Monitor whose health cache is refreshed.
            interval_seconds: Pause between refreshes.
            sleep_func: Awaitable sleep taking seconds; defaults to asyncio.sleep.
            all_targets: Refresh every active target instead of only those
                recorded since the previous refresh.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self._sleep = sleep_func or asyncio.sleep
        self.all_targets = all_targets
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Starts the refresh loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="health-cache-refresher")
        logger.info(f"Health cache refresher started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Cancels the loop and waits for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Health cache refresher stopped")

    async def run_once(self) -> List[ModelHealth]:
        try:
            if self.all_targets:
                return await self.monitor.refresh_health_cache(await self.monitor.store.active_targets())
            return await self.monitor.refresh_health_cache()
        except Exception as e:
            logger.error(f"Health cache refresh failed: {e}", exc_info=True)
            return []

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            await self.run_once()

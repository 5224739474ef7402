"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the work
to the PerformanceMonitor (health and metrics reports) or the ResilientClient
(API calls). Failures are reported through the UserInterface; each handler
returns True on success so the CLI can set its exit code.
"""

import logging
from typing import Callable, Optional

from reelcall.core.resilient_client import ResilientClient
from reelcall.domain.interfaces.user_interface import UserInterface
from reelcall.domain.models.common import JobId, TargetId
from reelcall.domain.models.errors import ClassifiedError
from reelcall.infrastructure.monitoring.performance_monitor import PerformanceMonitor

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], ResilientClient]


class CommandHandler:
    """Handles incoming commands and delegates to the monitor or the client."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        ui: UserInterface,
        client: Optional[ResilientClient] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """Initializes the CommandHandler.

        Args:
            monitor: Source of every health and metrics report.
            ui: Where results and errors are displayed.
            client: Ready-made API client.
            client_factory: Builds the API client on first use, so report
                commands work without an API token.
        """
        self.monitor = monitor
        self.ui = ui
        self._client = client
        self._client_factory = client_factory

    def _get_client(self) -> Optional[ResilientClient]:
        if self._client is None:
            if self._client_factory is None:
                self.ui.display_error("No generation API client is configured.")
                return None
            try:
                self._client = self._client_factory()
            except ValueError as e:
                logger.error(f"Could not create API client: {e}")
                self.ui.display_error(str(e), hint="Set REELCALL_API_TOKEN or api.token in ~/.reelcall/config.yaml.")
                return None
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    def _report_api_error(self, action: str, error: Exception) -> None:
        if isinstance(error, ClassifiedError):
            logger.error(f"{action} failed ({error.kind.value}): {error}")
            self.ui.display_error(f"{action} failed: {error.user_message}", hint=error.suggested_action)
        else:
            logger.error(f"{action} failed: {error}", exc_info=True)
            self.ui.display_error(f"{action} failed: {error}")

    # --- Monitoring commands ---

    async def handle_health(self, target: Optional[str] = None) -> bool:
        """Shows health for one target, or for every active target."""
        logger.info(f"Handling 'health' command for target: {target or 'all'}")
        try:
            if target:
                rows = [await self.monitor.get_health(TargetId(target))]
            else:
                rows = await self.monitor.get_all_health()
        except Exception as e:
            logger.error(f"Health query failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to compute health: {e}")
            return False
        self.ui.display_health(rows)
        return True

    async def handle_stats(self, target: str, window: str) -> bool:
        logger.info(f"Handling 'stats' command for {target} over {window}")
        try:
            stats = await self.monitor.get_statistics(TargetId(target), window)
        except Exception as e:
            logger.error(f"Statistics query failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to compute statistics: {e}")
            return False
        self.ui.display_statistics(stats)
        return True

    async def handle_alerts(self) -> bool:
        try:
            alerts = await self.monitor.get_alerts()
        except Exception as e:
            logger.error(f"Alert query failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to compute alerts: {e}")
            return False
        self.ui.display_alerts(alerts)
        return True

    async def handle_check(self) -> bool:
        """Runs a health check sweep and shows its summary and alerts."""
        try:
            summary = await self.monitor.perform_health_check()
            alerts = await self.monitor.get_alerts() if summary.alerts else []
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            self.ui.display_error(f"Health check failed: {e}")
            return False
        self.ui.display_check_summary(summary)
        if alerts:
            self.ui.display_alerts(alerts)
        return True

    async def handle_metrics(self, target: str, limit: int) -> bool:
        if limit <= 0:
            self.ui.display_error("--limit must be a positive number.")
            return False
        try:
            metrics = await self.monitor.get_recent_metrics(TargetId(target), limit)
        except Exception as e:
            logger.error(f"Metrics query failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to read metrics: {e}")
            return False
        self.ui.display_metrics(TargetId(target), metrics)
        return True

    async def handle_errors(self, target: str, window: str) -> bool:
        try:
            breakdown = await self.monitor.get_error_breakdown(TargetId(target), window)
        except Exception as e:
            logger.error(f"Error breakdown query failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to compute error breakdown: {e}")
            return False
        self.ui.display_error_breakdown(TargetId(target), breakdown)
        return True

    async def handle_trends(self, target: str, window: str, granularity: str) -> bool:
        try:
            buckets = await self.monitor.get_performance_trends(TargetId(target), window, granularity)
        except ValueError as e:
            self.ui.display_error(str(e))
            return False
        except Exception as e:
            logger.error(f"Trend query failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to compute trends: {e}")
            return False
        self.ui.display_trends(TargetId(target), buckets)
        return True

    async def handle_refresh(self) -> bool:
        """Recomputes and stores health snapshots for every active target."""
        try:
            targets = await self.monitor.store.active_targets()
            refreshed = await self.monitor.refresh_health_cache(targets)
        except Exception as e:
            logger.error(f"Health cache refresh failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to refresh health snapshots: {e}")
            return False
        self.ui.display_info(f"Refreshed health snapshots for {len(refreshed)} target(s).")
        if refreshed:
            self.ui.display_health(refreshed)
        return True

    # --- API commands ---

    async def handle_list_models(self, cursor: Optional[str] = None) -> bool:
        client = self._get_client()
        if client is None:
            return False
        try:
            page = await client.list_capabilities(cursor)
        except Exception as e:
            self._report_api_error("Listing models", e)
            return False
        self.ui.display_payload("Models", page)
        return True

    async def handle_get_job(self, job_id: str) -> bool:
        client = self._get_client()
        if client is None:
            return False
        try:
            job = await client.get_job(JobId(job_id))
        except Exception as e:
            self._report_api_error(f"Fetching job {job_id}", e)
            return False
        self.ui.display_payload(f"Job {job_id}", job)
        return True

    async def handle_cancel_job(self, job_id: str) -> bool:
        client = self._get_client()
        if client is None:
            return False
        try:
            job = await client.cancel_job(JobId(job_id))
        except Exception as e:
            self._report_api_error(f"Cancelling job {job_id}", e)
            return False
        self.ui.display_info(f"Job {job_id} is now '{job.get('status', 'unknown')}'.")
        return True

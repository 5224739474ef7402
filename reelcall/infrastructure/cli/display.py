import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from reelcall.domain.interfaces.user_interface import UserInterface
from reelcall.domain.models.common import TargetId
from reelcall.domain.models.errors import ErrorKind
from reelcall.domain.models.monitoring import (
    AlertSeverity,
    ErrorShare,
    HealthAlert,
    HealthCheckSummary,
    HealthStatus,
    ModelHealth,
    ModelStatistics,
    PerformanceMetric,
    Trend,
    TrendBucket,
)

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    HealthStatus.HEALTHY: "bold green",
    HealthStatus.DEGRADED: "bold yellow",
    HealthStatus.CRITICAL: "bold red",
    HealthStatus.UNKNOWN: "dim",
}
TREND_STYLES = {
    Trend.IMPROVING: "green",
    Trend.STABLE: "white",
    Trend.DECLINING: "red",
}


def format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_duration(duration_ms: float) -> str:
    if duration_ms >= 1000:
        return f"{duration_ms / 1000:.1f}s"
    return f"{duration_ms:.0f}ms"


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console (pass one in to capture output in tests)."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays output text in a panel.

        Args:
            output: The text to display.
            **kwargs: Optional 'title' for the panel.
        """
        title = kwargs.get("title")
        self.console.print(Panel(
            Text(str(output)),
            title=f"[bold white]{title}[/bold white]" if title else None,
            title_align="left",
            border_style="cyan",
            box=ROUNDED,
            padding=(0, 1),
        ))

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
            **kwargs: Optional 'hint' shown under the message (e.g. a suggested action).
        """
        body = Text(error_message, style="white")
        hint = kwargs.get("hint")
        if hint:
            body.append(f"\n{hint}", style="dim")
        self.console.print(Panel(
            body,
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        ))

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        self.console.print(Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        ))

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.debug(f"Display warning: {warning_message}")
        self.console.print(Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        ))

    # --- Report views ---

    def display_health(self, health: List[ModelHealth]) -> None:
        """Displays one row per target with its status and issues."""
        if not health:
            self.display_info("No active targets.")
            return
        table = Table(title="Target Health", box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Target", style="bold")
        table.add_column("Status")
        table.add_column("Success", justify="right")
        table.add_column("Avg time", justify="right")
        table.add_column("Requests", justify="right")
        table.add_column("Issues")
        for row in health:
            style = STATUS_STYLES.get(row.status, "white")
            table.add_row(
                row.target_id,
                f"[{style}]{row.status.value}[/{style}]",
                f"{row.success_rate:.1f}%",
                format_duration(row.avg_response_time_ms),
                f"{row.successful_requests}/{row.total_requests}",
                "; ".join(row.issues) or "-",
            )
        self.console.print(table)

    def display_statistics(self, stats: ModelStatistics) -> None:
        table = Table(
            title=f"{stats.target_id} over {stats.time_window}",
            show_header=False,
            box=ROUNDED,
            border_style="cyan",
            padding=(0, 1),
        )
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Requests", str(stats.total_requests))
        table.add_row("Successful", str(stats.successful_requests))
        table.add_row("Failed", str(stats.failed_requests))
        table.add_row("Success rate", f"{stats.success_rate:.1f}%")
        table.add_row("Avg response", format_duration(stats.avg_response_time_ms))
        table.add_row("Median response", format_duration(stats.median_response_time_ms))
        table.add_row("p95 response", format_duration(stats.p95_response_time_ms))
        table.add_row("Requests/hour", f"{stats.requests_per_hour:.2f}")
        for label, trend in (
            ("Success trend", stats.trends.success_rate_trend),
            ("Latency trend", stats.trends.response_time_trend),
        ):
            style = TREND_STYLES.get(trend, "white")
            table.add_row(label, f"[{style}]{trend.value}[/{style}]")
        for kind, count in stats.error_breakdown.items():
            if count:
                table.add_row(f"Errors: {kind.value}", str(count))
        self.console.print(table)

    def display_alerts(self, alerts: List[HealthAlert]) -> None:
        if not alerts:
            self.display_info("No health alerts.")
            return
        table = Table(title="Health Alerts", box=ROUNDED, border_style="red", padding=(0, 1))
        table.add_column("Severity")
        table.add_column("Target", style="bold")
        table.add_column("Message")
        table.add_column("Raised", style="dim")
        for alert in alerts:
            style = "bold red" if alert.severity == AlertSeverity.CRITICAL else "bold yellow"
            table.add_row(
                f"[{style}]{alert.severity.value}[/{style}]",
                alert.target_id,
                alert.message,
                format_timestamp(alert.timestamp_ms),
            )
        self.console.print(table)

    def display_check_summary(self, summary: HealthCheckSummary) -> None:
        border = "green" if summary.unhealthy_targets == 0 else "yellow"
        text = Text()
        text.append(f"Targets checked: {summary.total_targets}\n")
        text.append(f"Healthy: {summary.healthy_targets}\n", style="green")
        text.append(f"Unhealthy: {summary.unhealthy_targets}\n", style="red" if summary.unhealthy_targets else "white")
        text.append(f"Alerts: {summary.alerts}\n")
        text.append(f"Checked at {format_timestamp(summary.timestamp_ms)}", style="dim")
        self.console.print(Panel(text, title="[bold]Health Check[/bold]", border_style=border, box=ROUNDED))

    def display_metrics(self, target_id: TargetId, metrics: List[PerformanceMetric]) -> None:
        if not metrics:
            self.display_info(f"No metrics recorded for {target_id}.")
            return
        table = Table(title=f"Recent calls: {target_id}", box=SIMPLE, padding=(0, 1))
        table.add_column("Time", style="dim")
        table.add_column("Operation")
        table.add_column("Result")
        table.add_column("Duration", justify="right")
        table.add_column("Error kind")
        for metric in metrics:
            result = "[green]ok[/green]" if metric.success else "[red]failed[/red]"
            table.add_row(
                format_timestamp(metric.timestamp_ms),
                metric.operation,
                result,
                format_duration(metric.duration_ms),
                metric.error_kind.value if metric.error_kind else "-",
            )
        self.console.print(table)

    def display_error_breakdown(self, target_id: TargetId, breakdown: Dict[ErrorKind, ErrorShare]) -> None:
        if not breakdown:
            self.display_info(f"No failures recorded for {target_id}.")
            return
        table = Table(title=f"Failures by kind: {target_id}", box=ROUNDED, padding=(0, 1))
        table.add_column("Kind")
        table.add_column("Count", justify="right")
        table.add_column("Share", justify="right")
        ordered = sorted(breakdown.items(), key=lambda item: item[1]["count"], reverse=True)
        for kind, share in ordered:
            table.add_row(kind.value, str(share["count"]), f"{share['percentage']:.1f}%")
        self.console.print(table)

    def display_trends(self, target_id: TargetId, buckets: List[TrendBucket]) -> None:
        if not buckets:
            self.display_info(f"No metrics in this window for {target_id}.")
            return
        table = Table(title=f"Performance trend: {target_id}", box=SIMPLE, padding=(0, 1))
        table.add_column("Bucket start", style="dim")
        table.add_column("Requests", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Avg time", justify="right")
        for bucket in buckets:
            table.add_row(
                format_timestamp(bucket["timestamp_ms"]),
                str(bucket["total_requests"]),
                f"{bucket['success_rate']:.1f}%",
                format_duration(bucket["avg_response_time_ms"]),
            )
        self.console.print(table)

    def display_payload(self, title: str, payload: Dict[str, Any]) -> None:
        self.console.print(Panel(
            JSON.from_data(payload, default=str),
            title=f"[bold white]{title}[/bold white]",
            title_align="left",
            border_style="cyan",
            box=ROUNDED,
        ))

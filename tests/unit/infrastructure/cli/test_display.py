import io

import pytest
from unittest.mock import MagicMock
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from conftest import NOW_MS
from reelcall.domain.models.common import TargetId
from reelcall.domain.models.errors import ErrorKind
from reelcall.domain.models.monitoring import (
    AlertSeverity,
    HealthAlert,
    HealthCheckSummary,
    HealthStatus,
    ModelHealth,
    ModelStatistics,
    Trends,
)
from reelcall.infrastructure.cli.display import ConsoleDisplay, format_duration

TARGET = TargetId("acme/video-gen")


@pytest.fixture
def mock_console():
    """Fixture to create a mock rich Console object."""
    return MagicMock()


@pytest.fixture
def console_display(mock_console: MagicMock):
    """Fixture to create a ConsoleDisplay instance with a mocked console."""
    return ConsoleDisplay(console=mock_console)


@pytest.fixture
def rendered():
    """A ConsoleDisplay writing plain text into a buffer, plus a reader for it."""
    buffer = io.StringIO()
    display = ConsoleDisplay(console=Console(file=buffer, width=160))
    return display, buffer.getvalue


def make_health(status=HealthStatus.DEGRADED, issues=None):
    return ModelHealth(
        target_id=TARGET,
        success_rate=60.0,
        avg_response_time_ms=2500.0,
        total_requests=5,
        successful_requests=3,
        failed_requests=2,
        status=status,
        last_checked_ms=NOW_MS,
        issues=issues if issues is not None else ["Success rate below threshold: 60.0%"],
    )


@pytest.mark.parametrize("duration, expected", [(250, "250ms"), (999.6, "1000ms"), (1000, "1.0s"), (45_000, "45.0s")])
def test_format_duration(duration, expected):
    assert format_duration(duration) == expected


def test_display_error_uses_error_panel(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_error("Something went wrong")
    mock_console.print.assert_called_once()
    [panel], _ = mock_console.print.call_args
    assert isinstance(panel, Panel)
    assert "Error" in panel.title
    assert panel.renderable.plain == "Something went wrong"


def test_display_error_with_hint(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_error("Rate limited", hint="Wait and retry")
    [panel], _ = mock_console.print.call_args
    assert panel.renderable.plain == "Rate limited\nWait and retry"


def test_display_info_and_warning(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_info("Process completed")
    console_display.display_warning("Careful")
    panels = [c.args[0] for c in mock_console.print.call_args_list]
    assert [p.renderable.plain for p in panels] == ["Process completed", "Careful"]
    assert "Info" in panels[0].title
    assert "Warning" in panels[1].title


def test_display_output_with_title(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_output("body text", title="Result")
    [panel], _ = mock_console.print.call_args
    assert "Result" in panel.title
    assert panel.renderable.plain == "body text"


def test_display_health_table(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_health([make_health(), make_health(HealthStatus.HEALTHY, issues=[])])
    [table], _ = mock_console.print.call_args
    assert isinstance(table, Table)
    assert table.row_count == 2


def test_display_health_renders_text(rendered):
    display, output = rendered
    display.display_health([make_health()])
    text = output()
    assert "acme/video-gen" in text
    assert "degraded" in text
    assert "60.0%" in text
    assert "2.5s" in text
    assert "3/5" in text
    assert "Success rate below threshold: 60.0%" in text


def test_display_health_empty(rendered):
    display, output = rendered
    display.display_health([])
    assert "No active targets." in output()


def test_display_statistics(rendered):
    display, output = rendered
    breakdown = {kind: 0 for kind in ErrorKind}
    breakdown[ErrorKind.RATE_LIMIT] = 2
    display.display_statistics(ModelStatistics(
        target_id=TARGET,
        time_window="24h",
        total_requests=10,
        successful_requests=8,
        failed_requests=2,
        success_rate=80.0,
        avg_response_time_ms=3000.0,
        median_response_time_ms=3000.0,
        p95_response_time_ms=5000.0,
        error_breakdown=breakdown,
        requests_per_hour=10 / 24,
        trends=Trends(),
    ))
    text = output()
    assert "acme/video-gen over 24h" in text
    assert "80.0%" in text
    assert "5.0s" in text
    assert "0.42" in text
    assert "Errors: rate_limit" in text
    assert "Errors: timeout" not in text
    assert "stable" in text


def test_display_alerts(rendered):
    display, output = rendered
    display.display_alerts([
        HealthAlert(TARGET, AlertSeverity.CRITICAL, "Model is in critical state: x", NOW_MS),
    ])
    text = output()
    assert "critical" in text
    assert "Model is in critical state: x" in text


def test_display_alerts_empty(rendered):
    display, output = rendered
    display.display_alerts([])
    assert "No health alerts." in output()


def test_display_check_summary(rendered):
    display, output = rendered
    display.display_check_summary(HealthCheckSummary(
        total_targets=4, healthy_targets=3, unhealthy_targets=1, alerts=1, timestamp_ms=NOW_MS,
    ))
    text = output()
    assert "Targets checked: 4" in text
    assert "Healthy: 3" in text
    assert "Unhealthy: 1" in text


def test_display_metrics_and_empty(rendered, make_metric):
    display, output = rendered
    display.display_metrics(TARGET, [make_metric(), make_metric(success=False, error_kind=ErrorKind.TIMEOUT)])
    display.display_metrics(TargetId("nobody/none"), [])
    text = output()
    assert "create_prediction" in text
    assert "failed" in text
    assert "timeout" in text
    assert "No metrics recorded for nobody/none." in text


def test_display_error_breakdown_sorted_by_count(rendered):
    display, output = rendered
    display.display_error_breakdown(TARGET, {
        ErrorKind.TIMEOUT: {"count": 1, "percentage": 25.0},
        ErrorKind.RATE_LIMIT: {"count": 3, "percentage": 75.0},
    })
    text = output()
    assert text.index("rate_limit") < text.index("timeout")
    assert "75.0%" in text


def test_display_trends(rendered):
    display, output = rendered
    display.display_trends(TARGET, [
        {"timestamp_ms": NOW_MS, "total_requests": 4, "success_rate": 50.0, "avg_response_time_ms": 1500.0},
    ])
    display.display_trends(TARGET, [])
    text = output()
    assert "50.0%" in text
    assert "1.5s" in text
    assert "No metrics in this window" in text


def test_display_payload_renders_json(rendered):
    display, output = rendered
    display.display_payload("Job p1", {"id": "p1", "status": "succeeded"})
    text = output()
    assert "Job p1" in text
    assert '"status": "succeeded"' in text

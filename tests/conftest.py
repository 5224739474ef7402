from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from reelcall.domain.models.common import TargetId
from reelcall.domain.models.errors import ErrorKind
from reelcall.domain.models.monitoring import PerformanceMetric
from reelcall.infrastructure.cli.display import ConsoleDisplay
from reelcall.infrastructure.config.settings import clear_test_config, set_config_for_testing
from reelcall.infrastructure.monitoring.performance_monitor import PerformanceMonitor
from reelcall.infrastructure.storage.memory_store import InMemoryMetricStore

# Fixed "now" for deterministic windows: 2024-01-01T12:00:00Z
NOW_MS = 1_704_110_400_000


class FakeClock:
    """Callable clock returning a controllable epoch-milliseconds value."""

    def __init__(self, now_ms: int = NOW_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class RecordingSleep:
    """Async sleep replacement that records requested delays instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch):
    """Keeps real tokens and earlier overrides out of every test."""
    for var in ("REELCALL_API_TOKEN", "REPLICATE_API_TOKEN", "API_TOKEN", "REELCALL_METRICS_DIR"):
        monkeypatch.delenv(var, raising=False)
    clear_test_config()
    yield
    clear_test_config()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def memory_store():
    return InMemoryMetricStore()


@pytest.fixture
def monitor(memory_store, clock):
    return PerformanceMonitor(memory_store, clock=clock)


@pytest.fixture
def make_metric():
    """Factory for PerformanceMetric rows relative to NOW_MS."""

    def _make(
        target: str = "acme/video-gen",
        success: bool = True,
        duration_ms: float = 1000,
        age_ms: int = 60_000,
        error_kind=None,
        operation: str = "create_prediction",
    ) -> PerformanceMetric:
        if not success and error_kind is None:
            error_kind = ErrorKind.SERVER_ERROR
        return PerformanceMetric(
            target_id=TargetId(target),
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            timestamp_ms=NOW_MS - age_ms,
            error_kind=error_kind,
        )

    return _make


@pytest.fixture
def mock_console_display(mocker):
    """Patches ConsoleDisplay in main so CLI tests can assert on UI calls."""
    mock_display = MagicMock(spec=ConsoleDisplay)
    mocker.patch("reelcall.main.ConsoleDisplay", return_value=mock_display)
    return mock_display


@pytest.fixture
def metrics_dir(tmp_path):
    """Points the CLI's metric store at a temporary directory."""
    directory = tmp_path / "metrics"
    set_config_for_testing({"metrics.dir": str(directory)})
    return directory

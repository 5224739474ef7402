"""Main entry point for the reelcall operator CLI.

Sets up the Typer application, wires dependencies per invocation
(Composition Root) and delegates every command to the CommandHandler.
"""

import asyncio
import logging
from typing import Annotated, Any, Coroutine, Dict, Optional

import typer

from reelcall import __version__
from reelcall.core.command_handler import CommandHandler
from reelcall.core.resilient_client import create_client
from reelcall.domain.interfaces.user_interface import UserInterface
from reelcall.infrastructure.cli.display import ConsoleDisplay
from reelcall.infrastructure.config.settings import (
    get_config,
    get_health_thresholds,
    get_metrics_dir,
    get_metrics_retention_days,
    load_configuration,
    set_config,
)
from reelcall.infrastructure.monitoring.logger_setup import setup_logging
from reelcall.infrastructure.monitoring.performance_monitor import PerformanceMonitor
from reelcall.infrastructure.resilience.retry_engine import RetryEngine
from reelcall.infrastructure.storage.disk_store import DiskMetricStore

logger = logging.getLogger(__name__)


# --- Dependency Injection (Manual) ---

def create_dependencies(ui: Optional[UserInterface] = None) -> Dict[str, Any]:
    """Creates and wires up all dependencies for one CLI invocation.

    This acts as the Composition Root.
    """
    load_configuration()
    setup_logging(
        log_level=get_config('logging.level', 'WARNING'),
        log_format=get_config('logging.format'),
        log_file=get_config('logging.file'),
    )

    dependencies: Dict[str, Any] = {}
    dependencies['ui'] = ui or ConsoleDisplay()
    dependencies['store'] = DiskMetricStore(
        directory=get_metrics_dir(),
        retention_days=get_metrics_retention_days(),
    )
    dependencies['monitor'] = PerformanceMonitor(
        dependencies['store'],
        thresholds=get_health_thresholds(),
    )
    dependencies['retry_engine'] = RetryEngine()

    def client_factory():
        return create_client(monitor=dependencies['monitor'], retry_engine=dependencies['retry_engine'])

    dependencies['command_handler'] = CommandHandler(
        monitor=dependencies['monitor'],
        ui=dependencies['ui'],
        client_factory=client_factory,
    )
    logger.debug("All dependencies initialized.")
    return dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="reelcall",
    help="reelcall: resilient generation API calls with health monitoring.",
    add_completion=False,
)


def run_async(coro: Coroutine[Any, Any, bool]) -> bool:
    """Runs a command coroutine from a sync Typer command."""
    return asyncio.run(coro)


def _run(command) -> None:
    """Builds dependencies, runs ``command(handler)`` and sets the exit code."""
    ui = ConsoleDisplay()
    dependencies: Dict[str, Any] = {}

    async def invoke(handler: CommandHandler) -> bool:
        try:
            return await command(handler)
        finally:
            await handler.close()

    try:
        dependencies = create_dependencies(ui)
        ok = run_async(invoke(dependencies['command_handler']))
    except Exception as e:
        logger.error(f"Error executing command: {e}", exc_info=True)
        ui.display_error(f"Command execution failed: {e}")
        ok = False
    finally:
        if 'store' in dependencies:
            dependencies['store'].close()
    if not ok:
        raise typer.Exit(code=1)


# --- Shared options ---
WindowOption = Annotated[str, typer.Option("--window", "-w", help="Time window such as '24h' or '7d'.")]


# --- CLI Commands ---

@app.command()
def health(
    target: Annotated[Optional[str], typer.Argument(help="Model ref; all active targets if omitted.")] = None,
):
    """Show current health (trailing hour) for one or all targets."""
    _run(lambda handler: handler.handle_health(target))


@app.command()
def stats(
    target: Annotated[str, typer.Argument(help="Model ref, e.g. 'owner/name'.")],
    window: WindowOption = "24h",
):
    """Show windowed statistics for a target."""
    _run(lambda handler: handler.handle_stats(target, window))


@app.command()
def alerts():
    """List alerts for degraded or critical targets."""
    _run(lambda handler: handler.handle_alerts())


@app.command()
def check():
    """Run a health check over every active target."""
    _run(lambda handler: handler.handle_check())


@app.command()
def metrics(
    target: Annotated[str, typer.Argument(help="Model ref, e.g. 'owner/name'.")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of metrics to show.")] = 20,
):
    """Show the most recent recorded calls for a target."""
    _run(lambda handler: handler.handle_metrics(target, limit))


@app.command()
def errors(
    target: Annotated[str, typer.Argument(help="Model ref, e.g. 'owner/name'.")],
    window: WindowOption = "24h",
):
    """Break a target's failures down by error kind."""
    _run(lambda handler: handler.handle_errors(target, window))


@app.command()
def trends(
    target: Annotated[str, typer.Argument(help="Model ref, e.g. 'owner/name'.")],
    window: WindowOption = "7d",
    granularity: Annotated[str, typer.Option("--granularity", "-g", help="'hour' or 'day'.")] = "hour",
):
    """Show per-hour or per-day success rate and latency."""
    _run(lambda handler: handler.handle_trends(target, window, granularity))


@app.command()
def refresh():
    """Recompute and store health snapshots for every active target."""
    _run(lambda handler: handler.handle_refresh())


@app.command(name="list-models")
def list_models_command(
    cursor: Annotated[Optional[str], typer.Option("--cursor", help="Pagination cursor.")] = None,
):
    """List available models from the generation API."""
    _run(lambda handler: handler.handle_list_models(cursor))


@app.command(name="get-job")
def get_job_command(job_id: Annotated[str, typer.Argument(help="Prediction/job id.")]):
    """Fetch the current state of a generation job."""
    _run(lambda handler: handler.handle_get_job(job_id))


@app.command(name="cancel-job")
def cancel_job_command(job_id: Annotated[str, typer.Argument(help="Prediction/job id.")]):
    """Cancel a running generation job."""
    _run(lambda handler: handler.handle_cancel_job(job_id))


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"reelcall {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    metrics_dir: Annotated[
        Optional[str], typer.Option("--metrics-dir", help="Directory of the metric store.")
    ] = None,
    log_level: Annotated[
        Optional[str], typer.Option("--log-level", help="Logging level, e.g. DEBUG or INFO.")
    ] = None,
    version: Annotated[
        bool, typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit.")
    ] = False,
):
    """Resilient generation API client and health monitor."""
    if metrics_dir:
        set_config('metrics.dir', metrics_dir)
    if log_level:
        set_config('logging.level', log_level)


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()

"""rewind CLI — inspect and upload recorded step event logs."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from rewind import __version__
from rewind.aggregation import AggregationError, aggregate
from rewind.config import load_config, validate_config
from rewind.models.events import MalformedEventError, load_events
from rewind.models.test_run import TestResult
from rewind.reporter import RunnerInfo, RunReporter, TestRecord
from rewind.telemetry import init_sentry

if TYPE_CHECKING:
    from rewind.models.events import RawEvent
    from rewind.models.test_run import Test

logger = logging.getLogger(__name__)
console = Console()

_MAX_ARG_DISPLAY = 40


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _read_events(events_path: Path) -> list[RawEvent]:
    try:
        return load_events(events_path)
    except MalformedEventError as exc:
        console.print(f"[red]✗[/red] Could not read events: {exc}")
        raise click.Abort from exc


def _format_ms(value: float | None) -> str:
    return "-" if value is None else f"{value:.0f}ms"


def _format_args(args: list[Any]) -> str:
    text = ", ".join(json.dumps(arg) if not isinstance(arg, str) else arg for arg in args)
    if len(text) > _MAX_ARG_DISPLAY:
        return text[: _MAX_ARG_DISPLAY - 1] + "…"
    return text


def _display_tests(tests: list[Test]) -> None:
    for test in tests:
        table = Table(
            title=f"{' > '.join(test.path)}  "
            f"[dim](start {_format_ms(test.relative_start_time)}, "
            f"duration {_format_ms(test.duration)})[/dim]",
            title_justify="left",
        )
        table.add_column("Id", style="cyan")
        table.add_column("Parent", style="dim")
        table.add_column("Step")
        table.add_column("Hook", style="dim")
        table.add_column("Start", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Status")

        for step in test.steps:
            status = "[red]error[/red]" if step.error else "[green]ok[/green]"
            name = f"{step.name}({_format_args(step.args)})"
            if step.assert_ids:
                name += f" [dim]+{len(step.assert_ids)} asserts[/dim]"
            table.add_row(
                step.id,
                step.parent_id or "",
                name,
                step.hook.value if step.hook else "",
                _format_ms(step.relative_start_time),
                _format_ms(step.duration),
                status,
            )
        console.print(table)


@click.group()
@click.version_option(__version__, prog_name="rewind")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(*, verbose: bool) -> None:
    """rewind — reconstruct browser test runs and report them to a collector."""
    _configure_logging(verbose=verbose)


@cli.command()
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json-output", "as_json", is_flag=True, help="Print the collector payload JSON.")
def inspect(events_file: Path, *, as_json: bool) -> None:
    """Reconstruct tests and steps from EVENTS_FILE and print them."""
    events = _read_events(events_file)
    try:
        tests = aggregate(events)
    except AggregationError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise click.Abort from exc

    if as_json:
        click.echo(json.dumps([test.to_payload(i) for i, test in enumerate(tests)], indent=2))
        return

    if not tests:
        console.print("[yellow]⚠[/yellow] No tests found")
        return
    _display_tests(tests)
    step_count = sum(len(test.steps) for test in tests)
    console.print(f"[green]✓[/green] {len(tests)} tests, {step_count} steps")


@cli.command()
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--path",
    "project_path",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path(),
    help="Directory containing .rewind.yml.",
)
@click.option(
    "--result",
    type=click.Choice([result.value for result in TestResult]),
    default=TestResult.PASSED.value,
    help="Outcome reported by the test runner.",
)
@click.option("--spec-file", default=None, help="Spec file the events were recorded from.")
@click.option("--runner", "runner_name", default="cli", help="Name of the test runner.")
@click.option("--title", "run_title", default=None, help="Run title (overrides run.title).")
def upload(
    events_file: Path,
    project_path: Path,
    result: str,
    spec_file: str | None,
    runner_name: str,
    run_title: str | None,
) -> None:
    """Aggregate EVENTS_FILE and upload it to the configured collector."""
    config = load_config(project_path)
    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]✗[/red] {error}")
        raise click.Abort
    if not config.collector.is_configured:
        console.print(
            "[red]✗[/red] Collector is not configured "
            "(set collector.url / collector.api_key or REWIND_COLLECTOR_URL / REWIND_API_KEY)"
        )
        raise click.Abort

    init_sentry(config.sentry)
    events = _read_events(events_file)

    reporter = RunReporter(
        RunnerInfo(name=runner_name, plugin=f"rewind-reporter/{__version__}"), config
    )
    reporter.on_suite_begin(run_title)
    reporter.on_test_end(
        TestRecord(
            events=events,
            result=TestResult(result),
            spec_file=spec_file or events_file.name,
        )
    )

    try:
        responses = asyncio.run(reporter.on_suite_end())
    except AggregationError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise click.Abort from exc
    except Exception as exc:
        console.print(f"[red]✗[/red] Upload failed: {exc}")
        raise click.Abort from exc

    console.print(f"[green]✓[/green] Uploaded {len(responses)} result(s) for run {reporter.run_id}")

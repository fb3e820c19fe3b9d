"""Phasegate CLI — validate, plan and run pipeline definitions locally."""

import asyncio
import contextlib
import json
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from phasegate import __version__
from phasegate.core.config import MAX_CONCURRENCY_CAP, get_settings
from phasegate.core.errors import ConfigurationError
from phasegate.dag.graph import Graph
from phasegate.dag.planner import plan as plan_graph
from phasegate.gate.quality import QualityGatePolicy
from phasegate.models.job import JobStatus
from phasegate.notify.base import CompositeNotifier, Notifier
from phasegate.notify.events import Event, JobEvent
from phasegate.orchestrator import Orchestrator, RunOutcome
from phasegate.pipeline.decorators import HandlerRegistry
from phasegate.pipeline.loader import load_pipeline
from phasegate.runners.dispatch import DispatchRunner
from phasegate.schemas.definition import PipelineDefinition

app = typer.Typer(
    name="phasegate",
    help="Phased CI job orchestration with a quality gate",
    no_args_is_help=True,
)
console = Console()

EXIT_ADMIT = 0
EXIT_BLOCK = 1
EXIT_CONFIG = 2

STATUS_COLORS = {
    JobStatus.SUCCEEDED: "green",
    JobStatus.FAILED: "red",
    JobStatus.SKIPPED: "yellow",
    JobStatus.CANCELLED: "magenta",
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def _config_error(e: ConfigurationError) -> typer.Exit:
    console.print(f"[red]Configuration error:[/red] {e}")
    return typer.Exit(EXIT_CONFIG)


def _load(file: Path, registry: HandlerRegistry) -> tuple[PipelineDefinition, Graph]:
    try:
        definition = load_pipeline(file, registry)
        return definition, definition.build_graph()
    except ConfigurationError as e:
        raise _config_error(e)


class _ConsoleNotifier(Notifier):
    """Prints one line per finished job."""

    def emit(self, event: Event) -> None:
        if not isinstance(event, JobEvent) or not event.to_status.is_terminal:
            return
        color = STATUS_COLORS.get(event.to_status, "white")
        suffix = f" [dim]({event.reason.value})[/dim]" if event.reason else ""
        console.print(f"[{color}]●[/{color}] {event.job_id} — {event.to_status.value}{suffix}")


# ─── Definition Commands ───


@app.command()
def validate(file: Path = typer.Argument(..., help="Pipeline definition (.toml or .json)")):
    """Check a definition: ids, dependencies, cycles, phases and handlers."""
    registry = HandlerRegistry()
    definition, graph = _load(file, registry)
    runner = DispatchRunner.default(registry, base_dir=str(file.parent))
    try:
        phase_plan = plan_graph(graph)
        for job in graph:
            runner.validate(job)
    except ConfigurationError as e:
        raise _config_error(e)

    console.print(
        f"[green]✓[/green] {definition.name}: {len(graph)} jobs in {len(phase_plan.phases)} phases"
    )


@app.command()
def plan(
    file: Path = typer.Argument(..., help="Pipeline definition (.toml or .json)"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
):
    """Show the phase plan and the estimated critical path."""
    registry = HandlerRegistry()
    definition, graph = _load(file, registry)
    try:
        phase_plan = plan_graph(graph)
    except ConfigurationError as e:
        raise _config_error(e)

    if as_json:
        typer.echo(json.dumps({"pipeline": definition.name, **phase_plan.to_dict()}, indent=2))
        return

    table = Table(title=f"Plan: {definition.name}")
    table.add_column("Phase", style="bold")
    table.add_column("Required")
    table.add_column("Optional", style="dim")
    table.add_column("Groups")

    for phase in phase_plan.phases:
        groups = ", ".join(
            f"{label}({len(ids)})" for label, ids in phase.groups.items() if label is not None
        )
        table.add_row(
            str(phase.number),
            ", ".join(phase.required_ids) or "—",
            ", ".join(phase.optional_ids) or "—",
            groups or "—",
        )

    console.print(table)
    path = phase_plan.critical_path
    console.print(f"Critical path: {' → '.join(path.job_ids)} ({path.duration_ms}ms estimated)")


# ─── Run Command ───


async def _execute(
    orchestrator: Orchestrator,
    graph: Graph,
    policy: Optional[QualityGatePolicy],
    cap: Optional[int],
    fail_fast: Optional[bool],
) -> RunOutcome:
    try:
        handle = orchestrator.start_run(graph, policy, cap, fail_fast=fail_fast)
        loop = asyncio.get_running_loop()
        # Not available on every platform's event loop.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, handle.cancel, "interrupted")
        try:
            return await handle.wait()
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)
    finally:
        await orchestrator.aclose()


def _print_outcome(outcome: RunOutcome) -> None:
    table = Table(title=f"Run {outcome.run_id[:8]}")
    table.add_column("Job", style="bold")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Attempts")
    table.add_column("Duration")
    table.add_column("Reason", style="dim")

    for state in outcome.run.jobs.values():
        color = STATUS_COLORS.get(state.status, "white")
        name = state.job_id if state.spec.required else f"{state.job_id} (optional)"
        table.add_row(
            name,
            str(state.spec.phase),
            f"[{color}]{state.status.value}[/{color}]",
            str(state.attempts),
            f"{state.duration_ms}ms" if state.attempts else "—",
            state.reason.value if state.reason else "—",
        )
    console.print(table)

    summary = outcome.summary
    console.print(
        f"Success rate: {summary.success_rate:.1%}  "
        f"({summary.succeeded} succeeded, {summary.failed} failed, "
        f"{summary.skipped} skipped, {summary.cancelled} cancelled)"
    )
    console.print(f"Wall clock: {summary.wall_clock_ms}ms  Critical path: {' → '.join(summary.critical_path)}")

    decision = outcome.decision
    if decision.admitted:
        console.print("\n[green]● Admit[/green]")
    else:
        console.print(f"\n[red]● {decision}[/red] {decision.detail or ''}")


@app.command()
def run(
    file: Path = typer.Argument(..., help="Pipeline definition (.toml or .json)"),
    cap: Optional[int] = typer.Option(
        None, "--cap", "-c", min=1, max=MAX_CONCURRENCY_CAP, help="Global concurrency cap"
    ),
    min_success_rate: Optional[float] = typer.Option(
        None, "--min-success-rate", min=0.0, max=1.0, help="Quality gate threshold"
    ),
    fail_fast: Optional[bool] = typer.Option(
        None, "--fail-fast/--no-fail-fast", help="Cancel pending jobs after a required failure"
    ),
    artifacts_dir: Optional[Path] = typer.Option(None, "--artifacts-dir", help="Store artifacts on disk"),
    as_json: bool = typer.Option(False, "--json", help="Print the run outcome as JSON"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Process log level"),
):
    """Run a pipeline and apply the quality gate. Exit 0 on Admit, 1 on Block."""
    settings = get_settings(
        global_concurrency_cap=cap,
        min_success_rate=min_success_rate,
        fail_fast=fail_fast,
        artifacts_dir=str(artifacts_dir) if artifacts_dir else None,
        log_level=log_level,
    )
    _configure_logging(settings.log_level)

    registry = HandlerRegistry()
    definition, graph = _load(file, registry)

    # Precedence: command-line flag > definition file > settings.
    policy = definition.gate
    if policy is not None and min_success_rate is not None:
        policy = policy.model_copy(update={"min_success_rate": min_success_rate})
    run_cap = cap if cap is not None else definition.concurrency_cap
    run_fail_fast = fail_fast if fail_fast is not None else definition.fail_fast

    orchestrator = Orchestrator(
        runner=DispatchRunner.default(registry, base_dir=str(file.parent)),
        settings=settings,
    )
    if not as_json:
        orchestrator.notifier = CompositeNotifier([_ConsoleNotifier(), orchestrator.notifier])
        console.print(f"[bold]{definition.name}[/bold] — {len(graph)} jobs")

    try:
        outcome = asyncio.run(_execute(orchestrator, graph, policy, run_cap, run_fail_fast))
    except ConfigurationError as e:
        raise _config_error(e)

    if as_json:
        typer.echo(json.dumps(outcome.to_dict(), indent=2, default=str))
    else:
        _print_outcome(outcome)

    raise typer.Exit(EXIT_ADMIT if outcome.admitted else EXIT_BLOCK)


@app.command()
def version():
    """Show Phasegate version."""
    console.print(f"phasegate v{__version__}")


if __name__ == "__main__":
    app()

"""CLI entry point for taskmesh."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from taskmesh import __version__
from taskmesh.config import CoordinatorConfig, load_config
from taskmesh.engine.errors import CyclicOrUnresolvableDependency, WorkloadError

if TYPE_CHECKING:
    from taskmesh.engine.coordinator import RunSummary
    from taskmesh.engine.planner import ExecutionPlan
    from taskmesh.workload import Workload

console = Console()

EXIT_TASK_FAILURE = 1
EXIT_PLANNING_ERROR = 2


@click.group()
@click.version_option(version=__version__, prog_name="taskmesh")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="TASKMESH_DATA_DIR",
    default=None,
    help="State directory (default ~/.taskmesh)",
)
@click.option("--log-level", default=None, help="Log level for stderr output")
@click.pass_context
def main(ctx: click.Context, data_dir: Path | None, log_level: str | None) -> None:
    """taskmesh - capability-routed multi-agent task coordination."""
    from taskmesh.log import configure_logging

    try:
        config = load_config(data_dir=data_dir)
        if log_level:
            config = config.with_overrides(log_level=log_level)
        configure_logging(config.log_level, config.log_path)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e
    ctx.obj = config


@main.command()
@click.pass_obj
def init(config: CoordinatorConfig) -> None:
    """Create the data directory and database."""
    from taskmesh.storage.database import Database

    db = Database(config.data_dir)
    db.ensure_tables()
    console.print(f"[green]taskmesh initialized at {db.data_dir}[/green]")
    console.print(f"  Database: {db.db_path}")
    console.print(f"  Config:   {config.config_path}")


def _load(path: Path, config: CoordinatorConfig) -> Workload:
    from taskmesh.workload import load_workload

    try:
        return load_workload(path, config.default_max_concurrent_tasks)
    except WorkloadError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(EXIT_PLANNING_ERROR) from e


@main.command()
@click.argument("workload", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON")
@click.pass_obj
def plan(config: CoordinatorConfig, workload: Path, as_json: bool) -> None:
    """Show the execution plan for a workload file."""
    from taskmesh.engine.planner import build_plan

    work = _load(workload, config)
    try:
        execution_plan = build_plan(work.tasks, work.dependencies, work.priority)
    except CyclicOrUnresolvableDependency as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(EXIT_PLANNING_ERROR) from e

    if as_json:
        click.echo(json.dumps(execution_plan.to_dict(), indent=2))
        return
    _print_plan(execution_plan)


@main.command()
@click.argument("workload", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--executor", "executor_path", default=None, help="Payload executor as module:attr")
@click.option("--max-parallel", type=int, default=None, help="Concurrency cap per phase")
@click.option("--max-retries", type=int, default=None, help="Retries per task")
@click.option("--mode", type=click.Choice(["batch", "pool"]), default=None, help="Dispatch mode")
@click.option("--timeout", type=float, default=None, help="Per-attempt timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON")
@click.pass_obj
def run(
    config: CoordinatorConfig,
    workload: Path,
    executor_path: str | None,
    max_parallel: int | None,
    max_retries: int | None,
    mode: str | None,
    timeout: float | None,
    as_json: bool,
) -> None:
    """Plan and execute a workload file."""
    from taskmesh.payload import load_executor

    try:
        config = config.with_overrides(
            max_parallel=max_parallel,
            max_retries=max_retries,
            dispatch_mode=mode,
            task_timeout=timeout,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    work = _load(workload, config)
    executor = None
    if executor_path:
        try:
            executor = load_executor(executor_path)
        except (ImportError, AttributeError, TypeError, ValueError) as e:
            raise click.BadParameter(str(e), param_hint="--executor") from e

    try:
        summary = asyncio.run(_execute(config, work, executor))
    except CyclicOrUnresolvableDependency as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(EXIT_PLANNING_ERROR) from e

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, default=str))
    else:
        _print_summary(summary)
    if summary.exit_code:
        raise SystemExit(EXIT_TASK_FAILURE)


async def _execute(config: CoordinatorConfig, work: Workload, executor: object) -> RunSummary:
    from taskmesh.engine.coordinator import Coordinator
    from taskmesh.storage.ledger import RunLedger

    async with RunLedger(config.data_dir) as ledger:
        coordinator = Coordinator(
            config,
            executor,  # type: ignore[arg-type]
            agents=work.agents,
            ledger=ledger,
        )
        try:
            return await coordinator.run(work.tasks, work.dependencies, work.priority)
        finally:
            await coordinator.shutdown()


@main.command()
@click.pass_obj
def status(config: CoordinatorConfig) -> None:
    """Show agents from the latest run and aggregate metrics."""
    from taskmesh.storage.database import Database

    db = Database(config.data_dir)
    db.ensure_tables()
    runs = db.recent_runs(limit=1)
    if not runs:
        console.print("[dim]No runs yet.[/dim]")
        return

    latest = runs[0]
    rows = db.execute("SELECT * FROM agents WHERE run_id = ? ORDER BY id", (latest["run_id"],))

    table = Table(title=f"Agents ({latest['run_id']})")
    table.add_column("Agent ID", style="cyan")
    table.add_column("Name")
    table.add_column("Capabilities", max_width=40)
    table.add_column("Completed", style="green")
    table.add_column("Failed", style="red")
    table.add_column("Avg ms")
    table.add_column("Success")

    for row in rows:
        perf = json.loads(row["performance"] or "{}")
        table.add_row(
            row["agent_id"],
            row["name"],
            ", ".join(json.loads(row["capabilities"])),
            str(perf.get("tasks_completed", 0)),
            str(perf.get("tasks_failed", 0)),
            f"{perf.get('avg_execution_time', 0.0):.1f}",
            f"{perf.get('success_rate', 100.0):.0f}%",
        )

    console.print(table)
    totals = db.attempt_totals()
    console.print(
        f"\nRuns: {db.run_count()} | "
        f"Attempts: {totals['total_attempts']} | "
        f"Success: {totals['success_rate']:.1f}% | "
        f"Avg: {totals['avg_execution_time']:.1f}ms"
    )


@main.command()
@click.option("--limit", default=20, help="Number of entries to show")
@click.pass_obj
def history(config: CoordinatorConfig, limit: int) -> None:
    """Show recent runs."""
    from taskmesh.storage.database import Database

    db = Database(config.data_dir)
    db.ensure_tables()
    rows = db.recent_runs(limit=limit)
    if not rows:
        console.print("[dim]No run history yet. Run a workload first.[/dim]")
        return

    table = Table(title="Run History")
    table.add_column("Run", style="cyan")
    table.add_column("Status")
    table.add_column("Completed", style="green")
    table.add_column("Failed", style="red")
    table.add_column("Phases")
    table.add_column("Duration")
    table.add_column("Date")

    for row in rows:
        table.add_row(
            row["run_id"],
            row["status"],
            str(row["completed"]),
            str(row["failed"]),
            str(row["phases"]),
            f"{row['duration_seconds']:.2f}s",
            str(row["started_at"])[:16],
        )

    console.print(table)


@main.command()
@click.argument("priority", type=float)
@click.option("--threshold", type=float, default=None, help="Override the configured threshold")
@click.pass_obj
def resolve(config: CoordinatorConfig, priority: float, threshold: float | None) -> None:
    """Show which side a conflict at PRIORITY resolves to."""
    from taskmesh.engine.conflict import resolve as resolve_conflict

    limit = config.conflict_threshold if threshold is None else threshold
    strategy = resolve_conflict(priority, limit)
    console.print(f"[bold]Priority:[/bold] {priority:g} (threshold {limit:g})")
    console.print(f"[bold]Strategy:[/bold] {strategy.value}")


def _print_plan(execution_plan: ExecutionPlan) -> None:
    table = Table(title="Execution Plan")
    table.add_column("Phase", style="cyan")
    table.add_column("Tasks")
    table.add_column("Priority")
    for index, phase in enumerate(execution_plan.phases, start=1):
        table.add_row(
            str(index),
            ", ".join(phase),
            ", ".join(f"{execution_plan.priority.get(t, 0):g}" for t in phase),
        )
    console.print(table)
    console.print(f"Required agents: {execution_plan.required_agents}")


def _print_summary(summary: RunSummary) -> None:
    """Print run summary."""
    status_color = {"success": "green", "partial": "yellow", "failed": "red"}.get(
        summary.status, "dim"
    )

    table = Table(title=f"Run {summary.run_id}")
    table.add_column("Task", style="cyan")
    table.add_column("Status")
    table.add_column("Agent")
    table.add_column("Attempts")
    table.add_column("Error", max_width=50)
    for o in summary.outcomes:
        color = "green" if o.success else "red"
        table.add_row(
            o.task_id,
            f"[{color}]{o.status.value}[/{color}]",
            o.agent_id or "-",
            str(o.attempts),
            escape(o.error or ""),
        )
    console.print(table)

    console.print(f"\n[{status_color}]Status: {summary.status}[/{status_color}]")
    console.print(f"Phases: {len(summary.plan)}")
    console.print(f"Completed: {summary.completed} | Failed: {summary.failed}")
    console.print(f"Duration: {summary.duration_seconds:.2f}s")
    insights = summary.insights
    console.print(
        f"Attempts: {insights.total_tasks} | Success: {insights.success_rate:.1f}% | "
        f"Avg: {insights.avg_execution_time:.1f}ms"
    )

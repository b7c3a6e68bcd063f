"""Command-line entry point: `gba-runner run <slug>` and `gba-runner status <slug>`."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import load_project_config
from .constants import BLOCKING_RESOLUTION_STEPS
from .errors import ConfigError, RunnerError
from .logging_utils import build_log_path, cleanup_old_logs, configure_logging
from .models import Event, ExecutionRecord, RunError, RunFinished, StepStatus
from .orchestrator import run_feature
from .store import RecordStore

_STATUS_STYLES = {
    StepStatus.PENDING: "dim",
    StepStatus.IN_PROGRESS: "yellow",
    StepStatus.COMPLETED: "green",
    StepStatus.FAILED: "red",
}


def _build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gba-runner run",
        description="Run (or resume) a planned feature: phases, review, verification, PR",
    )
    parser.add_argument("slug", help="Feature slug under .gba/features/")
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Agent model override (default: agent.model from config)",
    )
    parser.add_argument(
        "--agent-command",
        type=str,
        default=None,
        help="Agent CLI command template override (default: agent.command from config)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: INFO)",
    )
    return parser


def _build_status_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gba-runner status",
        description="Show the execution record of a feature",
    )
    parser.add_argument("slug", help="Feature slug under .gba/features/")
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON",
    )
    return parser


def _render_event(console: Console, event: Event) -> None:
    event_type = event.event_type
    if event_type == "run_started":
        console.print(f"[bold]▶ Running feature[/bold] ({event.total_phases} phase(s))")
    elif event_type == "phase_started":
        console.print(f"[cyan]Phase {event.index + 1}:[/cyan] {escape(event.name)}")
    elif event_type == "hook_result":
        mark = "[green]✓[/green]" if event.passed else "[red]✗[/red]"
        console.print(f"  {mark} hook {event.hook} (attempt {event.attempt})")
    elif event_type == "phase_committed":
        console.print(f"  [green]committed[/green] {event.commit[:12]}")
    elif event_type == "review_started":
        console.print("[cyan]Review[/cyan]")
    elif event_type == "review_completed":
        style = "green" if event.passed else "yellow"
        console.print(
            f"  [{style}]issues found {event.issues_found}, fixed {event.issues_fixed}[/{style}]"
        )
        for issue in event.unresolved:
            line = f"- [{issue['severity']}] {issue['file']}: {issue['description']}"
            console.print(f"  [yellow]{escape(line)}[/yellow]")
    elif event_type == "verification_started":
        console.print("[cyan]Verification[/cyan]")
    elif event_type == "verification_completed":
        status = "[green]passed[/green]" if event.passed else "[red]failed[/red]"
        console.print(f"  {status}")
    elif event_type == "pr_created":
        console.print(f"[bold green]PR:[/bold green] {event.url}")
    elif isinstance(event, RunFinished):
        console.print(f"[bold green]✔ Finished[/bold green] in {event.total_turns} turn(s)")
    elif isinstance(event, RunError):
        console.print(f"[bold red]✖ {event.error_type}:[/bold red] {escape(event.message)}")
        for step in BLOCKING_RESOLUTION_STEPS.get(event.error_type, []):
            console.print(f"  [dim]• {step}[/dim]")


def _run_command(
    project_dir: Path,
    slug: str,
    *,
    model: Optional[str] = None,
    agent_command: Optional[str] = None,
    log_level: str = "INFO",
    console: Optional[Console] = None,
) -> int:
    project_dir = project_dir.resolve()
    console = console or Console()
    configure_logging(log_level, build_log_path(project_dir, slug))
    cleanup_old_logs(project_dir)
    try:
        config = load_project_config(project_dir, model=model, agent_command=agent_command)
    except ConfigError as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        return 2

    try:
        events = run_feature(
            project_dir,
            slug,
            config=config,
            on_event=lambda event: _render_event(console, event),
        )
    except KeyboardInterrupt:
        logger.warning("Interrupted; completed stages are saved and will be skipped on resume")
        console.print("[yellow]Interrupted. Re-run to resume.[/yellow]")
        return 130
    return 0 if events and isinstance(events[-1], RunFinished) else 1


def _status_table(record: ExecutionRecord) -> Table:
    table = Table(title="Phases")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Turns", justify="right")
    table.add_column("Commit")
    for idx, phase in enumerate(record.phases):
        status = phase.result.status if phase.result else StepStatus.PENDING
        style = _STATUS_STYLES.get(status, "")
        commit = (phase.result.commit or "")[:12] if phase.result else ""
        table.add_row(
            str(idx + 1),
            escape(phase.name),
            f"[{style}]{status.value}[/{style}]" if style else status.value,
            str(phase.turns),
            commit,
        )
    return table


def _status_command(
    project_dir: Path,
    slug: str,
    *,
    as_json: bool = False,
    console: Optional[Console] = None,
) -> int:
    console = console or Console()
    store = RecordStore(project_dir)
    try:
        record = store.load(slug)
    except RunnerError as exc:
        if as_json:
            sys.stdout.write(json.dumps({"status": exc.error_type, "error": str(exc)}) + "\n")
        else:
            console.print(f"[red]{escape(str(exc))}[/red]")
        return 1

    if as_json:
        sys.stdout.write(json.dumps(record.to_dict(), indent=2) + "\n")
        return 0

    headline = (record.feature_description.strip().splitlines() or [""])[0]
    console.print(f"[bold]{slug}[/bold]: {escape(headline)}")
    console.print(_status_table(record))
    execution = record.execution
    if execution is None:
        console.print("Not started")
        return 0
    console.print(f"Status: {execution.status.value}  Total turns: {execution.total_turns}")
    console.print(
        f"Review: {execution.review.issues_found} found, {execution.review.issues_fixed} fixed "
        f"({execution.review.turns} turn(s))"
    )
    console.print(
        f"Verification: {'passed' if execution.verification.passed else 'not passed'} "
        f"({execution.verification.turns} turn(s))"
    )
    if execution.pr:
        console.print(f"PR: {execution.pr}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Run the `gba-runner` CLI.

    Args:
        argv: Optional argument list (excluding the executable name). When omitted,
            uses `sys.argv[1:]`.

    Raises:
        SystemExit: Raised to return a process exit code for CLI subcommands.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] == "status":
        args = _build_status_parser().parse_args(argv[1:])
        raise SystemExit(_status_command(args.project_dir, args.slug, as_json=bool(args.json)))
    if argv and argv[0] == "run":
        argv = argv[1:]

    args = _build_run_parser().parse_args(argv)
    raise SystemExit(
        _run_command(
            args.project_dir,
            args.slug,
            model=args.model,
            agent_command=args.agent_command,
            log_level=args.log_level,
        )
    )


if __name__ == "__main__":
    main()

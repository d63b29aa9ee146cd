"""Entry point for the autodev CLI."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich import box
from rich.console import Console
from rich.table import Table

from autodev.cli_adapters import get_invoker
from autodev.config.settings import Settings, get_settings, load_settings_from_yaml
from autodev.core.circuit_breaker import CircuitBreakerRegistry
from autodev.core.failover import FailoverController
from autodev.core.session import SessionPhase
from autodev.core.state_machine import ExecutionStateMachine
from autodev.core.state_manager import CheckpointStore
from autodev.ideas import load_idea
from autodev.tracking.issues import GitHubIssueTracker, NullIssueTracker, TicketTracker
from autodev.vcs.git import GitSourceControl

console = Console()

CONFIG_FILE = ".autodev.yaml"


def setup_logging(verbose: bool = False, debug: bool = False, level: str | None = None) -> None:
    """Configure logging."""
    if debug:
        resolved = logging.DEBUG
    elif verbose:
        resolved = logging.INFO
    else:
        resolved = logging.getLevelName((level or "WARNING").upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="autodev",
        description="Resumable idea-to-code pipeline over AI coding CLIs",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--project",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    common.add_argument(
        "--config",
        type=Path,
        help=f"YAML config file (default: <project>/{CONFIG_FILE} if present)",
    )
    common.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    common.add_argument("--debug", action="store_true", help="Debug output")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", parents=[common], help="Process an idea")
    run_parser.add_argument("--idea", required=True, help="Idea id (ideas/backlog/<ID>*.md)")
    run_parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue the latest blocked or interrupted session for this idea",
    )
    run_parser.add_argument("--answer", help="Answer to the question a blocked session asked")
    run_parser.add_argument(
        "--replan",
        action="store_true",
        help="Discard the stored plan when resuming (before any milestone ran)",
    )
    run_parser.add_argument("--no-tickets", action="store_true", help="Do not create GitHub issues")

    subparsers.add_parser("status", parents=[common], help="Show model circuit breakers and sessions")

    checkpoints_parser = subparsers.add_parser("checkpoints", parents=[common], help="List or prune checkpoints")
    checkpoints_parser.add_argument("--prune", type=int, metavar="KEEP", help="Keep KEEP backups per session")
    checkpoints_parser.add_argument("--delete", metavar="SESSION_ID", help="Remove a session checkpoint and its backups")
    checkpoints_parser.add_argument("--reset-breakers", action="store_true", help="Close all circuit breakers")

    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    config_path = args.config
    if config_path is None:
        default = args.project / CONFIG_FILE
        config_path = default if default.exists() else None
    if config_path is not None:
        return load_settings_from_yaml(config_path)
    return get_settings()


async def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run (or resume) the pipeline for one idea."""
    project_path = args.project.resolve()
    idea = load_idea(project_path / settings.ideas_dir, args.idea)

    if args.no_tickets:
        settings.session.create_tickets = False
    tickets: TicketTracker = (
        GitHubIssueTracker(project_path) if settings.session.create_tickets else NullIssueTracker()
    )

    machine = ExecutionStateMachine.from_settings(
        settings,
        project_path,
        get_invoker(settings.invoker, working_dir=project_path),
        GitSourceControl(project_path, keep_untracked=[settings.state_dir, settings.ideas_dir, CONFIG_FILE]),
        tickets,
    )

    console.print(f"[bold]autodev[/bold] - idea {idea.idea_id}: {idea.title}")
    session = await machine.execute(
        idea.idea_id,
        idea.content,
        resume=args.resume,
        answer=args.answer,
        replan=args.replan,
    )

    console.print(f"\nSession {session.session_id}: [bold]{session.phase.value}[/bold] ({session.progress}%)")
    console.print(f"Milestones: {len(session.milestones)}/{session.total_milestones}")
    if session.degraded_mode:
        console.print("[yellow]Degraded outputs were used; manual review recommended.[/yellow]")
    if session.user_question:
        console.print(f"\n[bold]Question:[/bold] {session.user_question}")
    if session.blocking_issue:
        console.print(f"Issue: {session.blocking_issue}")
    if session.errors:
        console.print(f"\nErrors ({len(session.errors)}):")
        for error in session.errors[-5:]:
            console.print(f"  - [{error.phase.value}] {error.message}")

    if machine.metrics is not None:
        console.print(machine.metrics.metrics.to_summary())

    return 0 if session.phase is SessionPhase.COMPLETED else 1


def _breaker_registry(settings: Settings, state_dir: Path) -> CircuitBreakerRegistry:
    fo = settings.failover
    return CircuitBreakerRegistry(
        failure_threshold=fo.failure_threshold,
        reset_timeout=fo.reset_timeout,
        monitoring_period=fo.monitoring_period,
        state_file=state_dir / "circuit_state.json",
    )


async def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Render circuit breaker state and recent sessions."""
    state_dir = args.project.resolve() / settings.state_dir
    controller = FailoverController.from_settings(
        settings.failover,
        get_invoker(settings.invoker),
        _breaker_registry(settings, state_dir),
    )

    table = Table(title="Model hierarchy", box=box.ROUNDED)
    table.add_column("Role", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Model")
    table.add_column("Circuit")
    for role, entries in controller.get_status().items():
        for entry in entries:
            colour = "green" if entry["state"] == "closed" else "red"
            table.add_row(role, str(entry["priority"]), entry["model"], f"[{colour}]{entry['status']}[/{colour}]")
    console.print(table)

    await _print_checkpoints(state_dir, limit=10)
    return 0


async def _print_checkpoints(state_dir: Path, limit: int | None = None) -> None:
    store = CheckpointStore(state_dir)
    checkpoints = await store.list_checkpoints()
    table = Table(title="Sessions", box=box.ROUNDED)
    table.add_column("Session")
    table.add_column("Idea", style="cyan")
    table.add_column("Phase")
    table.add_column("Progress", justify="right")
    table.add_column("Updated")
    for entry in checkpoints[:limit]:
        table.add_row(
            entry["session_id"],
            str(entry["idea_id"]),
            str(entry["phase"]),
            f"{entry['progress']}%",
            str(entry["updated_at"])[:19],
        )
    console.print(table)


async def cmd_checkpoints(args: argparse.Namespace, settings: Settings) -> int:
    """List checkpoints; optionally delete one, prune backups or reset breakers."""
    state_dir = args.project.resolve() / settings.state_dir

    if args.delete:
        store = CheckpointStore(state_dir)
        if await store.load(args.delete) is None:
            console.print(f"[red]No checkpoint for session {args.delete}[/red]")
            return 1
        await store.delete(args.delete)
        console.print(f"Deleted checkpoint {args.delete}")

    if args.prune is not None:
        removed = CheckpointStore(state_dir).prune_backups(args.prune)
        console.print(f"Pruned {removed} backup file(s)")

    if args.reset_breakers:
        _breaker_registry(settings, state_dir).reset_all()
        console.print("All circuit breakers reset")

    await _print_checkpoints(state_dir)
    return 0


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    if args.command is None:
        print("Usage: python -m autodev run --idea ID [--resume]")
        print("       python -m autodev status")
        print("       python -m autodev checkpoints [--delete SESSION_ID] [--prune KEEP] [--reset-breakers]")
        return 0

    settings = load_settings(args)
    setup_logging(verbose=args.verbose or settings.verbose, debug=args.debug or settings.debug, level=settings.log_level)

    try:
        if args.command == "run":
            return await cmd_run(args, settings)
        elif args.command == "status":
            return await cmd_status(args, settings)
        elif args.command == "checkpoints":
            return await cmd_checkpoints(args, settings)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        if args.debug:
            console.print_exception()
        return 1

    print(f"Unknown command: {args.command}")
    return 1


def cli_main() -> None:
    """CLI entry point (synchronous wrapper)."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()

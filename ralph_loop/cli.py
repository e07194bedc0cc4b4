"""CLI for the Ralph loop.

``ralph-loop`` with no subcommand runs the loop. Behaviour is fully
determined by the config file and the current ledger, so an interrupted run
is resumed by starting the command again.
"""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ralph_loop.config import RalphConfig, RuntimeSettings, load_config
from ralph_loop.engine import IterationEngine
from ralph_loop.errors import ConfigMissingError, ConfigurationError, LockHeldError
from ralph_loop.hooks import HOOK_NAMES
from ralph_loop.ledger import ProgressLedger
from ralph_loop.lock import LoopLock
from ralph_loop.log import configure_logging
from ralph_loop.models import LoopResult
from ralph_loop.sync import RepoSyncManager
from ralph_loop.telemetry import create_metrics, setup_telemetry

console = Console()

EXIT_CODES = {
    "completed": 0,
    "failed": 1,
    "max_iterations": 3,
}
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


@click.group(invoke_without_command=True)
@click.version_option(package_name="ralph-loop")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.yaml (default: $RALPH_CONFIG or ./config.yaml)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Ralph Loop - drive a coding agent through a task list, one task per iteration."""
    settings = RuntimeSettings.from_env()
    if config_path is not None:
        settings.config_path = config_path
    if verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings.log_level)

    ctx.obj = settings
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.pass_obj
def run(settings: RuntimeSettings) -> None:
    """Run the loop until completion, the iteration limit, or a failure."""
    config = _load(settings)
    _print_config_summary(config)

    tracer, meter = setup_telemetry(settings)
    create_metrics(meter)

    try:
        with LoopLock(config.root):
            if config.git.sync_with_main:
                console.print("[blue]=== Initial Repository Sync ===[/blue]")
                for sync_result in RepoSyncManager(config).sync_all():
                    if sync_result.status == "failed":
                        console.print(
                            f"[red]Sync failed for {escape(sync_result.repo)}: "
                            f"{escape(sync_result.message)}[/red]"
                        )
                console.print()

            config.log_dir.mkdir(parents=True, exist_ok=True)
            console.print("[blue]=== Ralph Loop Started ===[/blue]")
            console.print(f"Ralph file: {escape(str(config.ralph_file))}")
            console.print(f"Progress file: {escape(str(config.progress_file))}")
            console.print()

            result = IterationEngine(config, tracer=tracer, console=console).run()
    except LockHeldError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        sys.exit(EXIT_CONFIG_ERROR)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Restart to resume from the ledger.[/yellow]")
        sys.exit(EXIT_INTERRUPTED)

    _print_loop_summary(result, config)
    sys.exit(EXIT_CODES[result.status])


@cli.command()
@click.pass_obj
def status(settings: RuntimeSettings) -> None:
    """Show ledger state and where the next task would run."""
    config = _load(settings)
    snapshot = ProgressLedger(config.progress_file).snapshot()
    repo = config.route(snapshot.next_task)

    table = Table(title="Ralph Loop Status")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Last completed", escape(snapshot.last_completed or "-"))
    table.add_row("Next task", escape(snapshot.next_task or "-"))
    table.add_row("Routed repo", escape(f"{repo.name} ({repo.path})"))
    table.add_row("Completed tasks", str(len(snapshot.done)))
    table.add_row("Complete", "yes" if snapshot.complete else "no")
    table.add_row(
        "Errors",
        escape("\n".join(snapshot.errors)) if snapshot.errors else "-",
    )
    console.print(table)


def _load(settings: RuntimeSettings) -> RalphConfig:
    console.print("[blue]=== Loading Configuration ===[/blue]")
    try:
        return load_config(settings.config_path)
    except ConfigurationError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        if isinstance(e, ConfigMissingError):
            console.print("Copy config.yaml.template to config.yaml and customize it.")
        sys.exit(EXIT_CONFIG_ERROR)


def _print_config_summary(config: RalphConfig) -> None:
    for repo in config.repos.values():
        prefixes = ", ".join(repo.task_prefixes) or "-"
        console.print(escape(f"Repo {repo.name}: {repo.path} (prefix: {prefixes})"))
        if repo.verify_command:
            console.print(f"  Verify: {escape(repo.verify_command)}")
    console.print(f"Default repo: {escape(config.default_repo)}")
    console.print(f"Feature Branch: {escape(config.git.feature_branch or '-')}")
    console.print(f"Auto Commit: {str(config.git.auto_commit).lower()}")
    console.print(f"Max Iterations: {config.loop.max_iterations}")
    console.print(f"Retry on Error: {config.loop.retry_on_error}")

    permissions = config.permissions
    if permissions.dangerous_skip_all:
        console.print("Permission Mode: dangerously-skip-permissions")
    else:
        console.print(f"Permission Mode: {escape(permissions.mode)}")
        if permissions.allowed_tools:
            console.print(f"Allowed Tools: {escape(' '.join(permissions.allowed_tools))}")

    if config.context_files:
        console.print(f"Context Files: {escape(' '.join(str(p) for p in config.context_files))}")
    for name in HOOK_NAMES:
        script = getattr(config.hooks, name)
        if script:
            console.print(f"Hook {name}: {escape(script)}")
    console.print()


def _print_loop_summary(result: LoopResult, config: RalphConfig) -> None:
    status_color = {
        "completed": "green",
        "max_iterations": "yellow",
        "failed": "red",
    }
    color = status_color[result.status]

    console.print()
    console.print("[blue]=== Ralph Loop Summary ===[/blue]")
    console.print(f"Status: [bold {color}]{result.status.upper()}[/bold {color}]")
    if result.failure is not None:
        console.print(f"  Failure: {result.failure.value} (task {escape(result.last_task or '-')})")
    console.print(f"Total iterations: [green]{result.iterations}[/green]")
    console.print(f"Retries: {result.retries}")
    console.print(f"Commits: {result.commits}")
    console.print(f"Total time: [green]{_format_duration(result.duration_seconds)}[/green]")
    console.print(f"Logs directory: {escape(str(config.log_dir))}")


def _format_duration(seconds: float) -> str:
    """Format duration in human-readable form."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}m {secs}s"


def main() -> None:
    """Main entry point for the ralph-loop CLI."""
    cli()


if __name__ == "__main__":
    main()

"""CLI interface for the Autonomous Harness."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .errors import FeatureListMissingError, HarnessError, HarnessFault, SpecError
from .generation import SpecParser
from .git_manager import GitManager
from .harness import AutonomousHarness
from .models import FeatureList, HarnessConfig, SessionProgress
from .orchestration.recovery import StopController
from .token_tracker import format_tokens

console = Console()

# Windows-compatible symbols (cp1252 doesn't support Unicode checkmarks)
if sys.platform == "win32":
    SYM_OK = "[OK]"
    SYM_FAIL = "[X]"
else:
    SYM_OK = "✓"
    SYM_FAIL = "✗"


def _build_harness(project_path: str, **overrides) -> AutonomousHarness:
    """Create a harness wired to git for the project."""
    path = Path(project_path).resolve()
    config = HarnessConfig.load(path, **overrides)
    git = GitManager(path)
    return AutonomousHarness(
        path,
        config,
        vcs=git if config.auto_commit else None,
        environment_source=git.environment,
    )


def _feature_table(feature_list: FeatureList, max_retries: int) -> Table:
    table = Table(title=f"Features: {feature_list.app_spec.name}")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Category")
    table.add_column("Attempts", justify="right")
    table.add_column("Depends On")

    for f in feature_list.features:
        if f.passes:
            state = f"[green]{SYM_OK} passing[/green]"
        elif f.attempts >= max_retries:
            state = f"[red]{SYM_FAIL} exhausted[/red]"
        elif f.attempts:
            state = "[yellow]retrying[/yellow]"
        else:
            state = "pending"
        table.add_row(
            str(f.id),
            f.name,
            state,
            f.priority.value,
            f.category.value,
            str(f.attempts),
            ", ".join(str(d) for d in f.dependencies) or "-",
        )
    return table


def _print_progress(progress: SessionProgress) -> None:
    console.print(
        f"[bold]Session {progress.session_number}[/bold]: {progress.summary} "
        f"[dim]| next: {progress.next_suggested_task}[/dim]"
    )


@click.group()
@click.version_option(package_name="autonomous-harness")
def main():
    """Autonomous Harness - budget-bounded coding agent orchestrator."""
    pass


@main.command()
@click.argument('project_path', type=click.Path())
@click.option('--spec', 'spec_file', required=True, type=click.Path(exists=True),
              help='App spec file (.json or .md)')
@click.option('--force', is_flag=True, help='Replace an existing feature list')
def init(project_path: str, spec_file: str, force: bool):
    """Generate the feature list for a project from an app spec."""
    path = Path(project_path)
    path.mkdir(parents=True, exist_ok=True)

    try:
        spec = SpecParser(spec_file).parse()
    except (SpecError, ValueError) as e:
        console.print(f"[red]Invalid spec:[/red] {e}")
        sys.exit(1)

    harness = _build_harness(project_path)
    if harness.store.feature_list_path.exists() and not force:
        console.print(
            f"[yellow]Feature list already exists at {harness.store.feature_list_path}. "
            f"Use --force to replace it.[/yellow]"
        )
        sys.exit(1)

    feature_list = harness.initialize(spec)
    console.print(_feature_table(feature_list, harness.config.max_retries))


@main.command()
@click.argument('project_path', type=click.Path(exists=True))
@click.option('--max-retries', type=int, help='Attempts per feature before it is skipped')
@click.option('--max-tokens', type=int, help='Token budget per session')
@click.option('--pause', type=float, help='Seconds to pause between sessions')
@click.option('--no-commit', is_flag=True, help='Do not commit passing features')
@click.option('--fallback-check', help='Command run with the step text for descriptive validation steps')
@click.option('--run-init-script', is_flag=True, help='Run the init script at the start of each session')
def run(
    project_path: str,
    max_retries: Optional[int],
    max_tokens: Optional[int],
    pause: Optional[float],
    no_commit: bool,
    fallback_check: Optional[str],
    run_init_script: bool,
):
    """Run sessions until every feature passes or is exhausted.

    Stop it with Ctrl+C or `autonomous-harness stop PROJECT_PATH`; the
    current session always finishes first.
    """
    harness = _build_harness(
        project_path,
        max_retries=max_retries,
        max_session_tokens=max_tokens,
        pause_between_sessions_seconds=pause,
        auto_commit=False if no_commit else None,
        fallback_check_command=fallback_check,
        run_init_script=True if run_init_script else None,
    )

    harness.stop_controller.setup_signal_handlers()
    try:
        summary = asyncio.run(harness.run_continuous(on_progress=_print_progress))
    except FeatureListMissingError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except HarnessFault as e:
        console.print(f"[red]{e}[/red]")
        console.print("[dim]Progress was saved; fix the issue and run again.[/dim]")
        sys.exit(1)
    finally:
        harness.stop_controller.restore_signal_handlers()

    if not summary.success:
        sys.exit(2)


@main.command()
@click.argument('project_path', type=click.Path(exists=True))
@click.option('--no-commit', is_flag=True, help='Do not commit a passing feature')
@click.option('--fallback-check', help='Command run with the step text for descriptive validation steps')
@click.option('--run-init-script', is_flag=True, help='Run the init script before picking a feature')
def session(project_path: str, no_commit: bool, fallback_check: Optional[str], run_init_script: bool):
    """Execute exactly one session."""
    harness = _build_harness(
        project_path,
        auto_commit=False if no_commit else None,
        fallback_check_command=fallback_check,
        run_init_script=True if run_init_script else None,
    )
    try:
        progress = asyncio.run(harness.execute_session())
    except HarnessError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    _print_progress(progress)


@main.command()
@click.argument('project_path', type=click.Path(exists=True))
def status(project_path: str):
    """Show feature status, counts and last session token usage."""
    harness = _build_harness(project_path)
    state = harness.get_status()
    if not state.initialized:
        console.print(
            f"[red]No feature list found at {harness.store.feature_list_path}[/red]\n"
            f"Run 'autonomous-harness init' first."
        )
        sys.exit(1)

    console.print(_feature_table(harness.feature_list or harness.store.require_feature_list(),
                                 harness.config.max_retries))

    pending = state.total_features - state.completed_features - state.exhausted_features
    console.print(f"\n[green]Completed:[/green] {state.completed_features}  "
                  f"[white]Pending:[/white] {pending}  "
                  f"[dim](blocked: {state.blocked_features})[/dim]  "
                  f"[red]Exhausted:[/red] {state.exhausted_features}")
    console.print(f"[bold]Next:[/bold] {state.next_task}")
    if state.stop_reason:
        console.print(f"[yellow]Stop requested:[/yellow] {state.stop_reason}")

    if state.last_session_tokens is not None:
        usage = state.last_session_tokens
        console.print(
            f"[bold]Last session (#{state.last_session_number}):[/bold] "
            f"{format_tokens(usage.used)}/{format_tokens(usage.max)} tokens ({usage.percentage}%)"
        )


@main.command()
@click.argument('project_path', type=click.Path(exists=True))
@click.option('--limit', default=10, help='Only show the last N sessions (0 = all)')
def history(project_path: str, limit: int):
    """Show what each recorded session did."""
    harness = _build_harness(project_path)
    records = harness.store.all_progress()
    if limit:
        records = records[-limit:]
    if not records:
        console.print("[yellow]No sessions recorded yet.[/yellow]")
        return

    table = Table(title="Session History")
    table.add_column("Session", style="cyan", justify="right")
    table.add_column("Started")
    table.add_column("Attempted")
    table.add_column("Completed")
    table.add_column("Regressions")
    table.add_column("Tokens", justify="right")
    table.add_column("Summary")

    for progress in records:
        context = harness.sessions.history.get(progress.session_number)
        table.add_row(
            str(progress.session_number),
            progress.started_at.strftime("%Y-%m-%d %H:%M"),
            ", ".join(str(i) for i in progress.attempted_features) or "-",
            ", ".join(str(i) for i in progress.completed_features) or "-",
            ", ".join(str(i) for i in progress.regressions_failed) or "-",
            format_tokens(context.tokens_used) if context else "-",
            progress.summary,
        )
    console.print(table)


@main.command()
@click.argument('project_path', type=click.Path(exists=True))
@click.option('--lines', default=0, help='Only show the last N lines (0 = all)')
def handoff(project_path: str, lines: int):
    """Show the handoff report (claude_progress.txt)."""
    harness = _build_harness(project_path)
    tracker = harness.store.progress_tracker
    content = tracker.read_recent(lines) if lines else tracker.read_progress()

    if not content:
        console.print("[yellow]No progress report yet. Run 'autonomous-harness init' first.[/yellow]")
        return
    console.print(content, markup=False, highlight=False)


@main.command()
@click.argument('project_path', type=click.Path(exists=True))
@click.option('--reason', default='User requested stop', help='Reason recorded in the stop file')
def stop(project_path: str, reason: str):
    """Ask a running loop to stop after its current session."""
    config = HarnessConfig.load(project_path)
    controller = StopController(Path(project_path) / config.harness_dir)
    stop_file = controller.request_stop(reason)
    console.print(f"[green]Stop requested[/green] [dim]({stop_file})[/dim]")


@main.command('add-regression')
@click.argument('project_path', type=click.Path(exists=True))
@click.option('--name', required=True, help='Name of the regression test')
@click.option('--step', 'steps', multiple=True, required=True,
              help='Validation step (can specify multiple)')
@click.option('--feature-id', type=int, help='Feature demoted if this test fails')
def add_regression(project_path: str, name: str, steps: tuple[str, ...], feature_id: Optional[int]):
    """Register a regression test replayed at the start of every session."""
    harness = _build_harness(project_path)
    test_id = harness.validation.add_regression_test(name, list(steps), feature_id=feature_id)
    console.print(f"[green]Added regression test[/green] {test_id}: {name}")


if __name__ == '__main__':
    main()

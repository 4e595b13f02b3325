"""Main harness orchestrator for autonomous development.

This is the core engine that:
1. Turns an app spec into a persisted feature list (initialize)
2. Picks up persisted state (resume)
3. Runs the session protocol once (execute_session) or until every
   feature passes or is exhausted (run_continuous)
4. Hands off between sessions through the persisted handoff and report
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel

from .errors import FeatureListMissingError
from .generation import FeatureListGenerator
from .handoff import HandoffGenerator
from .models import (
    AppSpec, FeatureList, HarnessConfig, RunSummary, SessionProgress, TokenUsage,
)
from .orchestration.recovery import StopController
from .orchestration.session_protocol import SessionProtocol
from .persistence import HarnessStore
from .planning import ExecutionPlanner
from .protocols import CheckExecutor, Implementer, ServiceStarter, VcsAdapter
from .scheduler import TaskScheduler
from .services import InitScriptStarter, NullImplementer
from .session import SessionManager
from .session_history import SessionHistory
from .token_tracker import TokenBudgetGovernor
from .verification import StepCheckExecutor, ValidationEngine


console = Console()

REGRESSION_REGISTRY_FILE = "regression_tests.json"


@dataclass
class HarnessStatus:
    """Snapshot of a project's progress."""
    initialized: bool
    app_name: Optional[str] = None
    total_features: int = 0
    completed_features: int = 0
    exhausted_features: int = 0
    blocked_features: int = 0
    next_task: Optional[str] = None
    sessions_recorded: int = 0
    last_session_number: Optional[int] = None
    last_session_tokens: Optional[TokenUsage] = None
    running: bool = False
    stop_reason: Optional[str] = None


class AutonomousHarness:
    """Orchestrator for long-running, budget-bounded autonomous development.

    Every component is built here from the config unless it's injected,
    so tests can swap any of them for a mock.
    """

    def __init__(
        self,
        project_path: str | Path,
        config: Optional[HarnessConfig] = None,
        *,
        implementer: Optional[Implementer] = None,
        vcs: Optional[VcsAdapter] = None,
        service_starter: Optional[ServiceStarter] = None,
        check_executor: Optional[CheckExecutor] = None,
        governor: Optional[TokenBudgetGovernor] = None,
        environment_source: Optional[Callable] = None,
    ):
        self.project_path = Path(project_path).resolve()
        self.config = config or HarnessConfig()

        # Core components
        self.store = HarnessStore(self.project_path, self.config)
        self.scheduler = TaskScheduler(self.config.max_retries)
        self.generator = FeatureListGenerator(init_script=self.config.init_script)
        self.governor = governor or TokenBudgetGovernor(
            max_tokens=self.config.max_session_tokens,
            warning_threshold=self.config.warning_threshold,
        )
        self.sessions = SessionManager(
            self.store,
            self.config,
            governor=self.governor,
            handoff_generator=HandoffGenerator(self.governor),
            history=SessionHistory(self.store.harness_dir, max_sessions=self.config.max_sessions),
        )
        self.check_executor = check_executor or StepCheckExecutor.from_config(
            self.project_path, self.config
        )
        self.validation = ValidationEngine(
            self.check_executor,
            registry_path=self.store.harness_dir / REGRESSION_REGISTRY_FILE,
        )
        self.stop_controller = StopController(self.store.harness_dir)

        self.protocol = SessionProtocol(
            config=self.config,
            project_path=self.project_path,
            store=self.store,
            sessions=self.sessions,
            scheduler=self.scheduler,
            validation=self.validation,
            planner=ExecutionPlanner(),
            implementer=implementer or NullImplementer(),
            service_starter=service_starter or InitScriptStarter(
                self.config.init_script,
                run=self.config.run_init_script,
                timeout_seconds=self.config.start_app_timeout_seconds,
            ),
            vcs=vcs,
            environment_source=environment_source,
        )

        # State
        self.feature_list: Optional[FeatureList] = None
        self.session_count = 0
        self.running = False

    # =========================================================================
    # Setup
    # =========================================================================

    def initialize(self, spec: AppSpec) -> FeatureList:
        """Generate and persist the feature list for a spec.

        Replaces any existing feature list.
        """
        self.store.ensure_dirs()
        self.feature_list = self.generator.generate_list(spec)
        self.store.save_feature_list(self.feature_list)
        self.store.refresh_report()

        console.print(
            f"[green]Generated {self.feature_list.total_features} features "
            f"for {spec.name}[/green]"
        )
        return self.feature_list

    def resume(self) -> tuple[FeatureList, Optional[SessionProgress]]:
        """Load the persisted feature list and latest progress.

        Raises:
            FeatureListMissingError: If initialize() never ran for this project
        """
        self.feature_list = self.store.require_feature_list()
        return self.feature_list, self.store.latest_progress()

    def _require_feature_list(self) -> FeatureList:
        if self.feature_list is None:
            self.resume()
        if self.feature_list is None:
            raise FeatureListMissingError(str(self.store.feature_list_path))
        return self.feature_list

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_session(self) -> SessionProgress:
        """Run the session protocol once.

        Raises:
            FeatureListMissingError: If there is no feature list
            HarnessFault: If the session hit an unexpected error
        """
        feature_list = self._require_feature_list()
        progress = await self.protocol.execute(feature_list)
        self.session_count += 1
        return progress

    async def run_continuous(
        self,
        on_progress: Optional[Callable[[SessionProgress], None]] = None,
    ) -> RunSummary:
        """Run sessions until every feature passes or is exhausted, or a stop is requested.

        A stop only takes effect before the next session starts. A
        HarnessFault ends the loop and propagates.
        """
        feature_list = self._require_feature_list()
        start = time.perf_counter()
        sessions_run = 0

        # A stop requested before the loop started is stale
        self.stop_controller.reset()
        self.running = True

        console.print(Panel(
            f"[bold]Autonomous Harness[/bold]\n"
            f"Project: {feature_list.app_spec.name}\n"
            f"Features: {feature_list.completed_features}/{feature_list.total_features}",
            title="Run"
        ))

        try:
            while True:
                if self.stop_controller.is_stop_requested():
                    reason = self.stop_controller.read_stop_reason()
                    suffix = f" ({reason})" if reason else ""
                    console.print(f"[yellow]Stop requested{suffix} - exiting loop[/yellow]")
                    break
                if self.scheduler.all_settled(feature_list):
                    break

                progress = await self.execute_session()
                sessions_run += 1
                if on_progress:
                    on_progress(progress)

                if self.scheduler.all_settled(feature_list):
                    break

                # Context reset cool-down
                await asyncio.sleep(self.config.pause_between_sessions_seconds)
        finally:
            self.running = False
            self.stop_controller.reset()

        summary = RunSummary(
            success=feature_list.is_complete(),
            total_sessions=sessions_run,
            total_features=feature_list.total_features,
            completed_features=feature_list.completed_features,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

        style = "green" if summary.success else "yellow"
        console.print(Panel(
            f"[bold]Sessions run:[/bold] {summary.total_sessions}\n"
            f"[bold]Features completed:[/bold] "
            f"[{style}]{summary.completed_features}/{summary.total_features}[/{style}]\n"
            f"[bold]Duration:[/bold] {summary.duration_ms / 1000:.1f}s",
            title="Summary"
        ))
        return summary

    def stop(self) -> None:
        """Request the continuous loop to stop before its next session."""
        self.stop_controller.stop()

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> HarnessStatus:
        feature_list = self.feature_list or self.store.load_feature_list()
        if feature_list is None:
            return HarnessStatus(initialized=False)

        last = self.sessions.history.latest()
        return HarnessStatus(
            initialized=True,
            app_name=feature_list.app_spec.name,
            total_features=feature_list.total_features,
            completed_features=feature_list.completed_features,
            exhausted_features=sum(
                1 for f in feature_list.features if self.scheduler.is_exhausted(f)
            ),
            blocked_features=len(self.scheduler.blocked(feature_list)),
            next_task=self.scheduler.describe_next(feature_list),
            sessions_recorded=self.sessions.history.count(),
            last_session_number=last.number if last else None,
            last_session_tokens=self.governor.usage(last) if last else None,
            running=self.running,
            stop_reason=self.stop_controller.read_stop_reason(),
        )


async def run_harness(
    project_path: str,
    config: Optional[HarnessConfig] = None,
    **components,
) -> RunSummary:
    """Convenience function to run the harness."""
    harness = AutonomousHarness(project_path, config, **components)
    return await harness.run_continuous()

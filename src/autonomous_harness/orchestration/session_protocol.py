"""The fixed per-session protocol.

Every session runs the same sequence and always reaches Persist:

    GetBearings -> StartApp -> RegressionTest -> PickTask -> Implement
    -> Validate -> MarkOutcome -> Commit -> UpdateProgress -> Persist

When no feature is eligible the session skips straight from PickTask to
UpdateProgress. An unexpected exception anywhere is recorded as a known
issue, state is persisted as far as possible, and the exception is re-raised
as a HarnessFault.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel

from ..errors import HarnessFault
from ..models import (
    DecisionOutcome, EnvironmentState, Feature, FeatureList, HarnessConfig,
    Relevance, SessionErrorType, SessionProgress, ValidationResult,
)
from ..persistence import HarnessStore
from ..planning import ExecutionPlanner
from ..protocols import Implementer, ServiceStarter, VcsAdapter
from ..scheduler import TaskScheduler
from ..session import SessionManager
from ..token_tracker import BudgetStatus
from ..verification import ValidationEngine

console = Console()

ALL_COMPLETE_SUMMARY = "All features completed!"
NOTHING_ELIGIBLE_SUMMARY = "No eligible features: remaining features are blocked or exhausted"


def _completion_key(feature: Feature) -> tuple:
    return (feature.completed_at or datetime.min, feature.id)


class SessionProtocol:
    """Runs one session against a feature list.

    Dependencies are injected so every collaborator can be replaced with a
    mock in tests.
    """

    def __init__(
        self,
        config: HarnessConfig,
        project_path: Path,
        store: HarnessStore,
        sessions: SessionManager,
        scheduler: TaskScheduler,
        validation: ValidationEngine,
        planner: ExecutionPlanner,
        implementer: Implementer,
        service_starter: ServiceStarter,
        vcs: Optional[VcsAdapter] = None,
        environment_source: Optional[Callable[[], EnvironmentState]] = None,
    ):
        self.config = config
        self.project_path = Path(project_path)
        self.store = store
        self.sessions = sessions
        self.scheduler = scheduler
        self.validation = validation
        self.planner = planner
        self.implementer = implementer
        self.service_starter = service_starter
        self.vcs = vcs
        self.environment_source = environment_source

    async def execute(self, feature_list: FeatureList) -> SessionProgress:
        """Run the full protocol once.

        Args:
            feature_list: Mutated in place and persisted at the end

        Returns:
            The persisted SessionProgress

        Raises:
            HarnessFault: If anything unexpected failed (after persisting)
        """
        number = self.sessions.next_session_number()
        progress = SessionProgress(session_id=f"session_{number}", session_number=number)
        try:
            self._get_bearings(progress)
            self._start_app(progress)
            self._regression_test(feature_list, progress)
            self._compress_if_needed()

            feature = self._pick_task(feature_list, progress)
            if feature is not None:
                decision_id = self.sessions.track_decision(
                    f"Implement #{feature.id}: {feature.name}",
                    f"Next eligible feature ({feature.priority.value} priority, "
                    f"attempt {feature.attempts + 1}/{self.config.max_retries})",
                )
                await self._implement(feature)
                result = self._validate(feature)
                self._mark_outcome(feature_list, feature, result, decision_id, progress)
                if result.passed:
                    self._commit(feature, progress)

            self._update_progress(feature_list, progress, picked=feature)
            self._persist(feature_list, progress)
            return progress

        except Exception as exc:
            self._persist_after_fault(feature_list, progress, exc)
            raise HarnessFault(progress.session_number, exc) from exc
        finally:
            self.sessions.stop_auto_save()

    # =========================================================================
    # Steps
    # =========================================================================

    def _get_bearings(self, progress: SessionProgress) -> None:
        """Step 1: load the last handoff and progress, start a new session."""
        previous = self.store.latest_progress()
        handoff = self.store.load_handoff()
        context = self.sessions.start_session(handoff)

        progress.session_id = context.id
        if previous:
            progress.app_state = previous.app_state.model_copy()

        console.print(Panel(
            f"[bold]Session {context.number}[/bold]\n"
            f"Resuming from: {'handoff' if handoff else 'fresh start'}",
            title="Get Bearings"
        ))

        report = self.store.read_report()
        if report:
            self.sessions.track_file_read(
                self.config.progress_file, report, Relevance.CRITICAL,
                summary="Progress report from previous session",
            )
        if self.store.feature_list_path.exists():
            self.sessions.track_file_read(
                str(self.store.feature_list_path.relative_to(self.project_path)),
                self.store.feature_list_path.read_text(encoding="utf-8"),
                Relevance.HIGH,
                summary="Feature list",
            )

        if self.environment_source is not None:
            self.sessions.set_environment(self.environment_source())

    def _start_app(self, progress: SessionProgress) -> None:
        """Step 2: best-effort service start; never fails the session."""
        try:
            progress.app_state = self.service_starter.start(self.project_path)
        except Exception as e:
            message = f"StartApp failed: {e}"
            console.print(f"[yellow]{message}[/yellow]")
            progress.known_issues.append(message)

        app_state = progress.app_state
        services = [
            name for name, running in (
                ("backend", app_state.backend_running),
                ("frontend", app_state.frontend_running),
            ) if running
        ]
        self.sessions.set_app_state(app_state.model_dump(mode="json", by_alias=True))
        environment = self.sessions.current.environment
        environment.services_running = services
        if app_state.database_initialized:
            environment.database_state = "initialized"

    def _regression_test(self, feature_list: FeatureList, progress: SessionProgress) -> None:
        """Step 3: re-validate recently completed features and registered tests."""
        count = self.config.regression_test_count
        passed = sorted(feature_list.passed_features(), key=_completion_key)
        to_test = passed[-count:] if count > 0 else []

        for feature in to_test:
            result = self.validation.validate_feature(feature)
            if result.passed:
                progress.regressions_passed.append(feature.id)
            else:
                failure = result.first_failure
                self._demote(feature_list, feature, failure.error if failure else None, progress)

        report = self.validation.run_regression_tests()
        for outcome in report.results:
            feature = (
                feature_list.find_feature(outcome.feature_id)
                if outcome.feature_id is not None else None
            )
            if outcome.passed:
                if feature and feature.id not in progress.regressions_passed:
                    progress.regressions_passed.append(feature.id)
                continue

            if feature and feature.passes:
                self._demote(feature_list, feature, outcome.error, progress)
            else:
                message = f"Regression test failed: {outcome.name}"
                console.print(f"[red]{message}[/red]")
                self.sessions.track_error(SessionErrorType.TEST, message)
                progress.known_issues.append(
                    f"{message}: {outcome.error}" if outcome.error else message
                )

    def _demote(
        self,
        feature_list: FeatureList,
        feature: Feature,
        error: Optional[str],
        progress: SessionProgress,
    ) -> None:
        console.print(f"[red]Regression: #{feature.id} {feature.name} no longer passes[/red]")
        feature_list.demote(feature.id, f"Regression: {error}" if error else "Regression")
        if feature.id in progress.regressions_passed:
            progress.regressions_passed.remove(feature.id)
        if feature.id not in progress.regressions_failed:
            progress.regressions_failed.append(feature.id)
        self.sessions.track_error(SessionErrorType.TEST, self._regression_message(feature))

    def _compress_if_needed(self) -> None:
        if self.sessions.governor.check(self.sessions.current) != BudgetStatus.OK:
            freed = self.sessions.compress_context()
            if freed:
                console.print(f"[dim]Compressed context, freed {freed} tokens[/dim]")

    def _pick_task(self, feature_list: FeatureList, progress: SessionProgress) -> Optional[Feature]:
        """Step 4: choose the next feature, if any."""
        feature = self.scheduler.pick_next(feature_list)
        feature_list.current_feature_id = feature.id if feature else None
        if feature is None:
            console.print("[green]No eligible features left[/green]")
            return None

        progress.attempted_features.append(feature.id)
        console.print(
            f"Working on [bold]#{feature.id}: {feature.name}[/bold] "
            f"[dim]({feature.priority.value}, attempt {feature.attempts + 1})[/dim]"
        )
        return feature

    async def _implement(self, feature: Feature) -> None:
        """Step 5: hand the plan to the implementer and record its artifacts."""
        plan = self.planner.build(feature)
        artifact_set = await self.implementer.run(plan)
        for artifact in artifact_set.artifacts:
            self.sessions.add_artifact(artifact)

    def _validate(self, feature: Feature) -> ValidationResult:
        """Step 6: run the feature's validation steps."""
        result = self.validation.validate_feature(feature)
        for step in result.steps:
            mark = "[green]✓[/green]" if step.passed else "[red]✗[/red]"
            console.print(f"  {mark} {step.description} [dim]({step.duration_ms:.0f}ms)[/dim]")
        return result

    def _mark_outcome(
        self,
        feature_list: FeatureList,
        feature: Feature,
        result: ValidationResult,
        decision_id: str,
        progress: SessionProgress,
    ) -> None:
        """Step 7: record pass or fail on the feature list."""
        description = f"Implement #{feature.id}: {feature.name}"
        if result.passed:
            feature_list.mark_passed(feature.id)
            progress.completed_features.append(feature.id)
            self._settle_decision(decision_id, description, DecisionOutcome.SUCCESS)
            self._resolve_feature_errors(feature)
            console.print(f"[green]Feature #{feature.id} passes[/green]")
            return

        failure = result.first_failure
        error = failure.error if failure else "Validation failed"
        feature_list.mark_failed(feature.id, error)
        self._settle_decision(decision_id, description, DecisionOutcome.FAILURE)
        self.sessions.track_error(
            SessionErrorType.VALIDATION,
            f"Feature #{feature.id} validation failed: {error}",
        )
        progress.known_issues.append(f"Feature {feature.id}: {error}")
        console.print(
            f"[yellow]Feature #{feature.id} failed validation "
            f"(attempt {feature.attempts}/{self.config.max_retries})[/yellow]"
        )

    def _commit(self, feature: Feature, progress: SessionProgress) -> None:
        """Step 8: save point for a passing feature."""
        if not self.config.auto_commit or self.vcs is None:
            return
        record = self.vcs.commit(feature)
        if record is None:
            return
        feature.git_commit = record.sha
        progress.commits.append(record)
        self.sessions.current.environment.last_commit = record.sha
        console.print(f"[green]Committed:[/green] {record.sha[:8]}")

    def _update_progress(
        self,
        feature_list: FeatureList,
        progress: SessionProgress,
        picked: Optional[Feature],
    ) -> None:
        """Step 9: summary, current state and next-task preview."""
        progress.ended_at = datetime.now()
        if picked is None:
            progress.summary = (
                ALL_COMPLETE_SUMMARY if feature_list.is_complete() else NOTHING_ELIGIBLE_SUMMARY
            )
        else:
            progress.summary = (
                f"Session {progress.session_number}: "
                f"{len(progress.completed_features)}/{len(progress.attempted_features)} "
                f"features completed, {len(progress.regressions_failed)} regressions"
            )
        progress.current_state = self.describe_state(feature_list)
        progress.next_suggested_task = self.scheduler.describe_next(feature_list)

    def _persist(self, feature_list: FeatureList, progress: SessionProgress) -> None:
        """Step 10: write the feature list, progress and handoff."""
        self.store.save_feature_list(feature_list)
        self.store.save_progress(progress)
        self.sessions.end_session(extra_warnings=self._regression_warnings(feature_list, progress))

    def _persist_after_fault(
        self,
        feature_list: FeatureList,
        progress: SessionProgress,
        exc: Exception,
    ) -> None:
        console.print(f"[red]Session fault: {exc}[/red]")
        progress.ended_at = datetime.now()
        progress.known_issues.append(f"Fault: {exc}" if str(exc) else f"Fault: {type(exc).__name__}")
        if not progress.summary:
            progress.summary = f"Session {progress.session_number} aborted by fault"

        # Each write is attempted on its own so one failure doesn't block the rest.
        # The session is ended before progress is saved so a context started
        # here still gets this session's number.
        for action in (
            lambda: self.store.save_feature_list(feature_list),
            lambda: self._end_session_after_fault(feature_list, progress, exc),
            lambda: self.store.save_progress(progress),
        ):
            try:
                action()
            except Exception as persist_error:
                console.print(f"[red]Could not persist after fault: {persist_error}[/red]")

    def _end_session_after_fault(
        self,
        feature_list: FeatureList,
        progress: SessionProgress,
        exc: Exception,
    ) -> None:
        """End the session in flight, or record an empty one if none started.

        The empty session still writes a handoff, which replaces an
        unreadable latest_handoff.json.
        """
        if self.sessions.current is None:
            progress.session_id = self.sessions.start_session().id
        warnings = self._regression_warnings(feature_list, progress)
        warnings.append(f"Session fault: {exc}")
        self.sessions.end_session(extra_warnings=warnings)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _regression_message(feature: Feature) -> str:
        return f"Regression: #{feature.id} {feature.name}"

    def _regression_warnings(self, feature_list: FeatureList, progress: SessionProgress) -> list[str]:
        warnings = []
        for fid in progress.regressions_failed:
            feature = feature_list.find_feature(fid)
            warnings.append(f"Regression: #{fid} {feature.name if feature else 'Unknown'}")
        return warnings

    def _settle_decision(self, decision_id: str, description: str, outcome: DecisionOutcome) -> None:
        """Set a decision's outcome, including copies reopened from a handoff.

        A forced reset or a faulted session reopens pending decisions in the
        next context under new ids; they share the description.
        """
        self.sessions.update_decision(decision_id, outcome)
        for decision in self.sessions.current.decisions:
            if decision.description == description and decision.outcome == DecisionOutcome.PENDING:
                decision.outcome = outcome

    def _resolve_feature_errors(self, feature: Feature) -> None:
        prefixes = (f"Feature #{feature.id} ", self._regression_message(feature))
        for error in list(self.sessions.current.unresolved_errors):
            if error.message.startswith(prefixes):
                self.sessions.resolve_error(error.message, f"Feature #{feature.id} passes")

    @staticmethod
    def describe_state(feature_list: FeatureList) -> str:
        completed = feature_list.passed_features()
        categories: list[str] = []
        for feature in completed:
            if feature.category.value not in categories:
                categories.append(feature.category.value)
        return (
            f"{len(completed)} features done across {len(categories)} categories"
            + (f": {', '.join(categories)}" if categories else "")
        )

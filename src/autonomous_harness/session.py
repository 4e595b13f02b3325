"""Session state management with budget-bounded context handoff.

Architecture:
- SessionManager owns the SessionContext of the session in flight
- every tracked file read and decision is costed by the TokenBudgetGovernor
- running out of budget ends the session and starts a fresh one seeded
  from the handoff the old one produced
- a background asyncio task auto-saves the context while a loop is running
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from rich.console import Console

from .errors import NoActiveSessionError
from .handoff import HandoffGenerator
from .models import (
    Artifact, ArtifactType, ContextFile, Decision, DecisionOutcome,
    EnvironmentState, HarnessConfig, Relevance, SessionContext, SessionError,
    SessionErrorType, SessionHandoff, TokenUsage,
)
from .persistence import HarnessStore
from .session_history import SessionHistory
from .token_tracker import BudgetStatus, TokenBudgetGovernor

console = Console()

COMPRESSED_REASONING = "Compressed"

# Lowest tier first; compress_context() drops files at LOWEST_RELEVANCE
LOWEST_RELEVANCE = Relevance.LOW


@dataclass
class SessionStatus:
    """Snapshot of the session manager for status displays."""
    has_active_session: bool
    session_number: int
    token_usage: TokenUsage
    files_tracked: int = 0
    decisions_tracked: int = 0
    errors_active: int = 0
    forced_resets: list[int] = field(default_factory=list)


class SessionManager:
    """Manages the session context lifecycle.

    Only one session is active at a time. All tracking methods raise
    NoActiveSessionError when called between sessions.
    """

    def __init__(
        self,
        store: HarnessStore,
        config: Optional[HarnessConfig] = None,
        governor: Optional[TokenBudgetGovernor] = None,
        handoff_generator: Optional[HandoffGenerator] = None,
        history: Optional[SessionHistory] = None,
    ):
        self.store = store
        self.config = config or store.config
        self.governor = governor or TokenBudgetGovernor(
            max_tokens=self.config.max_session_tokens,
            warning_threshold=self.config.warning_threshold,
        )
        self.handoff_generator = handoff_generator or HandoffGenerator(self.governor)
        self.history = history or SessionHistory(
            store.harness_dir, max_sessions=self.config.max_sessions
        )

        self.current: Optional[SessionContext] = None
        # Numbers of sessions that ended because they ran out of budget
        self.forced_resets: list[int] = []
        self._auto_save_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def next_session_number(self) -> int:
        """Number the next started session will get."""
        progress_numbers = self.store.progress_numbers()
        from_progress = progress_numbers[-1] + 1 if progress_numbers else 1
        return max(self.history.next_session_number(), from_progress)

    def start_session(self, previous_handoff: Optional[SessionHandoff] = None) -> SessionContext:
        """Start a new session, optionally seeded from a previous handoff.

        Seeding costs tokens but never triggers a budget check, so a large
        handoff can't reset a session before it has done anything.
        """
        if self.current is not None:
            self.end_session()

        number = self.next_session_number()
        self.current = SessionContext(
            id=f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{number}",
            number=number,
            max_tokens=self.config.max_session_tokens,
            warning_threshold=self.config.warning_threshold,
        )

        if previous_handoff is not None:
            self.handoff_generator.apply(previous_handoff, self.current)

        self.start_auto_save()
        return self.current

    def end_session(self, extra_warnings: Iterable[str] = ()) -> SessionHandoff:
        """End the current session and persist its handoff.

        The auto-save task is cancelled before anything is finalized so it
        can never write the context while it's being archived.
        """
        context = self._require("end_session")
        self.stop_auto_save()

        context.ended_at = datetime.now()
        handoff = self.handoff_generator.generate(context, extra_warnings)
        context.handoff = handoff

        self.history.add(context)
        self.store.save_handoff(handoff)
        self.store.clear_current_session(context.number)

        self.current = None
        return handoff

    def force_reset(self, reason: str) -> SessionHandoff:
        """End the current session and start a new one from its handoff."""
        context = self._require("force_reset")
        console.print(
            f"[yellow]Session {context.number} reset: {reason} "
            f"({context.tokens_used}/{context.max_tokens} tokens)[/yellow]"
        )
        self.forced_resets.append(context.number)
        handoff = self.end_session(extra_warnings=[f"Forced reset: {reason}"])
        self.start_session(handoff)
        return handoff

    def _require(self, operation: str) -> SessionContext:
        if self.current is None:
            raise NoActiveSessionError(operation)
        return self.current

    # =========================================================================
    # Context tracking
    # =========================================================================

    def track_file_read(
        self,
        path: str,
        content: str,
        relevance: Relevance = Relevance.MEDIUM,
        summary: Optional[str] = None,
    ) -> int:
        """Record a file read and charge its estimated cost.

        Re-reading a tracked file refreshes its entry; the cost is charged
        again either way.

        Returns:
            Estimated tokens charged
        """
        context = self._require("track_file_read")
        tokens = self.governor.estimate_file(path, content)

        existing = next((f for f in context.files if f.path == path), None)
        if existing:
            existing.last_read = datetime.now()
            existing.relevance = relevance
            existing.tokens = tokens
            if summary:
                existing.summary = summary
        else:
            context.files.append(ContextFile(
                path=path,
                relevance=relevance,
                tokens=tokens,
                summary=summary,
            ))

        context.tokens_used += tokens
        self._check_budget()
        return tokens

    def track_decision(self, description: str, reasoning: str = "", reversible: bool = True) -> str:
        """Record a pending decision.

        Returns:
            The decision id
        """
        context = self._require("track_decision")
        decision = Decision(description=description, reasoning=reasoning, reversible=reversible)
        context.decisions.append(decision)
        context.tokens_used += self.governor.estimate_text(description, reasoning)
        self._check_budget()
        return decision.id

    def update_decision(self, decision_id: str, outcome: DecisionOutcome) -> bool:
        """Set a decision's outcome.

        Returns:
            False if the decision isn't in the current session (for example
            because a forced reset carried it over as a new decision)
        """
        context = self._require("update_decision")
        for decision in context.decisions:
            if decision.id == decision_id:
                decision.outcome = outcome
                return True
        return False

    def track_artifact(
        self,
        artifact_type: ArtifactType,
        path: str,
        description: str = "",
    ) -> Artifact:
        context = self._require("track_artifact")
        artifact = Artifact(
            type=artifact_type,
            path=path,
            description=description,
            tokens=self.governor.estimate_text(description),
        )
        context.artifacts.append(artifact)
        return artifact

    def add_artifact(self, artifact: Artifact) -> None:
        """Record an artifact reported by the implementer as-is."""
        self._require("add_artifact").artifacts.append(artifact)

    def track_error(
        self,
        error_type: SessionErrorType,
        message: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
    ) -> SessionError:
        context = self._require("track_error")
        error = SessionError(type=error_type, message=message, file=file, line=line)
        context.errors.append(error)
        return error

    def resolve_error(self, message: str, resolution: str) -> bool:
        """Resolve the first unresolved error with this message.

        Returns:
            True if an error was resolved
        """
        context = self._require("resolve_error")
        for error in context.errors:
            if error.message == message and not error.resolved:
                error.resolved = True
                error.resolution = resolution
                return True
        return False

    def set_app_state(self, app_state: dict) -> None:
        self._require("set_app_state").app_state = dict(app_state)

    def set_environment(self, environment: EnvironmentState) -> None:
        self._require("set_environment").environment = environment

    # =========================================================================
    # Budget
    # =========================================================================

    def _check_budget(self) -> None:
        if self.governor.check(self.current) == BudgetStatus.EXHAUSTED:
            self.force_reset("Token limit exceeded")

    def get_token_usage(self) -> TokenUsage:
        if self.current is None:
            return TokenUsage(used=0, max=self.config.max_session_tokens, percentage=0)
        return self.governor.usage(self.current)

    def compress_context(self, now: Optional[datetime] = None) -> int:
        """Free tokens by dropping low-relevance files and old reasoning.

        Files at the lowest relevance tier are removed outright. Decisions
        older than decision_compression_age_minutes keep their record but
        their reasoning is replaced with a placeholder.

        Returns:
            Tokens freed (tokens_used dropped by exactly this much)
        """
        context = self._require("compress_context")
        now = now or datetime.now()
        freed = 0

        dropped = [f for f in context.files if f.relevance == LOWEST_RELEVANCE]
        freed += sum(f.tokens for f in dropped)
        context.files = [f for f in context.files if f.relevance != LOWEST_RELEVANCE]

        cutoff = now - timedelta(minutes=self.config.decision_compression_age_minutes)
        for decision in context.decisions:
            if decision.timestamp >= cutoff or decision.reasoning == COMPRESSED_REASONING:
                continue
            before = self.governor.estimate_text(decision.description, decision.reasoning)
            after = self.governor.estimate_text(decision.description, COMPRESSED_REASONING)
            decision.reasoning = COMPRESSED_REASONING
            freed += max(before - after, 0)

        freed = min(freed, context.tokens_used)
        context.tokens_used -= freed
        return freed

    # =========================================================================
    # Auto-save
    # =========================================================================

    def start_auto_save(self) -> None:
        """Start periodic auto-save if an event loop is running."""
        self.stop_auto_save()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._auto_save_task = loop.create_task(self._auto_save_loop())
        self._auto_save_task.add_done_callback(self._on_auto_save_done)

    def stop_auto_save(self) -> None:
        if self._auto_save_task is not None:
            self._auto_save_task.cancel()
            self._auto_save_task = None

    @staticmethod
    def _on_auto_save_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            console.print(f"[red]Auto-save stopped: {error}[/red]")

    async def _auto_save_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.auto_save_interval_seconds)
            self.save_current()

    def save_current(self) -> None:
        """Write the session in flight to session_<N>_current.json."""
        if self.current is not None:
            self.store.save_current_session(self.current)

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> SessionStatus:
        context = self.current
        return SessionStatus(
            has_active_session=context is not None,
            session_number=context.number if context else 0,
            token_usage=self.get_token_usage(),
            files_tracked=len(context.files) if context else 0,
            decisions_tracked=len(context.decisions) if context else 0,
            errors_active=len(context.unresolved_errors) if context else 0,
            forced_resets=list(self.forced_resets),
        )

"""Compaction of a finished session into a handoff document.

The handoff is the only thing a fresh session gets to see of the previous
one besides the feature list, so it must be small: task lists, the files
that mattered, open errors, and a few derived hints.
"""

from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from .models import (
    ContextFile, CriticalFile, Decision, DecisionOutcome, Relevance,
    SessionContext, SessionHandoff,
)
from .token_tracker import TokenBudgetGovernor

MAX_CRITICAL_FILES = 10
CONTINUED_REASONING = "Continued from previous session"

# Recommendation thresholds
ERROR_RATE_THRESHOLD = 0.3
FILE_COUNT_THRESHOLD = 20
TOKEN_RATIO_THRESHOLD = 0.7
UNRESOLVED_THRESHOLD = 3


class HandoffGenerator:
    """Builds handoffs from session contexts and seeds new contexts from them."""

    def __init__(self, governor: Optional[TokenBudgetGovernor] = None):
        """Initialize the generator.

        Args:
            governor: Used to cost the decisions recreated by apply()
        """
        self.governor = governor or TokenBudgetGovernor()

    def generate(
        self,
        context: SessionContext,
        extra_warnings: Iterable[str] = (),
    ) -> SessionHandoff:
        """Compact a session context into a handoff.

        Reads the context only, so calling it twice on the same context
        yields equal handoffs.

        Args:
            context: The finished session
            extra_warnings: Warnings appended after the unresolved-error ones

        Returns:
            Frozen SessionHandoff
        """
        completed = self._descriptions(context.decisions, DecisionOutcome.SUCCESS)
        partial = self._descriptions(context.decisions, DecisionOutcome.PENDING)
        active_errors = [e.model_copy() for e in context.unresolved_errors]

        learned, avoid = self.extract_patterns(context)

        return SessionHandoff(
            completed_tasks=completed,
            partial_tasks=partial,
            app_state=dict(context.app_state),
            environment_state=context.environment.model_copy(),
            critical_files=self.critical_files(context.files),
            active_errors=active_errors,
            pending_decisions=list(partial),
            next_steps=self.suggest_next_steps(context),
            warnings=[f"Unresolved: {e.message}" for e in active_errors] + list(extra_warnings),
            recommendations=self.recommendations(context),
            learned_patterns=learned,
            avoid_patterns=avoid,
        )

    def apply(self, handoff: SessionHandoff, context: SessionContext) -> None:
        """Seed a fresh session context from a previous handoff.

        Critical files come back as high-relevance entries costing nothing,
        active errors are copied, and every partial task is reopened as a
        pending decision (which does cost tokens).
        """
        now = datetime.now()
        for critical in handoff.critical_files:
            context.files.append(ContextFile(
                path=critical.path,
                last_read=now,
                relevance=Relevance.HIGH,
                tokens=0,
                summary=critical.summary,
            ))

        for error in handoff.active_errors:
            context.errors.append(error.model_copy())

        for task in handoff.partial_tasks:
            context.decisions.append(Decision(
                description=task,
                reasoning=CONTINUED_REASONING,
                reversible=True,
            ))
            context.tokens_used += self.governor.estimate_text(task, CONTINUED_REASONING)

        if handoff.app_state:
            context.app_state = dict(handoff.app_state)
        context.environment = handoff.environment_state.model_copy()

    @staticmethod
    def _descriptions(decisions: list[Decision], outcome: DecisionOutcome) -> list[str]:
        return [d.description for d in decisions if d.outcome == outcome]

    @staticmethod
    def critical_files(files: list[ContextFile]) -> list[CriticalFile]:
        """Top files at critical/high relevance, most recently read first."""
        relevant = [f for f in files if f.relevance in (Relevance.CRITICAL, Relevance.HIGH)]
        relevant.sort(key=lambda f: f.last_read, reverse=True)
        return [
            CriticalFile(path=f.path, summary=f.summary or f"{f.tokens} tokens")
            for f in relevant[:MAX_CRITICAL_FILES]
        ]

    @staticmethod
    def suggest_next_steps(context: SessionContext) -> list[str]:
        steps = []

        unresolved = context.unresolved_errors
        if unresolved:
            steps.append(f"Fix {len(unresolved)} unresolved error(s)")

        pending = [d for d in context.decisions if d.outcome == DecisionOutcome.PENDING]
        if pending:
            steps.append(f"Complete: {pending[0].description}")

        if context.artifacts:
            steps.append("Validate recent changes")

        return steps

    @staticmethod
    def recommendations(context: SessionContext) -> list[str]:
        recs = []

        error_rate = len(context.errors) / max(len(context.decisions), 1)
        if error_rate > ERROR_RATE_THRESHOLD:
            recs.append("High error rate detected. Consider smaller, incremental changes.")

        if len(context.files) > FILE_COUNT_THRESHOLD:
            recs.append("Many files accessed. Focus on fewer files per session.")

        if context.usage_ratio > TOKEN_RATIO_THRESHOLD:
            recs.append("High token usage. Consider session reset soon.")

        unresolved = len(context.unresolved_errors)
        if unresolved > UNRESOLVED_THRESHOLD:
            recs.append(f"{unresolved} unresolved errors. Prioritize fixing these.")

        return recs

    @staticmethod
    def extract_patterns(context: SessionContext) -> tuple[list[str], list[str]]:
        """Split decisions into learned and avoid patterns.

        Error types seen at least twice in the session are added to the
        avoid list in first-seen order.
        """
        learned = HandoffGenerator._descriptions(context.decisions, DecisionOutcome.SUCCESS)
        avoid = HandoffGenerator._descriptions(context.decisions, DecisionOutcome.FAILURE)

        counts = Counter(e.type for e in context.errors)
        for error_type, count in counts.items():
            if count >= 2:
                avoid.append(f"Recurring {error_type.value} errors")

        return learned, avoid

"""Progress report - the human-readable artifact for session handoffs.

claude_progress.txt is a plain text file that gives each new session (and
whoever is watching) immediate context about what's been done and what's
next. It is always regenerated from the persisted feature list, the latest
session progress and the latest handoff, never edited in place.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import FeatureList, SessionHandoff, SessionProgress

BAR_WIDTH = 20


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "In progress"


def progress_bar(percent: int, width: int = BAR_WIDTH) -> str:
    """Render a fixed-width bar such as [██████░░░░...]."""
    filled = max(0, min(width, percent * width // 100))
    return "[" + "█" * filled + "░" * (width - filled) + "]"


def render_progress_report(
    feature_list: FeatureList,
    progress: Optional[SessionProgress] = None,
    handoff: Optional[SessionHandoff] = None,
    max_retries: int = 3,
) -> str:
    """Render claude_progress.txt.

    Sections always appear in this order: Completed, Pending, Current State,
    App/Environment Status, Regression Failures, Next Steps, Warnings,
    Recommendations, Learned/Avoid Patterns, Overall Progress. The optional
    ones are skipped when empty.
    """
    lines = [f"# Claude Progress - {feature_list.app_spec.name}", ""]

    if progress:
        lines += [
            f"Session {progress.session_number}",
            f"Started: {_fmt_time(progress.started_at)}",
            f"Ended: {_fmt_time(progress.ended_at)}",
        ]
        if progress.summary:
            lines.append(f"Summary: {progress.summary}")
        lines.append("")

    # Completed
    lines.append("## Completed")
    completed: list[str] = []
    if progress:
        for fid in progress.completed_features:
            feature = feature_list.find_feature(fid)
            if feature:
                completed.append(f"- [x] #{fid}: {feature.name}")
    if handoff:
        for task in handoff.completed_tasks:
            completed.append(f"- [x] {task}")
    lines += completed or ["- None this session"]
    lines.append("")

    # Pending
    lines.append("## Pending")
    pending: list[str] = []
    if handoff:
        pending += [f"- [ ] {task}" for task in handoff.partial_tasks]
    for feature in feature_list.features:
        if feature.passes or feature.attempts == 0:
            continue
        entry = f"- [ ] #{feature.id}: {feature.name} (attempts {feature.attempts}/{max_retries})"
        if feature.last_error:
            entry += f" - {feature.last_error}"
        pending.append(entry)
    lines += pending or ["- None"]
    lines.append("")

    # Current State
    lines.append("## Current State")
    lines.append((progress.current_state if progress else "") or "No state recorded")
    lines.append("")

    # App/Environment Status
    lines.append("## App/Environment Status")
    if progress:
        app = progress.app_state
        lines += [
            f"- Backend: {'Running' if app.backend_running else 'Stopped'}",
            f"- Frontend: {'Running' if app.frontend_running else 'Stopped'}",
            f"- Database: {'Initialized' if app.database_initialized else 'Not ready'}",
        ]
    if handoff:
        env = handoff.environment_state
        lines += [
            f"- Git Branch: {env.git_branch}",
            f"- Last Commit: {env.last_commit or 'None'}",
            f"- Running Services: {', '.join(env.services_running) or 'None'}",
        ]
    if progress and progress.commits:
        for commit in progress.commits:
            lines.append(f"- Commit {commit.sha[:7]}: {commit.message.splitlines()[0]}")
    lines.append("")

    # Regression Failures
    if progress and progress.regressions_failed:
        lines.append("## Regression Failures")
        for fid in progress.regressions_failed:
            feature = feature_list.find_feature(fid)
            lines.append(f"- #{fid}: {feature.name if feature else 'Unknown'}")
        lines.append("")

    # Next Steps
    lines.append("## Next Steps")
    steps: list[str] = []
    if progress and progress.next_suggested_task:
        steps.append(f"Next task: {progress.next_suggested_task}")
    if handoff:
        steps += handoff.next_steps
    lines += [f"{i}. {s}" for i, s in enumerate(steps, 1)] or ["- None"]
    lines.append("")

    # Warnings
    warnings: list[str] = []
    for w in (handoff.warnings if handoff else []) + (progress.known_issues if progress else []):
        if w not in warnings:
            warnings.append(w)
    if warnings:
        lines.append("## Warnings")
        lines += [f"- {w}" for w in warnings]
        lines.append("")

    # Recommendations
    if handoff and handoff.recommendations:
        lines.append("## Recommendations")
        lines += [f"- {r}" for r in handoff.recommendations]
        lines.append("")

    # Learned/Avoid Patterns
    if handoff and handoff.learned_patterns:
        lines.append("## Learned Patterns (What Worked)")
        lines += [f"- {p}" for p in handoff.learned_patterns]
        lines.append("")
    if handoff and handoff.avoid_patterns:
        lines.append("## Avoid Patterns (What Failed)")
        lines += [f"- {p}" for p in handoff.avoid_patterns]
        lines.append("")

    # Overall Progress
    total = len(feature_list.features)
    done = len(feature_list.passed_features())
    percent = round(done / total * 100) if total else 0
    lines.append("## Overall Progress")
    lines.append(f"{done}/{total} features ({percent}%)")
    lines.append(progress_bar(percent))
    lines.append("")

    return "\n".join(lines)


class ProgressTracker:
    """Manages the progress file that enables clean session handoffs.

    The progress file is intentionally plain text (not JSON) because it's
    meant to be read by the next agent session as context.
    """

    def __init__(self, project_path: Path, filename: str = "claude_progress.txt"):
        self.project_path = Path(project_path)
        self.progress_file = self.project_path / filename

    def write(
        self,
        feature_list: FeatureList,
        progress: Optional[SessionProgress] = None,
        handoff: Optional[SessionHandoff] = None,
        max_retries: int = 3,
    ) -> Path:
        """Regenerate the progress file."""
        self.project_path.mkdir(parents=True, exist_ok=True)
        content = render_progress_report(feature_list, progress, handoff, max_retries)
        self.progress_file.write_text(content, encoding="utf-8")
        return self.progress_file

    def read_progress(self) -> str:
        """Read the full progress file for session context."""
        if not self.progress_file.exists():
            return ""
        return self.progress_file.read_text(encoding="utf-8")

    def read_recent(self, lines: int = 50) -> str:
        """Read only recent progress for context efficiency."""
        content = self.read_progress()
        all_lines = content.strip().split("\n")

        if len(all_lines) <= lines:
            return content

        return "\n".join(["[... earlier progress truncated ...]\n"] + all_lines[-lines:])

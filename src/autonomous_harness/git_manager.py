"""Git-backed VCS adapter.

Each passing feature becomes a commit, giving every session a recoverable
save point. Also reports the branch and last commit for handoffs.
"""

import shutil
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console

from .models import CommitRecord, EnvironmentState, Feature

console = Console()


def commit_message(feature: Feature) -> str:
    """Conventional commit message for a completed feature."""
    return f"feat({feature.category.value}): {feature.name}\n\nFeature #{feature.id} completed"


class GitManager:
    """Commits feature work to the project's git repository."""

    def __init__(self, project_path: Path, init_if_missing: bool = True):
        self.project_path = Path(project_path)
        self.init_if_missing = init_if_missing

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command."""
        return subprocess.run(
            ["git", *args],
            cwd=self.project_path,
            capture_output=True,
            text=True,
            check=check
        )

    def git_available(self) -> bool:
        return shutil.which("git") is not None

    def is_git_repo(self) -> bool:
        result = self._run("rev-parse", "--git-dir", check=False)
        return result.returncode == 0

    def init_repo(self) -> None:
        """Initialize a git repository if not exists."""
        if not self.is_git_repo():
            self._run("init")

    def current_branch(self) -> str:
        result = self._run("branch", "--show-current", check=False)
        return result.stdout.strip() or "main"

    def last_commit(self) -> Optional[str]:
        result = self._run("log", "-1", "--format=%H", check=False)
        sha = result.stdout.strip()
        return sha if result.returncode == 0 and sha else None

    def has_changes(self) -> bool:
        result = self._run("status", "--porcelain", check=False)
        return bool(result.stdout.strip())

    def commit(self, feature: Feature) -> Optional[CommitRecord]:
        """Stage everything and commit it for the feature.

        Returns:
            CommitRecord, or None if git isn't available or nothing changed
        """
        if not self.git_available():
            return None
        if not self.is_git_repo():
            if not self.init_if_missing:
                return None
            self.init_repo()

        if not self.has_changes():
            console.print(f"[dim]No changes to commit for feature #{feature.id}[/dim]")
            return None

        message = commit_message(feature)
        self._run("add", "-A")
        result = self._run("commit", "-m", message, check=False)
        if result.returncode != 0:
            console.print(f"[yellow]Commit failed: {result.stderr.strip()}[/yellow]")
            return None

        sha = self._run("rev-parse", "HEAD").stdout.strip()
        return CommitRecord(
            sha=sha,
            message=message,
            timestamp=datetime.now(),
            feature_id=feature.id,
        )

    def environment(self) -> EnvironmentState:
        """Snapshot of branch and last commit for the handoff."""
        if not self.git_available() or not self.is_git_repo():
            return EnvironmentState()
        return EnvironmentState(
            git_branch=self.current_branch(),
            last_commit=self.last_commit() or "",
        )

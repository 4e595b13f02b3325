"""Session history management for persistent tracking.

Archived session contexts are stored in <harness_dir>/session_history.json,
bounded to the most recent max_sessions entries.
"""

import json
import shutil
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from rich.console import Console

from .models import SessionContext

console = Console()


class SessionHistory:
    """Manages the bounded archive of finished sessions."""

    DEFAULT_FILENAME = "session_history.json"

    def __init__(
        self,
        harness_dir: Path,
        max_sessions: int = 100,
        filename: Optional[str] = None,
    ):
        """Initialize session history.

        Args:
            harness_dir: Directory holding harness state
            max_sessions: Oldest sessions are evicted beyond this count
            filename: Custom filename (defaults to session_history.json)
        """
        self.harness_dir = Path(harness_dir)
        self.max_sessions = max_sessions
        self.filename = filename or self.DEFAULT_FILENAME
        self._history_file = self.harness_dir / self.filename
        self._sessions: list[SessionContext] = []
        self._load()

    def _load(self) -> None:
        """Load session history from disk.

        An unreadable file is moved aside to <name>.corrupt so the next
        save doesn't destroy it.
        """
        if not self._history_file.exists():
            self._sessions = []
            return

        try:
            data = json.loads(self._history_file.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                data = data.get("sessions", [])
            self._sessions = [SessionContext.model_validate(s) for s in data]
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            backup = self._history_file.with_name(self._history_file.name + ".corrupt")
            shutil.move(str(self._history_file), str(backup))
            console.print(
                f"[yellow]Warning: Could not load session history ({e}). "
                f"Moved to {backup.name}[/yellow]"
            )
            self._sessions = []

    def _save(self) -> None:
        self.harness_dir.mkdir(parents=True, exist_ok=True)
        data = [s.model_dump(mode="json", by_alias=True) for s in self._sessions]
        self._history_file.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def add(self, context: SessionContext) -> None:
        """Archive a finished session, evicting the oldest beyond max_sessions."""
        self._sessions.append(context)
        if len(self._sessions) > self.max_sessions:
            self._sessions = self._sessions[-self.max_sessions:]
        self._save()

    def get(self, number: int) -> Optional[SessionContext]:
        for session in self._sessions:
            if session.number == number:
                return session
        return None

    def latest(self) -> Optional[SessionContext]:
        return self._sessions[-1] if self._sessions else None

    def next_session_number(self) -> int:
        """Number for the next session: one past the highest archived."""
        if not self._sessions:
            return 1
        return max(s.number for s in self._sessions) + 1

    def count(self) -> int:
        return len(self._sessions)

"""Durable storage for harness state.

Layout under <project>/<harness_dir>/:
    feature_list.json          the feature list
    progress_<N>.json          one record per session
    latest_handoff.json        handoff from the most recently ended session
    session_<N>_current.json   auto-save of the session in flight
    session_history.json       archived session contexts (see session_history)

claude_progress.txt at the project root is regenerated whenever progress or
a handoff is saved.
"""

import json
import re
from pathlib import Path
from typing import Optional

from .errors import FeatureListMissingError
from .models import (
    FeatureList, HarnessConfig, SessionContext, SessionHandoff, SessionProgress,
)
from .progress import ProgressTracker

PROGRESS_PATTERN = re.compile(r"^progress_(\d+)\.json$")


class HarnessStore:
    """Reads and writes the files under the harness directory."""

    FEATURE_LIST_FILE = "feature_list.json"
    HANDOFF_FILE = "latest_handoff.json"

    def __init__(self, project_path: Path, config: Optional[HarnessConfig] = None):
        self.project_path = Path(project_path)
        self.config = config or HarnessConfig()
        self.harness_dir = self.project_path / self.config.harness_dir
        self.progress_tracker = ProgressTracker(self.project_path, self.config.progress_file)

    def ensure_dirs(self) -> None:
        self.harness_dir.mkdir(parents=True, exist_ok=True)

    def _write_json(self, path: Path, content: str) -> None:
        self.ensure_dirs()
        path.write_text(content, encoding="utf-8")

    # -------------------------------------------------------------------------
    # Feature list
    # -------------------------------------------------------------------------

    @property
    def feature_list_path(self) -> Path:
        return self.harness_dir / self.FEATURE_LIST_FILE

    def save_feature_list(self, feature_list: FeatureList) -> None:
        """Persist the feature list after checking its invariants.

        Raises:
            FeatureListIntegrityError: If the list is inconsistent
        """
        feature_list.check_integrity()
        feature_list.touch()
        self._write_json(self.feature_list_path, feature_list.to_json())

    def load_feature_list(self) -> Optional[FeatureList]:
        """Load and verify the feature list, or None if none was saved."""
        if not self.feature_list_path.exists():
            return None
        data = json.loads(self.feature_list_path.read_text(encoding="utf-8"))
        feature_list = FeatureList.model_validate(data)
        feature_list.check_integrity()
        return feature_list

    def require_feature_list(self) -> FeatureList:
        feature_list = self.load_feature_list()
        if feature_list is None:
            raise FeatureListMissingError(str(self.feature_list_path))
        return feature_list

    # -------------------------------------------------------------------------
    # Session progress
    # -------------------------------------------------------------------------

    def progress_path(self, session_number: int) -> Path:
        return self.harness_dir / f"progress_{session_number}.json"

    def progress_numbers(self) -> list[int]:
        """Session numbers with a progress record, ascending."""
        if not self.harness_dir.exists():
            return []
        numbers = []
        for path in self.harness_dir.iterdir():
            match = PROGRESS_PATTERN.match(path.name)
            if match:
                numbers.append(int(match.group(1)))
        return sorted(numbers)

    def save_progress(self, progress: SessionProgress) -> None:
        self._write_json(self.progress_path(progress.session_number), progress.to_json())
        self.refresh_report()

    def load_progress(self, session_number: int) -> Optional[SessionProgress]:
        path = self.progress_path(session_number)
        if not path.exists():
            return None
        return SessionProgress.model_validate_json(path.read_text(encoding="utf-8"))

    def latest_progress(self) -> Optional[SessionProgress]:
        numbers = self.progress_numbers()
        return self.load_progress(numbers[-1]) if numbers else None

    def all_progress(self) -> list[SessionProgress]:
        """Every persisted progress record, oldest first."""
        records = []
        for number in self.progress_numbers():
            progress = self.load_progress(number)
            if progress:
                records.append(progress)
        return records

    # -------------------------------------------------------------------------
    # Handoff
    # -------------------------------------------------------------------------

    @property
    def handoff_path(self) -> Path:
        return self.harness_dir / self.HANDOFF_FILE

    def save_handoff(self, handoff: SessionHandoff) -> None:
        self._write_json(self.handoff_path, handoff.to_json())
        self.refresh_report()

    def load_handoff(self) -> Optional[SessionHandoff]:
        if not self.handoff_path.exists():
            return None
        return SessionHandoff.model_validate_json(self.handoff_path.read_text(encoding="utf-8"))

    # -------------------------------------------------------------------------
    # Auto-save of the session in flight
    # -------------------------------------------------------------------------

    def current_session_path(self, session_number: int) -> Path:
        return self.harness_dir / f"session_{session_number}_current.json"

    def save_current_session(self, context: SessionContext) -> None:
        self._write_json(self.current_session_path(context.number), context.to_json())

    def load_current_session(self, session_number: int) -> Optional[SessionContext]:
        path = self.current_session_path(session_number)
        if not path.exists():
            return None
        return SessionContext.model_validate_json(path.read_text(encoding="utf-8"))

    def clear_current_session(self, session_number: int) -> None:
        self.current_session_path(session_number).unlink(missing_ok=True)

    # -------------------------------------------------------------------------
    # Human-readable report
    # -------------------------------------------------------------------------

    def refresh_report(self) -> Optional[Path]:
        """Regenerate claude_progress.txt from what is on disk.

        Returns:
            Path of the report, or None when there's no feature list yet
        """
        feature_list = self.load_feature_list()
        if feature_list is None:
            return None
        return self.progress_tracker.write(
            feature_list,
            progress=self.latest_progress(),
            handoff=self.load_handoff(),
            max_retries=self.config.max_retries,
        )

    def read_report(self) -> str:
        return self.progress_tracker.read_progress()

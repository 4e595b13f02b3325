"""Protocol definitions for the harness's external collaborators.

The harness never writes code, runs services or talks to version control
itself. These protocols are the seams where that work is delegated, and
where tests plug in mock implementations.
"""

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .models import AppState, ArtifactSet, CheckOutcome, CommitRecord, ExecutionPlan, Feature


@runtime_checkable
class VcsAdapter(Protocol):
    """Records a save point after a feature passes."""

    def commit(self, feature: Feature) -> Optional[CommitRecord]:
        """Commit the work for a feature; None if nothing was committed."""
        ...


@runtime_checkable
class ServiceStarter(Protocol):
    """Best-effort start of the application's services.

    The returned state is advisory only; the harness never fails a session
    because services didn't come up.
    """

    def start(self, project_path: Path) -> AppState:
        ...


@runtime_checkable
class CheckExecutor(Protocol):
    """Executes a single named validation check."""

    def run(self, step: str) -> CheckOutcome:
        ...


@runtime_checkable
class Implementer(Protocol):
    """Carries out an execution plan (typically an LLM-driven agent)."""

    async def run(self, plan: ExecutionPlan) -> ArtifactSet:
        ...

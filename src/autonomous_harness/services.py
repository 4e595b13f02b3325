"""Default collaborators used when none are injected.

- InitScriptStarter: advisory service start based on the project's init script
- NullServiceStarter: reports nothing running
- NullImplementer: accepts a plan and produces nothing
"""

import os
import subprocess
from datetime import datetime
from pathlib import Path

from rich.console import Console

from .models import AppState, ArtifactSet, ExecutionPlan

console = Console()


class InitScriptStarter:
    """Starts services through the project's init script.

    Services are only reported as up when the script was run (run=True)
    and exited 0 within timeout_seconds. Without run the script is only
    inspected and nothing is reported running. Either way the result is
    advice for the session, never a failure.
    """

    def __init__(
        self,
        script_name: str = "init_script.sh",
        run: bool = False,
        timeout_seconds: float = 30.0,
    ):
        self.script_name = script_name
        self.run = run
        self.timeout_seconds = timeout_seconds

    def start(self, project_path: Path) -> AppState:
        script = Path(project_path) / self.script_name
        if not script.is_file() or not os.access(script, os.X_OK):
            return AppState()

        if not self.run:
            console.print(f"[dim]{self.script_name} found, not run[/dim]")
            return AppState()

        try:
            result = subprocess.run(
                [str(script)],
                cwd=project_path,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            console.print(
                f"[yellow]{self.script_name} timed out after {self.timeout_seconds}s[/yellow]"
            )
            return AppState()
        if result.returncode != 0:
            console.print(
                f"[yellow]{self.script_name} exited with code {result.returncode}[/yellow]"
            )
            return AppState()

        return AppState(
            backend_running=True,
            frontend_running=True,
            last_health_check=datetime.now(),
        )


class NullServiceStarter:
    def start(self, project_path: Path) -> AppState:
        return AppState()


class NullImplementer:
    """Implementer that does no work.

    Useful for dry runs: features only pass if their validation steps
    already hold.
    """

    async def run(self, plan: ExecutionPlan) -> ArtifactSet:
        return ArtifactSet(notes=f"No implementer configured for {plan.id}")

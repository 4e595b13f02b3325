"""Cooperative stop handling for the continuous loop.

A stop can be requested three ways:
- stop() on the controller (in-process)
- SIGINT/SIGTERM, when signal handlers are installed
- a stop request file, written by `autonomous-harness stop`

All of them only set a flag; the loop checks it before starting the next
session, so an in-flight session always finishes its full protocol.
"""

import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.console import Console

console = Console()

STOP_REQUEST_FILENAME = "stop-requested"


class StopController:
    """Tracks whether the continuous loop should stop."""

    def __init__(self, harness_dir: Path):
        """Initialize the controller.

        Args:
            harness_dir: Directory holding the stop request file
        """
        self.stop_file = Path(harness_dir) / STOP_REQUEST_FILENAME
        self._stop_requested = False
        self._previous_handlers: dict[int, Any] = {}

    def setup_signal_handlers(self) -> None:
        """Install handlers that turn SIGINT/SIGTERM into a stop request.

        On Windows, only SIGINT (Ctrl+C) is supported.
        """
        signals = [signal.SIGINT]
        if sys.platform != "win32":
            signals.append(signal.SIGTERM)
        for signum in signals:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def _handle_signal(self, signum: int, frame: Any) -> None:
        console.print(
            f"\n[yellow]Stop signal received ({signal.Signals(signum).name}) - "
            f"finishing current session...[/yellow]"
        )
        self._stop_requested = True

    def stop(self) -> None:
        self._stop_requested = True

    def is_stop_requested(self) -> bool:
        """Check the in-process flag, then the stop request file."""
        if self._stop_requested:
            return True

        if self.stop_file.exists():
            console.print("[yellow]Stop request file detected...[/yellow]")
            self._stop_requested = True
            return True

        return False

    def request_stop(self, reason: str = "User requested stop") -> Path:
        """Write the stop request file for a loop running in another process.

        Returns:
            Path to the created stop file
        """
        self.stop_file.parent.mkdir(parents=True, exist_ok=True)
        self.stop_file.write_text(f"{datetime.now().isoformat()}\n{reason}", encoding="utf-8")
        return self.stop_file

    def read_stop_reason(self) -> Optional[str]:
        if not self.stop_file.exists():
            return None
        lines = self.stop_file.read_text(encoding="utf-8").splitlines()
        return lines[1] if len(lines) > 1 else None

    def reset(self) -> None:
        """Clear the flag and remove the stop request file."""
        self._stop_requested = False
        if self.stop_file.exists():
            self.stop_file.unlink(missing_ok=True)
            console.print("[dim]Cleared stop request file[/dim]")

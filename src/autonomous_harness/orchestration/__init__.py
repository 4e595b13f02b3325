"""Orchestration components for the autonomous harness.

- SessionProtocol: Runs the fixed per-session step sequence
- StopController: Cooperative stop requests (signals, stop file)
"""

from .recovery import StopController
from .session_protocol import SessionProtocol

__all__ = [
    "SessionProtocol",
    "StopController",
]

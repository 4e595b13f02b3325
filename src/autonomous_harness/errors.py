"""Exception types raised by the harness.

Validation and regression failures are recorded on the feature list and in
session progress, not raised. Exceptions are reserved for conditions the
caller has to act on:
- HarnessFault: an unexpected error escaped a session (state was persisted first)
- FeatureListMissingError: resume() or a session ran before initialize()
- FeatureListIntegrityError: a persisted feature list violates its invariants
- NoActiveSessionError: session tracking called outside a session
- SpecError: the application spec cannot be turned into a feature list
"""

from typing import Optional


class HarnessError(Exception):
    """Base exception for the autonomous harness."""
    pass


class HarnessFault(HarnessError):
    """Unexpected exception caught at the session boundary.

    By the time this is raised the session's progress record has been
    written, so the orchestrator can surface it without losing state.
    """

    def __init__(self, session_number: int, cause: BaseException):
        self.session_number = session_number
        self.cause = cause
        super().__init__(f"Session {session_number} failed: {cause}")


class FeatureListMissingError(HarnessError):
    """No feature list is loaded or persisted for the project."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        message = "No feature list found. Run initialize() first."
        if path:
            message = f"No feature list found at {path}. Run initialize() first."
        super().__init__(message)


class FeatureListIntegrityError(HarnessError):
    """A feature list violates the count, reference or acyclicity invariants."""
    pass


class NoActiveSessionError(HarnessError):
    """A session operation was called with no session started."""

    def __init__(self, operation: str = "operation"):
        super().__init__(f"No active session for {operation}")


class SpecError(HarnessError):
    """The application spec is missing required content."""
    pass

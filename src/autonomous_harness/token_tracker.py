"""Token budget tracking for a working session.

Token usage is estimated, not measured: roughly four characters per token,
scaled by how densely the content tokenizes. The governor only classifies,
estimates and reports the budget state; the session manager owns the
context and decides what to do at each threshold.
"""

import math
from enum import Enum
from pathlib import PurePath
from typing import Callable, Optional

from rich.console import Console

from .models import SessionContext, TokenUsage

console = Console()

CHARS_PER_TOKEN = 4


class ContentClass(str, Enum):
    """How densely a piece of content tokenizes."""
    CODE = "code"
    STRUCTURED = "structured"
    PROSE = "prose"
    OTHER = "other"


CONTENT_MULTIPLIERS: dict[ContentClass, float] = {
    ContentClass.CODE: 1.3,
    ContentClass.STRUCTURED: 1.5,
    ContentClass.PROSE: 1.1,
    ContentClass.OTHER: 1.0,
}

DEFAULT_SUFFIX_CLASSES: dict[str, ContentClass] = {
    ".py": ContentClass.CODE,
    ".ts": ContentClass.CODE,
    ".tsx": ContentClass.CODE,
    ".js": ContentClass.CODE,
    ".jsx": ContentClass.CODE,
    ".go": ContentClass.CODE,
    ".rs": ContentClass.CODE,
    ".java": ContentClass.CODE,
    ".c": ContentClass.CODE,
    ".cpp": ContentClass.CODE,
    ".cs": ContentClass.CODE,
    ".sh": ContentClass.CODE,
    ".sql": ContentClass.CODE,
    ".json": ContentClass.STRUCTURED,
    ".yaml": ContentClass.STRUCTURED,
    ".yml": ContentClass.STRUCTURED,
    ".toml": ContentClass.STRUCTURED,
    ".xml": ContentClass.STRUCTURED,
    ".csv": ContentClass.STRUCTURED,
    ".md": ContentClass.PROSE,
    ".mdx": ContentClass.PROSE,
    ".txt": ContentClass.PROSE,
    ".rst": ContentClass.PROSE,
    ".html": ContentClass.PROSE,
}


class BudgetStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    EXHAUSTED = "exhausted"


def classify_content(
    path: Optional[str],
    suffix_classes: Optional[dict[str, ContentClass]] = None,
) -> ContentClass:
    """Classify content by file suffix.

    Args:
        path: File path (None for free text such as decisions)
        suffix_classes: Table overriding DEFAULT_SUFFIX_CLASSES

    Returns:
        ContentClass for the path; OTHER when unknown
    """
    if not path:
        return ContentClass.OTHER
    table = suffix_classes if suffix_classes is not None else DEFAULT_SUFFIX_CLASSES
    return table.get(PurePath(path).suffix.lower(), ContentClass.OTHER)


def estimate_tokens(content: str, content_class: ContentClass = ContentClass.OTHER) -> int:
    """Estimate tokens for content: ceil(len / 4) scaled by class, rounded up."""
    base = math.ceil(len(content) / CHARS_PER_TOKEN)
    # round() strips float noise such as 13 * 1.1 == 14.300000000000001
    return math.ceil(round(base * CONTENT_MULTIPLIERS[content_class], 6))


class TokenBudgetGovernor:
    """Estimates token costs and reports where a session stands against its budget."""

    def __init__(
        self,
        max_tokens: int = 100_000,
        warning_threshold: float = 0.8,
        on_warning: Optional[Callable[[TokenUsage], None]] = None,
        suffix_classes: Optional[dict[str, ContentClass]] = None,
    ):
        """Initialize the governor.

        Args:
            max_tokens: Budget per session
            warning_threshold: Usage ratio that triggers the one-time warning
            on_warning: Optional callback invoked with usage when warning
            suffix_classes: Override for the suffix classification table
        """
        self.max_tokens = max_tokens
        self.warning_threshold = warning_threshold
        self.on_warning = on_warning
        self.suffix_classes = suffix_classes
        self._warned_sessions: set[str] = set()

    def classify(self, path: Optional[str]) -> ContentClass:
        return classify_content(path, self.suffix_classes)

    def estimate_file(self, path: str, content: str) -> int:
        """Estimate the cost of reading a file."""
        return estimate_tokens(content, self.classify(path))

    def estimate_text(self, *parts: str) -> int:
        """Estimate the cost of free text such as a decision and its reasoning."""
        return estimate_tokens("".join(parts), ContentClass.OTHER)

    def usage(self, context: SessionContext) -> TokenUsage:
        percentage = 100 if context.max_tokens <= 0 else round(
            context.tokens_used / context.max_tokens * 100
        )
        return TokenUsage(
            used=context.tokens_used,
            max=context.max_tokens,
            percentage=percentage,
        )

    def check(self, context: SessionContext) -> BudgetStatus:
        """Classify the session's budget state, warning once per session.

        Returns:
            EXHAUSTED at ratio >= 1.0, WARNING at ratio >= warning_threshold,
            otherwise OK
        """
        ratio = context.usage_ratio
        if ratio >= 1.0:
            return BudgetStatus.EXHAUSTED
        if ratio >= context.warning_threshold:
            if context.id not in self._warned_sessions:
                self._warned_sessions.add(context.id)
                usage = self.usage(context)
                console.print(
                    f"[yellow]Token usage at {usage.percentage}% "
                    f"({format_tokens(usage.used)}/{format_tokens(usage.max)}). "
                    f"Consider resetting soon.[/yellow]"
                )
                if self.on_warning:
                    self.on_warning(usage)
            return BudgetStatus.WARNING
        return BudgetStatus.OK

    @staticmethod
    def format_tokens(count: int) -> str:
        """Format token count for display.

        Args:
            count: Token count

        Returns:
            Formatted string (e.g., "1.2K" or "1.5M")
        """
        if count < 1000:
            return str(count)
        elif count < 1_000_000:
            return f"{count / 1000:.1f}K"
        else:
            return f"{count / 1_000_000:.2f}M"


def format_tokens(count: int) -> str:
    """Format token count for display."""
    return TokenBudgetGovernor.format_tokens(count)

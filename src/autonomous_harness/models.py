"""Data models for the autonomous harness.

Uses Pydantic for validation. Everything persisted under .harness/ is written
with camelCase keys (by_alias=True) while Python code uses snake_case names.
"""

import json
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import FeatureListIntegrityError


class HarnessModel(BaseModel):
    """Base for persisted models: camelCase on disk, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, by_alias=True)


# =============================================================================
# Features
# =============================================================================

class Priority(str, Enum):
    """Scheduling priority of a feature."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Lower value is scheduled first
PRIORITY_ORDER: dict[Priority, int] = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class FeatureCategory(str, Enum):
    """Category of feature work."""
    SETUP = "setup"
    BACKEND = "backend"
    FRONTEND = "frontend"
    INTEGRATION = "integration"
    TESTING = "testing"
    DEPLOY = "deploy"


class Complexity(str, Enum):
    """Rough size estimate for a feature."""
    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class TechStack(HarnessModel):
    """Optional technology choices from the app spec."""
    model_config = ConfigDict(frozen=True)

    backend: Optional[str] = None
    frontend: Optional[str] = None
    database: Optional[str] = None
    auth: Optional[str] = None
    hosting: Optional[str] = None


class AppSpec(HarnessModel):
    """The target application. Immutable once supplied."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    core_features: list[str] = Field(default_factory=list)
    tech_stack: TechStack = Field(default_factory=TechStack)
    success_criteria: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)


class Feature(HarnessModel):
    """A single verifiable unit of work."""
    id: int = Field(..., description="Unique id, assigned in generation order")
    name: str
    description: str
    category: FeatureCategory
    priority: Priority = Priority.MEDIUM
    estimated_complexity: Complexity = Complexity.MEDIUM

    # Ordered check descriptions, run until the first failure
    validation_steps: list[str] = Field(default_factory=list)
    dependencies: list[int] = Field(
        default_factory=list,
        description="Ids of features that must pass first"
    )

    # Tracking
    passes: bool = False
    attempts: int = 0
    last_error: Optional[str] = None
    completed_at: Optional[datetime] = None
    git_commit: Optional[str] = None


class FeatureList(HarnessModel):
    """The full feature list for a project.

    Invariants (checked by check_integrity):
    - completed_features equals the number of passing features
    - every dependency id references an existing feature
    - the dependency graph is acyclic
    """
    app_spec: AppSpec
    features: list[Feature] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    last_updated: datetime = Field(default_factory=datetime.now)
    total_features: int = 0
    completed_features: int = 0
    current_feature_id: Optional[int] = None

    @classmethod
    def create(cls, app_spec: AppSpec, features: list[Feature]) -> "FeatureList":
        """Build a fresh list with counters derived from the features."""
        return cls(
            app_spec=app_spec,
            features=features,
            total_features=len(features),
            completed_features=sum(1 for f in features if f.passes),
        )

    def find_feature(self, feature_id: int) -> Optional[Feature]:
        for f in self.features:
            if f.id == feature_id:
                return f
        return None

    def get_feature(self, feature_id: int) -> Feature:
        """Get a feature by id, raising ValueError if it doesn't exist."""
        feature = self.find_feature(feature_id)
        if feature is None:
            raise ValueError(f"Feature {feature_id} not found")
        return feature

    def passed_features(self) -> list[Feature]:
        return [f for f in self.features if f.passes]

    def is_complete(self) -> bool:
        """Check if every feature passes."""
        return all(f.passes for f in self.features)

    def mark_passed(self, feature_id: int, completed_at: Optional[datetime] = None) -> Feature:
        """Mark a feature as passing and bump the completed counter."""
        feature = self.get_feature(feature_id)
        if not feature.passes:
            feature.passes = True
            self.completed_features += 1
        feature.completed_at = completed_at or datetime.now()
        feature.last_error = None
        self.touch()
        return feature

    def mark_failed(self, feature_id: int, error: Optional[str]) -> Feature:
        """Record a failed attempt on a feature."""
        feature = self.get_feature(feature_id)
        feature.attempts += 1
        feature.last_error = error
        self.touch()
        return feature

    def demote(self, feature_id: int, error: Optional[str] = None) -> Feature:
        """Flip a previously passing feature back to pending."""
        feature = self.get_feature(feature_id)
        if feature.passes:
            feature.passes = False
            self.completed_features -= 1
        feature.completed_at = None
        if error:
            feature.last_error = error
        self.touch()
        return feature

    def touch(self) -> None:
        self.last_updated = datetime.now()

    def check_integrity(self) -> None:
        """Verify the list invariants.

        Raises:
            FeatureListIntegrityError: If any invariant is violated
        """
        passing = sum(1 for f in self.features if f.passes)
        if self.completed_features != passing:
            raise FeatureListIntegrityError(
                f"completedFeatures is {self.completed_features} but {passing} features pass"
            )
        if self.total_features != len(self.features):
            raise FeatureListIntegrityError(
                f"totalFeatures is {self.total_features} but list has {len(self.features)} features"
            )

        ids = [f.id for f in self.features]
        if len(set(ids)) != len(ids):
            raise FeatureListIntegrityError("Duplicate feature ids")

        graph = {f.id: f.dependencies for f in self.features}
        for fid, deps in graph.items():
            for dep in deps:
                if dep not in graph:
                    raise FeatureListIntegrityError(
                        f"Feature {fid} depends on unknown feature {dep}"
                    )

        # Iterative DFS: 0 = unvisited, 1 = on stack, 2 = done
        state = {fid: 0 for fid in graph}
        for root in graph:
            if state[root]:
                continue
            stack = [(root, iter(graph[root]))]
            state[root] = 1
            while stack:
                node, children = stack[-1]
                child = next(children, None)
                if child is None:
                    state[node] = 2
                    stack.pop()
                elif state[child] == 1:
                    raise FeatureListIntegrityError(
                        f"Dependency cycle through feature {child}"
                    )
                elif state[child] == 0:
                    state[child] = 1
                    stack.append((child, iter(graph[child])))


# =============================================================================
# Validation
# =============================================================================

class CheckOutcome(HarnessModel):
    """Result of running a single named check."""
    passed: bool
    error: Optional[str] = None


class ValidationStepResult(HarnessModel):
    """Outcome of one validation step."""
    description: str
    passed: bool
    error: Optional[str] = None
    duration_ms: float = 0.0


class ValidationResult(HarnessModel):
    """Outcome of running a feature's validation steps in order."""
    feature_id: Optional[int] = None
    passed: bool
    steps: list[ValidationStepResult] = Field(default_factory=list)
    total_duration_ms: float = 0.0

    @property
    def first_failure(self) -> Optional[ValidationStepResult]:
        for step in self.steps:
            if not step.passed:
                return step
        return None


class RegressionTest(HarnessModel):
    """A registered check replayed at the start of every session."""
    id: str = Field(default_factory=lambda: f"reg_{uuid.uuid4().hex[:8]}")
    name: str
    description: str = ""
    feature_id: Optional[int] = None
    steps: list[str] = Field(default_factory=list)
    last_run: Optional[datetime] = None
    last_result: Optional[bool] = None


class RegressionOutcome(HarnessModel):
    test_id: str
    name: str
    feature_id: Optional[int] = None
    passed: bool
    error: Optional[str] = None


class RegressionReport(HarnessModel):
    """Aggregated results of a regression test run."""
    passed: int = 0
    failed: int = 0
    total: int = 0
    results: list[RegressionOutcome] = Field(default_factory=list)


# =============================================================================
# Session progress
# =============================================================================

class AppState(HarnessModel):
    """Advisory service state reported by the service starter."""
    backend_running: bool = False
    frontend_running: bool = False
    database_initialized: bool = False
    last_health_check: Optional[datetime] = None


class CommitRecord(HarnessModel):
    """Audit record of a commit made for a feature."""
    sha: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    feature_id: Optional[int] = None


class SessionProgress(HarnessModel):
    """What one session did, persisted as progress_<N>.json."""
    session_id: str
    session_number: int
    started_at: datetime = Field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    completed_features: list[int] = Field(default_factory=list)
    attempted_features: list[int] = Field(default_factory=list)
    regressions_passed: list[int] = Field(default_factory=list)
    regressions_failed: list[int] = Field(default_factory=list)

    app_state: AppState = Field(default_factory=AppState)

    # For the next session
    summary: str = ""
    current_state: str = ""
    next_suggested_task: str = ""
    known_issues: list[str] = Field(default_factory=list)

    commits: list[CommitRecord] = Field(default_factory=list)


# =============================================================================
# Session context and handoff
# =============================================================================

class Relevance(str, Enum):
    """Relevance tier of a tracked file, highest first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DecisionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


class ArtifactType(str, Enum):
    CODE = "code"
    CONFIG = "config"
    DOC = "doc"
    TEST = "test"
    OTHER = "other"


class SessionErrorType(str, Enum):
    """Classification of errors tracked during a session."""
    TYPE_CHECK = "type_check"
    RUNTIME = "runtime"
    TEST = "test"
    BUILD = "build"
    VALIDATION = "validation"
    OTHER = "other"


class ContextFile(HarnessModel):
    """A file read into the working context."""
    path: str
    last_read: datetime = Field(default_factory=datetime.now)
    relevance: Relevance = Relevance.MEDIUM
    tokens: int = 0
    summary: Optional[str] = None


class Decision(HarnessModel):
    """A decision made during the session and its outcome."""
    id: str = Field(default_factory=lambda: f"decision_{uuid.uuid4().hex[:8]}")
    timestamp: datetime = Field(default_factory=datetime.now)
    description: str
    reasoning: str = ""
    outcome: DecisionOutcome = DecisionOutcome.PENDING
    reversible: bool = True


class Artifact(HarnessModel):
    """Something created during the session."""
    id: str = Field(default_factory=lambda: f"artifact_{uuid.uuid4().hex[:8]}")
    type: ArtifactType = ArtifactType.OTHER
    path: str
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    tokens: int = 0


class SessionError(HarnessModel):
    """A typed error tracked until explicitly resolved."""
    timestamp: datetime = Field(default_factory=datetime.now)
    type: SessionErrorType = SessionErrorType.OTHER
    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    resolved: bool = False
    resolution: Optional[str] = None


class EnvironmentState(HarnessModel):
    services_running: list[str] = Field(default_factory=list)
    database_state: str = "unknown"
    git_branch: str = "main"
    last_commit: str = ""


class CriticalFile(HarnessModel):
    path: str
    summary: str


class SessionHandoff(HarnessModel):
    """Compact summary of a finished session, used to seed the next one.

    Generated exactly once per session end; immutable thereafter.
    """
    model_config = ConfigDict(frozen=True)

    completed_tasks: list[str] = Field(default_factory=list)
    partial_tasks: list[str] = Field(default_factory=list)

    app_state: dict[str, Any] = Field(default_factory=dict)
    environment_state: EnvironmentState = Field(default_factory=EnvironmentState)

    critical_files: list[CriticalFile] = Field(default_factory=list)
    active_errors: list[SessionError] = Field(default_factory=list)
    pending_decisions: list[str] = Field(default_factory=list)

    next_steps: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    learned_patterns: list[str] = Field(default_factory=list)
    avoid_patterns: list[str] = Field(default_factory=list)


class SessionContext(HarnessModel):
    """Working state of one session, archived to history when it ends."""
    id: str
    number: int
    started_at: datetime = Field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    # Token tracking
    tokens_used: int = 0
    max_tokens: int = 100_000
    warning_threshold: float = 0.8

    # Context state
    files: list[ContextFile] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    artifacts: list[Artifact] = Field(default_factory=list)
    errors: list[SessionError] = Field(default_factory=list)

    # Snapshot carried into the handoff
    app_state: dict[str, Any] = Field(default_factory=dict)
    environment: EnvironmentState = Field(default_factory=EnvironmentState)

    handoff: Optional[SessionHandoff] = None

    @property
    def unresolved_errors(self) -> list[SessionError]:
        return [e for e in self.errors if not e.resolved]

    @property
    def usage_ratio(self) -> float:
        if self.max_tokens <= 0:
            return 1.0
        return self.tokens_used / self.max_tokens


class TokenUsage(HarnessModel):
    used: int = 0
    max: int = 0
    percentage: int = 0


# =============================================================================
# Execution plan (handed to the implementer, never executed by the harness)
# =============================================================================

class ModelTier(str, Enum):
    """Model hint for a plan step."""
    OPUS = "opus"
    SONNET = "sonnet"
    HAIKU = "haiku"
    AUTO = "auto"


class PlanStep(HarnessModel):
    id: str
    action: str
    params: dict[str, Any] = Field(default_factory=dict)
    max_retries: int = 1
    model: ModelTier = ModelTier.AUTO


class PlanPhase(HarnessModel):
    name: str
    steps: list[PlanStep] = Field(default_factory=list)
    parallel: bool = False
    timeout_ms: int = 60_000


class ExecutionPlan(HarnessModel):
    """Phase-based plan for implementing one feature."""
    id: str
    feature_id: int
    goal: str
    phases: list[PlanPhase] = Field(default_factory=list)
    checkpoints: list[int] = Field(default_factory=list)


class ArtifactSet(HarnessModel):
    """What the implementer reports back for a plan."""
    artifacts: list[Artifact] = Field(default_factory=list)
    notes: Optional[str] = None


# =============================================================================
# Orchestrator results and configuration
# =============================================================================

class RunSummary(HarnessModel):
    """Aggregate result of run_continuous()."""
    success: bool
    total_sessions: int
    total_features: int
    completed_features: int
    duration_ms: float


class HarnessConfig(BaseModel):
    """Configuration for the harness."""
    # Token budget
    max_session_tokens: int = Field(
        default=100_000,
        description="Estimated context budget per session before a forced reset"
    )
    warning_threshold: float = Field(
        default=0.8,
        description="Fraction of the budget at which a warning is emitted"
    )

    # Scheduling
    max_retries: int = Field(
        default=3,
        description="Failed attempts before a feature is permanently skipped"
    )
    regression_test_count: int = Field(
        default=2,
        description="Most recently passed features re-validated each session"
    )

    # Behavior
    auto_commit: bool = Field(default=True, description="Commit after a feature passes")
    validation_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout per command check; a timeout fails the step"
    )
    start_app_timeout_seconds: float = Field(default=30.0)
    run_init_script: bool = Field(
        default=False,
        description="Run the init script in StartApp instead of only checking for it"
    )
    pause_between_sessions_seconds: float = Field(
        default=5.0,
        description="Cool-down between sessions in run_continuous"
    )

    # Validation
    check_commands: dict[str, str] = Field(
        default_factory=dict,
        description="Shell command to run for a validation step with exactly this text"
    )
    fallback_check_command: Optional[str] = Field(
        default=None,
        description="Command run with the step text as its last argument for steps no other rule understands"
    )

    # Session state
    auto_save_interval_seconds: float = Field(default=60.0)
    max_sessions: int = Field(
        default=100,
        description="Archived sessions kept in session_history.json"
    )
    decision_compression_age_minutes: float = Field(
        default=30.0,
        description="Decisions older than this lose their reasoning on compression"
    )

    # Paths
    harness_dir: str = Field(default=".harness")
    progress_file: str = Field(default="claude_progress.txt")
    init_script: str = Field(default="init_script.sh")

    @classmethod
    def load(cls, project_path: Path | str, **overrides: Any) -> "HarnessConfig":
        """Load config from <harness_dir>/config.json, then apply overrides.

        Overrides with a value of None are ignored so CLI options that
        weren't given don't clobber the file.
        """
        harness_dir = overrides.get("harness_dir") or cls.model_fields["harness_dir"].default
        config_file = Path(project_path) / harness_dir / "config.json"

        data: dict[str, Any] = {}
        if config_file.exists():
            data = json.loads(config_file.read_text(encoding="utf-8"))

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)

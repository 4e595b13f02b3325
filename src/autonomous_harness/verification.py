"""Validation engine for features and registered regression tests.

Validation steps are plain strings. The default StepCheckExecutor
understands:
- file:<path>                    the file exists under the project root
- !file:<path>                   the file does not exist
- file:<path> contains <text>    the file exists and contains text
- cmd:<command>                  the command exits 0 within the timeout
- <path> exists                  same as file:<path>
- a registered predicate name    the predicate returns true
Anything else goes to the fallback predicate when one is set, and
otherwise fails as unverifiable. HarnessConfig.check_commands and
fallback_check_command register shell commands for such steps.
"""

import json
import re
import shlex
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .models import (
    CheckOutcome, Feature, HarnessConfig, RegressionOutcome, RegressionReport, RegressionTest,
    ValidationResult, ValidationStepResult,
)
from .protocols import CheckExecutor

PredicateResult = Union[bool, CheckOutcome]
Predicate = Callable[[], PredicateResult]
FallbackPredicate = Callable[[str], PredicateResult]

CONTAINS_PATTERN = re.compile(r"^file:(?P<path>.+?)\s+contains\s+(?P<text>.+)$")
EXISTS_PATTERN = re.compile(r"^(?P<path>[^\s]+)\s+exists$")

MAX_OUTPUT_CHARS = 1000


def _as_outcome(result: PredicateResult, step: str) -> CheckOutcome:
    if isinstance(result, CheckOutcome):
        return result
    if result:
        return CheckOutcome(passed=True)
    return CheckOutcome(passed=False, error=f"Check failed: {step}")


class StepCheckExecutor:
    """Runs validation step strings against a project directory."""

    def __init__(
        self,
        project_path: Path,
        timeout_seconds: float = 30.0,
        fallback: Optional[FallbackPredicate] = None,
    ):
        self.project_path = Path(project_path)
        self.timeout_seconds = timeout_seconds
        self.fallback = fallback
        self._predicates: dict[str, Predicate] = {}

    @classmethod
    def from_config(cls, project_path: Path, config: HarnessConfig) -> "StepCheckExecutor":
        """Build an executor with the config's check commands and fallback."""
        executor = cls(project_path, timeout_seconds=config.validation_timeout_seconds)
        for step, command in config.check_commands.items():
            executor.register_command(step, command)
        if config.fallback_check_command:
            executor.set_command_fallback(config.fallback_check_command)
        return executor

    def register_predicate(self, name: str, predicate: Predicate) -> None:
        """Register a named check; steps equal to the name run it."""
        self._predicates[name] = predicate

    def register_command(self, name: str, command: str) -> None:
        """Register a shell command as the check for steps equal to name."""
        self.register_predicate(name, lambda: self._run_command(command))

    def set_fallback(self, fallback: Optional[FallbackPredicate]) -> None:
        """Set the predicate for steps no other rule understands."""
        self.fallback = fallback

    def set_command_fallback(self, command: str) -> None:
        """Verify unrecognized steps by running command with the step as its last argument."""
        self.set_fallback(lambda step: self._run_command(f"{command} {shlex.quote(step)}"))

    def run(self, step: str) -> CheckOutcome:
        step = step.strip()

        if step in self._predicates:
            return self._call(lambda: self._predicates[step](), step)

        if step.startswith("!file:"):
            path = step[len("!file:"):].strip()
            if self._resolve(path).exists():
                return CheckOutcome(passed=False, error=f"File should not exist: {path}")
            return CheckOutcome(passed=True)

        match = CONTAINS_PATTERN.match(step)
        if match:
            return self._check_contains(match.group("path").strip(), match.group("text").strip())

        if step.startswith("file:"):
            return self._check_exists(step[len("file:"):].strip())

        if step.startswith("cmd:"):
            return self._run_command(step[len("cmd:"):].strip())

        match = EXISTS_PATTERN.match(step)
        if match:
            return self._check_exists(match.group("path"))

        if self.fallback is not None:
            return self._call(lambda: self.fallback(step), step)

        return CheckOutcome(passed=False, error=f"Unverifiable step: {step}")

    def _resolve(self, path: str) -> Path:
        return self.project_path / path

    def _check_exists(self, path: str) -> CheckOutcome:
        if self._resolve(path).exists():
            return CheckOutcome(passed=True)
        return CheckOutcome(passed=False, error=f"File not found: {path}")

    def _check_contains(self, path: str, text: str) -> CheckOutcome:
        target = self._resolve(path)
        if not target.is_file():
            return CheckOutcome(passed=False, error=f"File not found: {path}")
        content = target.read_text(encoding="utf-8", errors="replace")
        if text in content:
            return CheckOutcome(passed=True)
        return CheckOutcome(passed=False, error=f"{path} does not contain '{text}'")

    def _run_command(self, command: str) -> CheckOutcome:
        """Run a shell command; a non-zero exit or timeout fails the step."""
        if not command:
            return CheckOutcome(passed=False, error="Empty command")
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=self.project_path,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return CheckOutcome(
                passed=False,
                error=f"Timed out after {self.timeout_seconds} seconds: {command}",
            )
        except OSError as e:
            return CheckOutcome(passed=False, error=f"Error: {e}")

        if result.returncode == 0:
            return CheckOutcome(passed=True)

        output = (result.stdout + result.stderr).strip()
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + "\n... (truncated)"
        error = f"Failed (exit code {result.returncode}): {command}"
        if output:
            error += f"\n{output}"
        return CheckOutcome(passed=False, error=error)

    @staticmethod
    def _call(check: Callable[[], PredicateResult], step: str) -> CheckOutcome:
        # A predicate blowing up is a failed check, not a harness fault
        try:
            return _as_outcome(check(), step)
        except Exception as e:
            return CheckOutcome(passed=False, error=f"Error in check '{step}': {e}")


class ValidationEngine:
    """Runs validation steps in order and replays registered regression tests.

    Regression tests are kept in registry_path (when given) so they survive
    across processes.
    """

    def __init__(self, executor: CheckExecutor, registry_path: Optional[Path] = None):
        self.executor = executor
        self.registry_path = Path(registry_path) if registry_path else None
        self._regression_tests: list[RegressionTest] = []
        self._load_registry()

    def run(self, steps: Iterable[str], feature_id: Optional[int] = None) -> ValidationResult:
        """Run steps in order, stopping at the first failure.

        A feature with no steps passes.
        """
        start = time.perf_counter()
        results: list[ValidationStepResult] = []

        for step in steps:
            step_start = time.perf_counter()
            outcome = self.executor.run(step)
            results.append(ValidationStepResult(
                description=step,
                passed=outcome.passed,
                error=None if outcome.passed else (outcome.error or f"Validation failed: {step}"),
                duration_ms=(time.perf_counter() - step_start) * 1000,
            ))
            if not outcome.passed:
                break

        return ValidationResult(
            feature_id=feature_id,
            passed=all(r.passed for r in results),
            steps=results,
            total_duration_ms=(time.perf_counter() - start) * 1000,
        )

    def validate_feature(self, feature: Feature) -> ValidationResult:
        return self.run(feature.validation_steps, feature.id)

    # -------------------------------------------------------------------------
    # Regression tests
    # -------------------------------------------------------------------------

    @property
    def regression_tests(self) -> list[RegressionTest]:
        return list(self._regression_tests)

    def add_regression_test(
        self,
        name: str,
        steps: list[str],
        feature_id: Optional[int] = None,
        description: str = "",
    ) -> str:
        """Register a regression test.

        Returns:
            The new test's id
        """
        test = RegressionTest(
            name=name,
            description=description,
            feature_id=feature_id,
            steps=list(steps),
        )
        self._regression_tests.append(test)
        self._save_registry()
        return test.id

    def remove_regression_test(self, test_id: str) -> bool:
        before = len(self._regression_tests)
        self._regression_tests = [t for t in self._regression_tests if t.id != test_id]
        if len(self._regression_tests) == before:
            return False
        self._save_registry()
        return True

    def run_regression_tests(self, count: Optional[int] = None) -> RegressionReport:
        """Replay registered regression tests.

        Args:
            count: Only run the most recently registered count tests

        Returns:
            RegressionReport with one outcome per test run
        """
        tests = self._regression_tests[-count:] if count else self._regression_tests
        report = RegressionReport(total=len(tests))

        for test in tests:
            result = self.run(test.steps, test.feature_id)
            test.last_run = datetime.now()
            test.last_result = result.passed
            failure = result.first_failure
            report.results.append(RegressionOutcome(
                test_id=test.id,
                name=test.name,
                feature_id=test.feature_id,
                passed=result.passed,
                error=failure.error if failure else None,
            ))
            if result.passed:
                report.passed += 1
            else:
                report.failed += 1

        if tests:
            self._save_registry()
        return report

    def _load_registry(self) -> None:
        if self.registry_path is None or not self.registry_path.exists():
            return
        data = json.loads(self.registry_path.read_text(encoding="utf-8"))
        self._regression_tests = [RegressionTest.model_validate(t) for t in data]

    def _save_registry(self) -> None:
        if self.registry_path is None:
            return
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        data = [t.model_dump(mode="json", by_alias=True) for t in self._regression_tests]
        self.registry_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

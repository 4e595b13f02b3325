"""Feature list generation from an application spec.

Decomposes an AppSpec into many small, verifiable features rather than a few
vague ones. Generation is deterministic: the same spec always yields the
same list. Ids are assigned in generation order starting at 1 and every
dependency points at an earlier id, so the graph is acyclic by construction.
"""

import shlex
from typing import Optional

from ..errors import SpecError
from ..models import (
    AppSpec, Complexity, Feature, FeatureCategory, FeatureList, Priority,
)

# Success-criterion feature names are cut to this many characters
CRITERION_NAME_LENGTH = 50


class FeatureListGenerator:
    """Builds the ordered feature list for a spec.

    Phases, in order: setup, backend, core features (API + UI pairs),
    integration, testing, success criteria, deploy.

    Steps the project tree can answer are emitted as file:/cmd: checks; the
    rest stay descriptive and need a configured check command.
    """

    def __init__(self, init_script: str = "init_script.sh") -> None:
        self.init_script = init_script
        self._features: list[Feature] = []
        self._next_id = 1

    def _add(
        self,
        name: str,
        description: str,
        category: FeatureCategory,
        priority: Priority,
        complexity: Complexity,
        validation_steps: list[str],
        dependencies: Optional[list[int]] = None,
    ) -> int:
        feature_id = self._next_id
        self._next_id += 1
        self._features.append(Feature(
            id=feature_id,
            name=name,
            description=description,
            category=category,
            priority=priority,
            estimated_complexity=complexity,
            validation_steps=validation_steps,
            dependencies=dependencies or [],
        ))
        return feature_id

    def generate(self, spec: AppSpec) -> list[Feature]:
        """Generate features for a spec.

        Raises:
            SpecError: If the app spec has no name
        """
        if not spec.name.strip():
            raise SpecError("App spec must have a name")

        self._features = []
        self._next_id = 1
        stack = spec.tech_stack

        # Setup
        init_id = self._add(
            "Initialize project structure",
            f"Create {stack.frontend or 'frontend'} + {stack.backend or 'backend'} scaffolding",
            FeatureCategory.SETUP, Priority.CRITICAL, Complexity.SIMPLE,
            ["file:package.json", "file:node_modules"],
        )

        if stack.database:
            self._add(
                "Setup database",
                f"Initialize {stack.database} with migrations",
                FeatureCategory.SETUP, Priority.CRITICAL, Complexity.SIMPLE,
                ["Database file/connection exists", "Migrations run successfully"],
                [init_id],
            )

        self._add(
            "Create init script",
            f"Create {self.init_script} to start all services",
            FeatureCategory.SETUP, Priority.CRITICAL, Complexity.TRIVIAL,
            [f"file:{self.init_script}", f"cmd:test -x {shlex.quote(self.init_script)}"],
            [init_id],
        )

        # Backend
        health_id = self._add(
            "Backend health endpoint",
            "GET /health returns 200 with status",
            FeatureCategory.BACKEND, Priority.CRITICAL, Complexity.TRIVIAL,
            ["GET /health returns 200", "Response includes uptime"],
            [init_id],
        )

        # Core features: each UI feature depends on its own API feature
        for core in spec.core_features:
            api_id = self._add(
                f"API: {core}",
                f"Implement backend API for {core}",
                FeatureCategory.BACKEND, Priority.HIGH, Complexity.MEDIUM,
                ["API endpoint responds", "CRUD operations work", "Error handling in place"],
                [health_id],
            )
            self._add(
                f"UI: {core}",
                f"Create frontend interface for {core}",
                FeatureCategory.FRONTEND, Priority.HIGH, Complexity.MEDIUM,
                ["Component renders", "User interactions work", "Data displays correctly"],
                [api_id],
            )

        # Integration
        if stack.auth:
            self._add(
                "Authentication system",
                f"Implement {stack.auth} authentication",
                FeatureCategory.INTEGRATION, Priority.HIGH, Complexity.COMPLEX,
                ["Login endpoint works", "Protected routes require auth", "Token refresh works"],
                [health_id],
            )

        # Testing (no forced dependencies)
        self._add(
            "Unit tests",
            "Add unit tests for core functionality",
            FeatureCategory.TESTING, Priority.MEDIUM, Complexity.MEDIUM,
            ["cmd:npm test"],
        )
        self._add(
            "E2E tests",
            "Add end-to-end tests with Playwright/Puppeteer",
            FeatureCategory.TESTING, Priority.MEDIUM, Complexity.MEDIUM,
            ["E2E tests exist", "Critical paths covered", "Tests pass"],
        )

        # Success criteria
        for criterion in spec.success_criteria:
            self._add(
                f"Success: {criterion[:CRITERION_NAME_LENGTH]}",
                criterion,
                FeatureCategory.INTEGRATION, Priority.MEDIUM, Complexity.SIMPLE,
                [criterion],
            )

        # Deploy
        if stack.hosting:
            self._add(
                "Production deployment",
                f"Deploy to {stack.hosting}",
                FeatureCategory.DEPLOY, Priority.LOW, Complexity.MEDIUM,
                ["Build succeeds", "Deploy completes", "Production URL accessible"],
            )

        return list(self._features)

    def generate_list(self, spec: AppSpec) -> FeatureList:
        """Generate a complete, integrity-checked FeatureList for a spec."""
        feature_list = FeatureList.create(spec, self.generate(spec))
        feature_list.check_integrity()
        return feature_list

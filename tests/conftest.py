"""Shared fixtures for harness tests."""

from typing import Optional

import pytest

from autonomous_harness.harness import AutonomousHarness
from autonomous_harness.models import (
    AppSpec, FeatureCategory, FeatureList, HarnessConfig, Priority, TechStack,
)

from harness_mocks import (
    MockCheckExecutor, MockImplementer, MockServiceStarter, MockVcs, make_feature,
)


@pytest.fixture
def sample_spec():
    return AppSpec(
        name="Todo App",
        description="A small app for tracking tasks",
        core_features=["Task list", "Tags"],
        tech_stack=TechStack(backend="FastAPI", frontend="React", database="SQLite"),
        success_criteria=["Users can add a task"],
    )


@pytest.fixture
def three_features():
    """Feature 1 (critical), 2 depends on 1, 3 independent (low)."""
    return [
        make_feature(1, name="Setup", priority=Priority.CRITICAL, category=FeatureCategory.SETUP),
        make_feature(2, name="API", priority=Priority.HIGH, dependencies=[1]),
        make_feature(3, name="Docs", priority=Priority.LOW, category=FeatureCategory.TESTING),
    ]


@pytest.fixture
def feature_list(sample_spec, three_features):
    return FeatureList.create(sample_spec, three_features)


@pytest.fixture
def fast_config():
    return HarnessConfig(pause_between_sessions_seconds=0, auto_save_interval_seconds=3600)


@pytest.fixture
def build_harness(tmp_path, fast_config):
    """Factory for a harness over a saved feature list with mock collaborators."""

    def _build(features_list: FeatureList, config: Optional[HarnessConfig] = None, **components):
        components.setdefault("check_executor", MockCheckExecutor())
        components.setdefault("implementer", MockImplementer())
        components.setdefault("vcs", MockVcs())
        components.setdefault("service_starter", MockServiceStarter())
        harness = AutonomousHarness(tmp_path, config or fast_config, **components)
        harness.store.save_feature_list(features_list)
        return harness

    return _build

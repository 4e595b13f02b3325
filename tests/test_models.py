"""Tests for data models."""

import json
from datetime import datetime

import pytest

from autonomous_harness.errors import FeatureListIntegrityError
from autonomous_harness.models import (
    AppSpec, FeatureList, HarnessConfig, Priority, SessionContext, SessionHandoff,
    ValidationResult, ValidationStepResult,
)

from harness_mocks import make_feature


class TestFeatureList:
    """Test FeatureList bookkeeping."""

    def test_create_derives_counts(self, sample_spec):
        """Test create() sets total and completed counts from the features."""
        features = [make_feature(1, passes=True), make_feature(2)]
        fl = FeatureList.create(sample_spec, features)

        assert fl.total_features == 2
        assert fl.completed_features == 1

    def test_get_feature_unknown_raises(self, feature_list):
        with pytest.raises(ValueError):
            feature_list.get_feature(99)
        assert feature_list.find_feature(99) is None

    def test_mark_passed_updates_counter_once(self, feature_list):
        """Test marking a feature passed twice only counts it once."""
        feature_list.mark_failed(1, "boom")
        feature_list.mark_passed(1)
        feature_list.mark_passed(1)

        feature = feature_list.get_feature(1)
        assert feature.passes
        assert feature.last_error is None
        assert feature.completed_at is not None
        assert feature_list.completed_features == 1
        feature_list.check_integrity()

    def test_mark_failed_increments_attempts(self, feature_list):
        feature_list.mark_failed(2, "first")
        feature_list.mark_failed(2, "second")

        feature = feature_list.get_feature(2)
        assert feature.attempts == 2
        assert feature.last_error == "second"
        assert not feature.passes

    def test_demote_reverses_pass(self, feature_list):
        """Test demote() flips a passing feature back and keeps counts consistent."""
        feature_list.mark_passed(1)
        feature_list.demote(1, "Regression: broke")

        feature = feature_list.get_feature(1)
        assert not feature.passes
        assert feature.completed_at is None
        assert feature.last_error == "Regression: broke"
        assert feature_list.completed_features == 0
        feature_list.check_integrity()

    def test_is_complete(self, feature_list):
        assert not feature_list.is_complete()
        for f in feature_list.features:
            feature_list.mark_passed(f.id)
        assert feature_list.is_complete()


class TestIntegrity:
    """Test FeatureList.check_integrity()."""

    def test_valid_list_passes(self, feature_list):
        feature_list.check_integrity()

    def test_completed_count_mismatch(self, feature_list):
        feature_list.completed_features = 2
        with pytest.raises(FeatureListIntegrityError, match="completedFeatures"):
            feature_list.check_integrity()

    def test_total_count_mismatch(self, feature_list):
        feature_list.total_features = 10
        with pytest.raises(FeatureListIntegrityError, match="totalFeatures"):
            feature_list.check_integrity()

    def test_duplicate_ids(self, sample_spec):
        fl = FeatureList.create(sample_spec, [make_feature(1), make_feature(1)])
        with pytest.raises(FeatureListIntegrityError, match="Duplicate"):
            fl.check_integrity()

    def test_unknown_dependency(self, sample_spec):
        fl = FeatureList.create(sample_spec, [make_feature(1, dependencies=[7])])
        with pytest.raises(FeatureListIntegrityError, match="unknown feature 7"):
            fl.check_integrity()

    def test_dependency_cycle(self, sample_spec):
        """Test a cycle through several features is detected."""
        fl = FeatureList.create(sample_spec, [
            make_feature(1, dependencies=[3]),
            make_feature(2, dependencies=[1]),
            make_feature(3, dependencies=[2]),
        ])
        with pytest.raises(FeatureListIntegrityError, match="cycle"):
            fl.check_integrity()

    def test_self_dependency_is_cycle(self, sample_spec):
        fl = FeatureList.create(sample_spec, [make_feature(1, dependencies=[1])])
        with pytest.raises(FeatureListIntegrityError):
            fl.check_integrity()

    def test_diamond_is_not_cycle(self, sample_spec):
        fl = FeatureList.create(sample_spec, [
            make_feature(1),
            make_feature(2, dependencies=[1]),
            make_feature(3, dependencies=[1]),
            make_feature(4, dependencies=[2, 3]),
        ])
        fl.check_integrity()


class TestSerialization:
    """Test the camelCase on-disk format."""

    def test_feature_list_uses_camel_case(self, feature_list):
        data = json.loads(feature_list.to_json())

        assert "appSpec" in data
        assert "totalFeatures" in data
        assert "completedFeatures" in data
        feature = data["features"][0]
        assert "validationSteps" in feature
        assert "estimatedComplexity" in feature
        assert "lastError" in feature

    def test_feature_list_round_trip(self, feature_list):
        feature_list.mark_passed(1)
        restored = FeatureList.model_validate_json(feature_list.to_json())

        assert restored.get_feature(1).passes
        assert restored.get_feature(2).dependencies == [1]
        assert restored.get_feature(1).priority == Priority.CRITICAL
        restored.check_integrity()

    def test_snake_case_input_accepted(self):
        spec = AppSpec.model_validate({"name": "X", "core_features": ["a"]})
        assert spec.core_features == ["a"]

    def test_app_spec_is_frozen(self, sample_spec):
        with pytest.raises(Exception):
            sample_spec.name = "Other"

    def test_handoff_is_frozen(self):
        handoff = SessionHandoff(completed_tasks=["a"])
        with pytest.raises(Exception):
            handoff.completed_tasks = []


class TestValidationResult:
    def test_first_failure(self):
        result = ValidationResult(passed=False, steps=[
            ValidationStepResult(description="a", passed=True),
            ValidationStepResult(description="b", passed=False, error="nope"),
        ])
        assert result.first_failure.description == "b"

    def test_no_failure(self):
        assert ValidationResult(passed=True).first_failure is None


class TestSessionContext:
    def test_usage_ratio(self):
        context = SessionContext(id="s", number=1, tokens_used=250, max_tokens=1000)
        assert context.usage_ratio == 0.25

    def test_zero_budget_counts_as_full(self):
        context = SessionContext(id="s", number=1, max_tokens=0)
        assert context.usage_ratio == 1.0


class TestHarnessConfig:
    """Test config defaults and loading."""

    def test_defaults(self):
        config = HarnessConfig()
        assert config.max_session_tokens == 100_000
        assert config.warning_threshold == 0.8
        assert config.max_retries == 3
        assert config.regression_test_count == 2
        assert config.auto_commit is True
        assert config.harness_dir == ".harness"
        assert config.progress_file == "claude_progress.txt"

    def test_load_without_file(self, tmp_path):
        assert HarnessConfig.load(tmp_path) == HarnessConfig()

    def test_load_from_file_with_overrides(self, tmp_path):
        """Test file values apply and non-None overrides win."""
        (tmp_path / ".harness").mkdir()
        (tmp_path / ".harness" / "config.json").write_text(
            json.dumps({"max_retries": 5, "max_session_tokens": 5000})
        )

        config = HarnessConfig.load(tmp_path, max_retries=None, max_session_tokens=9000)

        assert config.max_retries == 5
        assert config.max_session_tokens == 9000

    def test_load_custom_harness_dir(self, tmp_path):
        (tmp_path / "state").mkdir()
        (tmp_path / "state" / "config.json").write_text(json.dumps({"max_retries": 1}))

        config = HarnessConfig.load(tmp_path, harness_dir="state")

        assert config.max_retries == 1
        assert config.harness_dir == "state"

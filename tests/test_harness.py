"""Tests for the AutonomousHarness orchestrator."""

import sys

import pytest

from autonomous_harness.errors import FeatureListMissingError, HarnessFault
from autonomous_harness.harness import AutonomousHarness, run_harness
from autonomous_harness.models import AppSpec, HarnessConfig

from harness_mocks import MockCheckExecutor, MockImplementer, MockServiceStarter, MockVcs


class TestSetup:
    """Test initialize() and resume()."""

    def test_initialize_persists_list_and_report(self, tmp_path, sample_spec):
        harness = AutonomousHarness(tmp_path)

        feature_list = harness.initialize(sample_spec)

        assert feature_list.total_features == len(feature_list.features) > 0
        assert harness.store.feature_list_path.exists()
        assert (tmp_path / "claude_progress.txt").read_text().startswith("# Claude Progress - Todo App")

    def test_resume(self, tmp_path, sample_spec):
        AutonomousHarness(tmp_path).initialize(sample_spec)

        feature_list, progress = AutonomousHarness(tmp_path).resume()

        assert feature_list.app_spec.name == "Todo App"
        assert progress is None

    def test_resume_without_initialize(self, tmp_path):
        with pytest.raises(FeatureListMissingError):
            AutonomousHarness(tmp_path).resume()

    @pytest.mark.asyncio
    async def test_execute_session_without_initialize(self, tmp_path):
        with pytest.raises(FeatureListMissingError):
            await AutonomousHarness(tmp_path).execute_session()


class TestRunContinuous:
    """Test the continuous loop."""

    @pytest.mark.asyncio
    async def test_runs_until_complete(self, build_harness, feature_list):
        seen = []
        harness = build_harness(feature_list)

        summary = await harness.run_continuous(on_progress=seen.append)

        assert summary.success
        assert summary.total_sessions == 3
        assert summary.completed_features == 3
        assert summary.total_features == 3
        assert summary.duration_ms >= 0
        assert [p.session_number for p in seen] == [1, 2, 3]
        assert not harness.running

    @pytest.mark.asyncio
    async def test_stops_when_nothing_can_progress(self, build_harness, feature_list):
        """Test the loop ends once the rest is exhausted or blocked behind it."""
        executor = MockCheckExecutor({"check 1": False})
        config = HarnessConfig(max_retries=2, pause_between_sessions_seconds=0)
        harness = build_harness(feature_list, config=config, check_executor=executor)

        summary = await harness.run_continuous()

        assert not summary.success
        assert summary.total_sessions == 3
        assert summary.completed_features == 1

    @pytest.mark.asyncio
    async def test_already_complete_runs_no_sessions(self, build_harness, feature_list):
        for f in feature_list.features:
            feature_list.mark_passed(f.id)
        harness = build_harness(feature_list)

        summary = await harness.run_continuous()

        assert summary.success
        assert summary.total_sessions == 0

    @pytest.mark.asyncio
    async def test_stop_after_current_session(self, build_harness, feature_list):
        """Test stop() lets the in-flight session finish, then exits."""
        harness = build_harness(feature_list)

        def on_progress(progress):
            harness.stop()

        summary = await harness.run_continuous(on_progress=on_progress)

        assert summary.total_sessions == 1
        assert summary.completed_features == 1
        assert harness.store.progress_numbers() == [1]

    @pytest.mark.asyncio
    async def test_stop_file_honored_and_cleared(self, build_harness, feature_list):
        harness = build_harness(feature_list)

        def on_progress(progress):
            harness.stop_controller.request_stop("from another terminal")

        summary = await harness.run_continuous(on_progress=on_progress)

        assert summary.total_sessions == 1
        assert not harness.stop_controller.stop_file.exists()

    @pytest.mark.asyncio
    async def test_stale_stop_file_ignored(self, build_harness, feature_list):
        harness = build_harness(feature_list)
        harness.stop_controller.request_stop()

        summary = await harness.run_continuous()

        assert summary.total_sessions == 3

    @pytest.mark.asyncio
    async def test_fault_propagates(self, build_harness, feature_list):
        implementer = MockImplementer(error=RuntimeError("agent crashed"))
        harness = build_harness(feature_list, implementer=implementer)

        with pytest.raises(HarnessFault):
            await harness.run_continuous()

        assert not harness.running
        assert harness.store.load_progress(1) is not None

    @pytest.mark.asyncio
    async def test_run_harness(self, tmp_path, feature_list, fast_config):
        harness = AutonomousHarness(tmp_path, fast_config)
        harness.store.save_feature_list(feature_list)

        summary = await run_harness(
            str(tmp_path),
            fast_config,
            check_executor=MockCheckExecutor(),
            implementer=MockImplementer(),
            vcs=MockVcs(),
            service_starter=MockServiceStarter(),
        )

        assert summary.success


class TestDefaultCollaborators:
    """Test a generated feature list against a real project tree."""

    @pytest.fixture
    def prepared_project(self, tmp_path):
        (tmp_path / "package.json").write_text('{"name": "todo"}')
        (tmp_path / "node_modules").mkdir()
        script = tmp_path / "init_script.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o755)
        return tmp_path

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX scripts")
    async def test_setup_features_pass_in_prepared_project(self, prepared_project, fast_config):
        harness = AutonomousHarness(prepared_project, fast_config)
        harness.initialize(AppSpec(name="Todo App", core_features=["Task list"]))

        first = await harness.execute_session()
        second = await harness.execute_session()

        assert first.completed_features == [1]
        assert second.completed_features == [2]
        assert harness.feature_list.get_feature(2).name == "Create init script"
        assert not second.app_state.backend_running

    @pytest.mark.asyncio
    async def test_descriptive_steps_use_configured_commands(self, prepared_project):
        config = HarnessConfig(
            pause_between_sessions_seconds=0,
            fallback_check_command=f'"{sys.executable}" -c "pass"',
        )
        harness = AutonomousHarness(prepared_project, config)
        harness.initialize(AppSpec(name="Todo App", core_features=["Task list"]))
        feature = harness.feature_list.get_feature(3)

        result = harness.validation.validate_feature(feature)

        assert feature.name == "Backend health endpoint"
        assert result.passed


class TestStatus:
    def test_status_uninitialized(self, tmp_path):
        assert not AutonomousHarness(tmp_path).get_status().initialized

    def test_status_shows_pending_stop(self, build_harness, feature_list):
        harness = build_harness(feature_list)
        harness.stop_controller.request_stop("Deploy window")

        assert harness.get_status().stop_reason == "Deploy window"

    @pytest.mark.asyncio
    async def test_status_after_session(self, build_harness, feature_list):
        harness = build_harness(feature_list)
        await harness.execute_session()

        status = harness.get_status()

        assert status.initialized
        assert status.app_name == "Todo App"
        assert status.total_features == 3
        assert status.completed_features == 1
        assert status.blocked_features == 0
        assert status.next_task.startswith("#2: API")
        assert status.sessions_recorded == 1
        assert status.last_session_number == 1
        assert status.last_session_tokens.used > 0

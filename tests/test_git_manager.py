"""Tests for the git VCS adapter and the default service starter."""

import os
import shutil

import pytest

from autonomous_harness.git_manager import GitManager, commit_message
from autonomous_harness.models import FeatureCategory
from autonomous_harness.protocols import ServiceStarter, VcsAdapter
from autonomous_harness.services import InitScriptStarter, NullImplementer, NullServiceStarter
from autonomous_harness.planning import ExecutionPlanner

from harness_mocks import make_feature

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def repo(tmp_path, monkeypatch):
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Harness")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "harness@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Harness")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "harness@example.com")
    return tmp_path


class TestGitManager:
    def test_commit_message(self):
        feature = make_feature(4, name="Task API", category=FeatureCategory.BACKEND)
        assert commit_message(feature) == "feat(backend): Task API\n\nFeature #4 completed"

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(GitManager(tmp_path), VcsAdapter)

    @requires_git
    def test_commit_initializes_repo(self, repo):
        (repo / "app.py").write_text("print('hi')\n")
        git = GitManager(repo)

        record = git.commit(make_feature(1, name="Setup"))

        assert record is not None
        assert len(record.sha) == 40
        assert record.feature_id == 1
        assert git.last_commit() == record.sha
        assert not git.has_changes()

    @requires_git
    def test_nothing_to_commit(self, repo):
        (repo / "app.py").write_text("x\n")
        git = GitManager(repo)
        git.commit(make_feature(1))

        assert git.commit(make_feature(2)) is None

    @requires_git
    def test_no_init_when_disabled(self, repo):
        (repo / "app.py").write_text("x\n")
        assert GitManager(repo, init_if_missing=False).commit(make_feature(1)) is None

    @requires_git
    def test_environment(self, repo):
        (repo / "app.py").write_text("x\n")
        git = GitManager(repo)
        record = git.commit(make_feature(1))

        env = git.environment()

        assert env.last_commit == record.sha
        assert env.git_branch

    def test_environment_outside_repo(self, tmp_path):
        env = GitManager(tmp_path).environment()
        assert env.last_commit == ""


class TestServices:
    def test_protocols(self):
        assert isinstance(InitScriptStarter(), ServiceStarter)
        assert isinstance(NullServiceStarter(), ServiceStarter)

    def test_missing_script(self, tmp_path):
        state = InitScriptStarter().start(tmp_path)
        assert not state.backend_running

    def test_non_executable_script(self, tmp_path):
        script = tmp_path / "init_script.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o644)
        assert not InitScriptStarter().start(tmp_path).backend_running

    @pytest.mark.skipif(os.name == "nt", reason="POSIX scripts")
    def test_script_not_run_reports_nothing_running(self, tmp_path):
        """Test an unrun script never claims services are up."""
        script = tmp_path / "init_script.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o755)

        state = InitScriptStarter().start(tmp_path)

        assert not state.backend_running
        assert not state.frontend_running
        assert state.last_health_check is None

    @pytest.mark.skipif(os.name == "nt", reason="POSIX scripts")
    def test_run_script(self, tmp_path):
        script = tmp_path / "init_script.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o755)

        state = InitScriptStarter(run=True).start(tmp_path)

        assert state.backend_running
        assert state.last_health_check is not None

    @pytest.mark.skipif(os.name == "nt", reason="POSIX scripts")
    def test_run_failing_script(self, tmp_path):
        script = tmp_path / "init_script.sh"
        script.write_text("#!/bin/sh\nexit 1\n")
        script.chmod(0o755)

        assert not InitScriptStarter(run=True).start(tmp_path).backend_running

    @pytest.mark.asyncio
    async def test_null_implementer(self):
        plan = ExecutionPlanner().build(make_feature(3))
        result = await NullImplementer().run(plan)
        assert result.artifacts == []
        assert "plan_feature_3" in result.notes

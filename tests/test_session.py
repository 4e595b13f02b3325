"""Tests for session lifecycle, tracking and forced resets."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from autonomous_harness.errors import NoActiveSessionError
from autonomous_harness.models import (
    ArtifactType, DecisionOutcome, HarnessConfig, Relevance, SessionErrorType,
)
from autonomous_harness.persistence import HarnessStore
from autonomous_harness.session import COMPRESSED_REASONING, SessionManager


@pytest.fixture
def manager(tmp_path):
    config = HarnessConfig(max_session_tokens=1000, auto_save_interval_seconds=0.01)
    return SessionManager(HarnessStore(tmp_path, config), config)


class TestLifecycle:
    """Test starting and ending sessions."""

    def test_start_session_numbers_from_one(self, manager):
        context = manager.start_session()
        assert context.number == 1
        assert context.max_tokens == 1000
        assert manager.current is context

    def test_end_session_archives_and_persists_handoff(self, manager):
        manager.start_session()
        manager.track_decision("Build API")

        handoff = manager.end_session()

        assert manager.current is None
        assert handoff.partial_tasks == ["Build API"]
        assert manager.history.count() == 1
        assert manager.history.latest().handoff == handoff
        assert manager.history.latest().ended_at is not None
        assert manager.store.load_handoff() == handoff

    def test_numbers_increase_across_sessions(self, manager):
        manager.start_session()
        manager.end_session()
        assert manager.start_session().number == 2

    def test_numbers_continue_after_progress_records(self, manager):
        """Test numbering skips past persisted progress even with empty history."""
        manager.store.ensure_dirs()
        manager.store.progress_path(4).write_text("{}")
        assert manager.start_session().number == 5

    def test_start_while_active_ends_previous(self, manager):
        manager.start_session()
        manager.start_session()
        assert manager.history.count() == 1

    def test_operations_require_session(self, manager):
        with pytest.raises(NoActiveSessionError):
            manager.track_decision("x")
        with pytest.raises(NoActiveSessionError):
            manager.track_file_read("a.py", "x")
        with pytest.raises(NoActiveSessionError):
            manager.end_session()

    def test_seed_from_handoff(self, manager):
        manager.start_session()
        manager.track_decision("Unfinished")
        manager.track_error(SessionErrorType.BUILD, "compile error")
        handoff = manager.end_session()

        context = manager.start_session(handoff)

        assert context.decisions[0].description == "Unfinished"
        assert context.errors[0].message == "compile error"
        assert context.tokens_used > 0


class TestTracking:
    """Test context tracking."""

    def test_track_file_read_charges_tokens(self, manager):
        manager.start_session()
        tokens = manager.track_file_read("app.py", "x" * 40)

        assert tokens == 13
        assert manager.current.tokens_used == 13
        assert manager.current.files[0].relevance == Relevance.MEDIUM

    def test_reread_refreshes_entry_and_charges_again(self, manager):
        manager.start_session()
        manager.track_file_read("notes.txt", "x" * 40, Relevance.LOW)
        manager.track_file_read("notes.txt", "x" * 80, Relevance.HIGH, summary="Notes")

        assert len(manager.current.files) == 1
        entry = manager.current.files[0]
        assert entry.relevance == Relevance.HIGH
        assert entry.tokens == 22
        assert entry.summary == "Notes"
        assert manager.current.tokens_used == 11 + 22

    def test_decisions(self, manager):
        manager.start_session()
        decision_id = manager.track_decision("Use SQLite", "Simple", reversible=False)

        assert manager.update_decision(decision_id, DecisionOutcome.SUCCESS)
        assert not manager.update_decision("decision_missing", DecisionOutcome.FAILURE)
        decision = manager.current.decisions[0]
        assert decision.outcome == DecisionOutcome.SUCCESS
        assert decision.reversible is False

    def test_errors_resolve_by_message(self, manager):
        manager.start_session()
        manager.track_error(SessionErrorType.TEST, "test_login failed", file="tests/test_login.py", line=12)

        assert manager.resolve_error("test_login failed", "Fixed fixture")
        assert not manager.resolve_error("test_login failed", "again")
        assert manager.current.unresolved_errors == []
        assert manager.current.errors[0].resolution == "Fixed fixture"

    def test_artifacts(self, manager):
        manager.start_session()
        artifact = manager.track_artifact(ArtifactType.CODE, "src/api.py", "API module")
        assert manager.current.artifacts == [artifact]
        assert artifact.tokens == manager.governor.estimate_text("API module")


class TestForcedReset:
    """Test budget exhaustion handling."""

    def test_exhausting_budget_forces_reset(self, manager):
        """Test crossing the budget ends the session and starts a seeded one."""
        manager.start_session()
        manager.track_decision("Implement login")
        manager.track_file_read("big.py", "x" * 4000)

        assert manager.forced_resets == [1]
        context = manager.current
        assert context.number == 2
        assert [d.description for d in context.decisions] == ["Implement login"]
        assert "big.py" not in [f.path for f in context.files]

        archived = manager.history.get(1)
        assert "Forced reset: Token limit exceeded" in archived.handoff.warnings

    def test_seeding_never_resets(self, manager):
        """Test a huge handoff seeds a session without an immediate reset."""
        manager.start_session()
        manager.track_decision("a" * 1000)
        handoff = manager.end_session()
        manager.config.max_session_tokens = 100

        context = manager.start_session(handoff)

        assert context.tokens_used > context.max_tokens
        assert manager.forced_resets == []

    def test_high_relevance_file_survives_reset(self, manager):
        manager.start_session()
        manager.track_file_read("claude_progress.txt", "progress", Relevance.CRITICAL, summary="Progress")
        manager.track_file_read("big.py", "x" * 4000)

        assert manager.current.files[0].path == "claude_progress.txt"
        assert manager.current.files[0].tokens == 0


class TestCompression:
    """Test compress_context()."""

    def test_drops_low_relevance_files(self, manager):
        manager.start_session()
        manager.track_file_read("a.txt", "x" * 40, Relevance.LOW)
        manager.track_file_read("b.txt", "x" * 40, Relevance.HIGH)

        freed = manager.compress_context()

        assert freed == 11
        assert [f.path for f in manager.current.files] == ["b.txt"]
        assert manager.current.tokens_used == 11

    def test_compresses_old_decision_reasoning(self, manager):
        manager.start_session()
        manager.track_decision("Pick ORM", "r" * 400)
        before = manager.current.tokens_used

        freed = manager.compress_context(now=datetime.now() + timedelta(hours=1))

        decision = manager.current.decisions[0]
        assert decision.reasoning == COMPRESSED_REASONING
        assert decision.description == "Pick ORM"
        assert freed > 0
        assert manager.current.tokens_used == before - freed

    def test_recent_decisions_untouched(self, manager):
        manager.start_session()
        manager.track_decision("Pick ORM", "r" * 400)

        assert manager.compress_context() == 0
        assert manager.current.decisions[0].reasoning == "r" * 400

    def test_second_compression_frees_nothing(self, manager):
        manager.start_session()
        manager.track_file_read("a.txt", "x" * 40, Relevance.LOW)
        manager.compress_context()
        assert manager.compress_context() == 0


class TestAutoSave:
    """Test background auto-save."""

    def test_no_task_without_event_loop(self, manager):
        manager.start_session()
        assert manager._auto_save_task is None

    @pytest.mark.asyncio
    async def test_auto_save_writes_current_session(self, manager):
        context = manager.start_session()
        manager.track_decision("In flight")

        await asyncio.sleep(0.05)

        saved = manager.store.load_current_session(context.number)
        assert saved is not None
        assert saved.decisions[0].description == "In flight"
        manager.end_session()

    @pytest.mark.asyncio
    async def test_auto_save_failure_is_reported(self, manager, monkeypatch):
        def fail(context):
            raise OSError("disk full")

        monkeypatch.setattr(manager.store, "save_current_session", fail)
        with patch("autonomous_harness.session.console") as console:
            manager.start_session()
            await asyncio.sleep(0.05)

            printed = " ".join(str(call.args[0]) for call in console.print.call_args_list)
            assert "Auto-save stopped: disk full" in printed
        manager.end_session()

    @pytest.mark.asyncio
    async def test_end_session_cancels_and_clears(self, manager):
        context = manager.start_session()
        await asyncio.sleep(0.03)

        manager.end_session()
        await asyncio.sleep(0.03)

        assert manager._auto_save_task is None
        assert manager.store.load_current_session(context.number) is None


class TestStatus:
    def test_status_between_sessions(self, manager):
        status = manager.get_status()
        assert not status.has_active_session
        assert status.token_usage.used == 0
        assert status.token_usage.max == 1000

    def test_status_during_session(self, manager):
        manager.start_session()
        manager.track_file_read("a.py", "x" * 40)
        manager.track_error(SessionErrorType.RUNTIME, "boom")

        status = manager.get_status()

        assert status.has_active_session
        assert status.files_tracked == 1
        assert status.errors_active == 1
        assert status.token_usage.used == 13

"""Tests for SessionGuard, the non-raising boundary used by the host session."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from lifeline.contracts.enums import CheckpointTrigger, InterruptionReason
from lifeline.contracts.resume import FidelityComponents
from lifeline.contracts.signals import ToolCallEvent
from lifeline.core.config import CheckpointSettings, LifelineSettings, StoreSettings
from lifeline.core.store.database import StoreDB
from lifeline.core.store.store import CheckpointStore
from lifeline.engine.clock import MockClock
from lifeline.engine.guard import SessionGuard
from tests.fixtures.factories import make_snapshot


def _tool_calls(guard: SessionGuard, session_id: str, count: int) -> None:
    for _ in range(count):
        guard.observe(session_id, ToolCallEvent(tool="bash", success=True, latency_ms=50.0))


class TestObserve:
    def test_counts_tool_calls(self, guard: SessionGuard) -> None:
        _tool_calls(guard, "s1", 3)
        assert guard.aggregator.assess("s1").tool_call_count == 3

    def test_aggregator_failure_is_swallowed(self, guard: SessionGuard, monkeypatch: pytest.MonkeyPatch) -> None:
        def explode(session_id: str, event: object) -> None:
            raise RuntimeError("boom")

        monkeypatch.setattr(guard.aggregator, "observe", explode)

        with capture_logs() as logs:
            guard.observe("s1", ToolCallEvent(tool="bash", success=True, latency_ms=1.0))

        assert [e["event"] for e in logs] == ["signal_observe_failed"]


class TestReportSnapshot:
    def test_nothing_due(self, guard: SessionGuard) -> None:
        guard.on_session_start("s1")
        assert guard.report_snapshot("s1", make_snapshot()) is None

    def test_tool_interval_checkpoint(self, guard: SessionGuard, store: CheckpointStore) -> None:
        guard.on_session_start("s1")
        _tool_calls(guard, "s1", 5)

        result = guard.report_snapshot("s1", make_snapshot())

        assert result is not None
        assert result.success
        assert result.triggered_by is CheckpointTrigger.TOOL_CALL_INTERVAL
        assert result.checkpoint_number == 1
        assert store.count_by_session("s1") == 1

    def test_force(self, guard: SessionGuard) -> None:
        result = guard.report_snapshot("s1", make_snapshot(), force=True, reason="user asked")

        assert result is not None
        assert result.triggered_by is CheckpointTrigger.USER_REQUESTED

    def test_explicit_trigger(self, guard: SessionGuard) -> None:
        result = guard.checkpoint("s1", make_snapshot(), CheckpointTrigger.MILESTONE)

        assert result is not None
        assert result.success
        assert result.triggered_by is CheckpointTrigger.MILESTONE

    def test_disabled_skips_automatic_but_not_forced(self, store: CheckpointStore, clock: MockClock) -> None:
        settings = LifelineSettings(checkpoint=CheckpointSettings(enabled=False))
        with SessionGuard(store, settings, clock=clock) as guard:
            _tool_calls(guard, "s1", 10)
            assert guard.report_snapshot("s1", make_snapshot()) is None

            forced = guard.report_snapshot("s1", make_snapshot(), force=True)

        assert forced is not None
        assert forced.success

    def test_validation_failure_is_returned(self, guard: SessionGuard, store: CheckpointStore) -> None:
        with capture_logs() as logs:
            result = guard.report_snapshot("s1", make_snapshot(summary="s" * 2000), force=True)

        assert result is not None
        assert not result.success
        assert result.error_type == "CheckpointValidationError"
        assert result.error is not None
        assert "conversation_state.summary" in result.error
        assert store.count_by_session("s1") == 0
        assert any(e["event"] == "checkpoint_failed" for e in logs)

    def test_store_timeout_is_abandoned(self, store: CheckpointStore, clock: MockClock, monkeypatch: pytest.MonkeyPatch) -> None:
        release = threading.Event()
        original_save = store.save

        def slow_save(checkpoint, **kwargs):  # type: ignore[no-untyped-def]
            release.wait(timeout=5)
            return original_save(checkpoint, **kwargs)

        monkeypatch.setattr(store, "save", slow_save)
        settings = LifelineSettings(checkpoint=CheckpointSettings(store_timeout_seconds=0.05))
        guard = SessionGuard(store, settings, clock=clock)
        try:
            result = guard.report_snapshot("s1", make_snapshot(), force=True)
        finally:
            release.set()
            guard.close()

        assert result is not None
        assert not result.success
        assert result.error_type == "CheckpointTimeoutError"

    def test_abandoned_attempt_leaves_no_row(
        self, store: CheckpointStore, clock: MockClock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        release = threading.Event()
        original_next = store.next_checkpoint_number

        def slow_next(session_id: str) -> int:
            release.wait(timeout=5)
            return original_next(session_id)

        monkeypatch.setattr(store, "next_checkpoint_number", slow_next)
        settings = LifelineSettings(checkpoint=CheckpointSettings(store_timeout_seconds=0.05))
        guard = SessionGuard(store, settings, clock=clock)
        _tool_calls(guard, "s1", 6)
        with capture_logs() as logs:
            try:
                result = guard.report_snapshot("s1", make_snapshot(), force=True)
            finally:
                release.set()
                # Waits for the abandoned attempt to finish on the worker
                guard.close()

        assert result is not None
        assert result.error_type == "CheckpointTimeoutError"
        assert store.count_by_session("s1") == 0
        assert guard.aggregator.periodic_state("s1").tool_calls_since_checkpoint == 6
        assert "checkpoint_abandoned" in [e["event"] for e in logs]

    def test_bad_error_tag_does_not_block_checkpoints(self, guard: SessionGuard, store: CheckpointStore) -> None:
        guard.observe("s1", ToolCallEvent(tool="bash", success=False, latency_ms=5.0, error=RuntimeError("x")))  # type: ignore[arg-type]
        guard.observe("s1", ToolCallEvent(tool="bash", success=False, latency_ms=5.0, error="timeout"))

        result = guard.report_snapshot("s1", make_snapshot(), force=True)

        assert result is not None
        assert result.success
        assert store.count_by_session("s1") == 1
        assert guard.aggregator.assess("s1").error_patterns == ("timeout",)

    def test_closed_guard_reports_failure(self, store: CheckpointStore, clock: MockClock) -> None:
        guard = SessionGuard(store, clock=clock)
        guard.close()

        result = guard.report_snapshot("s1", make_snapshot(), force=True)

        assert result is not None
        assert not result.success
        assert result.error_type == "RuntimeError"


class TestResume:
    def test_new_session_has_nothing_to_resume(self, guard: SessionGuard) -> None:
        decision = guard.on_session_start("s1")

        assert not decision.should_resume
        assert guard.aggregator.has_session("s1")

    def test_offer_after_crash(self, guard: SessionGuard, clock: MockClock) -> None:
        guard.checkpoint("s1", make_snapshot(), CheckpointTrigger.DANGER_ZONE)
        clock.advance(40)

        decision = guard.on_session_start("s1")

        assert decision.should_resume
        assert decision.interruption_reason is InterruptionReason.CRASH

    def test_consume_once(self, guard: SessionGuard, clock: MockClock, store: CheckpointStore) -> None:
        guard.checkpoint("s1", make_snapshot(), CheckpointTrigger.DANGER_ZONE)
        clock.advance(40)
        decision = guard.on_session_start("s1")

        event = guard.consume_resume(decision, accepted=True, components=FidelityComponents(task_restored=True))
        with capture_logs() as logs:
            again = guard.consume_resume(decision, accepted=True)

        assert event is not None
        assert event.fidelity_score == pytest.approx(0.4)
        assert again is None
        assert [e["event"] for e in logs if e["event"] == "resume_consume_failed"] == ["resume_consume_failed"]
        assert [e.success for e in store.list_resume_events("s1")] == [True, False]

    def test_resume_check_failure_becomes_negative(self, guard: SessionGuard, monkeypatch: pytest.MonkeyPatch) -> None:
        def explode(session_id: str) -> None:
            raise RuntimeError("boom")

        monkeypatch.setattr(guard.detector, "check_resume_needed", explode)

        decision = guard.on_session_start("s1")

        assert not decision.should_resume
        assert decision.reason == "Resume check failed: RuntimeError: boom"


class TestEndSession:
    def test_clean_end_is_not_resumed(self, guard: SessionGuard, clock: MockClock) -> None:
        guard.on_session_start("s1")

        result = guard.end_session("s1", make_snapshot())
        clock.advance(30)
        decision = guard.on_session_start("s1")

        assert result is not None
        assert result.triggered_by is CheckpointTrigger.SESSION_END
        assert not decision.should_resume
        assert decision.reason == "Session ended cleanly"

    def test_end_without_snapshot_evicts(self, guard: SessionGuard) -> None:
        guard.on_session_start("s1")

        assert guard.end_session("s1") is None
        assert not guard.aggregator.has_session("s1")


class TestFromSettings:
    def test_opens_and_closes_file_store(self, tmp_path: Path, clock: MockClock) -> None:
        path = tmp_path / "state" / "checkpoints.db"
        settings = LifelineSettings(store=StoreSettings(url=f"sqlite:///{path}"))

        with SessionGuard.from_settings(settings, clock=clock) as guard:
            result = guard.report_snapshot("s1", make_snapshot(), force=True)

        assert result is not None
        assert result.success
        with StoreDB.from_url(f"sqlite:///{path}") as db:
            assert CheckpointStore(db).count_by_session("s1") == 1

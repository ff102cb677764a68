"""Unit tests for SignalAggregator counters, assessment and bookkeeping."""

from __future__ import annotations

import threading

import pytest
from structlog.testing import capture_logs

from lifeline.contracts.enums import CrashRisk, LatencyTrend, MessageRole, ResponseLatencyTrend
from lifeline.contracts.signals import MessageEvent, ToolCallEvent
from lifeline.core.config import RiskSettings
from lifeline.core.signals.aggregator import SignalAggregator
from lifeline.engine.clock import MockClock


def _tool(success: bool = True, latency_ms: float = 100.0, error: str | None = None) -> ToolCallEvent:
    return ToolCallEvent(tool="bash", success=success, latency_ms=latency_ms, error=error)


def _message(content: str = "hello", role: MessageRole = MessageRole.USER) -> MessageEvent:
    return MessageEvent(role=role, content=content)


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def aggregator(clock: MockClock) -> SignalAggregator:
    return SignalAggregator(RiskSettings(context_window_tokens=1000), tool_call_interval=5, clock=clock)


class TestRegistry:
    def test_start_session_is_idempotent(self, aggregator: SignalAggregator) -> None:
        aggregator.start_session("s1")
        aggregator.observe("s1", _tool())
        aggregator.start_session("s1")

        assert aggregator.assess("s1").tool_call_count == 1
        assert aggregator.sessions() == ["s1"]

    def test_sessions_are_isolated(self, aggregator: SignalAggregator) -> None:
        aggregator.observe("s1", _tool())
        aggregator.observe("s1", _tool())
        aggregator.observe("s2", _tool())

        assert aggregator.assess("s1").tool_call_count == 2
        assert aggregator.assess("s2").tool_call_count == 1

    def test_evict_drops_counters(self, aggregator: SignalAggregator) -> None:
        aggregator.observe("s1", _tool())

        assert aggregator.evict("s1") is True
        assert not aggregator.has_session("s1")
        assert aggregator.evict("s1") is False
        assert aggregator.assess("s1").tool_call_count == 0


class TestToolSignals:
    def test_counts_and_latency(self, aggregator: SignalAggregator) -> None:
        for latency in (100.0, 200.0, 300.0):
            aggregator.observe("s1", _tool(latency_ms=latency))

        snapshot = aggregator.assess("s1")
        assert snapshot.tool_call_count == 3
        assert snapshot.tool_calls_since_checkpoint == 3
        assert snapshot.avg_response_latency_ms == pytest.approx(200.0)
        assert snapshot.response_latency_trend is ResponseLatencyTrend.NORMAL

    def test_failures(self, aggregator: SignalAggregator) -> None:
        aggregator.observe("s1", _tool())
        aggregator.observe("s1", _tool(success=False, error="timeout"))
        aggregator.observe("s1", _tool(success=False, error="permission_denied"))
        aggregator.observe("s1", _tool(success=False))

        snapshot = aggregator.assess("s1")
        assert snapshot.tool_failure_rate == pytest.approx(0.75)
        assert snapshot.consecutive_tool_failures == 3
        assert snapshot.total_tool_failures == 3
        assert snapshot.error_patterns == ("timeout", "permission_denied")
        assert "3 consecutive tool failures" in snapshot.risk_factors

    def test_success_resets_consecutive_failures(self, aggregator: SignalAggregator) -> None:
        aggregator.observe("s1", _tool(success=False))
        aggregator.observe("s1", _tool(success=False))
        aggregator.observe("s1", _tool())

        snapshot = aggregator.assess("s1")
        assert snapshot.consecutive_tool_failures == 0
        assert snapshot.total_tool_failures == 2

    def test_failure_rate_uses_rolling_window(self, clock: MockClock) -> None:
        aggregator = SignalAggregator(RiskSettings(failure_window=4), clock=clock)
        for _ in range(4):
            aggregator.observe("s1", _tool(success=False))
        for _ in range(4):
            aggregator.observe("s1", _tool())

        assert aggregator.assess("s1").tool_failure_rate == 0.0

    def test_latency_trend(self, aggregator: SignalAggregator) -> None:
        for latency in (100.0, 400.0, 800.0, 1500.0, 2500.0, 4000.0):
            aggregator.observe("s1", _tool(latency_ms=latency))

        snapshot = aggregator.assess("s1")
        assert snapshot.latency_trend is LatencyTrend.INCREASING
        assert "Tool latency increasing" in snapshot.risk_factors


class TestMessageSignals:
    def test_tokens_and_usage(self, aggregator: SignalAggregator) -> None:
        aggregator.observe("s1", _message("x" * 400))
        aggregator.observe("s1", _message("y" * 200, role=MessageRole.ASSISTANT))

        snapshot = aggregator.assess("s1")
        assert snapshot.message_count == 2
        assert snapshot.estimated_total_tokens == 150
        assert snapshot.tokens_per_message == pytest.approx(75.0)
        assert snapshot.context_window_usage == pytest.approx(0.15)
        assert snapshot.context_window_remaining == 850

    def test_messages_per_minute(self, aggregator: SignalAggregator, clock: MockClock) -> None:
        for _ in range(5):
            aggregator.observe("s1", _message())
            clock.advance(15)

        # 4 intervals of 15s between 5 messages
        assert aggregator.assess("s1").messages_per_minute == pytest.approx(4.0)

    def test_remaining_never_negative(self, aggregator: SignalAggregator) -> None:
        aggregator.observe("s1", _message("z" * 8000))
        snapshot = aggregator.assess("s1")
        assert snapshot.context_window_usage == pytest.approx(2.0)
        assert snapshot.context_window_remaining == 0

    def test_danger_from_usage_and_message_count(self, aggregator: SignalAggregator) -> None:
        # 55 messages of 15 tokens: 825 / 1000 tokens, 55 messages
        for _ in range(55):
            aggregator.observe("s1", _message("m" * 60))

        snapshot = aggregator.assess("s1")
        assert snapshot.context_window_usage == pytest.approx(0.825)
        assert snapshot.message_count == 55
        assert snapshot.crash_risk is CrashRisk.DANGER


class TestTimeSignals:
    def test_session_duration(self, aggregator: SignalAggregator, clock: MockClock) -> None:
        aggregator.start_session("s1")
        clock.advance(125)

        assert aggregator.assess("s1").session_duration_seconds == pytest.approx(125.0)

    def test_time_since_last_response(self, aggregator: SignalAggregator, clock: MockClock) -> None:
        aggregator.observe("s1", _message(role=MessageRole.ASSISTANT))
        clock.advance(30)
        aggregator.observe("s1", _message(role=MessageRole.USER))
        clock.advance(10)

        assert aggregator.assess("s1").time_since_last_response_seconds == pytest.approx(40.0)


class TestMalformedEvents:
    @pytest.mark.parametrize(
        "event",
        [
            ToolCallEvent(tool="", success=True, latency_ms=1.0),
            ToolCallEvent(tool="bash", success="yes", latency_ms=1.0),  # type: ignore[arg-type]
            ToolCallEvent(tool="bash", success=True, latency_ms=float("nan")),
            ToolCallEvent(tool="bash", success=True, latency_ms=-5.0),
            ToolCallEvent(tool="bash", success=True, latency_ms="fast"),  # type: ignore[arg-type]
            MessageEvent(role="system", content="hi"),  # type: ignore[arg-type]
            MessageEvent(role=MessageRole.USER, content=None),  # type: ignore[arg-type]
            {"tool": "bash"},
        ],
    )
    def test_malformed_events_are_dropped_and_logged(self, aggregator: SignalAggregator, event: object) -> None:
        with capture_logs() as logs:
            aggregator.observe("s1", event)  # type: ignore[arg-type]

        assert [entry["event"] for entry in logs] == ["signal_event_ignored"]
        snapshot = aggregator.assess("s1")
        assert snapshot.tool_call_count == 0
        assert snapshot.message_count == 0

    def test_non_string_error_tag_never_reaches_error_patterns(self, aggregator: SignalAggregator) -> None:
        event = ToolCallEvent(tool="bash", success=False, latency_ms=5.0, error=ValueError("boom"))  # type: ignore[arg-type]

        with capture_logs() as logs:
            aggregator.observe("s1", event)

        assert logs[0]["reason"] == "error tag is ValueError, expected str"
        snapshot = aggregator.assess("s1")
        assert snapshot.error_patterns == ()
        assert snapshot.total_tool_failures == 0


class TestCheckpointBookkeeping:
    def test_tool_interval_crossing_is_recorded_once(self, aggregator: SignalAggregator, clock: MockClock) -> None:
        for _ in range(4):
            aggregator.observe("s1", _tool())
            clock.advance(1)
        aggregator.observe("s1", _tool())  # fifth call at t=4
        clock.advance(10)
        aggregator.observe("s1", _tool())

        state = aggregator.periodic_state("s1")
        assert state.tool_calls_since_checkpoint == 6
        assert state.tool_interval_crossed_at == 4.0
        assert state.now == 14.0

    def test_mark_checkpoint_resets_periodic_counters(self, aggregator: SignalAggregator, clock: MockClock) -> None:
        for _ in range(6):
            aggregator.observe("s1", _tool())
        clock.advance(50)

        aggregator.mark_checkpoint("s1", CrashRisk.SAFE)

        state = aggregator.periodic_state("s1")
        assert state.tool_calls_since_checkpoint == 0
        assert state.tool_interval_crossed_at is None
        assert state.last_checkpoint_at == 50.0
        assert aggregator.time_since_checkpoint("s1") == 0.0
        # Lifetime counters are untouched
        assert aggregator.assess("s1").tool_call_count == 6

    def test_mark_checkpoint_raises_latch(self, aggregator: SignalAggregator) -> None:
        aggregator.mark_checkpoint("s1", CrashRisk.WARNING)
        assert aggregator.periodic_state("s1").risk_latch is CrashRisk.WARNING

        aggregator.mark_checkpoint("s1", CrashRisk.DANGER)
        assert aggregator.periodic_state("s1").risk_latch is CrashRisk.DANGER

    def test_latch_never_lowered_by_checkpoint(self, aggregator: SignalAggregator) -> None:
        aggregator.mark_checkpoint("s1", CrashRisk.DANGER)
        aggregator.mark_checkpoint("s1", CrashRisk.WARNING)
        assert aggregator.periodic_state("s1").risk_latch is CrashRisk.DANGER

    def test_safe_assessment_releases_latch(self, aggregator: SignalAggregator) -> None:
        aggregator.mark_checkpoint("s1", CrashRisk.DANGER)

        assert aggregator.assess("s1").crash_risk is CrashRisk.SAFE
        assert aggregator.periodic_state("s1").risk_latch is CrashRisk.SAFE


class TestConcurrency:
    def test_concurrent_observations_are_all_counted(self, clock: MockClock) -> None:
        aggregator = SignalAggregator(clock=clock)

        def worker() -> None:
            for _ in range(200):
                aggregator.observe("s1", _tool())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert aggregator.assess("s1").tool_call_count == 800

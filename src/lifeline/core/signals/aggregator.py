"""Per-session signal aggregation.

SignalAggregator owns one SessionSignals per live session, keyed by session
id. Each SessionSignals carries its own lock; there is no cross-session
locking beyond the short registry lock that guards the map itself.

observe() is fire-and-forget: malformed events are logged and dropped,
never raised, because losing one sample must not disturb the host session.
assess() rebuilds a SignalSnapshot from the counters on every call.

Checkpoint bookkeeping (tool calls since checkpoint, last checkpoint time,
risk latch) is only reset by mark_checkpoint(), which the manager calls
after a checkpoint has actually been persisted.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from lifeline.contracts.enums import CrashRisk, MessageRole
from lifeline.contracts.signals import MessageEvent, SignalSnapshot, ToolCallEvent
from lifeline.core.config import RiskSettings
from lifeline.core.signals.risk import (
    classify_latency_trend,
    classify_response_latency,
    estimate_tokens,
    evaluate_risk,
)
from lifeline.engine.clock import DEFAULT_CLOCK

if TYPE_CHECKING:
    from lifeline.engine.clock import Clock

logger = structlog.get_logger(__name__)

MESSAGE_WINDOW = 20
TOKEN_WINDOW = 20
ERROR_PATTERN_WINDOW = 10
# messages_per_minute is measured over the newest N message timestamps
RATE_SAMPLE_COUNT = 10


@dataclass
class SessionSignals:
    """Mutable counters for one session. Guard every access with lock."""

    session_id: str
    started_at: float
    last_checkpoint_at: float
    latency_window: int
    failure_window: int
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    tool_call_count: int = 0
    tool_calls_since_checkpoint: int = 0
    message_count: int = 0
    total_tokens: int = 0
    consecutive_failures: int = 0
    total_failures: int = 0
    last_response_at: float | None = None
    # When tool_calls_since_checkpoint first reached the interval
    tool_interval_crossed_at: float | None = None
    # Highest risk already covered by a persisted checkpoint; reset on SAFE
    risk_latch: CrashRisk = CrashRisk.SAFE

    latencies: deque[float] = field(init=False)
    tool_results: deque[bool] = field(init=False)
    message_times: deque[float] = field(init=False)
    token_samples: deque[int] = field(init=False)
    error_patterns: deque[str] = field(init=False)

    def __post_init__(self) -> None:
        self.latencies = deque(maxlen=self.latency_window)
        self.tool_results = deque(maxlen=self.failure_window)
        self.message_times = deque(maxlen=MESSAGE_WINDOW)
        self.token_samples = deque(maxlen=TOKEN_WINDOW)
        self.error_patterns = deque(maxlen=ERROR_PATTERN_WINDOW)


@dataclass(frozen=True)
class PeriodicState:
    """Checkpoint-timing view of a session, consumed by TriggerPolicy."""

    now: float
    last_checkpoint_at: float
    tool_calls_since_checkpoint: int
    tool_interval_crossed_at: float | None
    risk_latch: CrashRisk


class SignalAggregator:
    """Keyed store of per-session signal counters.

    Example:
        aggregator = SignalAggregator(settings.risk, tool_call_interval=5)
        aggregator.observe("s1", ToolCallEvent(tool="bash", success=True, latency_ms=120.0))
        snapshot = aggregator.assess("s1")
    """

    def __init__(
        self,
        settings: RiskSettings | None = None,
        *,
        tool_call_interval: int = 5,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings if settings is not None else RiskSettings()
        self._tool_call_interval = tool_call_interval
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._sessions: dict[str, SessionSignals] = {}
        self._registry_lock = threading.Lock()

    @property
    def settings(self) -> RiskSettings:
        return self._settings

    def sessions(self) -> list[str]:
        with self._registry_lock:
            return list(self._sessions)

    def has_session(self, session_id: str) -> bool:
        with self._registry_lock:
            return session_id in self._sessions

    def start_session(self, session_id: str) -> None:
        """Register a session. Idempotent; an existing session keeps its counters."""
        self._get_or_create(session_id)

    def evict(self, session_id: str) -> bool:
        """Drop a session's counters when it formally ends.

        Returns:
            True if the session was known
        """
        with self._registry_lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.debug("session_evicted", session_id=session_id)
        return removed is not None

    def _get_or_create(self, session_id: str) -> SessionSignals:
        with self._registry_lock:
            state = self._sessions.get(session_id)
            if state is None:
                now = self._clock.monotonic()
                state = SessionSignals(
                    session_id=session_id,
                    started_at=now,
                    last_checkpoint_at=now,
                    latency_window=self._settings.latency_window,
                    failure_window=self._settings.failure_window,
                )
                self._sessions[session_id] = state
            return state

    def observe(self, session_id: str, event: ToolCallEvent | MessageEvent) -> None:
        """Fold one event into the session's counters. Never raises."""
        problem = _malformed_reason(event)
        if problem is not None:
            logger.warning("signal_event_ignored", session_id=session_id, reason=problem)
            return

        state = self._get_or_create(session_id)
        now = self._clock.monotonic()
        with state.lock:
            if isinstance(event, ToolCallEvent):
                self._observe_tool_call(state, event, now)
            else:
                self._observe_message(state, event, now)

    def _observe_tool_call(self, state: SessionSignals, event: ToolCallEvent, now: float) -> None:
        state.tool_call_count += 1
        state.tool_calls_since_checkpoint += 1
        state.latencies.append(event.latency_ms)
        state.tool_results.append(event.success)
        state.last_response_at = now

        if event.success:
            state.consecutive_failures = 0
        else:
            state.consecutive_failures += 1
            state.total_failures += 1
            if event.error:
                state.error_patterns.append(event.error)

        if state.tool_interval_crossed_at is None and state.tool_calls_since_checkpoint >= self._tool_call_interval:
            state.tool_interval_crossed_at = now

    def _observe_message(self, state: SessionSignals, event: MessageEvent, now: float) -> None:
        tokens = estimate_tokens(event.content)
        state.message_count += 1
        state.total_tokens += tokens
        state.token_samples.append(tokens)
        state.message_times.append(now)
        if event.role is MessageRole.ASSISTANT:
            state.last_response_at = now

    def assess(self, session_id: str) -> SignalSnapshot:
        """Rebuild the signal snapshot for a session.

        An assessment that comes back SAFE releases the risk latch, so the
        next escalation fires a fresh risk trigger.
        """
        state = self._get_or_create(session_id)
        now = self._clock.monotonic()
        with state.lock:
            snapshot = self._build_snapshot(state, now)
            if snapshot.crash_risk is CrashRisk.SAFE:
                state.risk_latch = CrashRisk.SAFE
        return snapshot

    def _build_snapshot(self, state: SessionSignals, now: float) -> SignalSnapshot:
        window = self._settings.context_window_tokens
        usage = state.total_tokens / window
        duration = now - state.started_at

        tokens_per_message = sum(state.token_samples) / len(state.token_samples) if state.token_samples else 0.0
        avg_latency = sum(state.latencies) / len(state.latencies) if state.latencies else 0.0
        failure_rate = state.tool_results.count(False) / len(state.tool_results) if state.tool_results else 0.0
        since_response = now - state.last_response_at if state.last_response_at is not None else 0.0
        latency_trend = classify_latency_trend(state.latencies)

        assessment = evaluate_risk(
            {
                "context_window_usage": usage,
                "message_count": state.message_count,
                "session_duration_seconds": duration,
                "tool_calls_since_checkpoint": state.tool_calls_since_checkpoint,
                "tool_failure_rate": failure_rate,
            },
            self._settings,
            consecutive_failures=state.consecutive_failures,
            latency_trend=latency_trend,
        )

        return SignalSnapshot(
            estimated_total_tokens=state.total_tokens,
            tokens_per_message=tokens_per_message,
            context_window_usage=usage,
            context_window_remaining=max(window - state.total_tokens, 0),
            message_count=state.message_count,
            tool_call_count=state.tool_call_count,
            tool_calls_since_checkpoint=state.tool_calls_since_checkpoint,
            messages_per_minute=_messages_per_minute(state.message_times),
            session_duration_seconds=duration,
            avg_response_latency_ms=avg_latency,
            time_since_last_response_seconds=since_response,
            latency_trend=latency_trend,
            tool_failure_rate=failure_rate,
            consecutive_tool_failures=state.consecutive_failures,
            total_tool_failures=state.total_failures,
            response_latency_trend=classify_response_latency(avg_latency),
            error_patterns=tuple(state.error_patterns),
            crash_risk=assessment.risk,
            risk_factors=assessment.factors,
        )

    def periodic_state(self, session_id: str) -> PeriodicState:
        state = self._get_or_create(session_id)
        now = self._clock.monotonic()
        with state.lock:
            return PeriodicState(
                now=now,
                last_checkpoint_at=state.last_checkpoint_at,
                tool_calls_since_checkpoint=state.tool_calls_since_checkpoint,
                tool_interval_crossed_at=state.tool_interval_crossed_at,
                risk_latch=state.risk_latch,
            )

    def time_since_checkpoint(self, session_id: str) -> float:
        state = self._get_or_create(session_id)
        with state.lock:
            return self._clock.monotonic() - state.last_checkpoint_at

    def mark_checkpoint(self, session_id: str, risk: CrashRisk) -> None:
        """Commit a persisted checkpoint to the session's counters.

        Resets the periodic counters and raises the risk latch to cover the
        risk level the checkpoint captured.
        """
        state = self._get_or_create(session_id)
        now = self._clock.monotonic()
        with state.lock:
            state.tool_calls_since_checkpoint = 0
            state.tool_interval_crossed_at = None
            state.last_checkpoint_at = now
            if risk.exceeds(state.risk_latch):
                state.risk_latch = risk


def _messages_per_minute(times: deque[float]) -> float:
    recent = list(times)[-RATE_SAMPLE_COUNT:]
    if len(recent) < 2:
        return 0.0
    span = recent[-1] - recent[0]
    if span <= 0:
        return 0.0
    return (len(recent) - 1) / span * 60.0


def _malformed_reason(event: object) -> str | None:
    """Why an event cannot be folded into counters, or None if it is usable."""
    if isinstance(event, ToolCallEvent):
        if not isinstance(event.tool, str) or not event.tool:
            return "tool name missing"
        if not isinstance(event.success, bool):
            return f"success flag is {type(event.success).__name__}, expected bool"
        if not isinstance(event.latency_ms, int | float) or isinstance(event.latency_ms, bool):
            return f"latency_ms is {type(event.latency_ms).__name__}, expected number"
        if not math.isfinite(event.latency_ms) or event.latency_ms < 0:
            return f"latency_ms out of range: {event.latency_ms}"
        if event.error is not None and not isinstance(event.error, str):
            return f"error tag is {type(event.error).__name__}, expected str"
        return None
    if isinstance(event, MessageEvent):
        if not isinstance(event.role, MessageRole):
            return f"unknown message role: {event.role!r}"
        if not isinstance(event.content, str):
            return f"content is {type(event.content).__name__}, expected str"
        return None
    return f"unsupported event type: {type(event).__name__}"

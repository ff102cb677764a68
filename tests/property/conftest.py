# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

These strategies are extracted for reuse across property test modules.
They follow Lifeline's checkpoint model: every generated Checkpoint is
valid (progress in [0, 1], number >= 1, finite floats, timezone-aware
datetimes). The loose_* strategies deliberately include intake values that
validation must reject.

Usage:
    from tests.property.conftest import checkpoints, signal_values

    @given(checkpoint=checkpoints())
    def test_codec_round_trip(checkpoint: Checkpoint) -> None:
        ...
"""

# =============================================================================
# Hypothesis Settings
# =============================================================================
#
# For standardized @settings decorators, import from tests.property.settings:
#   from tests.property.settings import STANDARD_SETTINGS, DETERMINISM_SETTINGS
#
# Tiers: DETERMINISM (500), STATE_MACHINE (200), STANDARD (100), SLOW (50), QUICK (20)
# =============================================================================

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from typing import Any

from hypothesis import strategies as st

from lifeline.contracts.checkpoint import (
    Checkpoint,
    ConversationMessage,
    ConversationState,
    FileState,
    PendingOperation,
    TaskState,
    ToolCallRecord,
    ToolSession,
    ToolState,
    UserPreferences,
)
from lifeline.contracts.enums import (
    CheckpointTrigger,
    CrashRisk,
    LatencyTrend,
    MessageRole,
    PendingOperationType,
    ResponseLatencyTrend,
    ToolSessionType,
)
from lifeline.contracts.signals import SignalSnapshot

# =============================================================================
# Primitives
# =============================================================================

finite_floats = st.floats(allow_nan=False, allow_infinity=False, min_value=-1e12, max_value=1e12)
non_negative_floats = st.floats(allow_nan=False, allow_infinity=False, min_value=0.0, max_value=1e9)
unit_floats = st.floats(min_value=0.0, max_value=1.0)
short_text = st.text(max_size=40)
identifiers = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-", min_size=1, max_size=32)

utc_datetimes = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=st.just(UTC),
)

# Whole-minute fixed offsets: isoformat() and fromisoformat() agree on them
fixed_offsets = st.integers(min_value=-(23 * 60 + 59), max_value=23 * 60 + 59).map(lambda m: timezone(timedelta(minutes=m)))

aware_datetimes = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=st.just(UTC) | fixed_offsets,
)

naive_datetimes = st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1))

# JSON-safe values for free-form tool session state. Lists only: tuples
# come back from JSON as lists.
json_primitives = st.none() | st.booleans() | st.integers(min_value=-(2**53 - 1), max_value=2**53 - 1) | finite_floats | short_text

json_values = st.recursive(
    json_primitives | aware_datetimes,
    lambda children: st.lists(children, max_size=4) | st.dictionaries(short_text, children, max_size=4),
    max_leaves=12,
)

# Dicts that may collide with the serializer's reserved envelope key
state_dicts = st.dictionaries(
    st.sampled_from(["__lifeline_type__", "__lifeline_value__", "cwd", "url", "history"]) | short_text,
    json_values,
    max_size=5,
)

# =============================================================================
# Checkpoint sections
# =============================================================================


@st.composite
def signal_snapshots(draw: st.DrawFn) -> SignalSnapshot:
    return SignalSnapshot(
        estimated_total_tokens=draw(st.integers(min_value=0, max_value=10**7)),
        tokens_per_message=draw(non_negative_floats),
        context_window_usage=draw(st.floats(min_value=0.0, max_value=5.0)),
        context_window_remaining=draw(st.integers(min_value=0, max_value=10**7)),
        message_count=draw(st.integers(min_value=0, max_value=10_000)),
        tool_call_count=draw(st.integers(min_value=0, max_value=10_000)),
        tool_calls_since_checkpoint=draw(st.integers(min_value=0, max_value=10_000)),
        messages_per_minute=draw(non_negative_floats),
        session_duration_seconds=draw(non_negative_floats),
        avg_response_latency_ms=draw(non_negative_floats),
        time_since_last_response_seconds=draw(non_negative_floats),
        latency_trend=draw(st.sampled_from(LatencyTrend)),
        tool_failure_rate=draw(unit_floats),
        consecutive_tool_failures=draw(st.integers(min_value=0, max_value=100)),
        total_tool_failures=draw(st.integers(min_value=0, max_value=100)),
        response_latency_trend=draw(st.sampled_from(ResponseLatencyTrend)),
        error_patterns=tuple(draw(st.lists(short_text, max_size=3))),
        crash_risk=draw(st.sampled_from(CrashRisk)),
        risk_factors=tuple(draw(st.lists(short_text, max_size=3))),
    )


messages = st.builds(
    ConversationMessage,
    role=st.sampled_from(MessageRole),
    content=short_text,
    timestamp=aware_datetimes,
)

tool_sessions = st.builds(
    ToolSession,
    type=st.sampled_from(ToolSessionType),
    id=identifiers,
    purpose=short_text,
    started_at=aware_datetimes,
    state=state_dicts,
)

pending_operations = st.builds(
    PendingOperation,
    type=st.sampled_from(PendingOperationType),
    id=identifiers,
    description=short_text,
    started_at=aware_datetimes,
    resume_with=short_text,
)

tool_call_records = st.builds(
    ToolCallRecord,
    tool=identifiers,
    args=short_text,
    result=short_text,
    success=st.booleans(),
    latency_ms=non_negative_floats,
    timestamp=aware_datetimes,
)


def _text_tuples(max_size: int = 3) -> st.SearchStrategy[tuple[str, ...]]:
    return st.lists(short_text, max_size=max_size).map(tuple)


@st.composite
def checkpoints(
    draw: st.DrawFn,
    *,
    session_id: str | None = None,
    with_recovery: bool = True,
) -> Checkpoint:
    """Valid Checkpoint with every section populated by Hypothesis."""
    restored_at = draw(st.none() | utc_datetimes) if with_recovery else None
    kwargs: dict[str, Any] = {}
    if restored_at is not None:
        kwargs = {
            "restored_at": restored_at,
            "restore_success": draw(st.booleans()),
            "restore_fidelity": draw(st.none() | unit_floats),
        }
    return Checkpoint(
        checkpoint_id=f"cp-{draw(identifiers)}",
        session_id=session_id if session_id is not None else draw(identifiers),
        checkpoint_number=draw(st.integers(min_value=1, max_value=10**6)),
        created_at=draw(utc_datetimes),
        triggered_by=draw(st.sampled_from(CheckpointTrigger)),
        conversation_state=ConversationState(
            summary=draw(short_text),
            key_decisions=draw(_text_tuples()),
            current_context=draw(short_text),
            recent_messages=tuple(draw(st.lists(messages, max_size=3))),
        ),
        task_state=TaskState(
            operation=draw(short_text),
            phase=draw(short_text),
            progress=draw(unit_floats),
            completed_steps=draw(_text_tuples()),
            next_steps=draw(_text_tuples()),
            blockers=draw(_text_tuples()),
        ),
        file_state=FileState(
            active_files=draw(_text_tuples()),
            modified_files=draw(_text_tuples()),
            staged_files=draw(_text_tuples()),
            uncommitted_diff=draw(short_text),
        ),
        tool_state=ToolState(
            active_sessions=tuple(draw(st.lists(tool_sessions, max_size=2))),
            pending_operations=tuple(draw(st.lists(pending_operations, max_size=2))),
            recent_tool_calls=tuple(draw(st.lists(tool_call_records, max_size=3))),
        ),
        signals=draw(signal_snapshots()),
        user_preferences=UserPreferences(
            custom_instructions=draw(st.none() | short_text),
            recent_preferences=draw(st.none() | short_text),
        ),
        **kwargs,
    )


# =============================================================================
# Loose intake: values a caller might report that the codec cannot reproduce
# (tuples, sets, non-str keys, non-finite floats, naive datetimes)
# =============================================================================

loose_values = st.recursive(
    json_primitives | aware_datetimes | naive_datetimes | st.floats(),
    lambda children: st.lists(children, max_size=3)
    | st.lists(children, max_size=3).map(tuple)
    | st.frozensets(short_text, max_size=3)
    | st.dictionaries(short_text | st.integers(min_value=0, max_value=9), children, max_size=3),
    max_leaves=8,
)

loose_tool_sessions = st.builds(
    ToolSession,
    type=st.sampled_from(ToolSessionType),
    id=identifiers,
    purpose=short_text,
    started_at=aware_datetimes | naive_datetimes,
    state=st.dictionaries(short_text, loose_values, max_size=3),
)

loose_messages = st.builds(
    ConversationMessage,
    role=st.sampled_from(MessageRole),
    content=short_text,
    timestamp=aware_datetimes | naive_datetimes,
)


# =============================================================================
# Risk inputs
# =============================================================================

# Raw signal values keyed by ZoneThresholds field name
signal_values = st.fixed_dictionaries(
    {
        "context_window_usage": st.floats(min_value=0.0, max_value=1.5),
        "message_count": st.integers(min_value=0, max_value=200),
        "session_duration_seconds": st.floats(min_value=0.0, max_value=4 * 3600),
        "tool_calls_since_checkpoint": st.integers(min_value=0, max_value=40),
        "tool_failure_rate": unit_floats,
    }
)

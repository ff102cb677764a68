"""Size bounds for checkpoint intake.

Two kinds of bound apply to a SessionSnapshot:

- Truncated silently on intake: recent message content and count, recent
  tool-call args/result and count. These are inherently lossy caller data.
  progress is clamped to [0, 1].
- Validated: everything else. A violation rejects the checkpoint with a
  CheckpointValidationError that lists EVERY violated bound.
- Value checks: timestamps must be timezone-aware and free-form tool
  session state must be JSON-native, so decode(encode(c)) == c holds for
  every checkpoint that passes.

Truncation always runs first, so the truncated fields can never fail
validation.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from lifeline.contracts.checkpoint import SessionSnapshot
from lifeline.contracts.errors import CheckpointValidationError, FieldViolation

PHASE_IN_PROGRESS = "in-progress"
PHASE_NEAR_COMPLETION = "near-completion"


@dataclass(frozen=True)
class CheckpointLimits:
    """Per-field maxima. Lengths are characters, counts are items."""

    # Truncated on intake
    message_content_chars: int = 500
    recent_messages: int = 10
    tool_call_field_chars: int = 200
    recent_tool_calls: int = 20

    # Validated
    session_id_chars: int = 64
    summary_chars: int = 1000
    key_decisions: int = 20
    key_decision_chars: int = 500
    current_context_chars: int = 2000
    operation_chars: int = 256
    phase_chars: int = 64
    step_items: int = 50
    step_chars: int = 500
    file_paths: int = 200
    file_path_chars: int = 1024
    uncommitted_diff_chars: int = 100_000
    active_sessions: int = 20
    pending_operations: int = 20
    preference_chars: int = 2000


DEFAULT_LIMITS = CheckpointLimits()


def default_phase(progress: float) -> str:
    return PHASE_IN_PROGRESS if progress < 0.5 else PHASE_NEAR_COMPLETION


def clamp_progress(progress: float) -> float:
    if math.isnan(progress):
        return 0.0
    return min(max(float(progress), 0.0), 1.0)


def truncate_snapshot(snapshot: SessionSnapshot, limits: CheckpointLimits = DEFAULT_LIMITS) -> SessionSnapshot:
    """Apply the silent intake truncation rules.

    Keeps the NEWEST messages and tool calls (the tail of each sequence).
    """
    messages = tuple(snapshot.recent_messages)[-limits.recent_messages :]
    tool_calls = tuple(snapshot.recent_tool_calls)[-limits.recent_tool_calls :]
    chars = limits.tool_call_field_chars
    return replace(
        snapshot,
        progress=clamp_progress(snapshot.progress),
        recent_messages=tuple(replace(m, content=m.content[: limits.message_content_chars]) for m in messages),
        recent_tool_calls=tuple(replace(c, args=c.args[:chars], result=c.result[:chars]) for c in tool_calls),
    )


class _ViolationCollector:
    def __init__(self) -> None:
        self.violations: list[FieldViolation] = []

    def text(self, field: str, value: str | None, limit: int) -> None:
        if value is not None and len(value) > limit:
            self.violations.append(FieldViolation(field=field, limit=limit, actual=len(value), unit="chars"))

    def items(self, field: str, values: Sequence[object], limit: int) -> None:
        if len(values) > limit:
            self.violations.append(FieldViolation(field=field, limit=limit, actual=len(values), unit="items"))

    def text_items(self, field: str, values: Sequence[str], max_items: int, max_chars: int) -> None:
        self.items(field, values, max_items)
        for index, value in enumerate(values):
            self.text(f"{field}[{index}]", value, max_chars)

    def aware(self, field: str, value: datetime) -> None:
        if value.tzinfo is None or value.utcoffset() is None:
            self.violations.append(FieldViolation(field=field, reason="timestamp is naive, expected timezone-aware"))

    def json_native(self, field: str, value: Any) -> None:
        if isinstance(value, dict):
            problem = _state_problem(value, "")
        else:
            problem = f"state is {type(value).__name__}, expected dict"
        if problem is not None:
            self.violations.append(FieldViolation(field=field, reason=problem))


def _state_problem(value: Any, path: str) -> str | None:
    """First value in free-form state that would not decode back unchanged."""
    where = f" at '{path}'" if path else ""
    if value is None or isinstance(value, bool | int | str):
        return None
    if isinstance(value, float):
        return None if math.isfinite(value) else f"non-finite float{where}"
    if isinstance(value, datetime):
        return None if value.utcoffset() is not None else f"naive datetime{where}"
    if isinstance(value, list):
        for index, item in enumerate(value):
            problem = _state_problem(item, f"{path}[{index}]")
            if problem is not None:
                return problem
        return None
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                return f"{type(key).__name__} key{where}, expected str"
            problem = _state_problem(item, f"{path}.{key}" if path else key)
            if problem is not None:
                return problem
        return None
    return f"{type(value).__name__}{where} is not JSON-native, expected dict, list, str, number, bool, None or datetime"


def validate_snapshot(session_id: str, snapshot: SessionSnapshot, limits: CheckpointLimits = DEFAULT_LIMITS) -> None:
    """Check every validated bound.

    Raises:
        CheckpointValidationError: Listing all violations, in field order
    """
    check = _ViolationCollector()

    check.text("session_id", session_id, limits.session_id_chars)
    check.text("conversation_state.summary", snapshot.summary, limits.summary_chars)
    check.text_items("conversation_state.key_decisions", snapshot.key_decisions, limits.key_decisions, limits.key_decision_chars)
    check.text("conversation_state.current_context", snapshot.current_context, limits.current_context_chars)
    for index, message in enumerate(snapshot.recent_messages):
        check.aware(f"conversation_state.recent_messages[{index}].timestamp", message.timestamp)

    check.text("task_state.operation", snapshot.operation, limits.operation_chars)
    check.text("task_state.phase", snapshot.phase, limits.phase_chars)
    for name in ("completed_steps", "next_steps", "blockers"):
        check.text_items(f"task_state.{name}", getattr(snapshot, name), limits.step_items, limits.step_chars)

    for name in ("active_files", "modified_files", "staged_files"):
        check.text_items(f"file_state.{name}", getattr(snapshot, name), limits.file_paths, limits.file_path_chars)
    check.text("file_state.uncommitted_diff", snapshot.uncommitted_diff, limits.uncommitted_diff_chars)

    check.items("tool_state.active_sessions", snapshot.active_sessions, limits.active_sessions)
    for index, session in enumerate(snapshot.active_sessions):
        check.aware(f"tool_state.active_sessions[{index}].started_at", session.started_at)
        check.json_native(f"tool_state.active_sessions[{index}].state", session.state)
    check.items("tool_state.pending_operations", snapshot.pending_operations, limits.pending_operations)
    for index, operation in enumerate(snapshot.pending_operations):
        check.aware(f"tool_state.pending_operations[{index}].started_at", operation.started_at)
    for index, call in enumerate(snapshot.recent_tool_calls):
        check.aware(f"tool_state.recent_tool_calls[{index}].timestamp", call.timestamp)

    check.text("user_preferences.custom_instructions", snapshot.custom_instructions, limits.preference_chars)
    check.text("user_preferences.recent_preferences", snapshot.recent_preferences, limits.preference_chars)

    if check.violations:
        raise CheckpointValidationError(check.violations)

"""Type-preserving JSON serialization for checkpoint payloads.

Standard json.dumps() cannot serialize datetime objects, and free-form tool
session state may contain them. Datetimes are wrapped in collision-safe
type envelopes keyed by ``__lifeline_type__`` / ``__lifeline_value__``. User
dicts that coincidentally contain the reserved key are escaped before
encoding, so they are never mistaken for an envelope on the way back.

checkpoint_to_dict()/checkpoint_from_dict() map the Checkpoint dataclass
tree onto plain dicts and back. Enums travel as their string values and
tuples are rebuilt on load, so decode(encode(c)) == c.

NaN/Infinity are rejected: a checkpoint must decode to the same values it
was built from.
"""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime
from typing import Any

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

_ENVELOPE_TYPE_KEY = "__lifeline_type__"
_ENVELOPE_VALUE_KEY = "__lifeline_value__"


class CheckpointEncoder(json.JSONEncoder):
    """JSON encoder that wraps datetimes in type envelopes."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=UTC)
            return {
                _ENVELOPE_TYPE_KEY: "datetime",
                _ENVELOPE_VALUE_KEY: obj.isoformat(),
            }
        return super().default(obj)


def _reject_nan_infinity(obj: Any) -> Any:
    """Recursively check for NaN/Infinity in data structure.

    Raises:
        ValueError: If NaN or Infinity found
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot serialize non-finite float: {obj}. Use None for missing values, not NaN/Infinity.")
    elif isinstance(obj, dict):
        for v in obj.values():
            _reject_nan_infinity(v)
    elif isinstance(obj, list | tuple):
        for v in obj:
            _reject_nan_infinity(v)
    return obj


def _escape_reserved_keys(obj: Any) -> Any:
    """Recursively escape user dicts that coincidentally contain the reserved key."""
    if isinstance(obj, datetime):
        return obj
    if isinstance(obj, dict):
        escaped = {k: _escape_reserved_keys(v) for k, v in obj.items()}
        if _ENVELOPE_TYPE_KEY in escaped:
            return {
                _ENVELOPE_TYPE_KEY: "escaped_dict",
                _ENVELOPE_VALUE_KEY: escaped,
            }
        return escaped
    if isinstance(obj, list | tuple):
        return [_escape_reserved_keys(v) for v in obj]
    return obj


def checkpoint_dumps(obj: Any) -> str:
    """Serialize object to JSON with datetime preservation.

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains non-serializable types
    """
    _reject_nan_infinity(obj)
    escaped = _escape_reserved_keys(obj)
    # sort_keys keeps equal checkpoints byte-identical
    return json.dumps(escaped, cls=CheckpointEncoder, allow_nan=False, sort_keys=True, separators=(",", ":"))


def _restore_types(obj: Any) -> Any:
    """Recursively restore datetime envelopes and unwrap escaped dicts."""
    if isinstance(obj, dict):
        if _ENVELOPE_TYPE_KEY in obj and _ENVELOPE_VALUE_KEY in obj and len(obj) == 2:
            envelope_type = obj[_ENVELOPE_TYPE_KEY]
            envelope_value = obj[_ENVELOPE_VALUE_KEY]

            if envelope_type == "datetime" and isinstance(envelope_value, str):
                return datetime.fromisoformat(envelope_value)

            if envelope_type == "escaped_dict" and isinstance(envelope_value, dict):
                return {k: _restore_types(v) for k, v in envelope_value.items()}

        return {k: _restore_types(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_restore_types(v) for v in obj]
    return obj


def checkpoint_loads(s: str) -> Any:
    """Deserialize JSON string with datetime restoration.

    Raises:
        json.JSONDecodeError: If string is not valid JSON
    """
    data = json.loads(s)
    return _restore_types(data)


# -- Checkpoint <-> dict --------------------------------------------------


def checkpoint_to_dict(checkpoint: Checkpoint) -> dict[str, Any]:
    """Flatten a Checkpoint into JSON-ready primitives (datetimes kept as-is)."""
    conversation = checkpoint.conversation_state
    task = checkpoint.task_state
    files = checkpoint.file_state
    tools = checkpoint.tool_state
    return {
        "format_version": Checkpoint.CURRENT_FORMAT_VERSION,
        "checkpoint_id": checkpoint.checkpoint_id,
        "session_id": checkpoint.session_id,
        "checkpoint_number": checkpoint.checkpoint_number,
        "created_at": checkpoint.created_at,
        "triggered_by": checkpoint.triggered_by.value,
        "conversation_state": {
            "summary": conversation.summary,
            "key_decisions": list(conversation.key_decisions),
            "current_context": conversation.current_context,
            "recent_messages": [
                {"role": m.role.value, "content": m.content, "timestamp": m.timestamp} for m in conversation.recent_messages
            ],
        },
        "task_state": {
            "operation": task.operation,
            "phase": task.phase,
            "progress": task.progress,
            "completed_steps": list(task.completed_steps),
            "next_steps": list(task.next_steps),
            "blockers": list(task.blockers),
        },
        "file_state": {
            "active_files": list(files.active_files),
            "modified_files": list(files.modified_files),
            "staged_files": list(files.staged_files),
            "uncommitted_diff": files.uncommitted_diff,
        },
        "tool_state": {
            "active_sessions": [
                {
                    "type": s.type.value,
                    "id": s.id,
                    "purpose": s.purpose,
                    "started_at": s.started_at,
                    "state": s.state,
                }
                for s in tools.active_sessions
            ],
            "pending_operations": [
                {
                    "type": op.type.value,
                    "id": op.id,
                    "description": op.description,
                    "started_at": op.started_at,
                    "resume_with": op.resume_with,
                }
                for op in tools.pending_operations
            ],
            "recent_tool_calls": [
                {
                    "tool": c.tool,
                    "args": c.args,
                    "result": c.result,
                    "success": c.success,
                    "latency_ms": c.latency_ms,
                    "timestamp": c.timestamp,
                }
                for c in tools.recent_tool_calls
            ],
        },
        "signals": signals_to_dict(checkpoint.signals),
        "user_preferences": {
            "custom_instructions": checkpoint.user_preferences.custom_instructions,
            "recent_preferences": checkpoint.user_preferences.recent_preferences,
        },
        "restored_at": checkpoint.restored_at,
        "restore_success": checkpoint.restore_success,
        "restore_fidelity": checkpoint.restore_fidelity,
    }


def signals_to_dict(signals: SignalSnapshot) -> dict[str, Any]:
    return {
        "estimated_total_tokens": signals.estimated_total_tokens,
        "tokens_per_message": signals.tokens_per_message,
        "context_window_usage": signals.context_window_usage,
        "context_window_remaining": signals.context_window_remaining,
        "message_count": signals.message_count,
        "tool_call_count": signals.tool_call_count,
        "tool_calls_since_checkpoint": signals.tool_calls_since_checkpoint,
        "messages_per_minute": signals.messages_per_minute,
        "session_duration_seconds": signals.session_duration_seconds,
        "avg_response_latency_ms": signals.avg_response_latency_ms,
        "time_since_last_response_seconds": signals.time_since_last_response_seconds,
        "latency_trend": signals.latency_trend.value,
        "tool_failure_rate": signals.tool_failure_rate,
        "consecutive_tool_failures": signals.consecutive_tool_failures,
        "total_tool_failures": signals.total_tool_failures,
        "response_latency_trend": signals.response_latency_trend.value,
        "error_patterns": list(signals.error_patterns),
        "crash_risk": signals.crash_risk.value,
        "risk_factors": list(signals.risk_factors),
    }


def signals_from_dict(data: dict[str, Any]) -> SignalSnapshot:
    return SignalSnapshot(
        estimated_total_tokens=data["estimated_total_tokens"],
        tokens_per_message=data["tokens_per_message"],
        context_window_usage=data["context_window_usage"],
        context_window_remaining=data["context_window_remaining"],
        message_count=data["message_count"],
        tool_call_count=data["tool_call_count"],
        tool_calls_since_checkpoint=data["tool_calls_since_checkpoint"],
        messages_per_minute=data["messages_per_minute"],
        session_duration_seconds=data["session_duration_seconds"],
        avg_response_latency_ms=data["avg_response_latency_ms"],
        time_since_last_response_seconds=data["time_since_last_response_seconds"],
        latency_trend=LatencyTrend(data["latency_trend"]),
        tool_failure_rate=data["tool_failure_rate"],
        consecutive_tool_failures=data["consecutive_tool_failures"],
        total_tool_failures=data["total_tool_failures"],
        response_latency_trend=ResponseLatencyTrend(data["response_latency_trend"]),
        error_patterns=tuple(data["error_patterns"]),
        crash_risk=CrashRisk(data["crash_risk"]),
        risk_factors=tuple(data["risk_factors"]),
    )


def checkpoint_from_dict(data: dict[str, Any]) -> Checkpoint:
    """Rebuild a Checkpoint from checkpoint_to_dict() output.

    Raises:
        KeyError: If a required field is missing
        ValueError: If an enum value is unknown or an invariant fails
        TypeError: If a section has the wrong shape
    """
    conversation = data["conversation_state"]
    task = data["task_state"]
    files = data["file_state"]
    tools = data["tool_state"]
    preferences = data["user_preferences"]

    return Checkpoint(
        checkpoint_id=data["checkpoint_id"],
        session_id=data["session_id"],
        checkpoint_number=data["checkpoint_number"],
        created_at=data["created_at"],
        triggered_by=CheckpointTrigger(data["triggered_by"]),
        conversation_state=ConversationState(
            summary=conversation["summary"],
            key_decisions=tuple(conversation["key_decisions"]),
            current_context=conversation["current_context"],
            recent_messages=tuple(
                ConversationMessage(role=MessageRole(m["role"]), content=m["content"], timestamp=m["timestamp"])
                for m in conversation["recent_messages"]
            ),
        ),
        task_state=TaskState(
            operation=task["operation"],
            phase=task["phase"],
            progress=task["progress"],
            completed_steps=tuple(task["completed_steps"]),
            next_steps=tuple(task["next_steps"]),
            blockers=tuple(task["blockers"]),
        ),
        file_state=FileState(
            active_files=tuple(files["active_files"]),
            modified_files=tuple(files["modified_files"]),
            staged_files=tuple(files["staged_files"]),
            uncommitted_diff=files["uncommitted_diff"],
        ),
        tool_state=ToolState(
            active_sessions=tuple(
                ToolSession(
                    type=ToolSessionType(s["type"]),
                    id=s["id"],
                    purpose=s["purpose"],
                    started_at=s["started_at"],
                    state=s["state"],
                )
                for s in tools["active_sessions"]
            ),
            pending_operations=tuple(
                PendingOperation(
                    type=PendingOperationType(op["type"]),
                    id=op["id"],
                    description=op["description"],
                    started_at=op["started_at"],
                    resume_with=op["resume_with"],
                )
                for op in tools["pending_operations"]
            ),
            recent_tool_calls=tuple(
                ToolCallRecord(
                    tool=c["tool"],
                    args=c["args"],
                    result=c["result"],
                    success=c["success"],
                    latency_ms=c["latency_ms"],
                    timestamp=c["timestamp"],
                )
                for c in tools["recent_tool_calls"]
            ),
        ),
        signals=signals_from_dict(data["signals"]),
        user_preferences=UserPreferences(
            custom_instructions=preferences["custom_instructions"],
            recent_preferences=preferences["recent_preferences"],
        ),
        restored_at=data["restored_at"],
        restore_success=data["restore_success"],
        restore_fidelity=data["restore_fidelity"],
    )

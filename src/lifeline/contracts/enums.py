"""All status codes, causes, and kinds used across subsystem boundaries.

Values are persisted as plain strings (checkpoints.triggered_by,
checkpoints.crash_risk, resume_events.interruption_reason) so every member
value is part of the storage format. Renaming a value is a schema change.
"""

from enum import StrEnum


class CheckpointTrigger(StrEnum):
    """Named cause that led to a checkpoint being created.

    Stored in database (checkpoints.triggered_by).

    Values:
        TOOL_CALL_INTERVAL: N tool calls since the previous checkpoint
        TIME_INTERVAL: T seconds since the previous checkpoint
        DANGER_ZONE: Risk escalated to danger
        WARNING_ZONE: Risk escalated to warning
        RISKY_OPERATION: Caller is about to do something destructive
        MILESTONE: Caller reached a natural boundary in its task
        USER_REQUESTED: Explicit/forced checkpoint
        SESSION_START: First checkpoint of a new session
        SESSION_END: Clean shutdown; never prompts for resume
    """

    TOOL_CALL_INTERVAL = "tool_call_interval"
    TIME_INTERVAL = "time_interval"
    DANGER_ZONE = "danger_zone"
    WARNING_ZONE = "warning_zone"
    RISKY_OPERATION = "risky_operation"
    MILESTONE = "milestone"
    USER_REQUESTED = "user_requested"
    SESSION_START = "session_start"
    SESSION_END = "session_end"

    @property
    def is_elevated(self) -> bool:
        """Whether this trigger was caused by elevated crash risk."""
        return self in ELEVATED_RISK_TRIGGERS


ELEVATED_RISK_TRIGGERS: frozenset[CheckpointTrigger] = frozenset(
    {
        CheckpointTrigger.DANGER_ZONE,
        CheckpointTrigger.WARNING_ZONE,
        CheckpointTrigger.RISKY_OPERATION,
    }
)


class CrashRisk(StrEnum):
    """Three-level crash risk classification.

    Stored in database (checkpoints.crash_risk, signal_history.crash_risk).
    Levels are totally ordered: SAFE < WARNING < DANGER.
    """

    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"

    @property
    def severity(self) -> int:
        """Numeric rank for ordering comparisons."""
        return _RISK_SEVERITY[self]

    def exceeds(self, other: "CrashRisk") -> bool:
        """True if this level is strictly more severe than other."""
        return self.severity > other.severity


_RISK_SEVERITY: dict[CrashRisk, int] = {
    CrashRisk.SAFE: 0,
    CrashRisk.WARNING: 1,
    CrashRisk.DANGER: 2,
}


class InterruptionReason(StrEnum):
    """Inferred cause of the gap between a checkpoint and a new session.

    Stored in database (resume_events.interruption_reason).
    """

    CRASH = "crash"
    TIMEOUT = "timeout"
    MANUAL_EXIT = "manual_exit"
    UNKNOWN = "unknown"


class LatencyTrend(StrEnum):
    """Direction of tool latency over the rolling window."""

    STABLE = "stable"
    INCREASING = "increasing"
    DECREASING = "decreasing"


class ResponseLatencyTrend(StrEnum):
    """Absolute band of average tool latency."""

    NORMAL = "normal"
    DEGRADING = "degrading"
    CRITICAL = "critical"


class MessageRole(StrEnum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


class ToolSessionType(StrEnum):
    """Kind of long-lived tool session captured in tool state."""

    TERMINAL = "terminal"
    CHROME = "chrome"
    SEARCH = "search"
    OTHER = "other"


class PendingOperationType(StrEnum):
    """Kind of operation that was in flight when the checkpoint was taken."""

    FILE_WRITE = "file_write"
    PROCESS = "process"
    SEARCH = "search"
    OTHER = "other"

"""Shared contracts for cross-boundary data types.

All dataclasses, enums, and errors that cross subsystem boundaries are
defined here. This package is a LEAF MODULE with no outbound dependencies
to core/engine.

Settings classes are NOT re-exported here - import them from
lifeline.core.config.
"""

from lifeline.contracts.checkpoint import (
    Checkpoint,
    CheckpointResult,
    CheckpointSize,
    CheckpointStats,
    ConversationMessage,
    ConversationState,
    FileState,
    PendingOperation,
    SessionSnapshot,
    TaskState,
    ToolCallRecord,
    ToolSession,
    ToolState,
    UserPreferences,
)
from lifeline.contracts.enums import (
    ELEVATED_RISK_TRIGGERS,
    CheckpointTrigger,
    CrashRisk,
    InterruptionReason,
    LatencyTrend,
    MessageRole,
    PendingOperationType,
    ResponseLatencyTrend,
    ToolSessionType,
)
from lifeline.contracts.errors import (
    AlreadyRestoredError,
    CheckpointCancelledError,
    CheckpointNotFoundError,
    CheckpointTimeoutError,
    CheckpointValidationError,
    CorruptCheckpointError,
    DuplicateCheckpointNumberError,
    FieldViolation,
    LifelineError,
)
from lifeline.contracts.resume import (
    FidelityComponents,
    RestoredState,
    ResumeDecision,
    ResumeEvent,
    ResumePrompt,
    ResumePromptSections,
    SignalHistoryRecord,
)
from lifeline.contracts.signals import MessageEvent, SignalSnapshot, ToolCallEvent, TriggerDecision

__all__ = [
    "ELEVATED_RISK_TRIGGERS",
    "AlreadyRestoredError",
    "Checkpoint",
    "CheckpointCancelledError",
    "CheckpointNotFoundError",
    "CheckpointResult",
    "CheckpointSize",
    "CheckpointStats",
    "CheckpointTimeoutError",
    "CheckpointTrigger",
    "CheckpointValidationError",
    "ConversationMessage",
    "ConversationState",
    "CorruptCheckpointError",
    "CrashRisk",
    "DuplicateCheckpointNumberError",
    "FidelityComponents",
    "FieldViolation",
    "FileState",
    "InterruptionReason",
    "LatencyTrend",
    "LifelineError",
    "MessageEvent",
    "MessageRole",
    "PendingOperation",
    "PendingOperationType",
    "ResponseLatencyTrend",
    "RestoredState",
    "ResumeDecision",
    "ResumeEvent",
    "ResumePrompt",
    "ResumePromptSections",
    "SessionSnapshot",
    "SignalHistoryRecord",
    "SignalSnapshot",
    "TaskState",
    "ToolCallEvent",
    "ToolCallRecord",
    "ToolSession",
    "ToolSessionType",
    "ToolState",
    "TriggerDecision",
    "UserPreferences",
]

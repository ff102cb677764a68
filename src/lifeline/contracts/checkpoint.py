"""Checkpoint domain contracts.

A Checkpoint is the unit of durable state. It is immutable once persisted;
the three recovery-tracking fields (restored_at, restore_success,
restore_fidelity) live in their own columns and are written exactly once by
the store when a resume consumes the checkpoint.

SessionSnapshot is the caller-facing intake shape. It is lossy by nature:
the manager truncates a few documented fields on intake and rejects
everything else that exceeds its bounds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from lifeline.contracts.enums import (
    CheckpointTrigger,
    MessageRole,
    PendingOperationType,
    ToolSessionType,
)
from lifeline.contracts.signals import SignalSnapshot


@dataclass(frozen=True)
class ConversationMessage:
    role: MessageRole
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class ConversationState:
    summary: str = ""
    key_decisions: tuple[str, ...] = ()
    current_context: str = ""
    recent_messages: tuple[ConversationMessage, ...] = ()


@dataclass(frozen=True)
class TaskState:
    operation: str = ""
    phase: str = ""
    progress: float = 0.0
    completed_steps: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    blockers: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileState:
    active_files: tuple[str, ...] = ()
    modified_files: tuple[str, ...] = ()
    staged_files: tuple[str, ...] = ()
    uncommitted_diff: str = ""


@dataclass(frozen=True)
class ToolSession:
    """A long-lived tool session (terminal, browser, ...) with free-form state."""

    type: ToolSessionType
    id: str
    purpose: str
    started_at: datetime
    state: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PendingOperation:
    """An operation in flight at checkpoint time.

    resume_with is a hint for the resumed session on how to pick it up.
    """

    type: PendingOperationType
    id: str
    description: str
    started_at: datetime
    resume_with: str = ""


@dataclass(frozen=True)
class ToolCallRecord:
    tool: str
    args: str
    result: str
    success: bool
    latency_ms: float
    timestamp: datetime


@dataclass(frozen=True)
class ToolState:
    active_sessions: tuple[ToolSession, ...] = ()
    pending_operations: tuple[PendingOperation, ...] = ()
    recent_tool_calls: tuple[ToolCallRecord, ...] = ()


@dataclass(frozen=True)
class UserPreferences:
    custom_instructions: str | None = None
    recent_preferences: str | None = None


@dataclass(frozen=True)
class Checkpoint:
    """Immutable, numbered snapshot of session state.

    Format Versions:
        Version 1: Initial payload layout (current)
    """

    CURRENT_FORMAT_VERSION: ClassVar[int] = 1

    checkpoint_id: str
    session_id: str
    checkpoint_number: int
    created_at: datetime
    triggered_by: CheckpointTrigger
    conversation_state: ConversationState
    task_state: TaskState
    file_state: FileState
    tool_state: ToolState
    signals: SignalSnapshot
    user_preferences: UserPreferences = field(default_factory=UserPreferences)
    # Recovery tracking - written once by CheckpointStore.mark_restored()
    restored_at: datetime | None = None
    restore_success: bool | None = None
    restore_fidelity: float | None = None

    def __post_init__(self) -> None:
        if self.checkpoint_number < 1:
            raise ValueError(f"checkpoint_number must be >= 1, got {self.checkpoint_number}")
        if not 0.0 <= self.task_state.progress <= 1.0:
            raise ValueError(f"task_state.progress must be within [0, 1], got {self.task_state.progress}")

    @property
    def is_restored(self) -> bool:
        return self.restored_at is not None


@dataclass(frozen=True)
class SessionSnapshot:
    """Lightweight session state reported by the caller.

    Every field is optional so callers can report what they have. Lists may be
    passed as any sequence; they are normalised to tuples on intake.
    """

    # Conversation
    summary: str = ""
    key_decisions: tuple[str, ...] = ()
    current_context: str = ""
    recent_messages: tuple[ConversationMessage, ...] = ()
    # Task
    operation: str = ""
    phase: str | None = None
    progress: float = 0.0
    completed_steps: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    blockers: tuple[str, ...] = ()
    # Files
    active_files: tuple[str, ...] = ()
    modified_files: tuple[str, ...] = ()
    staged_files: tuple[str, ...] = ()
    uncommitted_diff: str = ""
    # Tools
    active_sessions: tuple[ToolSession, ...] = ()
    pending_operations: tuple[PendingOperation, ...] = ()
    recent_tool_calls: tuple[ToolCallRecord, ...] = ()
    # Preferences
    custom_instructions: str | None = None
    recent_preferences: str | None = None


@dataclass(frozen=True)
class CheckpointResult:
    """Confirmation returned to the caller after a checkpoint attempt.

    A failed attempt carries error/error_type and no checkpoint_id. Sizes are
    bytes of the encoded payload before and after compression.
    """

    success: bool
    session_id: str
    checkpoint_id: str | None = None
    checkpoint_number: int | None = None
    triggered_by: CheckpointTrigger | None = None
    elapsed_ms: float = 0.0
    uncompressed_size: int = 0
    compressed_size: int = 0
    error: str | None = None
    error_type: str | None = None

    def __post_init__(self) -> None:
        if self.success and self.checkpoint_id is None:
            raise ValueError("success=True requires checkpoint_id")
        if not self.success and self.error is None:
            raise ValueError("success=False must have an error explaining why")

    @property
    def compression_ratio(self) -> float:
        """uncompressed/compressed; 0.0 when nothing was written."""
        if self.compressed_size == 0:
            return 0.0
        return self.uncompressed_size / self.compressed_size


@dataclass(frozen=True)
class CheckpointSize:
    """Stored size metrics for one checkpoint."""

    uncompressed: int
    compressed: int
    compression_ratio: float


@dataclass(frozen=True)
class CheckpointStats:
    """Per-session checkpoint summary."""

    session_id: str
    total_checkpoints: int
    last_checkpoint: Checkpoint | None

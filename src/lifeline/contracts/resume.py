"""Resume and audit contracts.

ResumeDecision/ResumePrompt are handed to the presentation layer.
ResumeEvent and SignalHistoryRecord are append-only audit rows.
"""

from dataclasses import dataclass
from datetime import datetime

from lifeline.contracts.checkpoint import Checkpoint, ConversationState, FileState, TaskState, ToolState
from lifeline.contracts.enums import CrashRisk, InterruptionReason
from lifeline.contracts.signals import SignalSnapshot


@dataclass(frozen=True)
class ResumePromptSections:
    """Fixed prompt sections, in display order."""

    situation: str
    progress: str
    context: str
    next: str
    files: str
    tools: str
    blockers: str


@dataclass(frozen=True)
class ResumePrompt:
    """Structured resume prompt built from a checkpoint."""

    checkpoint_id: str
    sections: ResumePromptSections
    interruption_reason: InterruptionReason
    time_since: str
    progress: float

    def render(self) -> str:
        """Render the sections as plain text for display."""
        s = self.sections
        return "\n".join(
            [
                f"Situation: {s.situation} ({self.time_since} ago)",
                f"Progress: {s.progress}",
                f"Context: {s.context}",
                f"Next steps: {s.next}",
                f"Files: {s.files}",
                f"Tools: {s.tools}",
                f"Blockers: {s.blockers}",
            ]
        )


@dataclass(frozen=True)
class ResumeDecision:
    """Result of checking whether a new session should offer continuation.

    Used by ResumeDetector to communicate whether resume is offered and why.
    A negative decision always has a reason; a positive one always has a
    checkpoint and a prompt.
    """

    session_id: str
    should_resume: bool
    checkpoint: Checkpoint | None = None
    interruption_reason: InterruptionReason = InterruptionReason.UNKNOWN
    time_since_checkpoint_seconds: float = 0.0
    confidence: float = 0.0
    prompt: ResumePrompt | None = None
    reason: str | None = None
    # Checkpoints skipped because they failed to decode, newest first
    skipped_corrupt: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.should_resume and (self.checkpoint is None or self.prompt is None):
            raise ValueError("should_resume=True requires a checkpoint and a prompt")
        if not self.should_resume and self.reason is None:
            raise ValueError("should_resume=False must have a reason explaining why")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @classmethod
    def negative(cls, session_id: str, reason: str, **kwargs: object) -> "ResumeDecision":
        """Build a decision that offers no resume."""
        return cls(session_id=session_id, should_resume=False, reason=reason, **kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True)
class ResumeEvent:
    """Audit record of one resume attempt. Never mutated."""

    resume_event_id: str
    checkpoint_id: str
    session_id: str
    restored_at: datetime
    interruption_reason: InterruptionReason
    time_since_checkpoint_seconds: float
    resume_confidence: float
    user_confirmed: bool | None
    success: bool
    fidelity_score: float | None
    notes: str | None = None


@dataclass(frozen=True)
class FidelityComponents:
    """Which parts of a checkpoint the resumed session actually restored."""

    conversation_restored: bool = False
    task_restored: bool = False
    files_restored: bool = False
    tools_restored: bool = False


@dataclass(frozen=True)
class RestoredState:
    """State sections reconstructed from a checkpoint for the resumed session."""

    checkpoint_id: str
    conversation: ConversationState
    task: TaskState
    files: FileState
    tools: ToolState


@dataclass(frozen=True)
class SignalHistoryRecord:
    """Append-only diagnostic row: one snapshot of a session's signals."""

    signal_id: str
    session_id: str
    recorded_at: datetime
    crash_risk: CrashRisk
    snapshot: SignalSnapshot

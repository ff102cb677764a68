"""Resume prompt construction.

Turns a checkpoint plus the inferred interruption reason into the fixed
ResumePrompt sections shown to the user on session start.
"""

from __future__ import annotations

from collections.abc import Sequence

from lifeline.contracts.checkpoint import Checkpoint, TaskState
from lifeline.contracts.enums import InterruptionReason
from lifeline.contracts.resume import ResumePrompt, ResumePromptSections

_SITUATIONS: dict[InterruptionReason, str] = {
    InterruptionReason.CRASH: "Session interrupted due to crash or context window overflow",
    InterruptionReason.TIMEOUT: "Session timed out due to inactivity",
    InterruptionReason.MANUAL_EXIT: "Session ended manually after task completion",
    InterruptionReason.UNKNOWN: "Session interrupted for unknown reason",
}


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def format_duration(seconds: float) -> str:
    """Human duration: "N minutes" below an hour, "H hours, M minutes" above."""
    minutes = int(max(seconds, 0.0) // 60)
    if minutes < 60:
        return _plural(minutes, "minute")
    hours, remaining = divmod(minutes, 60)
    return f"{_plural(hours, 'hour')}, {_plural(remaining, 'minute')}"


def format_situation(reason: InterruptionReason) -> str:
    return _SITUATIONS[reason]


def format_progress(task: TaskState) -> str:
    # Round half up; round() would bank 0.125 -> 12
    percent = int(task.progress * 100 + 0.5)
    return f"Operation: {task.operation} ({percent}% complete)"


def _join_or(values: Sequence[str], empty: str) -> str:
    return ", ".join(values) if values else empty


def build_resume_prompt(checkpoint: Checkpoint, reason: InterruptionReason, elapsed_seconds: float) -> ResumePrompt:
    """Build the structured prompt for a resumable checkpoint."""
    task = checkpoint.task_state
    sections = ResumePromptSections(
        situation=format_situation(reason),
        progress=format_progress(task),
        context=checkpoint.conversation_state.summary,
        next=_join_or(task.next_steps, "No next steps defined"),
        files=_join_or(checkpoint.file_state.active_files, "No active files"),
        tools=_join_or([call.tool for call in checkpoint.tool_state.recent_tool_calls], "No recent tool calls"),
        blockers=_join_or(task.blockers, "No blockers"),
    )
    return ResumePrompt(
        checkpoint_id=checkpoint.checkpoint_id,
        sections=sections,
        interruption_reason=reason,
        time_since=format_duration(elapsed_seconds),
        progress=task.progress,
    )

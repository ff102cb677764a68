"""Tests for resume prompt construction."""

from __future__ import annotations

import pytest

from lifeline.contracts.checkpoint import TaskState
from lifeline.contracts.enums import InterruptionReason
from lifeline.core.checkpoint.prompt import build_resume_prompt, format_duration, format_progress, format_situation
from tests.fixtures.factories import make_checkpoint, make_tool_call_record


class TestFormatDuration:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "0 minutes"),
            (40, "0 minutes"),
            (60, "1 minute"),
            (150, "2 minutes"),
            (3599, "59 minutes"),
            (3600, "1 hour, 0 minutes"),
            (3660, "1 hour, 1 minute"),
            (7500, "2 hours, 5 minutes"),
            (-10, "0 minutes"),
        ],
    )
    def test_durations(self, seconds: float, expected: str) -> None:
        assert format_duration(seconds) == expected


class TestFormatProgress:
    @pytest.mark.parametrize(("progress", "expected"), [(0.0, "0%"), (0.125, "13%"), (0.4, "40%"), (1.0, "100%")])
    def test_percent_rounding(self, progress: float, expected: str) -> None:
        task = TaskState(operation="Deploy", progress=progress)
        assert format_progress(task) == f"Operation: Deploy ({expected} complete)"


class TestSituation:
    def test_every_reason_has_text(self) -> None:
        for reason in InterruptionReason:
            assert format_situation(reason)

    def test_crash_text(self) -> None:
        assert format_situation(InterruptionReason.CRASH) == "Session interrupted due to crash or context window overflow"


class TestBuildResumePrompt:
    def test_sections(self) -> None:
        checkpoint = make_checkpoint(
            operation="Refactor auth module",
            progress=0.4,
            summary="Moving token handling",
            next_steps=("Update callers", "Run tests"),
            active_files=("src/auth/tokens.py", "src/auth/session.py"),
            blockers=("Flaky CI",),
            recent_tool_calls=(make_tool_call_record(1), make_tool_call_record(2)),
        )

        prompt = build_resume_prompt(checkpoint, InterruptionReason.CRASH, 40.0)

        assert prompt.checkpoint_id == checkpoint.checkpoint_id
        assert prompt.interruption_reason is InterruptionReason.CRASH
        assert prompt.time_since == "0 minutes"
        assert prompt.progress == 0.4
        s = prompt.sections
        assert s.progress == "Operation: Refactor auth module (40% complete)"
        assert s.context == "Moving token handling"
        assert s.next == "Update callers, Run tests"
        assert s.files == "src/auth/tokens.py, src/auth/session.py"
        assert s.tools == "tool-1, tool-2"
        assert s.blockers == "Flaky CI"

    def test_empty_section_fallbacks(self) -> None:
        checkpoint = make_checkpoint(next_steps=(), active_files=(), blockers=())

        s = build_resume_prompt(checkpoint, InterruptionReason.UNKNOWN, 0.0).sections

        assert s.next == "No next steps defined"
        assert s.files == "No active files"
        assert s.tools == "No recent tool calls"
        assert s.blockers == "No blockers"

    def test_render(self) -> None:
        prompt = build_resume_prompt(make_checkpoint(), InterruptionReason.TIMEOUT, 7500.0)

        lines = prompt.render().splitlines()

        assert lines[0] == "Situation: Session timed out due to inactivity (2 hours, 5 minutes ago)"
        assert [line.split(":", 1)[0] for line in lines] == [
            "Situation",
            "Progress",
            "Context",
            "Next steps",
            "Files",
            "Tools",
            "Blockers",
        ]

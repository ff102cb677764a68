# tests/cli/conftest.py
"""Shared fixtures for CLI tests."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog


@pytest.fixture(autouse=True)
def _isolate_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run each CLI test from an empty directory and undo its logging setup.

    The callback points the root handler at the runner's captured stderr,
    which is closed once invoke() returns.
    """
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """URL of a file-backed store that outlives each invoke()."""
    return f"sqlite:///{tmp_path / 'checkpoints.db'}"

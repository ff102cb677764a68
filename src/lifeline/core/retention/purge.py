# src/lifeline/core/retention/purge.py
"""Retention for checkpoints and signal history.

Applies the two checkpoint retention rules (age in days, count per
session) plus the signal-history age rule. The latest checkpoint of every
session survives every rule, so a session never loses its last fallback.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from time import perf_counter
from typing import TYPE_CHECKING

import structlog

from lifeline.core.config import RetentionSettings

if TYPE_CHECKING:
    from lifeline.core.store.store import CheckpointStore

logger = structlog.get_logger(__name__)


@dataclass
class PurgeResult:
    """Result of a retention pass."""

    expired_checkpoints: int
    pruned_checkpoints: int
    signal_history_deleted: int
    sessions_scanned: int
    duration_seconds: float

    @property
    def deleted_count(self) -> int:
        return self.expired_checkpoints + self.pruned_checkpoints


class RetentionManager:
    """Manages checkpoint deletion based on retention policy."""

    def __init__(self, store: "CheckpointStore", settings: RetentionSettings | None = None) -> None:
        """Initialize RetentionManager.

        Args:
            store: Checkpoint store to clean up
            settings: Retention policy (defaults: 30 days, 50 per session)
        """
        self._store = store
        self._settings = settings if settings is not None else RetentionSettings()

    def preview(self, as_of: datetime | None = None) -> int:
        """How many checkpoints the age rule would delete (count rule excluded)."""
        if as_of is None:
            as_of = datetime.now(UTC)
        return self._store.count_expired(self._settings.retention_days, now=as_of)

    def purge(self, as_of: datetime | None = None) -> PurgeResult:
        """Apply every retention rule once.

        Args:
            as_of: Reference datetime for cutoff calculation (defaults to now)

        Returns:
            PurgeResult with per-rule counts
        """
        if as_of is None:
            as_of = datetime.now(UTC)
        start_time = perf_counter()

        expired = self._store.cleanup(self._settings.retention_days, now=as_of)

        pruned = 0
        sessions = self._store.list_sessions()
        for session in sessions:
            if session.checkpoint_count > self._settings.max_checkpoints_per_session:
                pruned += self._store.prune_session(session.session_id, self._settings.max_checkpoints_per_session)

        history = self._store.cleanup_signal_history(self._settings.signal_history_days, now=as_of)

        result = PurgeResult(
            expired_checkpoints=expired,
            pruned_checkpoints=pruned,
            signal_history_deleted=history,
            sessions_scanned=len(sessions),
            duration_seconds=perf_counter() - start_time,
        )
        logger.info(
            "retention_purge_complete",
            expired_checkpoints=expired,
            pruned_checkpoints=pruned,
            signal_history_deleted=history,
            sessions_scanned=len(sessions),
        )
        return result

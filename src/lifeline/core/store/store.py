"""CheckpointStore: durable keyed storage for checkpoints and audit rows.

Checkpoints are keyed by checkpoint_id with (session_id, checkpoint_number)
unique. ResumeEvent and signal history rows are append-only.

Every method opens its own transaction via StoreDB.connection(), so each
call is atomic on its own. The two serialization points live in SQL:
the unique constraint guards checkpoint numbering, and the conditional
UPDATE in mark_restored() guards restore-once. consume_checkpoint() runs
that UPDATE and the ResumeEvent insert in one transaction.

Within a session, "newest" means the highest checkpoint_number. Numbers
are assigned in save order, so a wall clock that steps backwards cannot
reorder a session's checkpoints. Cross-session listings order by
created_at.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import and_, delete, desc, exists, func, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement

from lifeline.contracts.checkpoint import Checkpoint, CheckpointSize
from lifeline.contracts.enums import CrashRisk
from lifeline.contracts.errors import (
    AlreadyRestoredError,
    CheckpointCancelledError,
    CheckpointNotFoundError,
    DuplicateCheckpointNumberError,
)
from lifeline.contracts.resume import ResumeEvent, SignalHistoryRecord
from lifeline.contracts.signals import SignalSnapshot
from lifeline.core.checkpoint.codec import EncodedCheckpoint, encode_checkpoint
from lifeline.core.checkpoint.serialization import checkpoint_dumps, signals_to_dict
from lifeline.core.store.database import StoreDB
from lifeline.core.store.repositories import (
    CheckpointRepository,
    CheckpointSummary,
    ResumeEventRepository,
    SessionSummary,
    SignalHistoryRepository,
    as_utc,
)
from lifeline.core.store.schema import checkpoints_table, resume_events_table, signal_history_table

logger = structlog.get_logger(__name__)

# Across sessions: created_at, then checkpoint_number for identical timestamps
_NEWEST_FIRST = (desc(checkpoints_table.c.created_at), desc(checkpoints_table.c.checkpoint_number))
# Within one session
_SESSION_NEWEST_FIRST = desc(checkpoints_table.c.checkpoint_number)


class CheckpointStore:
    """Persistence for checkpoints, resume events and signal history.

    Example:
        store = CheckpointStore(StoreDB.in_memory())
        encoded = store.save(checkpoint)
        latest = store.get_most_recent(checkpoint.session_id)
    """

    def __init__(self, db: StoreDB, *, compress: bool = True) -> None:
        """Initialize with a store database.

        Args:
            db: StoreDB instance for storage
            compress: gzip payloads on save (decode handles both forms)
        """
        self._db = db
        self._compress = compress
        self._checkpoints = CheckpointRepository()
        self._resume_events = ResumeEventRepository()
        self._signal_history = SignalHistoryRepository()

    @property
    def db(self) -> StoreDB:
        return self._db

    # -- Checkpoints ------------------------------------------------------

    def save(self, checkpoint: Checkpoint, *, cancel: threading.Event | None = None) -> EncodedCheckpoint:
        """Encode and insert a checkpoint.

        Args:
            checkpoint: Checkpoint to persist
            cancel: Checked after the INSERT, inside the transaction; if it is
                set by then the insert is rolled back

        Returns:
            The encoded payload with its size metrics

        Raises:
            DuplicateCheckpointNumberError: If (session_id, checkpoint_number) exists
            CheckpointCancelledError: If cancel was set before the commit
        """
        encoded = encode_checkpoint(checkpoint, compress=self._compress)
        task = checkpoint.task_state
        signals = checkpoint.signals
        try:
            with self._db.connection() as conn:
                conn.execute(
                    checkpoints_table.insert().values(
                        checkpoint_id=checkpoint.checkpoint_id,
                        session_id=checkpoint.session_id,
                        checkpoint_number=checkpoint.checkpoint_number,
                        created_at=checkpoint.created_at,
                        triggered_by=checkpoint.triggered_by.value,
                        crash_risk=signals.crash_risk.value,
                        progress=task.progress,
                        operation=task.operation,
                        context_window_usage=signals.context_window_usage,
                        message_count=signals.message_count,
                        tool_call_count=signals.tool_call_count,
                        payload=encoded.payload,
                        format_version=Checkpoint.CURRENT_FORMAT_VERSION,
                        compressed=encoded.compressed,
                        uncompressed_size=encoded.uncompressed_size,
                        compressed_size=encoded.compressed_size,
                        restored_at=checkpoint.restored_at,
                        restore_success=checkpoint.restore_success,
                        restore_fidelity=checkpoint.restore_fidelity,
                    )
                )
                if cancel is not None and cancel.is_set():
                    raise CheckpointCancelledError(checkpoint.session_id)
        except IntegrityError as exc:
            if self._number_taken(checkpoint.session_id, checkpoint.checkpoint_number):
                raise DuplicateCheckpointNumberError(checkpoint.session_id, checkpoint.checkpoint_number) from exc
            raise
        return encoded

    def _number_taken(self, session_id: str, checkpoint_number: int) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                select(checkpoints_table.c.checkpoint_id).where(
                    checkpoints_table.c.session_id == session_id,
                    checkpoints_table.c.checkpoint_number == checkpoint_number,
                )
            ).first()
        return row is not None

    def next_checkpoint_number(self, session_id: str) -> int:
        """Current max checkpoint_number for the session plus one (1 if none)."""
        with self._db.connection() as conn:
            current = conn.execute(
                select(func.max(checkpoints_table.c.checkpoint_number)).where(checkpoints_table.c.session_id == session_id)
            ).scalar()
        return (current or 0) + 1

    def get_by_id(self, checkpoint_id: str) -> Checkpoint | None:
        """Load a checkpoint by id, or None if it does not exist.

        Raises:
            CorruptCheckpointError: If the stored payload cannot be decoded
        """
        with self._db.connection() as conn:
            row = conn.execute(select(checkpoints_table).where(checkpoints_table.c.checkpoint_id == checkpoint_id)).first()
        if row is None:
            return None
        return self._checkpoints.load(row)

    def get_most_recent(self, session_id: str) -> Checkpoint | None:
        """Highest-numbered checkpoint for a session, or None.

        Raises:
            CorruptCheckpointError: If the latest payload cannot be decoded
        """
        with self._db.connection() as conn:
            row = conn.execute(
                select(checkpoints_table)
                .where(checkpoints_table.c.session_id == session_id)
                .order_by(_SESSION_NEWEST_FIRST)
                .limit(1)
            ).first()
        if row is None:
            return None
        return self._checkpoints.load(row)

    def list_by_session(self, session_id: str) -> list[Checkpoint]:
        """All checkpoints for a session, oldest first (checkpoint_number order).

        Raises:
            CorruptCheckpointError: If any payload cannot be decoded
        """
        with self._db.connection() as conn:
            rows = conn.execute(
                select(checkpoints_table)
                .where(checkpoints_table.c.session_id == session_id)
                .order_by(checkpoints_table.c.checkpoint_number)
            ).fetchall()
        return [self._checkpoints.load(row) for row in rows]

    def list_summaries(self, session_id: str) -> list[CheckpointSummary]:
        """Column-only listing for a session, oldest first. Never decodes payloads."""
        with self._db.connection() as conn:
            rows = conn.execute(
                select(checkpoints_table)
                .where(checkpoints_table.c.session_id == session_id)
                .order_by(checkpoints_table.c.checkpoint_number)
            ).fetchall()
        return [self._checkpoints.load_summary(row) for row in rows]

    def recent_checkpoint_ids(self, session_id: str, limit: int) -> list[str]:
        """Up to limit checkpoint ids for a session, newest first."""
        with self._db.connection() as conn:
            rows = conn.execute(
                select(checkpoints_table.c.checkpoint_id)
                .where(checkpoints_table.c.session_id == session_id)
                .order_by(_SESSION_NEWEST_FIRST)
                .limit(limit)
            ).fetchall()
        return [row.checkpoint_id for row in rows]

    def list_by_risk(self, risk: CrashRisk, *, limit: int = 100) -> list[CheckpointSummary]:
        """Checkpoints taken at a given crash risk, newest first."""
        with self._db.connection() as conn:
            rows = conn.execute(
                select(checkpoints_table).where(checkpoints_table.c.crash_risk == risk.value).order_by(*_NEWEST_FIRST).limit(limit)
            ).fetchall()
        return [self._checkpoints.load_summary(row) for row in rows]

    def count_by_session(self, session_id: str) -> int:
        with self._db.connection() as conn:
            count = conn.execute(
                select(func.count()).select_from(checkpoints_table).where(checkpoints_table.c.session_id == session_id)
            ).scalar()
        return count or 0

    def list_sessions(self) -> list[SessionSummary]:
        """One summary per session that has checkpoints, most recently active first."""
        latest = func.max(checkpoints_table.c.created_at).label("latest_created_at")
        with self._db.connection() as conn:
            rows = conn.execute(
                select(
                    checkpoints_table.c.session_id,
                    func.count().label("checkpoint_count"),
                    func.max(checkpoints_table.c.checkpoint_number).label("latest_checkpoint_number"),
                    latest,
                )
                .group_by(checkpoints_table.c.session_id)
                .order_by(desc(latest))
            ).fetchall()
        return [
            SessionSummary(
                session_id=row.session_id,
                checkpoint_count=row.checkpoint_count,
                latest_checkpoint_number=row.latest_checkpoint_number,
                latest_created_at=as_utc(row.latest_created_at),
            )
            for row in rows
        ]

    def get_checkpoint_size(self, checkpoint_id: str) -> CheckpointSize | None:
        with self._db.connection() as conn:
            row = conn.execute(
                select(
                    checkpoints_table.c.uncompressed_size,
                    checkpoints_table.c.compressed_size,
                ).where(checkpoints_table.c.checkpoint_id == checkpoint_id)
            ).first()
        if row is None:
            return None
        return self._checkpoints.load_size(row)

    def mark_restored(self, checkpoint_id: str, *, success: bool, fidelity: float | None, restored_at: datetime) -> None:
        """Write the recovery-tracking fields exactly once.

        The UPDATE only matches rows whose restored_at is still NULL, so of
        two concurrent callers exactly one sees a matched row.

        Raises:
            CheckpointNotFoundError: If the checkpoint does not exist
            AlreadyRestoredError: If it was already restored (nothing changes)
        """
        with self._db.connection() as conn:
            self._claim_restore(conn, checkpoint_id, success=success, fidelity=fidelity, restored_at=restored_at)

    def consume_checkpoint(self, event: ResumeEvent) -> None:
        """Mark event.checkpoint_id restored and append the event, atomically.

        The restore fields come from the event (success, fidelity_score,
        restored_at). Either both writes commit or neither does, so a
        consumed checkpoint always has its ResumeEvent.

        Raises:
            CheckpointNotFoundError: If the checkpoint does not exist
            AlreadyRestoredError: If it was already restored (nothing is written)
        """
        with self._db.connection() as conn:
            self._claim_restore(
                conn,
                event.checkpoint_id,
                success=event.success,
                fidelity=event.fidelity_score,
                restored_at=event.restored_at,
            )
            self._insert_resume_event(conn, event)

    @staticmethod
    def _claim_restore(
        conn: Connection,
        checkpoint_id: str,
        *,
        success: bool,
        fidelity: float | None,
        restored_at: datetime,
    ) -> None:
        if fidelity is not None and not 0.0 <= fidelity <= 1.0:
            raise ValueError(f"fidelity must be within [0, 1], got {fidelity}")
        result = conn.execute(
            update(checkpoints_table)
            .where(
                checkpoints_table.c.checkpoint_id == checkpoint_id,
                checkpoints_table.c.restored_at.is_(None),
            )
            .values(restored_at=restored_at, restore_success=success, restore_fidelity=fidelity)
        )
        if result.rowcount == 0:
            found = conn.execute(
                select(checkpoints_table.c.checkpoint_id).where(checkpoints_table.c.checkpoint_id == checkpoint_id)
            ).first()
            if found is None:
                raise CheckpointNotFoundError(checkpoint_id)
            raise AlreadyRestoredError(checkpoint_id)

    # -- Retention --------------------------------------------------------

    @staticmethod
    def _expired_condition(cutoff: datetime) -> ColumnElement[bool]:
        """Older than cutoff AND not the highest-numbered checkpoint of its session."""
        newer = checkpoints_table.alias("newer")
        has_newer = (
            exists()
            .where(
                newer.c.session_id == checkpoints_table.c.session_id,
                newer.c.checkpoint_number > checkpoints_table.c.checkpoint_number,
            )
            .correlate(checkpoints_table)
        )
        return and_(checkpoints_table.c.created_at < cutoff, has_newer)

    def count_expired(self, retention_days: int, *, now: datetime) -> int:
        """How many checkpoints cleanup() would delete right now."""
        cutoff = now - timedelta(days=retention_days)
        with self._db.connection() as conn:
            count = conn.execute(
                select(func.count()).select_from(checkpoints_table).where(self._expired_condition(cutoff))
            ).scalar()
        return count or 0

    def cleanup(self, retention_days: int, *, now: datetime) -> int:
        """Delete checkpoints older than retention_days.

        The most recent checkpoint of every session survives regardless of
        age, so each session always keeps a fallback.

        Returns:
            Number of checkpoints deleted
        """
        if retention_days < 0:
            raise ValueError(f"retention_days must be >= 0, got {retention_days}")
        cutoff = now - timedelta(days=retention_days)
        with self._db.connection() as conn:
            result = conn.execute(delete(checkpoints_table).where(self._expired_condition(cutoff)))
        deleted = result.rowcount
        if deleted:
            logger.info("checkpoints_expired", deleted=deleted, retention_days=retention_days)
        return deleted

    def prune_session(self, session_id: str, keep: int) -> int:
        """Keep only the newest keep checkpoints of a session.

        Returns:
            Number of checkpoints deleted
        """
        if keep < 1:
            raise ValueError(f"keep must be >= 1, got {keep}")
        with self._db.connection() as conn:
            surplus = conn.execute(
                select(checkpoints_table.c.checkpoint_id)
                .where(checkpoints_table.c.session_id == session_id)
                .order_by(_SESSION_NEWEST_FIRST)
                .offset(keep)
            ).fetchall()
            ids = [row.checkpoint_id for row in surplus]
            if not ids:
                return 0
            result = conn.execute(delete(checkpoints_table).where(checkpoints_table.c.checkpoint_id.in_(ids)))
        return result.rowcount

    # -- Resume events ----------------------------------------------------

    def record_resume_event(self, event: ResumeEvent) -> None:
        with self._db.connection() as conn:
            self._insert_resume_event(conn, event)

    @staticmethod
    def _insert_resume_event(conn: Connection, event: ResumeEvent) -> None:
        conn.execute(
            resume_events_table.insert().values(
                resume_event_id=event.resume_event_id,
                checkpoint_id=event.checkpoint_id,
                session_id=event.session_id,
                restored_at=event.restored_at,
                interruption_reason=event.interruption_reason.value,
                time_since_checkpoint_seconds=event.time_since_checkpoint_seconds,
                resume_confidence=event.resume_confidence,
                user_confirmed=event.user_confirmed,
                success=event.success,
                fidelity_score=event.fidelity_score,
                notes=event.notes,
            )
        )

    def list_resume_events(self, session_id: str) -> list[ResumeEvent]:
        """Resume events for a session, oldest first."""
        with self._db.connection() as conn:
            rows = conn.execute(
                select(resume_events_table)
                .where(resume_events_table.c.session_id == session_id)
                .order_by(resume_events_table.c.restored_at)
            ).fetchall()
        return [self._resume_events.load(row) for row in rows]

    # -- Signal history ---------------------------------------------------

    def record_signals(self, session_id: str, snapshot: SignalSnapshot, *, recorded_at: datetime) -> SignalHistoryRecord:
        """Append one signal snapshot to the diagnostic history."""
        record = SignalHistoryRecord(
            signal_id=f"sig-{uuid.uuid4().hex}",
            session_id=session_id,
            recorded_at=recorded_at,
            crash_risk=snapshot.crash_risk,
            snapshot=snapshot,
        )
        with self._db.connection() as conn:
            conn.execute(
                signal_history_table.insert().values(
                    signal_id=record.signal_id,
                    session_id=session_id,
                    recorded_at=recorded_at,
                    crash_risk=snapshot.crash_risk.value,
                    context_window_usage=snapshot.context_window_usage,
                    message_count=snapshot.message_count,
                    tool_failure_rate=snapshot.tool_failure_rate,
                    snapshot_json=checkpoint_dumps(signals_to_dict(snapshot)),
                )
            )
        return record

    def list_signal_history(self, session_id: str, *, limit: int = 100) -> list[SignalHistoryRecord]:
        """Newest-first signal history for a session."""
        with self._db.connection() as conn:
            rows = conn.execute(
                select(signal_history_table)
                .where(signal_history_table.c.session_id == session_id)
                .order_by(desc(signal_history_table.c.recorded_at))
                .limit(limit)
            ).fetchall()
        return [self._signal_history.load(row) for row in rows]

    def latest_signals(self, session_id: str) -> SignalHistoryRecord | None:
        history = self.list_signal_history(session_id, limit=1)
        return history[0] if history else None

    def signal_history_by_risk(self, risk: CrashRisk, *, limit: int = 100) -> list[SignalHistoryRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                select(signal_history_table)
                .where(signal_history_table.c.crash_risk == risk.value)
                .order_by(desc(signal_history_table.c.recorded_at))
                .limit(limit)
            ).fetchall()
        return [self._signal_history.load(row) for row in rows]

    def signal_history_between(self, session_id: str, start: datetime, end: datetime) -> list[SignalHistoryRecord]:
        """Signal history recorded within [start, end], oldest first."""
        with self._db.connection() as conn:
            rows = conn.execute(
                select(signal_history_table)
                .where(
                    signal_history_table.c.session_id == session_id,
                    signal_history_table.c.recorded_at >= start,
                    signal_history_table.c.recorded_at <= end,
                )
                .order_by(signal_history_table.c.recorded_at)
            ).fetchall()
        return [self._signal_history.load(row) for row in rows]

    def cleanup_signal_history(self, retention_days: int, *, now: datetime) -> int:
        cutoff = now - timedelta(days=retention_days)
        with self._db.connection() as conn:
            result = conn.execute(delete(signal_history_table).where(signal_history_table.c.recorded_at < cutoff))
        return result.rowcount

    def delete_signal_history(self, session_id: str) -> int:
        with self._db.connection() as conn:
            result = conn.execute(delete(signal_history_table).where(signal_history_table.c.session_id == session_id))
        return result.rowcount

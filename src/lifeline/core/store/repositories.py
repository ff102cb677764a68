"""Repository layer for checkpoint store rows.

Handles the seam between SQLAlchemy rows (strings, naive SQLite datetimes,
encoded payloads) and domain objects (strict enums, aware datetimes).
The store is OUR data: a row with an unknown enum value is a bug and
raises. Only the payload blob is treated as possibly damaged, and that
surfaces as CorruptCheckpointError from the codec.
"""

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.engine import Row as SARow

from lifeline.contracts.checkpoint import Checkpoint, CheckpointSize
from lifeline.contracts.enums import CheckpointTrigger, CrashRisk, InterruptionReason
from lifeline.contracts.errors import CorruptCheckpointError
from lifeline.contracts.resume import ResumeEvent, SignalHistoryRecord
from lifeline.core.checkpoint.codec import decode
from lifeline.core.checkpoint.serialization import checkpoint_loads, signals_from_dict


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _as_utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


@dataclass(frozen=True)
class CheckpointSummary:
    """Column-only view of a checkpoint row (no payload decode)."""

    checkpoint_id: str
    session_id: str
    checkpoint_number: int
    created_at: datetime
    triggered_by: CheckpointTrigger
    crash_risk: CrashRisk
    progress: float
    operation: str
    size: CheckpointSize
    restored_at: datetime | None
    restore_success: bool | None
    restore_fidelity: float | None


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    checkpoint_count: int
    latest_checkpoint_number: int
    latest_created_at: datetime


class CheckpointRepository:
    """Repository for checkpoint rows."""

    def load(self, row: SARow[Any]) -> Checkpoint:
        """Decode the payload and overlay the recovery-tracking columns.

        The payload is written once at save time; restored_at and friends
        only ever change in their columns, so the columns win.

        Raises:
            CorruptCheckpointError: If the payload cannot be decoded or its
                format_version column disagrees with the current format
        """
        if row.format_version != Checkpoint.CURRENT_FORMAT_VERSION:
            raise CorruptCheckpointError(
                f"unsupported format version {row.format_version} (expected {Checkpoint.CURRENT_FORMAT_VERSION})",
                checkpoint_id=row.checkpoint_id,
            )
        checkpoint = decode(row.payload, checkpoint_id=row.checkpoint_id)
        return replace(
            checkpoint,
            restored_at=_as_utc_or_none(row.restored_at),
            restore_success=row.restore_success,
            restore_fidelity=row.restore_fidelity,
        )

    def load_size(self, row: SARow[Any]) -> CheckpointSize:
        compressed = row.compressed_size
        ratio = row.uncompressed_size / compressed if compressed else 0.0
        return CheckpointSize(uncompressed=row.uncompressed_size, compressed=compressed, compression_ratio=ratio)

    def load_summary(self, row: SARow[Any]) -> CheckpointSummary:
        return CheckpointSummary(
            checkpoint_id=row.checkpoint_id,
            session_id=row.session_id,
            checkpoint_number=row.checkpoint_number,
            created_at=as_utc(row.created_at),
            triggered_by=CheckpointTrigger(row.triggered_by),
            crash_risk=CrashRisk(row.crash_risk),
            progress=row.progress,
            operation=row.operation,
            size=self.load_size(row),
            restored_at=_as_utc_or_none(row.restored_at),
            restore_success=row.restore_success,
            restore_fidelity=row.restore_fidelity,
        )


class ResumeEventRepository:
    """Repository for ResumeEvent records."""

    def load(self, row: SARow[Any]) -> ResumeEvent:
        return ResumeEvent(
            resume_event_id=row.resume_event_id,
            checkpoint_id=row.checkpoint_id,
            session_id=row.session_id,
            restored_at=as_utc(row.restored_at),
            interruption_reason=InterruptionReason(row.interruption_reason),
            time_since_checkpoint_seconds=row.time_since_checkpoint_seconds,
            resume_confidence=row.resume_confidence,
            user_confirmed=row.user_confirmed,
            success=row.success,
            fidelity_score=row.fidelity_score,
            notes=row.notes,
        )


class SignalHistoryRepository:
    """Repository for SignalHistoryRecord records."""

    def load(self, row: SARow[Any]) -> SignalHistoryRecord:
        return SignalHistoryRecord(
            signal_id=row.signal_id,
            session_id=row.session_id,
            recorded_at=as_utc(row.recorded_at),
            crash_risk=CrashRisk(row.crash_risk),
            snapshot=signals_from_dict(checkpoint_loads(row.snapshot_json)),
        )

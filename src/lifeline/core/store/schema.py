# src/lifeline/core/store/schema.py
"""SQLAlchemy table definitions for the checkpoint store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with SQLite and PostgreSQL.

The encoded checkpoint lives in checkpoints.payload. A handful of fields
are denormalised into columns so listing, risk queries and cleanup never
have to decode payloads.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# Shared metadata for all tables
metadata = MetaData()

# === Checkpoints ===

checkpoints_table = Table(
    "checkpoints",
    metadata,
    Column("checkpoint_id", String(64), primary_key=True),
    Column("session_id", String(64), nullable=False),
    Column("checkpoint_number", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("triggered_by", String(32), nullable=False),
    # Denormalised from the payload for listing and risk queries
    Column("crash_risk", String(16), nullable=False),
    Column("progress", Float, nullable=False),
    Column("operation", String(256), nullable=False),
    Column("context_window_usage", Float, nullable=False),
    Column("message_count", Integer, nullable=False),
    Column("tool_call_count", Integer, nullable=False),
    # Encoded checkpoint (gzip'd type-preserving JSON, or raw JSON)
    Column("payload", LargeBinary, nullable=False),
    Column("format_version", Integer, nullable=False),
    Column("compressed", Boolean, nullable=False),
    Column("uncompressed_size", Integer, nullable=False),
    Column("compressed_size", Integer, nullable=False),
    # Recovery tracking - written exactly once by mark_restored()
    Column("restored_at", DateTime(timezone=True)),
    Column("restore_success", Boolean),
    Column("restore_fidelity", Float),
    UniqueConstraint("session_id", "checkpoint_number", name="uq_checkpoints_session_number"),
    CheckConstraint("checkpoint_number >= 1", name="ck_checkpoints_number_positive"),
    CheckConstraint("progress >= 0 AND progress <= 1", name="ck_checkpoints_progress_range"),
)

Index("ix_checkpoints_session_created", checkpoints_table.c.session_id, checkpoints_table.c.created_at.desc())
# Partial index: latest-unrestored lookups and cleanup scan only live rows
Index(
    "ix_checkpoints_unrestored",
    checkpoints_table.c.session_id,
    checkpoints_table.c.created_at,
    sqlite_where=checkpoints_table.c.restored_at.is_(None),
    postgresql_where=checkpoints_table.c.restored_at.is_(None),
)
Index("ix_checkpoints_crash_risk", checkpoints_table.c.crash_risk)

# === Resume Events (append-only audit) ===
# checkpoint_id deliberately has no FK: the audit row outlives retention
# cleanup of the checkpoint it refers to.

resume_events_table = Table(
    "resume_events",
    metadata,
    Column("resume_event_id", String(64), primary_key=True),
    Column("checkpoint_id", String(64), nullable=False),
    Column("session_id", String(64), nullable=False),
    Column("restored_at", DateTime(timezone=True), nullable=False),
    Column("interruption_reason", String(32), nullable=False),
    Column("time_since_checkpoint_seconds", Float, nullable=False),
    Column("resume_confidence", Float, nullable=False),
    Column("user_confirmed", Boolean),
    Column("success", Boolean, nullable=False),
    Column("fidelity_score", Float),
    Column("notes", Text),
)

Index("ix_resume_events_checkpoint", resume_events_table.c.checkpoint_id)
Index("ix_resume_events_session", resume_events_table.c.session_id, resume_events_table.c.restored_at)

# === Signal History (append-only diagnostics) ===

signal_history_table = Table(
    "signal_history",
    metadata,
    Column("signal_id", String(64), primary_key=True),
    Column("session_id", String(64), nullable=False),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
    Column("crash_risk", String(16), nullable=False),
    Column("context_window_usage", Float, nullable=False),
    Column("message_count", Integer, nullable=False),
    Column("tool_failure_rate", Float, nullable=False),
    Column("snapshot_json", Text, nullable=False),
)

Index("ix_signal_history_session_recorded", signal_history_table.c.session_id, signal_history_table.c.recorded_at)
Index("ix_signal_history_crash_risk", signal_history_table.c.crash_risk)

"""initial_checkpoint_store

Revision ID: a3c5e7f9b1d2
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a3c5e7f9b1d2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create checkpoints, resume_events and signal_history.

    checkpoints.payload holds the encoded checkpoint (format version 1).
    resume_events.checkpoint_id has no foreign key so resume audit rows
    survive retention cleanup of the checkpoint they refer to.
    """
    op.create_table(
        "checkpoints",
        sa.Column("checkpoint_id", sa.String(64), primary_key=True),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("checkpoint_number", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("triggered_by", sa.String(32), nullable=False),
        sa.Column("crash_risk", sa.String(16), nullable=False),
        sa.Column("progress", sa.Float(), nullable=False),
        sa.Column("operation", sa.String(256), nullable=False),
        sa.Column("context_window_usage", sa.Float(), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False),
        sa.Column("tool_call_count", sa.Integer(), nullable=False),
        sa.Column("payload", sa.LargeBinary(), nullable=False),
        sa.Column("format_version", sa.Integer(), nullable=False),
        sa.Column("compressed", sa.Boolean(), nullable=False),
        sa.Column("uncompressed_size", sa.Integer(), nullable=False),
        sa.Column("compressed_size", sa.Integer(), nullable=False),
        sa.Column("restored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("restore_success", sa.Boolean(), nullable=True),
        sa.Column("restore_fidelity", sa.Float(), nullable=True),
        sa.UniqueConstraint("session_id", "checkpoint_number", name="uq_checkpoints_session_number"),
        sa.CheckConstraint("checkpoint_number >= 1", name="ck_checkpoints_number_positive"),
        sa.CheckConstraint("progress >= 0 AND progress <= 1", name="ck_checkpoints_progress_range"),
    )
    op.create_index(
        "ix_checkpoints_session_created",
        "checkpoints",
        ["session_id", sa.text("created_at DESC")],
    )
    op.create_index(
        "ix_checkpoints_unrestored",
        "checkpoints",
        ["session_id", "created_at"],
        sqlite_where=sa.text("restored_at IS NULL"),
        postgresql_where=sa.text("restored_at IS NULL"),
    )
    op.create_index("ix_checkpoints_crash_risk", "checkpoints", ["crash_risk"])

    op.create_table(
        "resume_events",
        sa.Column("resume_event_id", sa.String(64), primary_key=True),
        sa.Column("checkpoint_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("restored_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("interruption_reason", sa.String(32), nullable=False),
        sa.Column("time_since_checkpoint_seconds", sa.Float(), nullable=False),
        sa.Column("resume_confidence", sa.Float(), nullable=False),
        sa.Column("user_confirmed", sa.Boolean(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("fidelity_score", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_resume_events_checkpoint", "resume_events", ["checkpoint_id"])
    op.create_index("ix_resume_events_session", "resume_events", ["session_id", "restored_at"])

    op.create_table(
        "signal_history",
        sa.Column("signal_id", sa.String(64), primary_key=True),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("crash_risk", sa.String(16), nullable=False),
        sa.Column("context_window_usage", sa.Float(), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False),
        sa.Column("tool_failure_rate", sa.Float(), nullable=False),
        sa.Column("snapshot_json", sa.Text(), nullable=False),
    )
    op.create_index("ix_signal_history_session_recorded", "signal_history", ["session_id", "recorded_at"])
    op.create_index("ix_signal_history_crash_risk", "signal_history", ["crash_risk"])


def downgrade() -> None:
    """Drop all checkpoint store tables."""
    op.drop_table("signal_history")
    op.drop_table("resume_events")
    op.drop_table("checkpoints")

"""Checkpoint store: SQLAlchemy Core persistence for checkpoints and audit rows."""

from lifeline.core.store.database import StoreDB
from lifeline.core.store.repositories import CheckpointSummary, SessionSummary
from lifeline.core.store.store import CheckpointStore

__all__ = [
    "CheckpointStore",
    "CheckpointSummary",
    "SessionSummary",
    "StoreDB",
]

"""Retention policy enforcement for the checkpoint store."""

from lifeline.core.retention.purge import PurgeResult, RetentionManager

__all__ = ["PurgeResult", "RetentionManager"]

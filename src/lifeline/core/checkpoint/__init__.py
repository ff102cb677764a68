"""Checkpoint subsystem for crash recovery.

Provides:
- CheckpointManager: Validate, number and persist checkpoints
- ResumeDetector: Decide if/how a new session should resume
- encode/decode: Checkpoint codec (type-preserving JSON + gzip)
- CheckpointLimits: Field bounds applied on intake
"""

from lifeline.core.checkpoint.codec import EncodedCheckpoint, decode, encode, encode_checkpoint
from lifeline.core.checkpoint.limits import DEFAULT_LIMITS, CheckpointLimits, truncate_snapshot, validate_snapshot
from lifeline.core.checkpoint.manager import CheckpointManager
from lifeline.core.checkpoint.prompt import build_resume_prompt, format_duration
from lifeline.core.checkpoint.recovery import ResumeDetector
from lifeline.core.checkpoint.serialization import checkpoint_dumps, checkpoint_loads

__all__ = [
    "DEFAULT_LIMITS",
    "CheckpointLimits",
    "CheckpointManager",
    "EncodedCheckpoint",
    "ResumeDetector",
    "build_resume_prompt",
    "checkpoint_dumps",
    "checkpoint_loads",
    "decode",
    "encode",
    "encode_checkpoint",
    "format_duration",
    "truncate_snapshot",
    "validate_snapshot",
]

"""Checkpoint codec: Checkpoint <-> compact bytes.

encode() serializes with checkpoint_dumps() and gzips the UTF-8 text.
decode() is the inverse and detects the gzip magic, so payloads written
with compression disabled decode the same way.

The codec assumes a pre-validated checkpoint (CheckpointManager validates
before encoding). decode() fails only on a damaged byte stream, and every
such failure surfaces as CorruptCheckpointError.
"""

from __future__ import annotations

import gzip
import zlib
from dataclasses import dataclass

from lifeline.contracts.checkpoint import Checkpoint
from lifeline.contracts.errors import CorruptCheckpointError
from lifeline.core.checkpoint.serialization import (
    checkpoint_dumps,
    checkpoint_from_dict,
    checkpoint_loads,
    checkpoint_to_dict,
)

_GZIP_MAGIC = b"\x1f\x8b"


@dataclass(frozen=True)
class EncodedCheckpoint:
    """Encoded payload plus the size metrics reported back to callers."""

    payload: bytes
    uncompressed_size: int
    compressed: bool

    @property
    def compressed_size(self) -> int:
        return len(self.payload)

    @property
    def compression_ratio(self) -> float:
        if not self.payload:
            return 0.0
        return self.uncompressed_size / len(self.payload)


def encode_checkpoint(checkpoint: Checkpoint, *, compress: bool = True) -> EncodedCheckpoint:
    """Serialize and (optionally) compress a checkpoint.

    Raises:
        ValueError: If the checkpoint holds NaN/Infinity
        TypeError: If free-form tool state holds non-serializable values
    """
    raw = checkpoint_dumps(checkpoint_to_dict(checkpoint)).encode("utf-8")
    # mtime=0 keeps the gzip header deterministic
    payload = gzip.compress(raw, mtime=0) if compress else raw
    return EncodedCheckpoint(payload=payload, uncompressed_size=len(raw), compressed=compress)


def encode(checkpoint: Checkpoint, *, compress: bool = True) -> bytes:
    return encode_checkpoint(checkpoint, compress=compress).payload


def decode(data: bytes, *, checkpoint_id: str | None = None) -> Checkpoint:
    """Rebuild a checkpoint from encode() output.

    Args:
        data: Encoded payload
        checkpoint_id: Included in the error message when decoding fails

    Raises:
        CorruptCheckpointError: If decompression, JSON parse, format version
            or structural reconstruction fails
    """
    try:
        raw = gzip.decompress(data) if data[:2] == _GZIP_MAGIC else data
        decoded = checkpoint_loads(raw.decode("utf-8"))
    except (OSError, EOFError, zlib.error, ValueError) as exc:
        raise CorruptCheckpointError(f"payload could not be decoded ({exc})", checkpoint_id=checkpoint_id) from exc

    if not isinstance(decoded, dict):
        raise CorruptCheckpointError(f"payload is {type(decoded).__name__}, expected object", checkpoint_id=checkpoint_id)

    version = decoded.get("format_version")
    if version != Checkpoint.CURRENT_FORMAT_VERSION:
        raise CorruptCheckpointError(
            f"unsupported format version {version!r} (expected {Checkpoint.CURRENT_FORMAT_VERSION})",
            checkpoint_id=checkpoint_id,
        )

    try:
        return checkpoint_from_dict(decoded)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise CorruptCheckpointError(f"payload structure is invalid ({exc!r})", checkpoint_id=checkpoint_id) from exc

"""Error taxonomy for the checkpoint-and-recovery subsystem.

Every error derives from LifelineError so the session boundary can catch
the whole family in one place. None of these may escape SessionGuard: the
worst outcome for the host session is "no protection this cycle".
"""

from dataclasses import dataclass


class LifelineError(Exception):
    """Base class for all lifeline domain errors."""


@dataclass(frozen=True)
class FieldViolation:
    """One violated bound on a checkpoint field.

    Attributes:
        field: Dotted field path (e.g. "conversation_state.summary")
        limit: Maximum allowed length/count
        actual: Observed length/count
        unit: "chars" or "items"
        reason: Set instead of the size fields when the value itself is
            unusable (naive timestamp, state the codec cannot reproduce)
    """

    field: str
    limit: int | None = None
    actual: int | None = None
    unit: str = ""
    reason: str | None = None

    def __str__(self) -> str:
        if self.reason is not None:
            return f"{self.field}: {self.reason}"
        return f"{self.field}: {self.actual} {self.unit} exceeds limit of {self.limit}"


class CheckpointValidationError(LifelineError):
    """Raised when a snapshot violates bounded-field invariants.

    Carries EVERY violation found, not just the first, so the caller can
    shrink or drop all offending data before retrying.
    """

    def __init__(self, violations: list[FieldViolation]) -> None:
        if not violations:
            raise ValueError("CheckpointValidationError requires at least one violation")
        self.violations = tuple(violations)
        details = "; ".join(str(v) for v in self.violations)
        super().__init__(f"Checkpoint validation failed ({len(self.violations)} violation(s)): {details}")

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(v.field for v in self.violations)


class DuplicateCheckpointNumberError(LifelineError):
    """Raised when (session_id, checkpoint_number) already exists.

    Internal race signal: CheckpointManager retries once with a freshly
    computed number before surfacing it.
    """

    def __init__(self, session_id: str, checkpoint_number: int) -> None:
        self.session_id = session_id
        self.checkpoint_number = checkpoint_number
        super().__init__(f"Checkpoint number {checkpoint_number} already exists for session '{session_id}'")


class AlreadyRestoredError(LifelineError):
    """Raised when markRestored is called twice for the same checkpoint.

    Restoration is not replayable against the same checkpoint. The first
    writer wins; the stored recovery-tracking fields are left unchanged.
    """

    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint '{checkpoint_id}' has already been restored")


class CorruptCheckpointError(LifelineError):
    """Raised when a checkpoint payload cannot be decompressed or parsed."""

    def __init__(self, message: str, *, checkpoint_id: str | None = None) -> None:
        self.checkpoint_id = checkpoint_id
        prefix = f"Checkpoint '{checkpoint_id}' is corrupt: " if checkpoint_id else "Corrupt checkpoint data: "
        super().__init__(prefix + message)


class CheckpointNotFoundError(LifelineError):
    """Raised when a checkpoint id does not exist. Non-fatal by policy."""

    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")


class CheckpointTimeoutError(LifelineError):
    """Raised when a checkpoint attempt exceeds the store timeout and is abandoned."""

    def __init__(self, session_id: str, timeout_seconds: float) -> None:
        self.session_id = session_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Checkpoint for session '{session_id}' abandoned after {timeout_seconds:.1f}s")


class CheckpointCancelledError(LifelineError):
    """Raised inside an abandoned checkpoint attempt so nothing is persisted.

    SessionGuard sets the attempt's cancel event when the store timeout
    expires. The manager and the store check it before committing; an
    attempt that sees it set rolls back instead of saving a row the
    caller was already told had failed.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Checkpoint for session '{session_id}' was abandoned before it was saved")

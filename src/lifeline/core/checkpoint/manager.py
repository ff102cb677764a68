"""CheckpointManager for creating checkpoints from session snapshots."""

from __future__ import annotations

import threading
import uuid
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import SQLAlchemyError

from lifeline.contracts.checkpoint import (
    Checkpoint,
    CheckpointResult,
    CheckpointSize,
    CheckpointStats,
    ConversationState,
    FileState,
    SessionSnapshot,
    TaskState,
    ToolState,
    UserPreferences,
)
from lifeline.contracts.enums import CheckpointTrigger
from lifeline.contracts.errors import CheckpointCancelledError, DuplicateCheckpointNumberError
from lifeline.contracts.signals import SignalSnapshot, TriggerDecision
from lifeline.core.checkpoint.codec import EncodedCheckpoint
from lifeline.core.checkpoint.limits import DEFAULT_LIMITS, CheckpointLimits, default_phase, truncate_snapshot, validate_snapshot
from lifeline.core.config import CheckpointSettings
from lifeline.core.signals.aggregator import SignalAggregator
from lifeline.core.signals.triggers import TriggerPolicy
from lifeline.engine.clock import DEFAULT_CLOCK

if TYPE_CHECKING:
    from lifeline.core.store.store import CheckpointStore
    from lifeline.engine.clock import Clock

logger = structlog.get_logger(__name__)


class CheckpointManager:
    """Manages checkpoint creation.

    Pipeline per checkpoint:
    1. Truncate the documented lossy fields, clamp progress
    2. Validate every other bound (all violations reported together)
    3. Number it: current max for the session + 1
    4. Encode and persist (the store encodes via the codec)
    5. Commit to the aggregator: reset periodic counters, latch risk

    A duplicate checkpoint number (two overlapping creates for one session)
    is retried once with a freshly computed number. Every other failure is
    raised to the caller as a typed error; SessionGuard is the boundary
    that turns them into results.

    An optional cancel event marks the attempt as abandoned by its caller.
    It is checked before each store write and once more inside the save
    transaction. The aggregator is only told about a checkpoint whose row
    committed, so an abandoned attempt leaves neither a row nor reset
    counters behind.
    """

    def __init__(
        self,
        store: CheckpointStore,
        aggregator: SignalAggregator,
        *,
        settings: CheckpointSettings | None = None,
        policy: TriggerPolicy | None = None,
        limits: CheckpointLimits = DEFAULT_LIMITS,
        max_checkpoints_per_session: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Where checkpoints are persisted
            aggregator: Source of signal snapshots; told about each persisted checkpoint
            settings: Cadence, compression and performance target
            policy: Trigger policy (built from settings if omitted)
            limits: Field bounds for intake
            max_checkpoints_per_session: Prune older checkpoints beyond this count
            clock: Optional clock. Inject MockClock for deterministic testing.
        """
        self._store = store
        self._aggregator = aggregator
        self._settings = settings if settings is not None else CheckpointSettings()
        self._policy = policy if policy is not None else TriggerPolicy(self._settings)
        self._limits = limits
        self._max_per_session = max_checkpoints_per_session
        self._clock = clock if clock is not None else DEFAULT_CLOCK

    def evaluate_trigger(self, session_id: str, *, user_requested: bool = False) -> TriggerDecision:
        """Assess the session and decide whether a checkpoint is due."""
        snapshot = self._aggregator.assess(session_id)
        state = self._aggregator.periodic_state(session_id)
        return self._policy.evaluate(snapshot, state, user_requested=user_requested)

    def create_checkpoint(
        self,
        session_id: str,
        snapshot: SessionSnapshot,
        trigger: CheckpointTrigger,
        *,
        cancel: threading.Event | None = None,
    ) -> CheckpointResult:
        """Create and persist a checkpoint.

        Args:
            session_id: Session being protected
            snapshot: Caller-reported state
            trigger: Cause recorded in triggered_by
            cancel: Set by the caller to abandon the attempt

        Returns:
            Successful CheckpointResult with timing and size metrics

        Raises:
            CheckpointValidationError: If any bounded field is exceeded
            DuplicateCheckpointNumberError: If numbering still collides after one retry
            CheckpointCancelledError: If cancel was set before the row committed
        """
        started = self._clock.monotonic()

        intake = truncate_snapshot(snapshot, self._limits)
        validate_snapshot(session_id, intake, self._limits)
        signals = self._aggregator.assess(session_id)

        try:
            checkpoint, encoded = self._save_numbered(session_id, trigger, intake, signals, cancel)
        except CheckpointCancelledError:
            logger.warning(
                "checkpoint_abandoned",
                session_id=session_id,
                triggered_by=trigger.value,
                elapsed_ms=round((self._clock.monotonic() - started) * 1000.0, 2),
            )
            raise

        self._aggregator.mark_checkpoint(session_id, signals.crash_risk)
        self._record_history(session_id, signals, checkpoint)
        if self._max_per_session is not None:
            pruned = self._store.prune_session(session_id, self._max_per_session)
            if pruned:
                logger.debug("checkpoints_pruned", session_id=session_id, pruned=pruned)

        elapsed_ms = (self._clock.monotonic() - started) * 1000.0
        log = logger.bind(
            session_id=session_id,
            checkpoint_id=checkpoint.checkpoint_id,
            checkpoint_number=checkpoint.checkpoint_number,
            triggered_by=trigger.value,
            crash_risk=signals.crash_risk.value,
            elapsed_ms=round(elapsed_ms, 2),
            uncompressed_size=encoded.uncompressed_size,
            compressed_size=encoded.compressed_size,
        )
        if elapsed_ms > self._settings.performance_target_ms:
            log.warning("checkpoint_slow", target_ms=self._settings.performance_target_ms)
        else:
            log.info("checkpoint_created")

        return CheckpointResult(
            success=True,
            session_id=session_id,
            checkpoint_id=checkpoint.checkpoint_id,
            checkpoint_number=checkpoint.checkpoint_number,
            triggered_by=trigger,
            elapsed_ms=elapsed_ms,
            uncompressed_size=encoded.uncompressed_size,
            compressed_size=encoded.compressed_size,
        )

    def force_checkpoint(
        self,
        session_id: str,
        snapshot: SessionSnapshot,
        reason: str | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> CheckpointResult:
        """Create a checkpoint now, tagged user_requested."""
        logger.info("checkpoint_forced", session_id=session_id, reason=reason)
        return self.create_checkpoint(session_id, snapshot, CheckpointTrigger.USER_REQUESTED, cancel=cancel)

    def auto_checkpoint(
        self,
        session_id: str,
        snapshot: SessionSnapshot,
        *,
        cancel: threading.Event | None = None,
    ) -> CheckpointResult | None:
        """Evaluate the trigger policy and checkpoint only if something fired.

        Returns:
            The CheckpointResult, or None when no trigger was due
        """
        decision = self.evaluate_trigger(session_id)
        if not decision.should_trigger or decision.trigger is None:
            return None
        if decision.suppressed:
            logger.debug(
                "trigger_suppressed",
                session_id=session_id,
                trigger=decision.trigger.value,
                suppressed=[t.value for t in decision.suppressed],
            )
        return self.create_checkpoint(session_id, snapshot, decision.trigger, cancel=cancel)

    def _save_numbered(
        self,
        session_id: str,
        trigger: CheckpointTrigger,
        intake: SessionSnapshot,
        signals: SignalSnapshot,
        cancel: threading.Event | None,
    ) -> tuple[Checkpoint, EncodedCheckpoint]:
        """Number, build and save; one retry with a fresh number on collision."""
        checkpoint_id = f"cp-{uuid.uuid4().hex}"
        number = self._store.next_checkpoint_number(session_id)
        checkpoint = self._build(checkpoint_id, session_id, number, trigger, intake, signals)
        try:
            _raise_if_cancelled(session_id, cancel)
            return checkpoint, self._store.save(checkpoint, cancel=cancel)
        except DuplicateCheckpointNumberError:
            retry_number = self._store.next_checkpoint_number(session_id)
            logger.info(
                "checkpoint_number_collision",
                session_id=session_id,
                checkpoint_number=number,
                retry_number=retry_number,
            )
            checkpoint = self._build(checkpoint_id, session_id, retry_number, trigger, intake, signals)
            _raise_if_cancelled(session_id, cancel)
            return checkpoint, self._store.save(checkpoint, cancel=cancel)

    def get_checkpoint_stats(self, session_id: str) -> CheckpointStats:
        """Checkpoint count and latest checkpoint for a session.

        Raises:
            CorruptCheckpointError: If the latest payload cannot be decoded
        """
        return CheckpointStats(
            session_id=session_id,
            total_checkpoints=self._store.count_by_session(session_id),
            last_checkpoint=self._store.get_most_recent(session_id),
        )

    def get_checkpoint_size(self, checkpoint_id: str) -> CheckpointSize | None:
        return self._store.get_checkpoint_size(checkpoint_id)

    def _build(
        self,
        checkpoint_id: str,
        session_id: str,
        number: int,
        trigger: CheckpointTrigger,
        intake: SessionSnapshot,
        signals: SignalSnapshot,
    ) -> Checkpoint:
        return Checkpoint(
            checkpoint_id=checkpoint_id,
            session_id=session_id,
            checkpoint_number=number,
            created_at=self._clock.now(),
            triggered_by=trigger,
            conversation_state=ConversationState(
                summary=intake.summary,
                key_decisions=tuple(intake.key_decisions),
                current_context=intake.current_context,
                recent_messages=tuple(intake.recent_messages),
            ),
            task_state=TaskState(
                operation=intake.operation,
                phase=intake.phase if intake.phase else default_phase(intake.progress),
                progress=intake.progress,
                completed_steps=tuple(intake.completed_steps),
                next_steps=tuple(intake.next_steps),
                blockers=tuple(intake.blockers),
            ),
            file_state=FileState(
                active_files=tuple(intake.active_files),
                modified_files=tuple(intake.modified_files),
                staged_files=tuple(intake.staged_files),
                uncommitted_diff=intake.uncommitted_diff,
            ),
            tool_state=ToolState(
                active_sessions=tuple(intake.active_sessions),
                pending_operations=tuple(intake.pending_operations),
                recent_tool_calls=tuple(intake.recent_tool_calls),
            ),
            signals=signals,
            user_preferences=UserPreferences(
                custom_instructions=intake.custom_instructions,
                recent_preferences=intake.recent_preferences,
            ),
        )

    def _record_history(self, session_id: str, signals: SignalSnapshot, checkpoint: Checkpoint) -> None:
        """Append to signal history. Diagnostics only, so failure is logged, not raised."""
        if not self._settings.record_signal_history:
            return
        try:
            self._store.record_signals(session_id, signals, recorded_at=checkpoint.created_at)
        except SQLAlchemyError as exc:
            logger.warning("signal_history_write_failed", session_id=session_id, error=str(exc))


def _raise_if_cancelled(session_id: str, cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise CheckpointCancelledError(session_id)

"""Resume detection for sessions that were interrupted.

Provides ResumeDetector, which decides on session start whether the
previous checkpoint of a session should be offered for continuation.

Resume flow:
1. Load the most recent checkpoint, falling back to older ones (newest
   first, bounded) when a payload is corrupt
2. Classify why the session stopped (crash / timeout / manual_exit / unknown)
3. Score confidence from recency, elevated risk and task completeness
4. Offer resume with a structured prompt if confidence clears the bar
5. When the caller accepts or declines, consume(): mark the checkpoint
   restored (exactly once) and append its ResumeEvent in one transaction

Detection never raises for a missing session or unusable checkpoints; it
returns a negative ResumeDecision with a reason.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog

from lifeline.contracts.checkpoint import Checkpoint
from lifeline.contracts.enums import CheckpointTrigger, CrashRisk, InterruptionReason
from lifeline.contracts.errors import AlreadyRestoredError, CheckpointNotFoundError, CorruptCheckpointError
from lifeline.contracts.resume import FidelityComponents, RestoredState, ResumeDecision, ResumeEvent
from lifeline.core.checkpoint.prompt import build_resume_prompt
from lifeline.core.config import ResumeSettings
from lifeline.engine.clock import DEFAULT_CLOCK

if TYPE_CHECKING:
    from lifeline.core.store.store import CheckpointStore
    from lifeline.engine.clock import Clock

logger = structlog.get_logger(__name__)

# Confidence weights
RECENCY_WEIGHT = 0.5
ELEVATED_WEIGHT = 0.3
COMPLETENESS_WEIGHT = 0.2

# Fidelity weights
CONVERSATION_FIDELITY = 0.3
TASK_FIDELITY = 0.4
FILES_FIDELITY = 0.2
TOOLS_FIDELITY = 0.1

# Risk a checkpoint's trigger implies about the moment it was taken
_TRIGGER_RISK: dict[CheckpointTrigger, CrashRisk] = {
    CheckpointTrigger.DANGER_ZONE: CrashRisk.DANGER,
    CheckpointTrigger.WARNING_ZONE: CrashRisk.WARNING,
    CheckpointTrigger.RISKY_OPERATION: CrashRisk.WARNING,
}


class ResumeDetector:
    """Decides whether and how a new session should resume.

    Example:
        detector = ResumeDetector(store)
        decision = detector.check_resume_needed("s1")
        if decision.should_resume:
            print(decision.prompt.render())
            detector.consume(decision, accepted=True)
    """

    def __init__(
        self,
        store: CheckpointStore,
        *,
        settings: ResumeSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._settings = settings if settings is not None else ResumeSettings()
        self._clock = clock if clock is not None else DEFAULT_CLOCK

    def check_resume_needed(self, session_id: str) -> ResumeDecision:
        """Evaluate the session's latest usable checkpoint.

        Returns:
            ResumeDecision; negative decisions always carry a reason
        """
        checkpoint, skipped = self._load_latest_usable(session_id)
        if checkpoint is None:
            if skipped:
                return ResumeDecision.negative(
                    session_id,
                    f"No usable checkpoint: {len(skipped)} most recent checkpoint(s) are corrupt",
                    skipped_corrupt=tuple(skipped),
                )
            return ResumeDecision.negative(session_id, "No checkpoint found for session")

        elapsed = max((self._clock.now() - checkpoint.created_at).total_seconds(), 0.0)
        if checkpoint.is_restored:
            return ResumeDecision.negative(
                session_id,
                "Latest checkpoint was already restored",
                checkpoint=checkpoint,
                time_since_checkpoint_seconds=elapsed,
                skipped_corrupt=tuple(skipped),
            )

        reason = self.classify_interruption(checkpoint, elapsed)
        confidence = self.calculate_confidence(checkpoint, elapsed)
        common = {
            "checkpoint": checkpoint,
            "interruption_reason": reason,
            "time_since_checkpoint_seconds": elapsed,
            "confidence": confidence,
            "skipped_corrupt": tuple(skipped),
        }

        if reason is InterruptionReason.MANUAL_EXIT:
            return ResumeDecision.negative(session_id, "Session ended cleanly", **common)
        if confidence < self._settings.min_confidence:
            return ResumeDecision.negative(
                session_id,
                f"Confidence {confidence:.2f} below threshold {self._settings.min_confidence:.2f}",
                **common,
            )

        logger.info(
            "resume_offered",
            session_id=session_id,
            checkpoint_id=checkpoint.checkpoint_id,
            interruption_reason=reason.value,
            confidence=round(confidence, 3),
            elapsed_seconds=round(elapsed, 1),
        )
        return ResumeDecision(
            session_id=session_id,
            should_resume=True,
            prompt=build_resume_prompt(checkpoint, reason, elapsed),
            **common,  # type: ignore[arg-type]
        )

    def _load_latest_usable(self, session_id: str) -> tuple[Checkpoint | None, list[str]]:
        """Newest decodable checkpoint among the most recent few.

        Returns:
            (checkpoint or None, ids skipped because they were corrupt)
        """
        skipped: list[str] = []
        for checkpoint_id in self._store.recent_checkpoint_ids(session_id, self._settings.max_fallback_attempts):
            try:
                checkpoint = self._store.get_by_id(checkpoint_id)
            except CorruptCheckpointError as exc:
                logger.warning("checkpoint_corrupt_skipped", session_id=session_id, checkpoint_id=checkpoint_id, error=str(exc))
                skipped.append(checkpoint_id)
                continue
            if checkpoint is not None:
                return checkpoint, skipped
        return None, skipped

    def classify_interruption(self, checkpoint: Checkpoint, elapsed_seconds: float) -> InterruptionReason:
        """Infer why the session stopped.

        session_end means a clean shutdown. Otherwise the effective risk is
        the higher of the embedded signal risk and the risk the trigger
        implies: a short gap at elevated risk reads as a crash, a long gap
        at safe risk as a timeout.
        """
        if checkpoint.triggered_by is CheckpointTrigger.SESSION_END:
            return InterruptionReason.MANUAL_EXIT

        risk = _effective_risk(checkpoint)
        if elapsed_seconds <= self._settings.short_gap_seconds and risk is not CrashRisk.SAFE:
            return InterruptionReason.CRASH
        if elapsed_seconds >= self._settings.long_gap_seconds and risk is CrashRisk.SAFE:
            return InterruptionReason.TIMEOUT
        return InterruptionReason.UNKNOWN

    def calculate_confidence(self, checkpoint: Checkpoint, elapsed_seconds: float) -> float:
        recency = max(0.0, 1.0 - elapsed_seconds / self._settings.recency_horizon_seconds)
        elevated = 1.0 if checkpoint.triggered_by.is_elevated or checkpoint.signals.crash_risk is not CrashRisk.SAFE else 0.0

        task = checkpoint.task_state
        present = [
            bool(task.operation),
            bool(task.next_steps),
            bool(checkpoint.conversation_state.summary),
            bool(task.phase),
        ]
        completeness = sum(present) / len(present)

        score = RECENCY_WEIGHT * recency + ELEVATED_WEIGHT * elevated + COMPLETENESS_WEIGHT * completeness
        return min(max(score, 0.0), 1.0)

    @staticmethod
    def calculate_fidelity(components: FidelityComponents) -> float:
        """Weighted share of the checkpoint that the resumed session restored."""
        score = 0.0
        if components.conversation_restored:
            score += CONVERSATION_FIDELITY
        if components.task_restored:
            score += TASK_FIDELITY
        if components.files_restored:
            score += FILES_FIDELITY
        if components.tools_restored:
            score += TOOLS_FIDELITY
        return round(score, 6)

    def consume(
        self,
        decision: ResumeDecision,
        *,
        accepted: bool,
        components: FidelityComponents | None = None,
        notes: str | None = None,
    ) -> ResumeEvent:
        """Record the caller's answer to a resume offer.

        Marks the checkpoint restored (success=accepted) and appends a
        ResumeEvent. Declining also consumes the checkpoint so the same
        offer is not repeated.

        Raises:
            ValueError: If the decision did not offer a resume
            AlreadyRestoredError: If another attempt consumed it first; a
                failed ResumeEvent is still recorded for the audit trail
            CheckpointNotFoundError: If the checkpoint was deleted meanwhile
        """
        if not decision.should_resume or decision.checkpoint is None:
            raise ValueError("Only a positive ResumeDecision can be consumed")

        checkpoint = decision.checkpoint
        fidelity = self.calculate_fidelity(components) if accepted and components is not None else None
        restored_at = self._clock.now()

        def _event(success: bool, event_notes: str | None) -> ResumeEvent:
            return ResumeEvent(
                resume_event_id=f"re-{uuid.uuid4().hex}",
                checkpoint_id=checkpoint.checkpoint_id,
                session_id=decision.session_id,
                restored_at=restored_at,
                interruption_reason=decision.interruption_reason,
                time_since_checkpoint_seconds=decision.time_since_checkpoint_seconds,
                resume_confidence=decision.confidence,
                user_confirmed=accepted,
                success=success,
                fidelity_score=fidelity if success else None,
                notes=event_notes,
            )

        event = _event(accepted, notes)
        try:
            self._store.consume_checkpoint(event)
        except AlreadyRestoredError:
            self._store.record_resume_event(_event(False, "Checkpoint already restored by another attempt"))
            logger.warning("resume_already_consumed", session_id=decision.session_id, checkpoint_id=checkpoint.checkpoint_id)
            raise

        logger.info(
            "resume_consumed",
            session_id=decision.session_id,
            checkpoint_id=checkpoint.checkpoint_id,
            accepted=accepted,
            fidelity=fidelity,
        )
        return event

    def restore_state(self, checkpoint_id: str) -> RestoredState:
        """Reconstruct the state sections of a checkpoint.

        Raises:
            CheckpointNotFoundError: If the checkpoint does not exist
            CorruptCheckpointError: If its payload cannot be decoded
        """
        checkpoint = self._store.get_by_id(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return RestoredState(
            checkpoint_id=checkpoint.checkpoint_id,
            conversation=checkpoint.conversation_state,
            task=checkpoint.task_state,
            files=checkpoint.file_state,
            tools=checkpoint.tool_state,
        )


def _effective_risk(checkpoint: Checkpoint) -> CrashRisk:
    embedded = checkpoint.signals.crash_risk
    implied = _TRIGGER_RISK.get(checkpoint.triggered_by, CrashRisk.SAFE)
    return implied if implied.exceeds(embedded) else embedded

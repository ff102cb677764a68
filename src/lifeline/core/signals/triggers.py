"""Checkpoint trigger policy.

Maps (crash risk, tool calls since checkpoint, time since checkpoint) to at
most one CheckpointTrigger.

Priority, highest first:
    user_requested > danger_zone > warning_zone > periodic

Risk triggers fire once per escalation: a level fires only when it is
strictly above the session's risk latch, and the latch only drops back
when an assessment returns SAFE.

Periodic triggers are combinable (first one to fire wins). The tool-call
trigger's fire time is recorded when the count crosses the interval; the
time trigger fires at last_checkpoint + interval. When both are due, the
EARLIEST crossing is reported, not the one checked first in code order.
Either way the checkpoint that follows resets both counters.
"""

from __future__ import annotations

from lifeline.contracts.enums import CheckpointTrigger, CrashRisk
from lifeline.contracts.signals import SignalSnapshot, TriggerDecision
from lifeline.core.config import CheckpointSettings
from lifeline.core.signals.aggregator import PeriodicState


class TriggerPolicy:
    """Stateless trigger evaluation. Session state comes in via PeriodicState."""

    def __init__(self, settings: CheckpointSettings | None = None) -> None:
        self._settings = settings if settings is not None else CheckpointSettings()

    def evaluate(
        self,
        snapshot: SignalSnapshot,
        state: PeriodicState,
        *,
        user_requested: bool = False,
    ) -> TriggerDecision:
        """Decide whether a checkpoint is due and what caused it.

        Args:
            snapshot: Fresh assessment for the session
            state: Checkpoint-timing view from SignalAggregator.periodic_state()
            user_requested: Caller explicitly asked for a checkpoint

        Returns:
            TriggerDecision naming the winning trigger; triggers that were
            also due but lost on priority are listed in suppressed
        """
        due: list[CheckpointTrigger] = []
        if user_requested:
            due.append(CheckpointTrigger.USER_REQUESTED)
        due.extend(self._risk_triggers(snapshot.crash_risk, state.risk_latch))
        due.extend(self._periodic_triggers(state))

        risk = snapshot.crash_risk
        if not due:
            return TriggerDecision(should_trigger=False, trigger=None, risk=risk)
        return TriggerDecision(should_trigger=True, trigger=due[0], risk=risk, suppressed=tuple(due[1:]))

    @staticmethod
    def _risk_triggers(risk: CrashRisk, latch: CrashRisk) -> list[CheckpointTrigger]:
        if not risk.exceeds(latch):
            return []
        if risk is CrashRisk.DANGER:
            return [CheckpointTrigger.DANGER_ZONE]
        return [CheckpointTrigger.WARNING_ZONE]

    def _periodic_triggers(self, state: PeriodicState) -> list[CheckpointTrigger]:
        fire_times: list[tuple[float, CheckpointTrigger]] = []

        if state.tool_calls_since_checkpoint >= self._settings.tool_call_interval:
            # Crossing recorded by the aggregator; fall back to now if the
            # interval was lowered after the count had already passed it
            crossed = state.tool_interval_crossed_at if state.tool_interval_crossed_at is not None else state.now
            fire_times.append((crossed, CheckpointTrigger.TOOL_CALL_INTERVAL))

        time_due_at = state.last_checkpoint_at + self._settings.time_interval_seconds
        if state.now >= time_due_at:
            fire_times.append((time_due_at, CheckpointTrigger.TIME_INTERVAL))

        # Stable sort: on an exact tie the tool-call trigger stays first
        fire_times.sort(key=lambda item: item[0])
        return [trigger for _, trigger in fire_times]

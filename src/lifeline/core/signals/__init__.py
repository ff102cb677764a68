"""Risk signal aggregation.

Provides:
- SignalAggregator: Per-session counters, assessment and checkpoint bookkeeping
- TriggerPolicy: Maps risk and periodic state to a checkpoint trigger
- evaluate_risk: Two-tier threshold counting over signal values
"""

from lifeline.core.signals.aggregator import PeriodicState, SessionSignals, SignalAggregator
from lifeline.core.signals.risk import RiskAssessment, classify_risk, estimate_tokens, evaluate_risk
from lifeline.core.signals.triggers import TriggerPolicy

__all__ = [
    "PeriodicState",
    "RiskAssessment",
    "SessionSignals",
    "SignalAggregator",
    "TriggerPolicy",
    "classify_risk",
    "estimate_tokens",
    "evaluate_risk",
]

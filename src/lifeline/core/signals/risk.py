"""Deterministic crash-risk rules.

Pure functions over observed counters. No state, no clock: the aggregator
feeds them values and embeds the result in a SignalSnapshot.

Risk policy (two-tier counting):
    danger_hits >= 2                      -> DANGER
    danger_hits >= 1 or warning_hits >= 3 -> WARNING
    otherwise                             -> SAFE

A threshold counts as hit when the observed value REACHES it (>=).
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from lifeline.contracts.enums import CrashRisk, LatencyTrend, ResponseLatencyTrend
from lifeline.core.config import RiskSettings, ZoneThresholds

CHARS_PER_TOKEN = 4

# Latency trend: least-squares slope over the newest samples
TREND_SAMPLE_COUNT = 10
TREND_MIN_SAMPLES = 5
TREND_SLOPE_THRESHOLD = 0.1

# Absolute latency bands (milliseconds)
DEGRADING_LATENCY_MS = 2000.0
CRITICAL_LATENCY_MS = 5000.0

CONSECUTIVE_FAILURE_FACTOR = 3


@dataclass(frozen=True)
class RiskAssessment:
    """Outcome of applying the zone thresholds to one set of signal values."""

    risk: CrashRisk
    danger_hits: tuple[str, ...]
    warning_hits: tuple[str, ...]
    factors: tuple[str, ...]


def estimate_tokens(text: str) -> int:
    """Approximate token count for text (four characters per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def zone_hits(values: Mapping[str, float], zone: ZoneThresholds) -> tuple[str, ...]:
    """Names of the zone thresholds reached by values.

    Args:
        values: Signal values keyed by ZoneThresholds field name
        zone: Threshold set to test against

    Returns:
        Threshold names, in ZoneThresholds field order
    """
    thresholds = zone.model_dump()
    return tuple(name for name, limit in thresholds.items() if values[name] >= limit)


def classify_risk(danger_hits: int, warning_hits: int) -> CrashRisk:
    if danger_hits >= 2:
        return CrashRisk.DANGER
    if danger_hits >= 1 or warning_hits >= 3:
        return CrashRisk.WARNING
    return CrashRisk.SAFE


def evaluate_risk(
    values: Mapping[str, float],
    settings: RiskSettings,
    *,
    consecutive_failures: int = 0,
    latency_trend: LatencyTrend = LatencyTrend.STABLE,
) -> RiskAssessment:
    """Apply warning and danger zones to signal values.

    Args:
        values: Signal values keyed by ZoneThresholds field name
        settings: Risk thresholds
        consecutive_failures: Only used for the human-readable factors
        latency_trend: Only used for the human-readable factors

    Returns:
        RiskAssessment with the risk level and which thresholds were hit
    """
    danger = zone_hits(values, settings.danger_zone)
    warning = zone_hits(values, settings.warning_zone)
    risk = classify_risk(len(danger), len(warning))

    factors: list[str] = []
    if "context_window_usage" in danger:
        factors.append("Context window usage critical")
    if "message_count" in danger:
        factors.append("High message count")
    if "tool_failure_rate" in danger:
        factors.append("High tool failure rate")
    if consecutive_failures >= CONSECUTIVE_FAILURE_FACTOR:
        factors.append(f"{consecutive_failures} consecutive tool failures")
    if latency_trend is LatencyTrend.INCREASING:
        factors.append("Tool latency increasing")

    return RiskAssessment(risk=risk, danger_hits=danger, warning_hits=warning, factors=tuple(factors))


def latency_slope(samples: Sequence[float]) -> float:
    """Least-squares slope of samples against their index."""
    n = len(samples)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2
    mean_y = sum(samples) / n
    numerator = sum((i - mean_x) * (y - mean_y) for i, y in enumerate(samples))
    denominator = sum((i - mean_x) ** 2 for i in range(n))
    return numerator / denominator


def classify_latency_trend(samples: Sequence[float]) -> LatencyTrend:
    """Slope-sign classification over the newest TREND_SAMPLE_COUNT samples.

    Too few samples reads as STABLE.
    """
    if len(samples) < TREND_MIN_SAMPLES:
        return LatencyTrend.STABLE
    slope = latency_slope(list(samples)[-TREND_SAMPLE_COUNT:])
    if slope > TREND_SLOPE_THRESHOLD:
        return LatencyTrend.INCREASING
    if slope < -TREND_SLOPE_THRESHOLD:
        return LatencyTrend.DECREASING
    return LatencyTrend.STABLE


def classify_response_latency(avg_latency_ms: float) -> ResponseLatencyTrend:
    if avg_latency_ms < DEGRADING_LATENCY_MS:
        return ResponseLatencyTrend.NORMAL
    if avg_latency_ms < CRITICAL_LATENCY_MS:
        return ResponseLatencyTrend.DEGRADING
    return ResponseLatencyTrend.CRITICAL

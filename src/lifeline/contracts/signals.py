"""Signal contracts: events observed from the host session and derived snapshots.

Events flow in from the tool-dispatch layer (fire-and-forget). Snapshots are
rebuilt on every assessment and embedded verbatim in each checkpoint, so
every field here is part of the checkpoint payload format.
"""

from dataclasses import dataclass, field

from lifeline.contracts.enums import CheckpointTrigger, CrashRisk, LatencyTrend, MessageRole, ResponseLatencyTrend


@dataclass(frozen=True)
class ToolCallEvent:
    """One completed tool call reported by the host session.

    Attributes:
        tool: Tool name as the dispatcher knows it
        success: Whether the call succeeded
        latency_ms: Wall time of the call in milliseconds
        error: Optional short error tag (e.g. "timeout", "permission_denied")
    """

    tool: str
    success: bool
    latency_ms: float
    error: str | None = None


@dataclass(frozen=True)
class MessageEvent:
    """One conversation message reported by the host session."""

    role: MessageRole
    content: str


@dataclass(frozen=True)
class SignalSnapshot:
    """Full signal picture at one instant.

    Durations are seconds, latencies are milliseconds.
    """

    # Token signals
    estimated_total_tokens: int = 0
    tokens_per_message: float = 0.0
    context_window_usage: float = 0.0
    context_window_remaining: int = 0

    # Message signals
    message_count: int = 0
    tool_call_count: int = 0
    tool_calls_since_checkpoint: int = 0
    messages_per_minute: float = 0.0

    # Time signals
    session_duration_seconds: float = 0.0
    avg_response_latency_ms: float = 0.0
    time_since_last_response_seconds: float = 0.0
    latency_trend: LatencyTrend = LatencyTrend.STABLE

    # Behavior signals
    tool_failure_rate: float = 0.0
    consecutive_tool_failures: int = 0
    total_tool_failures: int = 0
    response_latency_trend: ResponseLatencyTrend = ResponseLatencyTrend.NORMAL
    error_patterns: tuple[str, ...] = ()

    # Derived
    crash_risk: CrashRisk = CrashRisk.SAFE
    risk_factors: tuple[str, ...] = ()


@dataclass(frozen=True)
class TriggerDecision:
    """Outcome of evaluating the checkpoint trigger policy for a session.

    should_trigger=True always carries a trigger; False never does.
    """

    should_trigger: bool
    trigger: CheckpointTrigger | None
    risk: CrashRisk
    # Threshold names that fired at the same time but lost the tie-break
    suppressed: tuple[CheckpointTrigger, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.should_trigger and self.trigger is None:
            raise ValueError("should_trigger=True requires a trigger")
        if not self.should_trigger and self.trigger is not None:
            raise ValueError("should_trigger=False must not carry a trigger")

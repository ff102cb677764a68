"""SessionGuard: the inbound boundary used by the host session.

The host's tool-dispatch layer calls exactly these operations:

    observe(session_id, event)          fire-and-forget signal update
    report_snapshot(session_id, snap)   periodic or forced checkpoint request
    on_session_start(session_id)        resume decision for a new session
    consume_resume(decision, ...)       record the user's answer
    end_session(session_id, snap)       clean shutdown checkpoint + eviction

Nothing raised below this layer escapes it. Checkpoint failures come back
as CheckpointResult(success=False) and resume failures as a negative
ResumeDecision, always logged. The worst outcome for the host is "no
protection this cycle".

Store work runs on a single worker thread and is bounded by
store_timeout_seconds; a checkpoint attempt that overruns is abandoned
(not retried) and reported as a timeout. Abandoning sets the attempt's
cancel event, so work still running on the worker rolls back instead of
saving a checkpoint the host was told had failed.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING, Self, TypeVar

import structlog

from lifeline.contracts.checkpoint import CheckpointResult, SessionSnapshot
from lifeline.contracts.enums import CheckpointTrigger
from lifeline.contracts.errors import CheckpointTimeoutError
from lifeline.contracts.resume import FidelityComponents, ResumeDecision, ResumeEvent
from lifeline.contracts.signals import MessageEvent, ToolCallEvent
from lifeline.core.checkpoint.manager import CheckpointManager
from lifeline.core.checkpoint.recovery import ResumeDetector
from lifeline.core.config import LifelineSettings
from lifeline.core.signals.aggregator import SignalAggregator
from lifeline.core.store.database import StoreDB
from lifeline.core.store.store import CheckpointStore
from lifeline.engine.clock import DEFAULT_CLOCK

if TYPE_CHECKING:
    from lifeline.engine.clock import Clock

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SessionGuard:
    """Wires aggregator, manager and detector behind a non-raising facade.

    Example:
        with SessionGuard.from_settings(settings) as guard:
            decision = guard.on_session_start("s1")
            guard.observe("s1", ToolCallEvent(tool="bash", success=True, latency_ms=80.0))
            result = guard.report_snapshot("s1", SessionSnapshot(operation="refactor"))
    """

    def __init__(
        self,
        store: CheckpointStore,
        settings: LifelineSettings | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings if settings is not None else LifelineSettings()
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._store = store
        checkpoint_settings = self._settings.checkpoint
        self._aggregator = SignalAggregator(
            self._settings.risk,
            tool_call_interval=checkpoint_settings.tool_call_interval,
            clock=self._clock,
        )
        self._manager = CheckpointManager(
            store,
            self._aggregator,
            settings=checkpoint_settings,
            max_checkpoints_per_session=self._settings.retention.max_checkpoints_per_session,
            clock=self._clock,
        )
        self._detector = ResumeDetector(store, settings=self._settings.resume, clock=self._clock)
        self._timeout = checkpoint_settings.store_timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lifeline-store")
        # Set by from_settings(), which opens the database itself
        self._owned_db: StoreDB | None = None

    @classmethod
    def from_settings(cls, settings: LifelineSettings, *, clock: Clock | None = None) -> Self:
        db = StoreDB.from_url(settings.store.url)
        store = CheckpointStore(db, compress=settings.checkpoint.compression_enabled)
        guard = cls(store, settings, clock=clock)
        guard._owned_db = db
        return guard

    @property
    def aggregator(self) -> SignalAggregator:
        return self._aggregator

    @property
    def manager(self) -> CheckpointManager:
        return self._manager

    @property
    def detector(self) -> ResumeDetector:
        return self._detector

    @property
    def store(self) -> CheckpointStore:
        return self._store

    def _run(self, fn: Callable[[], T], *, session_id: str, cancel: threading.Event | None = None) -> T:
        """Run store-bound work on the worker, bounded by the store timeout.

        On timeout, cancel is set so work that already started can stop
        before it commits.

        Raises:
            CheckpointTimeoutError: If the work did not finish in time
        """
        future: Future[T] = self._executor.submit(fn)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError:
            if cancel is not None:
                cancel.set()
            future.cancel()
            raise CheckpointTimeoutError(session_id, self._timeout) from None

    # -- Signals ----------------------------------------------------------

    def observe(self, session_id: str, event: ToolCallEvent | MessageEvent) -> None:
        """Fire-and-forget signal update. Never raises."""
        try:
            self._aggregator.observe(session_id, event)
        except Exception:
            logger.exception("signal_observe_failed", session_id=session_id)

    # -- Checkpoints ------------------------------------------------------

    def report_snapshot(
        self,
        session_id: str,
        snapshot: SessionSnapshot,
        *,
        force: bool = False,
        reason: str | None = None,
    ) -> CheckpointResult | None:
        """Checkpoint if the trigger policy says so (or unconditionally if force).

        Returns:
            CheckpointResult (success or failure), or None when no trigger was due
        """
        if force:
            return self._checkpoint(session_id, lambda cancel: self._manager.force_checkpoint(session_id, snapshot, reason, cancel=cancel))
        if not self._settings.checkpoint.enabled:
            return None
        return self._checkpoint(session_id, lambda cancel: self._manager.auto_checkpoint(session_id, snapshot, cancel=cancel))

    def checkpoint(self, session_id: str, snapshot: SessionSnapshot, trigger: CheckpointTrigger) -> CheckpointResult | None:
        """Checkpoint with a caller-chosen trigger (milestone, risky_operation, ...).

        Always attempts a checkpoint, so the result is only None if the
        manager itself produced none.
        """
        return self._checkpoint(session_id, lambda cancel: self._manager.create_checkpoint(session_id, snapshot, trigger, cancel=cancel))

    def _checkpoint(
        self,
        session_id: str,
        work: Callable[[threading.Event], CheckpointResult | None],
    ) -> CheckpointResult | None:
        started = self._clock.monotonic()
        cancel = threading.Event()
        try:
            return self._run(lambda: work(cancel), session_id=session_id, cancel=cancel)
        except Exception as exc:
            elapsed_ms = (self._clock.monotonic() - started) * 1000.0
            logger.warning(
                "checkpoint_failed",
                session_id=session_id,
                error_type=type(exc).__name__,
                error=str(exc),
                elapsed_ms=round(elapsed_ms, 2),
                exc_info=not isinstance(exc, CheckpointTimeoutError),
            )
            return CheckpointResult(
                success=False,
                session_id=session_id,
                elapsed_ms=elapsed_ms,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    # -- Resume -----------------------------------------------------------

    def on_session_start(self, session_id: str) -> ResumeDecision:
        """Register the session and decide whether to offer resume. Never raises."""
        self._aggregator.start_session(session_id)
        try:
            return self._run(lambda: self._detector.check_resume_needed(session_id), session_id=session_id)
        except Exception as exc:
            logger.warning(
                "resume_check_failed",
                session_id=session_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return ResumeDecision.negative(session_id, f"Resume check failed: {type(exc).__name__}: {exc}")

    def consume_resume(
        self,
        decision: ResumeDecision,
        *,
        accepted: bool,
        components: FidelityComponents | None = None,
        notes: str | None = None,
    ) -> ResumeEvent | None:
        """Record the user's answer to a resume offer.

        Returns:
            The ResumeEvent, or None if consumption failed (already
            restored, checkpoint gone, store error); failures are logged
        """
        try:
            return self._run(
                lambda: self._detector.consume(decision, accepted=accepted, components=components, notes=notes),
                session_id=decision.session_id,
            )
        except Exception as exc:
            logger.warning(
                "resume_consume_failed",
                session_id=decision.session_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None

    # -- Lifecycle --------------------------------------------------------

    def end_session(self, session_id: str, snapshot: SessionSnapshot | None = None) -> CheckpointResult | None:
        """Clean shutdown: optional session_end checkpoint, then evict counters.

        A session_end checkpoint tells the next session start this was a
        manual exit, so no resume is offered.
        """
        result = None
        if snapshot is not None:
            result = self._checkpoint(
                session_id,
                lambda cancel: self._manager.create_checkpoint(session_id, snapshot, CheckpointTrigger.SESSION_END, cancel=cancel),
            )
        self._aggregator.evict(session_id)
        return result

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)
        if self._owned_db is not None:
            self._owned_db.close()
            self._owned_db = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

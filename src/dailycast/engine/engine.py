# src/dailycast/engine/engine.py
"""Engine: public surface for executing and resuming daily runs.

Both entry points return RunResult | EngineError. Precondition
violations (already running, already completed, unknown stage, ...) are
EngineError values, never exceptions, so every caller has to handle them.

Run lifecycle:
    execute_run: lock -> status check -> queued-topic claim -> state init
                 -> stage loop from 0 -> finalize
    resume_run:  stage check -> status check -> mark running
                 -> rebuild carried state -> stage loop from restart -> finalize

    finalize:    release queued topic (success only) -> always-run stage
                 -> total cost -> cost hook -> terminal status -> RunResult
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from dailycast.contracts import (
    EngineError,
    EngineErrorKind,
    QualityContext,
    QualityGateResult,
    RunErrorInfo,
    RunResult,
    RunState,
    RunStatus,
    StageStatus,
)
from dailycast.core.alerts import AlertDispatcher, NullAlertDispatcher, WebhookAlertDispatcher
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.config import DailycastSettings, EngineSettings
from dailycast.core.cost import BudgetChecker, CostCategorizer
from dailycast.core.incidents import IncidentLog
from dailycast.core.queue import TopicQueue
from dailycast.core.state import RunStateStore, StateDB
from dailycast.engine.bridge import QueuedTopicBridge, initial_data
from dailycast.engine.cost_hook import CostHook
from dailycast.engine.finalizer import Finalizer
from dailycast.engine.lock import ConcurrencyLock
from dailycast.engine.loop import LoopState, StageLoop, extract_topic
from dailycast.engine.quality_gate import quality_gate_check
from dailycast.engine.retry import RetryExecutor
from dailycast.engine.spans import SpanFactory
from dailycast.engine.stages import DEFAULT_STAGE_TABLE, StageTable
from dailycast.plugins.protocols import StageProtocol

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer

slog = structlog.get_logger(__name__)

RESUMABLE_STATUSES = frozenset({RunStatus.FAILED, RunStatus.SKIPPED, RunStatus.PAUSED})


class Engine:
    """Sequences stages for one run per calendar key.

    Example:
        engine = Engine(table, registry, store, incidents=incidents, alerts=alerts, queue=queue)
        result = engine.execute_run("2026-01-19")
        if isinstance(result, EngineError):
            ...
        elif result.status == RunStatus.SKIPPED:
            ...
    """

    def __init__(
        self,
        table: StageTable,
        registry: Mapping[str, StageProtocol],
        store: RunStateStore,
        *,
        incidents: IncidentLog,
        alerts: AlertDispatcher,
        queue: TopicQueue,
        clock: Clock = DEFAULT_CLOCK,
        executor: RetryExecutor | None = None,
        cost_hook: CostHook | None = None,
        spans: SpanFactory | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._table = table
        self._store = store
        self._clock = clock
        self._settings = settings if settings is not None else EngineSettings()
        self._spans = spans if spans is not None else SpanFactory()
        self._cost_hook = cost_hook
        executor = executor if executor is not None else RetryExecutor(clock=clock)

        self._lock = ConcurrencyLock(
            store,
            clock=clock,
            max_run_duration=timedelta(seconds=self._settings.max_run_duration_seconds),
        )
        self._bridge = QueuedTopicBridge(queue, max_retries=queue.max_retries)
        self._loop = StageLoop(
            table,
            registry,
            store,
            executor,
            incidents,
            alerts,
            queue,
            spans=self._spans,
            settings=self._settings,
            clock=clock,
        )
        self._finalizer = Finalizer(table, registry, store, executor, settings=self._settings, clock=clock)
        self._closers: list[Callable[[], None]] = []

    @classmethod
    def from_settings(
        cls,
        settings: DailycastSettings,
        registry: Mapping[str, StageProtocol],
        db: StateDB,
        *,
        clock: Clock = DEFAULT_CLOCK,
        tracer: Tracer | None = None,
    ) -> Engine:
        """Wire an engine and its collaborators from settings.

        The caller owns db and closes it. The engine owns the webhook
        client it creates; close the engine (or use it as a context
        manager) to release it.
        """
        table = StageTable.from_settings(settings.stages) if settings.stages is not None else DEFAULT_STAGE_TABLE
        alerts: AlertDispatcher
        if settings.alerts.webhook_url:
            alerts = WebhookAlertDispatcher(settings.alerts.webhook_url, timeout=settings.alerts.timeout_seconds)
        else:
            alerts = NullAlertDispatcher()

        engine = cls(
            table,
            registry,
            RunStateStore(db, clock=clock),
            incidents=IncidentLog(db, clock=clock),
            alerts=alerts,
            queue=TopicQueue(db, clock=clock, max_retries=settings.queue.max_retries),
            clock=clock,
            cost_hook=CostHook(
                CostCategorizer(settings.cost.categories),
                BudgetChecker(db, alerts, settings=settings.cost, clock=clock),
            ),
            spans=SpanFactory(tracer),
            settings=settings.engine,
        )
        if isinstance(alerts, WebhookAlertDispatcher):
            engine._closers.append(alerts.close)
        return engine

    @property
    def table(self) -> StageTable:
        return self._table

    def close(self) -> None:
        while self._closers:
            self._closers.pop()()

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # === Public surface ===

    def execute_run(self, run_id: str) -> RunResult | EngineError:
        """Run every stage for run_id from the beginning.

        Returns:
            RunResult for a run that started, or EngineError when a
            precondition fails (nothing is executed in that case)
        """
        started = self._clock.monotonic()
        with self._spans.run_span(run_id, mode="execute") as span:
            if self._lock.check(run_id):
                return EngineError(EngineErrorKind.ALREADY_RUNNING, f"Run {run_id} is already running", run_id)

            try:
                existing = self._store.get_state(run_id)
            except Exception:
                return self._state_read_failed(run_id)
            if existing is not None:
                if existing.status == RunStatus.COMPLETED:
                    return EngineError(
                        EngineErrorKind.ALREADY_COMPLETED,
                        f"Run {run_id} has already completed successfully",
                        run_id,
                    )
                if existing.status in RESUMABLE_STATUSES:
                    return EngineError(
                        EngineErrorKind.INVALID_RESUME_STATE,
                        f"Run {run_id} is {existing.status.value}; use resume to continue it",
                        run_id,
                    )

            claimed = self._bridge.claim(run_id)

            init_error = self._initialize(run_id)
            if init_error is not None:
                return init_error

            slog.info(
                "run_started",
                run_id=run_id,
                stage_count=len(self._table),
                from_queue=claimed is not None,
            )
            state = LoopState(
                data=initial_data(claimed),
                current_topic=claimed.topic if claimed is not None else None,
            )
            self._loop.run(run_id, 0, state)
            result = self._finish(run_id, state, started, release_queue=claimed is not None)
            span.set_attribute("run.status", result.status.value)
            return result

    def resume_run(self, run_id: str, from_stage: str | None = None) -> RunResult | EngineError:
        """Re-enter the stage loop for a failed, skipped, or paused run.

        Args:
            run_id: Run to resume
            from_stage: Stage to restart at. Defaults to the stage after
                the last completed one.
        """
        started = self._clock.monotonic()
        with self._spans.run_span(run_id, mode="resume") as span:
            if from_stage is not None and from_stage not in self._table:
                return EngineError(EngineErrorKind.INVALID_STAGE, f"Invalid stage name: {from_stage}", run_id)

            try:
                existing = self._store.get_state(run_id)
            except Exception:
                return self._state_read_failed(run_id)
            if existing is None:
                return EngineError(EngineErrorKind.RUN_NOT_FOUND, f"Run {run_id} not found", run_id)
            if existing.status not in RESUMABLE_STATUSES:
                if existing.status == RunStatus.RUNNING:
                    return EngineError(
                        EngineErrorKind.ALREADY_RUNNING,
                        f"Run {run_id} is currently running",
                        run_id,
                    )
                if existing.status == RunStatus.COMPLETED:
                    return EngineError(
                        EngineErrorKind.ALREADY_COMPLETED,
                        f"Run {run_id} has already completed successfully",
                        run_id,
                    )
                return EngineError(
                    EngineErrorKind.INVALID_RESUME_STATE,
                    f"Run {run_id} is in non-resumable state: {existing.status.value}",
                    run_id,
                )

            try:
                self._store.mark_running(run_id)
            except Exception:
                slog.warning("resume_mark_running_failed", run_id=run_id, exc_info=True)
            else:
                slog.info("run_marked_running_for_resume", run_id=run_id, previous_status=existing.status.value)

            start_index = self._restart_index(existing, from_stage)
            state = self._rebuild_state(run_id, existing, start_index)
            slog.info(
                "run_resuming",
                run_id=run_id,
                from_stage=self._table.order[start_index] if start_index < len(self._table) else None,
                completed_stages=state.completed_stages,
            )
            self._loop.run(run_id, start_index, state)
            result = self._finish(run_id, state, started, release_queue=False)
            span.set_attribute("run.status", result.status.value)
            return result

    # === Internals ===

    def _state_read_failed(self, run_id: str) -> EngineError:
        slog.error("run_state_read_failed", run_id=run_id, exc_info=True)
        return EngineError(
            EngineErrorKind.STATE_READ_FAILED,
            f"Could not read state for run {run_id}; nothing was executed",
            run_id,
        )

    def _initialize(self, run_id: str) -> EngineError | None:
        attempts = self._settings.state_init_attempts
        for attempt in range(1, attempts + 1):
            try:
                self._store.initialize_run(run_id)
            except Exception:
                slog.warning("run_state_init_failed", run_id=run_id, attempt=attempt, exc_info=True)
                if attempt < attempts:
                    self._clock.sleep(attempt)
            else:
                return None
        return EngineError(
            EngineErrorKind.STATE_INIT_FAILED,
            f"Could not initialize state for run {run_id} after {attempts} attempts",
            run_id,
        )

    def _restart_index(self, existing: RunState, from_stage: str | None) -> int:
        """Position in the table order to resume from.

        Without an explicit stage, restart after the last completed loop
        stage. The always-run stage is ignored: it completes even on runs
        that aborted, so it says nothing about loop progress.
        """
        if from_stage is not None:
            index = self._table.index_of(from_stage)
            if index is None:
                raise ValueError(f"Unknown stage {from_stage!r}")
            return index

        for name in reversed(self._table.loop_stages):
            if existing.stage_status(name) == StageStatus.COMPLETED:
                return self._table.order.index(name) + 1
        return 0

    def _rebuild_state(self, run_id: str, existing: RunState, start_index: int) -> LoopState:
        kept = [
            name
            for name in self._table.order[:start_index]
            if name in self._table.loop_stages and existing.stage_status(name) == StageStatus.COMPLETED
        ]
        state = LoopState(
            data={},
            quality=existing.quality_context if existing.quality_context is not None else QualityContext(),
            completed_stages=list(kept),
            stage_records={name: existing.stages[name] for name in kept},
        )
        state.total_cost = sum(record.cost.total for record in state.stage_records.values() if record.cost is not None)

        previous = next(
            (name for name in reversed(self._table.order[:start_index]) if name in self._table.loop_stages),
            None,
        )
        if previous is not None:
            try:
                state.data = self._store.load_stage_output(run_id, previous)
            except Exception:
                slog.warning("previous_stage_output_unavailable", run_id=run_id, stage=previous, exc_info=True)
            else:
                state.previous_stage = previous

        topic_stage = self._settings.topic_stage
        if topic_stage is not None and topic_stage in kept:
            state.current_topic = self._load_topic(run_id, topic_stage)
        return state

    def _load_topic(self, run_id: str, topic_stage: str) -> str | None:
        try:
            data: Any = self._store.load_stage_output(run_id, topic_stage)
        except Exception:
            slog.warning("topic_stage_output_unavailable", run_id=run_id, stage=topic_stage, exc_info=True)
            return None
        return extract_topic(data)

    def _finish(self, run_id: str, state: LoopState, started: float, *, release_queue: bool) -> RunResult:
        if release_queue and not state.stopped:
            self._bridge.release(run_id)

        self._finalizer.finalize(run_id, state)
        total_duration_ms = int((self._clock.monotonic() - started) * 1000)

        try:
            self._store.update_total_cost(run_id, state.total_cost)
        except Exception:
            slog.error("total_cost_write_failed", run_id=run_id, total_cost=state.total_cost, exc_info=True)

        if self._cost_hook is not None:
            self._cost_hook.apply(run_id, state)

        error: RunErrorInfo | None = None
        quality_decision: QualityGateResult | None = None
        if state.skipped:
            skip_info = state.skip_info
            if skip_info is None:
                raise RuntimeError(f"Run {run_id} skipped without skip_info")
            status = RunStatus.SKIPPED
            self._mark(run_id, status, lambda: self._store.mark_skipped(run_id, skip_info))
            slog.warning(
                "run_skipped_gracefully",
                run_id=run_id,
                total_duration_ms=total_duration_ms,
                reason=skip_info.reason,
                stage=skip_info.stage,
                topic_queued=skip_info.topic_queued,
            )
        elif state.aborted:
            abort_error = state.abort_error
            if abort_error is None:
                raise RuntimeError(f"Run {run_id} aborted without an error")
            status = RunStatus.FAILED
            failure = RunErrorInfo(
                code=abort_error.code,
                message=abort_error.message,
                stage=abort_error.stage if abort_error.stage is not None else "unknown",
                severity=abort_error.severity,
            )
            error = failure
            self._mark(run_id, status, lambda: self._store.mark_failed(run_id, failure))
            slog.error(
                "run_failed",
                run_id=run_id,
                total_duration_ms=total_duration_ms,
                error_code=failure.code,
                stage=failure.stage,
            )
        else:
            status = RunStatus.COMPLETED
            quality_decision = quality_gate_check(state.quality)
            self._mark(run_id, status, lambda: self._store.mark_complete(run_id))
            slog.info(
                "run_completed",
                run_id=run_id,
                total_duration_ms=total_duration_ms,
                completed_stages=len(state.completed_stages),
                skipped_stages=len(state.skipped_stages),
                total_cost=state.total_cost,
                quality_decision=quality_decision.decision.value,
            )

        return RunResult(
            success=status == RunStatus.COMPLETED,
            run_id=run_id,
            status=status,
            stage_outputs=state.stage_outputs,
            stage_records=state.stage_records,
            completed_stages=state.completed_stages,
            skipped_stages=state.skipped_stages,
            quality_context=state.quality,
            total_duration_ms=total_duration_ms,
            total_cost=state.total_cost,
            error=error,
            skip_info=state.skip_info,
            quality_decision=quality_decision,
        )

    @staticmethod
    def _mark(run_id: str, status: RunStatus, write: Callable[[], None]) -> None:
        try:
            write()
        except Exception:
            slog.error("run_status_write_failed", run_id=run_id, status=status.value, exc_info=True)

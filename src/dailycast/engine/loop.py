# src/dailycast/engine/loop.py
"""StageLoop: drives the ordered stage list for one run.

Each stage receives the previous stage's output. On failure the loop
branches on (original severity, stage criticality):

    original CRITICAL, or CRITICAL stage whose error is not
    RECOVERABLE/DEGRADED           -> classifier: SKIP the day or FAIL the run
    RECOVERABLE error or stage     -> skip the stage, chain the previous output
    DEGRADED error or stage        -> skip the stage, flag quality as degraded

Side effects around a failure (state writes, incident log, alert, topic
queue) are best-effort: a broken side channel is logged and the loop's
decision stands.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from dailycast.contracts import (
    AlertLevel,
    AlertMessage,
    Criticality,
    Incident,
    IncidentSeverity,
    ProviderInfo,
    ProviderTier,
    QualityContext,
    Severity,
    SkipInfo,
    StageConfig,
    StageCost,
    StageError,
    StageErrorInfo,
    StageInput,
    StageOutput,
    StageRecord,
    StageStatus,
)
from dailycast.core.alerts import AlertDispatcher
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.config import EngineSettings
from dailycast.core.incidents import IncidentLog, infer_root_cause, map_severity
from dailycast.core.queue import TopicQueue
from dailycast.core.state import RunStateStore
from dailycast.engine.classifier import decide
from dailycast.engine.retry import RetryExecutor
from dailycast.engine.spans import SpanFactory
from dailycast.engine.stages import StageTable
from dailycast.plugins.protocols import StageProtocol

slog = structlog.get_logger(__name__)

INVALID_STAGE_OUTPUT_CODE = "INVALID_STAGE_OUTPUT"


@dataclass
class LoopState:
    """Everything the loop carries from one stage to the next.

    Mutated in place by StageLoop.run and handed on to the finalizer and
    the cost hook. current_topic is set from a queued topic or from the
    topic stage's output, and is what gets re-queued when the day skips.
    """

    data: Any = None
    previous_stage: str | None = None
    quality: QualityContext = field(default_factory=QualityContext)
    completed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    stage_outputs: dict[str, StageOutput] = field(default_factory=dict)
    stage_records: dict[str, StageRecord] = field(default_factory=dict)
    total_cost: float = 0.0
    current_topic: str | None = None
    aborted: bool = False
    skipped: bool = False
    abort_error: StageError | None = None
    skip_info: SkipInfo | None = None

    @property
    def stopped(self) -> bool:
        return self.aborted or self.skipped


def extract_topic(data: Any) -> str | None:
    """Pull the day's topic out of a topic stage's output data.

    Accepts {"topic": "..."} or {"topic": {"title": "..."}}.
    """
    if not isinstance(data, Mapping):
        return None
    topic = data.get("topic")
    if isinstance(topic, str) and topic:
        return topic
    if isinstance(topic, Mapping):
        title = topic.get("title")
        if isinstance(title, str) and title:
            return title
    return None


class StageLoop:
    """Executes stages in table order, starting at a given index.

    The always-run stage is skipped here; the Finalizer runs it.
    """

    def __init__(
        self,
        table: StageTable,
        registry: Mapping[str, StageProtocol],
        store: RunStateStore,
        executor: RetryExecutor,
        incidents: IncidentLog,
        alerts: AlertDispatcher,
        queue: TopicQueue,
        *,
        spans: SpanFactory | None = None,
        settings: EngineSettings | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        self._table = table
        self._registry = registry
        self._store = store
        self._executor = executor
        self._incidents = incidents
        self._alerts = alerts
        self._queue = queue
        self._spans = spans if spans is not None else SpanFactory()
        self._settings = settings if settings is not None else EngineSettings()
        self._clock = clock

    def run(self, run_id: str, start_index: int, state: LoopState) -> LoopState:
        """Run stages from start_index until the end or an abort/skip.

        Args:
            run_id: Run identifier
            start_index: Position in the table order to start from
            state: Carried state (fresh, or reconstructed by resume)

        Returns:
            The same LoopState, updated
        """
        for name in self._table.order[start_index:]:
            definition = self._table.get(name)
            if definition is not None and definition.always_run:
                continue

            unit = self._registry.get(name)
            if unit is None:
                slog.warning("stage_not_registered", run_id=run_id, stage=name)
                state.skipped_stages.append(name)
                continue

            self._run_stage(run_id, name, unit, state)
            if state.stopped:
                break

        return state

    def _run_stage(self, run_id: str, stage: str, unit: StageProtocol, state: LoopState) -> None:
        start_time = self._clock.now()
        self._best_effort(
            "stage_running_write_failed",
            run_id,
            stage,
            lambda: self._store.update_stage_status(run_id, stage, StageStatus.RUNNING, start_time=start_time),
        )

        policy = self._table.retry_policy_of(stage)
        stage_input = StageInput(
            run_id=run_id,
            previous_stage=state.previous_stage,
            data=state.data,
            config=StageConfig(timeout_seconds=self._settings.stage_timeout_seconds, retries=policy.max_retries),
            quality_context=state.quality,
        )

        def on_retry(attempt: int, delay: float, error: StageError) -> None:
            slog.warning(
                "stage_retry",
                run_id=run_id,
                stage=stage,
                attempt=attempt,
                delay_seconds=delay,
                error_code=error.code,
            )

        slog.info("stage_started", run_id=run_id, stage=stage, previous_stage=state.previous_stage)
        with self._spans.stage_span(stage, max_retries=policy.max_retries) as span:
            try:
                outcome = self._executor.execute(
                    stage,
                    lambda: call_stage(unit, stage_input, stage),
                    policy,
                    on_retry=on_retry,
                )
            except StageError as error:
                span.set_attribute("stage.outcome", "failed")
                span.set_attribute("stage.error_code", error.code)
                self._on_failure(run_id, stage, error, start_time, state)
                return
            span.set_attribute("stage.outcome", "completed")
            span.set_attribute("stage.provider", outcome.result.provider.name)

        try:
            self._on_success(run_id, stage, outcome.result, outcome.retries, start_time, state)
        except Exception as exc:
            slog.error("stage_result_rejected", run_id=run_id, stage=stage, exc_info=True)
            error = StageError.critical(
                INVALID_STAGE_OUTPUT_CODE,
                f"Stage {stage!r} returned an unusable result: {exc}",
                stage,
            ).escalate(retry_attempts=outcome.retries)
            self._on_failure(run_id, stage, error, start_time, state)

    def _on_success(
        self,
        run_id: str,
        stage: str,
        output: StageOutput,
        retry_attempts: int,
        start_time: datetime,
        state: LoopState,
    ) -> None:
        """Record a completed stage and chain its output.

        The record and quality context are built before state is touched,
        so a result that cannot be recorded leaves the state as it was.
        """
        end_time = self._clock.now()
        cost = output.cost if output.cost is not None else StageCost()
        record = StageRecord(
            stage=stage,
            status=StageStatus.COMPLETED,
            start_time=start_time,
            end_time=end_time,
            duration_ms=output.duration_ms,
            retry_attempts=retry_attempts,
            provider=output.provider,
            cost=cost,
        )
        quality = state.quality.with_flags(output.warnings)
        fallback = output.provider.tier == ProviderTier.FALLBACK
        if fallback:
            quality = quality.with_fallback(stage, output.provider.name)
        topic = extract_topic(output.data) if stage == self._settings.topic_stage else None
        total_cost = state.total_cost + cost.total

        state.stage_outputs[stage] = output
        state.stage_records[stage] = record
        state.completed_stages.append(stage)
        state.total_cost = total_cost
        state.quality = quality
        if topic is not None:
            state.current_topic = topic
        state.data = output.data
        state.previous_stage = stage

        if fallback:
            slog.warning(
                "stage_completed_with_fallback",
                run_id=run_id,
                stage=stage,
                provider=output.provider.name,
                attempts=output.provider.attempts,
            )
        slog.info(
            "stage_completed",
            run_id=run_id,
            stage=stage,
            duration_ms=output.duration_ms,
            provider=output.provider.name,
            tier=output.provider.tier.value,
            cost=cost.total,
            retry_attempts=retry_attempts,
        )

        self._best_effort(
            "stage_state_write_failed",
            run_id,
            stage,
            lambda: self._store.update_stage_status(
                run_id,
                stage,
                StageStatus.COMPLETED,
                end_time=end_time,
                duration_ms=output.duration_ms,
                provider=output.provider,
                cost=cost,
            ),
        )
        if retry_attempts > 0:
            self._best_effort(
                "retry_attempts_write_failed",
                run_id,
                stage,
                lambda: self._store.update_retry_attempts(run_id, stage, retry_attempts),
            )
        self._best_effort(
            "stage_output_write_failed",
            run_id,
            stage,
            lambda: self._store.persist_stage_output(run_id, stage, output.data),
        )
        self._best_effort(
            "quality_context_write_failed",
            run_id,
            stage,
            lambda: self._store.update_quality_context(run_id, quality),
        )

    def _on_failure(self, run_id: str, stage: str, error: StageError, start_time: datetime, state: LoopState) -> None:
        original = error.original_severity
        retry_attempts = error.retry_attempts
        end_time = self._clock.now()

        slog.error(
            "stage_failed",
            run_id=run_id,
            stage=stage,
            error_code=error.code,
            message=error.message,
            severity=original.value,
            retry_attempts=retry_attempts,
        )

        incident_id = self._record_incident(run_id, stage, error, state.quality)

        error_info = StageErrorInfo(code=error.code, message=error.message, severity=original, incident_id=incident_id)
        state.stage_records[stage] = StageRecord(
            stage=stage,
            status=StageStatus.FAILED,
            start_time=start_time,
            end_time=end_time,
            retry_attempts=retry_attempts,
            error=error_info,
        )

        def persist() -> None:
            self._store.update_stage_status(run_id, stage, StageStatus.FAILED, end_time=end_time, error=error_info)
            if retry_attempts > 0:
                self._store.update_retry_attempts(run_id, stage, retry_attempts)

        self._best_effort("stage_error_write_failed", run_id, stage, persist)

        criticality = self._table.criticality_of(stage)
        if original == Severity.CRITICAL or (
            original not in (Severity.RECOVERABLE, Severity.DEGRADED) and criticality == Criticality.CRITICAL
        ):
            self._stop(run_id, stage, error, retry_attempts, incident_id, state)
        elif original == Severity.RECOVERABLE or criticality == Criticality.RECOVERABLE:
            slog.warning("stage_skipped_recoverable", run_id=run_id, stage=stage, error_code=error.code)
            state.skipped_stages.append(stage)
        else:
            slog.warning("stage_skipped_degraded", run_id=run_id, stage=stage, error_code=error.code)
            state.quality = state.quality.with_degraded(stage)
            state.skipped_stages.append(stage)
            self._best_effort(
                "quality_context_write_failed",
                run_id,
                stage,
                lambda: self._store.update_quality_context(run_id, state.quality),
            )

    def _stop(
        self,
        run_id: str,
        stage: str,
        error: StageError,
        retry_attempts: int,
        incident_id: str | None,
        state: LoopState,
    ) -> None:
        """End the loop: graceful skip of the day, or hard failure of the run."""
        decision = decide(error, stage, retry_attempts, self._table)
        state.abort_error = error

        if not decision.skip:
            slog.error("run_aborted", run_id=run_id, stage=stage, error_code=error.code, kind=str(decision.kind))
            state.aborted = True
            return

        slog.warning("run_skipped", run_id=run_id, stage=stage, reason=decision.reason)
        state.skipped = True

        queued_for_date: str | None = None
        if state.current_topic is not None:
            topic = state.current_topic
            try:
                queued_for_date = self._queue.queue_failed_topic(topic, error.code, stage, run_id)
            except Exception:
                slog.error("topic_queue_failed", run_id=run_id, topic=topic, exc_info=True)
            else:
                slog.info("topic_requeued", run_id=run_id, topic=topic, queued_for_date=queued_for_date)

        state.skip_info = SkipInfo(
            reason=decision.reason,
            stage=stage,
            topic_queued=queued_for_date is not None,
            queued_for_date=queued_for_date,
            incident_id=incident_id,
        )

    def _record_incident(
        self,
        run_id: str,
        stage: str,
        error: StageError,
        quality: QualityContext,
    ) -> str | None:
        """Log the incident, then alert on CRITICAL ones. Never raises."""
        severity = map_severity(error.original_severity)
        incident = Incident(
            date=run_id,
            run_id=run_id,
            stage=stage,
            error_code=error.code,
            error_message=error.message,
            severity=severity,
            root_cause=infer_root_cause(error.code),
            start_time=error.timestamp,
            context={
                "attempt": error.retry_attempts,
                "quality_context": quality.to_dict(),
                **error.context,
            },
        )
        try:
            incident_id = self._incidents.log_incident(incident)
        except Exception:
            slog.error("incident_log_failed", run_id=run_id, stage=stage, exc_info=True)
            return None

        if severity == IncidentSeverity.CRITICAL:
            message = AlertMessage(
                level=AlertLevel.CRITICAL,
                title=f"Pipeline incident: {incident_id}",
                description=f'Stage "{stage}" failed: {error.message}',
                timestamp=self._clock.now(),
                fields=(
                    ("Incident ID", incident_id),
                    ("Error Code", error.code),
                    ("Root Cause", incident.root_cause.value),
                    ("Run", run_id),
                ),
            )
            try:
                result = self._alerts.dispatch(message)
            except Exception:
                slog.warning("incident_alert_failed", run_id=run_id, incident_id=incident_id, exc_info=True)
            else:
                if result.success:
                    slog.info("incident_alert_sent", run_id=run_id, incident_id=incident_id)
                else:
                    slog.warning("incident_alert_failed", run_id=run_id, incident_id=incident_id, error=result.error)

        return incident_id

    @staticmethod
    def _best_effort(event: str, run_id: str, stage: str, write: Callable[[], None]) -> None:
        try:
            write()
        except Exception:
            slog.error(event, run_id=run_id, stage=stage, exc_info=True)


def call_stage(unit: StageProtocol, stage_input: StageInput, stage: str) -> StageOutput:
    """Invoke a unit of work and reject anything that is not a well-formed StageOutput."""
    output = unit(stage_input)
    if not isinstance(output, StageOutput):
        raise StageError.critical(
            INVALID_STAGE_OUTPUT_CODE,
            f"Stage {stage!r} returned {type(output).__name__}, expected StageOutput",
            stage,
        )
    if not isinstance(output.provider, ProviderInfo) or not isinstance(output.provider.tier, ProviderTier):
        raise StageError.critical(
            INVALID_STAGE_OUTPUT_CODE,
            f"Stage {stage!r} returned provider {output.provider!r}, expected ProviderInfo",
            stage,
        )
    if output.cost is not None and not isinstance(output.cost, StageCost):
        raise StageError.critical(
            INVALID_STAGE_OUTPUT_CODE,
            f"Stage {stage!r} returned cost {type(output.cost).__name__}, expected StageCost or None",
            stage,
        )
    return output

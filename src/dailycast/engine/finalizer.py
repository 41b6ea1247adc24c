# src/dailycast/engine/finalizer.py
"""Always-run finalizer: the terminal stage runs once at the end of every run.

Whether the run completed, aborted, or skipped, the terminal stage
(notifications in the daily table) is invoked with the run's aggregate
outcome. Its own failure is recorded against its stage and nothing else:
it never changes the run's final status.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from dailycast.contracts import (
    StageConfig,
    StageCost,
    StageError,
    StageErrorInfo,
    StageInput,
    StageRecord,
    StageStatus,
)
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.config import EngineSettings
from dailycast.core.state import RunStateStore
from dailycast.engine.loop import LoopState, call_stage
from dailycast.engine.retry import RetryExecutor
from dailycast.engine.stages import StageTable
from dailycast.plugins.protocols import StageProtocol

slog = structlog.get_logger(__name__)


def outcome_summary(state: LoopState) -> dict[str, Any]:
    """Aggregate run outcome handed to the terminal stage as its data."""
    abort_reason = state.abort_error.message if state.aborted and state.abort_error is not None else None
    return {
        "aborted": state.aborted,
        "skipped": state.skipped,
        "abort_reason": abort_reason,
        "skip_info": state.skip_info.to_dict() if state.skip_info is not None else None,
        "completed_stages": list(state.completed_stages),
        "skipped_stages": list(state.skipped_stages),
        "total_cost": state.total_cost,
    }


class Finalizer:
    """Runs the table's always-run stage against a finished LoopState."""

    def __init__(
        self,
        table: StageTable,
        registry: Mapping[str, StageProtocol],
        store: RunStateStore,
        executor: RetryExecutor,
        *,
        settings: EngineSettings | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        self._table = table
        self._registry = registry
        self._store = store
        self._executor = executor
        self._settings = settings if settings is not None else EngineSettings()
        self._clock = clock

    def finalize(self, run_id: str, state: LoopState) -> None:
        """Invoke the terminal stage. Never raises for stage failures."""
        terminal = self._table.terminal
        if terminal is None:
            return
        stage = terminal.name
        unit = self._registry.get(stage)
        if unit is None:
            slog.warning("terminal_stage_not_registered", run_id=run_id, stage=stage)
            return

        start_time = self._clock.now()
        stage_input = StageInput(
            run_id=run_id,
            previous_stage=state.completed_stages[-1] if state.completed_stages else None,
            data=outcome_summary(state),
            config=StageConfig(
                timeout_seconds=self._settings.stage_timeout_seconds,
                retries=terminal.retry.max_retries,
            ),
            quality_context=state.quality,
        )

        try:
            self._store.update_stage_status(run_id, stage, StageStatus.RUNNING, start_time=start_time)
        except Exception:
            slog.error("stage_running_write_failed", run_id=run_id, stage=stage, exc_info=True)

        try:
            outcome = self._executor.execute(stage, lambda: call_stage(unit, stage_input, stage), terminal.retry)
        except StageError as error:
            slog.error(
                "terminal_stage_failed",
                run_id=run_id,
                stage=stage,
                error_code=error.code,
                message=error.message,
                retry_attempts=error.retry_attempts,
            )
            error_info = StageErrorInfo(code=error.code, message=error.message, severity=error.original_severity)
            end_time = self._clock.now()
            state.stage_records[stage] = StageRecord(
                stage=stage,
                status=StageStatus.FAILED,
                start_time=start_time,
                end_time=end_time,
                retry_attempts=error.retry_attempts,
                error=error_info,
            )
            try:
                self._store.update_stage_status(run_id, stage, StageStatus.FAILED, end_time=end_time, error=error_info)
            except Exception:
                slog.error("stage_error_write_failed", run_id=run_id, stage=stage, exc_info=True)
            return

        output = outcome.result
        cost = output.cost if output.cost is not None else StageCost()
        end_time = self._clock.now()
        state.stage_outputs[stage] = output
        state.stage_records[stage] = StageRecord(
            stage=stage,
            status=StageStatus.COMPLETED,
            start_time=start_time,
            end_time=end_time,
            duration_ms=output.duration_ms,
            retry_attempts=outcome.retries,
            provider=output.provider,
            cost=cost,
        )
        if not state.stopped:
            state.completed_stages.append(stage)

        try:
            self._store.update_stage_status(
                run_id,
                stage,
                StageStatus.COMPLETED,
                end_time=end_time,
                duration_ms=output.duration_ms,
                provider=output.provider,
                cost=cost,
            )
            if outcome.retries > 0:
                self._store.update_retry_attempts(run_id, stage, outcome.retries)
        except Exception:
            slog.error("stage_state_write_failed", run_id=run_id, stage=stage, exc_info=True)

        slog.info("terminal_stage_completed", run_id=run_id, stage=stage, provider=output.provider.name)

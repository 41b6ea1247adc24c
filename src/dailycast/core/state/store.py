"""RunStateStore: persisted run state for locking and resume.

Writes happen after every stage (not batched), so a crash leaves the
store consistent up to the last completed stage.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select, update

from dailycast.contracts import (
    ProviderInfo,
    QualityContext,
    RunErrorInfo,
    RunState,
    RunStatus,
    SkipInfo,
    StageCost,
    StageErrorInfo,
    StageRecord,
    StageStatus,
)
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.serialization import state_dumps, state_loads
from dailycast.core.state.database import StateDB
from dailycast.core.state.schema import runs_table, stage_outputs_table, stage_records_table

PAUSABLE_STATUSES = frozenset({RunStatus.RUNNING, RunStatus.FAILED, RunStatus.SKIPPED})


class RunNotFoundError(LookupError):
    """Raised when a write targets a run that was never initialized."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class RunNotPausableError(ValueError):
    """Raised when pausing a run whose status does not allow it."""

    def __init__(self, run_id: str, status: RunStatus) -> None:
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run {run_id} is {status.value} and cannot be paused")


class StageOutputNotFoundError(LookupError):
    """Raised when no output was persisted for a stage."""

    def __init__(self, run_id: str, stage: str) -> None:
        self.run_id = run_id
        self.stage = stage
        super().__init__(f"No persisted output for stage {stage!r} of run {run_id}")


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; everything we write is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _json_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value.to_dict())


class RunStateStore:
    """SQL-backed persistence for runs, stage records, and stage outputs.

    Example:
        store = RunStateStore(StateDB.in_memory(), clock=MockClock())
        store.initialize_run("2026-01-19")
        store.update_stage_status("2026-01-19", "research", StageStatus.RUNNING, start_time=...)
        state = store.get_state("2026-01-19")
    """

    def __init__(self, db: StateDB, clock: Clock = DEFAULT_CLOCK) -> None:
        self._db = db
        self._clock = clock

    # === Reads ===

    def get_state(self, run_id: str) -> RunState | None:
        """Load a run with all of its stage records, or None if it never ran."""
        with self._db.connection() as conn:
            run_row = conn.execute(select(runs_table).where(runs_table.c.run_id == run_id)).first()
            if run_row is None:
                return None
            stage_rows = conn.execute(
                select(stage_records_table).where(stage_records_table.c.run_id == run_id)
            ).fetchall()

        stages = {row.stage: self._stage_record_from_row(row) for row in stage_rows}
        return RunState(
            run_id=run_row.run_id,
            status=RunStatus(run_row.status),
            start_time=as_utc(run_row.started_at),  # type: ignore[arg-type]
            end_time=as_utc(run_row.ended_at),
            stages=stages,
            quality_context=(
                QualityContext.from_dict(json.loads(run_row.quality_context_json))
                if run_row.quality_context_json is not None
                else None
            ),
            total_cost=run_row.total_cost,
            skip_info=SkipInfo.from_dict(json.loads(run_row.skip_info_json)) if run_row.skip_info_json else None,
            failure_info=(
                RunErrorInfo.from_dict(json.loads(run_row.failure_info_json)) if run_row.failure_info_json else None
            ),
        )

    def list_runs(self, limit: int = 20) -> list[RunState]:
        """Most recent runs first."""
        with self._db.connection() as conn:
            run_ids = (
                conn.execute(select(runs_table.c.run_id).order_by(runs_table.c.started_at.desc()).limit(limit))
                .scalars()
                .all()
            )
        states = [self.get_state(run_id) for run_id in run_ids]
        return [state for state in states if state is not None]

    def load_stage_output(self, run_id: str, stage: str) -> Any:
        """Load the payload a completed stage handed to its successor.

        Raises:
            StageOutputNotFoundError: If nothing was persisted for the stage
        """
        with self._db.connection() as conn:
            data_json = conn.execute(
                select(stage_outputs_table.c.data_json).where(
                    stage_outputs_table.c.run_id == run_id,
                    stage_outputs_table.c.stage == stage,
                )
            ).scalar_one_or_none()
        if data_json is None:
            raise StageOutputNotFoundError(run_id, stage)
        return state_loads(data_json)

    # === Run lifecycle ===

    def initialize_run(self, run_id: str) -> None:
        """Start a fresh run: status running, empty stages and quality context.

        An existing row for run_id (pending, or a stale running run being
        overridden) is reset in place.
        """
        now = self._clock.now()
        fresh = {
            "status": RunStatus.RUNNING.value,
            "started_at": now,
            "ended_at": None,
            "total_cost": 0.0,
            "quality_context_json": json.dumps(QualityContext().to_dict()),
            "skip_info_json": None,
            "failure_info_json": None,
            "updated_at": now,
        }
        with self._db.connection() as conn:
            conn.execute(delete(stage_outputs_table).where(stage_outputs_table.c.run_id == run_id))
            conn.execute(delete(stage_records_table).where(stage_records_table.c.run_id == run_id))
            result = conn.execute(update(runs_table).where(runs_table.c.run_id == run_id).values(**fresh))
            if result.rowcount == 0:
                conn.execute(runs_table.insert().values(run_id=run_id, **fresh))

    def create_pending(self, run_id: str) -> None:
        """Register a run that has not started yet (e.g. scheduled ahead)."""
        now = self._clock.now()
        with self._db.connection() as conn:
            conn.execute(
                runs_table.insert().values(
                    run_id=run_id,
                    status=RunStatus.PENDING.value,
                    started_at=now,
                    total_cost=0.0,
                    updated_at=now,
                )
            )

    def mark_running(self, run_id: str) -> None:
        """Move an existing run back to running, keeping its stages.

        Used by resume. started_at is reset so the concurrency lock measures
        staleness from the resume, not from the original start.
        """
        now = self._clock.now()
        self._update_run(
            run_id,
            status=RunStatus.RUNNING.value,
            started_at=now,
            ended_at=None,
            skip_info_json=None,
            failure_info_json=None,
        )

    def mark_complete(self, run_id: str) -> None:
        self._update_run(run_id, status=RunStatus.COMPLETED.value, ended_at=self._clock.now())

    def mark_failed(self, run_id: str, error: RunErrorInfo) -> None:
        self._update_run(
            run_id,
            status=RunStatus.FAILED.value,
            ended_at=self._clock.now(),
            failure_info_json=json.dumps(error.to_dict()),
        )

    def mark_skipped(self, run_id: str, skip_info: SkipInfo) -> None:
        self._update_run(
            run_id,
            status=RunStatus.SKIPPED.value,
            ended_at=self._clock.now(),
            skip_info_json=json.dumps(skip_info.to_dict()),
        )

    def mark_paused(self, run_id: str) -> None:
        """Pause a run so resume can pick it up later.

        A completed run is final, so only RUNNING, FAILED and SKIPPED runs
        can be paused.

        Raises:
            RunNotFoundError: If the run was never initialized
            RunNotPausableError: If the run is in any other status
        """
        now = self._clock.now()
        with self._db.connection() as conn:
            row = conn.execute(select(runs_table.c.status).where(runs_table.c.run_id == run_id)).first()
            if row is None:
                raise RunNotFoundError(run_id)
            current = RunStatus(row.status)
            if current not in PAUSABLE_STATUSES:
                raise RunNotPausableError(run_id, current)
            conn.execute(
                update(runs_table)
                .where(runs_table.c.run_id == run_id)
                .values(status=RunStatus.PAUSED.value, ended_at=now, updated_at=now)
            )

    def update_quality_context(self, run_id: str, quality: QualityContext) -> None:
        self._update_run(run_id, quality_context_json=json.dumps(quality.to_dict()))

    def update_total_cost(self, run_id: str, total_cost: float) -> None:
        self._update_run(run_id, total_cost=total_cost)

    # === Stages ===

    def update_stage_status(
        self,
        run_id: str,
        stage: str,
        status: StageStatus,
        *,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        duration_ms: int | None = None,
        provider: ProviderInfo | None = None,
        cost: StageCost | None = None,
        error: StageErrorInfo | None = None,
    ) -> None:
        """Merge a partial update into a stage record.

        Fields left as None keep their stored value. Moving a stage to
        RUNNING starts a fresh attempt and clears the previous outcome.

        Raises:
            RunNotFoundError: If the run was never initialized
            ValueError: If the merged record violates StageRecord invariants
        """
        with self._db.connection() as conn:
            self._require_run(conn, run_id)
            existing = conn.execute(
                select(stage_records_table).where(
                    stage_records_table.c.run_id == run_id,
                    stage_records_table.c.stage == stage,
                )
            ).first()

            if existing is None or status == StageStatus.RUNNING:
                base = StageRecord(stage=stage, status=StageStatus.PENDING)
            else:
                base = self._stage_record_from_row(existing)

            merged = StageRecord(
                stage=stage,
                status=status,
                start_time=start_time if start_time is not None else base.start_time,
                end_time=end_time if end_time is not None else base.end_time,
                duration_ms=duration_ms if duration_ms is not None else base.duration_ms,
                retry_attempts=base.retry_attempts,
                provider=provider if provider is not None else base.provider,
                cost=cost if cost is not None else base.cost,
                error=error if error is not None else base.error,
            )
            values = {
                "status": merged.status.value,
                "started_at": merged.start_time,
                "ended_at": merged.end_time,
                "duration_ms": merged.duration_ms,
                "retry_attempts": merged.retry_attempts,
                "provider_json": _json_or_none(merged.provider),
                "cost_json": _json_or_none(merged.cost),
                "error_json": _json_or_none(merged.error),
            }
            if existing is None:
                conn.execute(stage_records_table.insert().values(run_id=run_id, stage=stage, **values))
            else:
                conn.execute(
                    update(stage_records_table)
                    .where(stage_records_table.c.run_id == run_id, stage_records_table.c.stage == stage)
                    .values(**values)
                )
            conn.execute(update(runs_table).where(runs_table.c.run_id == run_id).values(updated_at=self._clock.now()))

    def update_retry_attempts(self, run_id: str, stage: str, retry_attempts: int) -> None:
        """Record how many retries a stage used.

        Raises:
            LookupError: If the stage has no record yet
        """
        with self._db.connection() as conn:
            result = conn.execute(
                update(stage_records_table)
                .where(stage_records_table.c.run_id == run_id, stage_records_table.c.stage == stage)
                .values(retry_attempts=retry_attempts)
            )
        if result.rowcount == 0:
            raise LookupError(f"No record for stage {stage!r} of run {run_id}")

    def persist_stage_output(self, run_id: str, stage: str, data: Any) -> None:
        """Store a stage's output payload for resume (upsert)."""
        data_json = state_dumps(data)
        now = self._clock.now()
        with self._db.connection() as conn:
            self._require_run(conn, run_id)
            result = conn.execute(
                update(stage_outputs_table)
                .where(stage_outputs_table.c.run_id == run_id, stage_outputs_table.c.stage == stage)
                .values(data_json=data_json, persisted_at=now)
            )
            if result.rowcount == 0:
                conn.execute(
                    stage_outputs_table.insert().values(
                        run_id=run_id,
                        stage=stage,
                        data_json=data_json,
                        persisted_at=now,
                    )
                )

    # === Internals ===

    def _update_run(self, run_id: str, **values: Any) -> None:
        with self._db.connection() as conn:
            result = conn.execute(
                update(runs_table)
                .where(runs_table.c.run_id == run_id)
                .values(updated_at=self._clock.now(), **values)
            )
        if result.rowcount == 0:
            raise RunNotFoundError(run_id)

    @staticmethod
    def _require_run(conn: Any, run_id: str) -> None:
        exists = conn.execute(select(runs_table.c.run_id).where(runs_table.c.run_id == run_id)).first()
        if exists is None:
            raise RunNotFoundError(run_id)

    @staticmethod
    def _stage_record_from_row(row: Any) -> StageRecord:
        return StageRecord(
            stage=row.stage,
            status=StageStatus(row.status),
            start_time=as_utc(row.started_at),
            end_time=as_utc(row.ended_at),
            duration_ms=row.duration_ms,
            retry_attempts=row.retry_attempts,
            provider=ProviderInfo.from_dict(json.loads(row.provider_json)) if row.provider_json else None,
            cost=StageCost.from_dict(json.loads(row.cost_json)) if row.cost_json else None,
            error=StageErrorInfo.from_dict(json.loads(row.error_json)) if row.error_json else None,
        )

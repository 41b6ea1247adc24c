"""Run-level domain contracts.

RunState/StageRecord mirror what the state store persists. RunResult is
what the engine hands back to callers. SkipDecision is transient and
never persisted on its own; its reason and stage are folded into SkipInfo.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dailycast.contracts.enums import ErrorKind, RunStatus, Severity, StageStatus
from dailycast.contracts.quality import QualityContext, QualityGateResult
from dailycast.contracts.stage_io import ProviderInfo, StageCost, StageOutput


@dataclass(frozen=True)
class StageErrorInfo:
    """Error recorded against a failed stage.

    severity is the original (pre-escalation) severity.
    """

    code: str
    message: str
    severity: Severity
    incident_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "incident_id": self.incident_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageErrorInfo:
        return cls(
            code=data["code"],
            message=data["message"],
            severity=Severity(data["severity"]),
            incident_id=data["incident_id"],
        )


@dataclass(frozen=True)
class StageRecord:
    """Outcome of one stage within a run.

    Invariants:
        COMPLETED implies provider and cost are set.
        FAILED implies error is set.
    """

    stage: str
    status: StageStatus
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_ms: int | None = None
    retry_attempts: int = 0
    provider: ProviderInfo | None = None
    cost: StageCost | None = None
    error: StageErrorInfo | None = None

    def __post_init__(self) -> None:
        if self.status == StageStatus.COMPLETED and (self.provider is None or self.cost is None):
            raise ValueError(f"Completed stage {self.stage!r} must have provider and cost")
        if self.status == StageStatus.FAILED and self.error is None:
            raise ValueError(f"Failed stage {self.stage!r} must have error")
        if self.retry_attempts < 0:
            raise ValueError(f"retry_attempts must be >= 0, got {self.retry_attempts}")


@dataclass(frozen=True)
class RunErrorInfo:
    """Error that terminated a run early.

    severity here is the error's current severity (CRITICAL after escalation).
    """

    code: str
    message: str
    stage: str
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "stage": self.stage,
            "severity": self.severity.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunErrorInfo:
        return cls(
            code=data["code"],
            message=data["message"],
            stage=data["stage"],
            severity=Severity(data["severity"]),
        )


@dataclass(frozen=True)
class SkipInfo:
    """Why a run ended as SKIPPED and whether its topic was re-queued."""

    reason: str
    stage: str
    topic_queued: bool = False
    queued_for_date: str | None = None
    incident_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "stage": self.stage,
            "topic_queued": self.topic_queued,
            "queued_for_date": self.queued_for_date,
            "incident_id": self.incident_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SkipInfo:
        return cls(
            reason=data["reason"],
            stage=data["stage"],
            topic_queued=data["topic_queued"],
            queued_for_date=data["queued_for_date"],
            incident_id=data["incident_id"],
        )


@dataclass(frozen=True)
class SkipDecision:
    """Classifier verdict for a terminal failure of a CRITICAL stage."""

    skip: bool
    reason: str
    stage: str
    kind: ErrorKind | None = None

    def __post_init__(self) -> None:
        if self.skip and not self.reason:
            raise ValueError("skip=True must carry a reason")


@dataclass(frozen=True)
class RunState:
    """Persisted state of a run, as loaded from the state store."""

    run_id: str
    status: RunStatus
    start_time: datetime
    stages: dict[str, StageRecord] = field(default_factory=dict)
    quality_context: QualityContext | None = None
    total_cost: float = 0.0
    skip_info: SkipInfo | None = None
    failure_info: RunErrorInfo | None = None
    end_time: datetime | None = None

    def stage_status(self, stage: str) -> StageStatus | None:
        record = self.stages.get(stage)
        return record.status if record is not None else None


@dataclass
class RunResult:
    """Outcome of Engine.execute_run or Engine.resume_run."""

    success: bool
    run_id: str
    status: RunStatus
    stage_outputs: dict[str, StageOutput]
    stage_records: dict[str, StageRecord]
    completed_stages: list[str]
    skipped_stages: list[str]
    quality_context: QualityContext
    total_duration_ms: int
    total_cost: float
    error: RunErrorInfo | None = None
    skip_info: SkipInfo | None = None
    quality_decision: QualityGateResult | None = None

    def __post_init__(self) -> None:
        if self.success and self.status != RunStatus.COMPLETED:
            raise ValueError(f"success=True requires status=completed, got {self.status.value}")
        if self.status == RunStatus.SKIPPED and self.skip_info is None:
            raise ValueError("status=skipped requires skip_info")

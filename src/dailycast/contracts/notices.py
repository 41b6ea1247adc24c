"""Contracts for operator-facing side channels: incidents, alerts, queued topics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dailycast.contracts.enums import AlertLevel, IncidentSeverity, QueueStatus, RootCause


@dataclass(frozen=True)
class Incident:
    """A stage failure written to the incident log.

    incident_id is assigned by the log on write; callers leave it None.
    """

    date: str
    run_id: str
    stage: str
    error_code: str
    error_message: str
    severity: IncidentSeverity
    root_cause: RootCause
    start_time: datetime
    context: dict[str, Any] = field(default_factory=dict)
    incident_id: str | None = None


@dataclass(frozen=True)
class AlertMessage:
    """Payload for an outbound operator alert."""

    level: AlertLevel
    title: str
    description: str
    timestamp: datetime
    fields: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class AlertResult:
    """Outcome of dispatching an alert. Dispatch failures are values, not exceptions."""

    success: bool
    error: str | None = None


@dataclass(frozen=True)
class QueuedTopic:
    """A topic that failed on one day and is queued for a later run.

    Keyed by target_date: at most one queued topic exists per calendar day.
    """

    topic: str
    failure_reason: str
    failure_stage: str
    original_date: str
    target_date: str
    queued_at: datetime
    retry_count: int = 0
    max_retries: int = 2
    status: QueueStatus = QueueStatus.PENDING

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {self.retry_count}")

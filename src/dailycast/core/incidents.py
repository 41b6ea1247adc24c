"""Incident log: durable record of every stage failure.

Incidents are written before any alert is dispatched, so an operator
following an alert always finds the incident it refers to.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import func, select

from dailycast.contracts import Incident, IncidentSeverity, RootCause, Severity
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.serialization import state_dumps, state_loads
from dailycast.core.state.database import StateDB
from dailycast.core.state.schema import incidents_table
from dailycast.core.state.store import as_utc

slog = structlog.get_logger(__name__)

_SEVERITY_MAP: dict[Severity, IncidentSeverity] = {
    Severity.CRITICAL: IncidentSeverity.CRITICAL,
    Severity.DEGRADED: IncidentSeverity.WARNING,
    Severity.FALLBACK: IncidentSeverity.WARNING,
    Severity.RECOVERABLE: IncidentSeverity.RECOVERABLE,
    Severity.RETRYABLE: IncidentSeverity.RECOVERABLE,
}

# Checked in order against the upper-cased error code; first match wins.
_ROOT_CAUSE_RULES: tuple[tuple[tuple[str, ...], RootCause], ...] = (
    (("TIMEOUT",), RootCause.TIMEOUT),
    (("RATE_LIMIT",), RootCause.RATE_LIMIT),
    (("QUOTA",), RootCause.QUOTA_EXCEEDED),
    (("AUTH",), RootCause.AUTH_FAILURE),
    (("NETWORK",), RootCause.NETWORK_ERROR),
    (("CONFIG",), RootCause.CONFIG_ERROR),
    (("DATA", "INVALID"), RootCause.DATA_ERROR),
    (("RESOURCE", "MEMORY"), RootCause.RESOURCE_EXHAUSTED),
    (("DEPENDENCY",), RootCause.DEPENDENCY_FAILURE),
    (("OUTAGE",), RootCause.API_OUTAGE),
)


def map_severity(severity: Severity) -> IncidentSeverity:
    """Map an error severity onto the operator-facing incident severity."""
    return _SEVERITY_MAP[severity]


def infer_root_cause(error_code: str) -> RootCause:
    """Infer a root cause from substrings of an error code.

    Example:
        infer_root_cause("TTS_TIMEOUT") -> RootCause.TIMEOUT
    """
    upper = error_code.upper()
    for needles, cause in _ROOT_CAUSE_RULES:
        if any(needle in upper for needle in needles):
            return cause
    return RootCause.UNKNOWN


class IncidentLog:
    """SQL-backed incident log with per-day sequential ids ("2026-01-19-001")."""

    def __init__(self, db: StateDB, clock: Clock = DEFAULT_CLOCK) -> None:
        self._db = db
        self._clock = clock

    def log_incident(self, incident: Incident) -> str:
        """Persist an incident and return its assigned id.

        Id generation and insert share one transaction. Two processes
        logging for the same date at the same moment can still collide on
        the primary key; the loser's insert fails and the caller logs it.
        """
        with self._db.connection() as conn:
            existing = conn.execute(
                select(func.count()).select_from(incidents_table).where(incidents_table.c.date == incident.date)
            ).scalar_one()
            incident_id = f"{incident.date}-{existing + 1:03d}"
            conn.execute(
                incidents_table.insert().values(
                    incident_id=incident_id,
                    date=incident.date,
                    run_id=incident.run_id,
                    stage=incident.stage,
                    error_code=incident.error_code,
                    error_message=incident.error_message,
                    severity=incident.severity.value,
                    root_cause=incident.root_cause.value,
                    started_at=incident.start_time,
                    context_json=state_dumps(incident.context),
                    logged_at=self._clock.now(),
                )
            )
        slog.info(
            "incident_logged",
            incident_id=incident_id,
            run_id=incident.run_id,
            stage=incident.stage,
            severity=incident.severity.value,
            root_cause=incident.root_cause.value,
        )
        return incident_id

    def get_incident(self, incident_id: str) -> Incident | None:
        with self._db.connection() as conn:
            row = conn.execute(select(incidents_table).where(incidents_table.c.incident_id == incident_id)).first()
        return self._from_row(row) if row is not None else None

    def list_incidents(self, date: str) -> list[Incident]:
        with self._db.connection() as conn:
            rows = conn.execute(
                select(incidents_table).where(incidents_table.c.date == date).order_by(incidents_table.c.incident_id)
            ).fetchall()
        return [self._from_row(row) for row in rows]

    @staticmethod
    def _from_row(row: Any) -> Incident:
        return Incident(
            date=row.date,
            run_id=row.run_id,
            stage=row.stage,
            error_code=row.error_code,
            error_message=row.error_message,
            severity=IncidentSeverity(row.severity),
            root_cause=RootCause(row.root_cause),
            start_time=as_utc(row.started_at),  # type: ignore[arg-type]
            context=state_loads(row.context_json),
            incident_id=row.incident_id,
        )

"""All status codes, tiers, and kinds used across subsystem boundaries.

Values are persisted as plain strings (runs.status, stage_records.status,
queued_topics.status, incidents.severity), so renaming a member is a
schema change.
"""

from enum import StrEnum


class RunStatus(StrEnum):
    """Status of a daily run.

    Stored in the database (runs.status).

    Transitions are monotonic except for an explicit resume, which moves
    FAILED, SKIPPED or PAUSED back to RUNNING.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PAUSED = "paused"


class StageStatus(StrEnum):
    """Status of a single stage within a run.

    Stored in the database (stage_records.status).
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Criticality(StrEnum):
    """Static tier of a stage controlling abort-vs-continue on failure.

    Values:
        CRITICAL: Run cannot produce output without this stage
        DEGRADED: Run continues, quality context records the loss
        RECOVERABLE: Stage may be dropped silently
    """

    CRITICAL = "CRITICAL"
    DEGRADED = "DEGRADED"
    RECOVERABLE = "RECOVERABLE"


class Severity(StrEnum):
    """Per-error classification attached when a stage raises.

    Values:
        CRITICAL: Unrecoverable or configuration error
        RETRYABLE: Transient, retried with backoff
        FALLBACK: Provider chain exhausted, not retried
        DEGRADED: Quality issue, run continues with a flag
        RECOVERABLE: Safe to skip the stage
    """

    CRITICAL = "CRITICAL"
    RETRYABLE = "RETRYABLE"
    FALLBACK = "FALLBACK"
    DEGRADED = "DEGRADED"
    RECOVERABLE = "RECOVERABLE"


class ProviderTier(StrEnum):
    """Whether a stage result came from its primary or a backup provider."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


class ErrorKind(StrEnum):
    """Cause assigned to a terminal stage error by the skip/fail classifier."""

    RETRIES_EXHAUSTED = "retries_exhausted"
    FALLBACK_EXHAUSTED = "fallback_exhausted"
    PROVIDER_FAILURE = "provider_failure"
    HARD_FAILURE = "hard_failure"


class EngineErrorKind(StrEnum):
    """Precondition violations returned (never raised) by the engine surface."""

    ALREADY_RUNNING = "already_running"
    ALREADY_COMPLETED = "already_completed"
    INVALID_RESUME_STATE = "invalid_resume_state"
    INVALID_STAGE = "invalid_stage"
    RUN_NOT_FOUND = "run_not_found"
    STATE_INIT_FAILED = "state_init_failed"
    STATE_READ_FAILED = "state_read_failed"


class IncidentSeverity(StrEnum):
    """Operator-facing severity of a logged incident.

    Stored in the database (incidents.severity).
    """

    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    RECOVERABLE = "RECOVERABLE"


class RootCause(StrEnum):
    """Root cause inferred from an error code."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_FAILURE = "auth_failure"
    NETWORK_ERROR = "network_error"
    CONFIG_ERROR = "config_error"
    DATA_ERROR = "data_error"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    DEPENDENCY_FAILURE = "dependency_failure"
    API_OUTAGE = "api_outage"
    UNKNOWN = "unknown"


class QueueStatus(StrEnum):
    """Lifecycle of a topic queued for a later run.

    Stored in the database (queued_topics.status).
    """

    PENDING = "pending"
    PROCESSING = "processing"
    ABANDONED = "abandoned"


class AlertLevel(StrEnum):
    """Severity of an outbound operator alert."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class QualityDecision(StrEnum):
    """Publishing decision derived from the run's quality context."""

    AUTO_PUBLISH = "AUTO_PUBLISH"
    AUTO_PUBLISH_WITH_WARNING = "AUTO_PUBLISH_WITH_WARNING"
    HUMAN_REVIEW = "HUMAN_REVIEW"

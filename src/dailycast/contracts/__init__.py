"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
dailycast.core.config.

Import patterns:
    # Contracts (lightweight, no heavy dependencies)
    from dailycast.contracts import RunStatus, StageOutput, RunResult

    # Settings classes (from core, pulls in pydantic/dynaconf)
    from dailycast.core.config import DailycastSettings
"""

from dailycast.contracts.enums import (
    AlertLevel,
    Criticality,
    EngineErrorKind,
    ErrorKind,
    IncidentSeverity,
    ProviderTier,
    QualityDecision,
    QueueStatus,
    RootCause,
    RunStatus,
    Severity,
    StageStatus,
)
from dailycast.contracts.errors import (
    FALLBACK_EXHAUSTED_CODE,
    RETRY_EXHAUSTED_CODE,
    UNKNOWN_ERROR_CODE,
    EngineError,
    StageError,
)
from dailycast.contracts.notices import AlertMessage, AlertResult, Incident, QueuedTopic
from dailycast.contracts.quality import QualityContext, QualityGateResult
from dailycast.contracts.run import (
    RunErrorInfo,
    RunResult,
    RunState,
    SkipDecision,
    SkipInfo,
    StageErrorInfo,
    StageRecord,
)
from dailycast.contracts.stage_io import (
    ProviderInfo,
    ServiceCost,
    StageConfig,
    StageCost,
    StageInput,
    StageOutput,
)

__all__ = [  # Grouped by category for readability
    # enums
    "AlertLevel",
    "Criticality",
    "EngineErrorKind",
    "ErrorKind",
    "IncidentSeverity",
    "ProviderTier",
    "QualityDecision",
    "QueueStatus",
    "RootCause",
    "RunStatus",
    "Severity",
    "StageStatus",
    # errors
    "FALLBACK_EXHAUSTED_CODE",
    "RETRY_EXHAUSTED_CODE",
    "UNKNOWN_ERROR_CODE",
    "EngineError",
    "StageError",
    # notices
    "AlertMessage",
    "AlertResult",
    "Incident",
    "QueuedTopic",
    # quality
    "QualityContext",
    "QualityGateResult",
    # run
    "RunErrorInfo",
    "RunResult",
    "RunState",
    "SkipDecision",
    "SkipInfo",
    "StageErrorInfo",
    "StageRecord",
    # stage_io
    "ProviderInfo",
    "ServiceCost",
    "StageConfig",
    "StageCost",
    "StageInput",
    "StageOutput",
]

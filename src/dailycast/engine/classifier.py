# src/dailycast/engine/classifier.py
"""Skip/fail classifier for terminal failures of CRITICAL stages.

A CRITICAL stage that fails for a reason that might clear by tomorrow
(transient errors that exhausted their retries, an exhausted provider
chain, a provider outage) ends the run as SKIPPED and its topic is
re-queued. Anything else (configuration, validation, unknown) is a hard
FAIL that no automatic retry will fix.

Classification is an ordered table of (predicate, ErrorKind) pairs so
each rule can be tested on its own.
"""

from __future__ import annotations

from collections.abc import Callable

from dailycast.contracts import (
    FALLBACK_EXHAUSTED_CODE,
    RETRY_EXHAUSTED_CODE,
    Criticality,
    ErrorKind,
    Severity,
    SkipDecision,
    StageError,
)
from dailycast.engine.stages import StageTable

PROVIDER_FAILURE_SUFFIXES: tuple[str, ...] = (
    "_TIMEOUT",
    "_RATE_LIMIT",
    "_SYNTHESIS_FAILED",
    "_GENERATION_FAILED",
    "_UNAVAILABLE",
)

Predicate = Callable[[StageError, int], bool]


def _fallback_exhausted(error: StageError, retry_attempts: int) -> bool:
    return error.code == FALLBACK_EXHAUSTED_CODE


def _retries_exhausted(error: StageError, retry_attempts: int) -> bool:
    return retry_attempts > 0 and (
        error.code == RETRY_EXHAUSTED_CODE or error.original_severity in (Severity.RETRYABLE, Severity.FALLBACK)
    )


def _provider_failure(error: StageError, retry_attempts: int) -> bool:
    return error.code.endswith(PROVIDER_FAILURE_SUFFIXES)


# Evaluated top to bottom; the first matching predicate decides the kind.
CLASSIFICATION_RULES: tuple[tuple[Predicate, ErrorKind], ...] = (
    (_fallback_exhausted, ErrorKind.FALLBACK_EXHAUSTED),
    (_retries_exhausted, ErrorKind.RETRIES_EXHAUSTED),
    (_provider_failure, ErrorKind.PROVIDER_FAILURE),
)

SKIPPABLE_KINDS = frozenset({ErrorKind.FALLBACK_EXHAUSTED, ErrorKind.RETRIES_EXHAUSTED, ErrorKind.PROVIDER_FAILURE})


def classify_error(error: StageError, retry_attempts: int) -> ErrorKind:
    """Assign an ErrorKind to a terminal stage error."""
    for predicate, kind in CLASSIFICATION_RULES:
        if predicate(error, retry_attempts):
            return kind
    return ErrorKind.HARD_FAILURE


def _reason(kind: ErrorKind, error: StageError, stage: str, retry_attempts: int) -> str:
    if kind == ErrorKind.FALLBACK_EXHAUSTED:
        return f"fallback chain exhausted for {stage}"
    if kind == ErrorKind.RETRIES_EXHAUSTED:
        return f"retries exhausted: {stage} failed after {retry_attempts} retries: {error.message}"
    return f"provider failure in {stage}: {error.code}"


def decide(error: StageError, stage: str, retry_attempts: int, table: StageTable) -> SkipDecision:
    """Decide between a graceful skip and a hard fail.

    Only CRITICAL stages can produce skip=True. Other tiers always get
    skip=False with an empty reason; their failures are handled by the
    loop's continue/degrade branches, not here.
    """
    if table.criticality_of(stage) != Criticality.CRITICAL:
        return SkipDecision(skip=False, reason="", stage=stage)

    kind = classify_error(error, retry_attempts)
    if kind in SKIPPABLE_KINDS:
        return SkipDecision(skip=True, reason=_reason(kind, error, stage, retry_attempts), stage=stage, kind=kind)
    return SkipDecision(skip=False, reason="", stage=stage, kind=kind)

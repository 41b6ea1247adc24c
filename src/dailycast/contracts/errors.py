"""Error contracts shared between stages, the engine, and callers.

Two distinct shapes live here:

- StageError is an exception. Stage units of work raise it; the engine
  catches it inside the stage loop and converts it into a classification
  decision. It never escapes the engine.
- EngineError is a value. The public engine surface returns it for the
  small set of precondition violations (already running, unknown stage,
  ...) so every call site has to handle it explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from dailycast.contracts.enums import EngineErrorKind, Severity

UNKNOWN_ERROR_CODE = "UNKNOWN_ERROR"
RETRY_EXHAUSTED_CODE = "RETRY_EXHAUSTED"
FALLBACK_EXHAUSTED_CODE = "FALLBACK_EXHAUSTED"


class StageError(Exception):
    """Structured failure raised by a stage unit of work.

    Attributes:
        code: Machine-readable error code (e.g. "TTS_TIMEOUT")
        message: Human-readable description
        severity: Severity at the time the error is raised (or after
            escalation by the retry executor)
        stage: Stage that raised the error, if known
        context: Free-form diagnostic context
        timestamp: When the error was created (UTC)
        original_severity: Severity before any escalation. Equal to
            severity unless the retry executor escalated the error.
        retry_attempts: Retries actually performed before giving up
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: Severity,
        *,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
        original_severity: Severity | None = None,
        retry_attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.severity = severity
        self.stage = stage
        self.context: dict[str, Any] = dict(context) if context else {}
        self.timestamp = timestamp if timestamp is not None else datetime.now(UTC)
        self.original_severity = original_severity if original_severity is not None else severity
        self.retry_attempts = retry_attempts

    @property
    def retryable(self) -> bool:
        return self.severity == Severity.RETRYABLE

    def __repr__(self) -> str:
        return f"StageError(code={self.code!r}, severity={self.severity.value}, stage={self.stage!r}, message={self.message!r})"

    @classmethod
    def retryable_error(cls, code: str, message: str, stage: str | None = None, **context: Any) -> StageError:
        """Transient failure: the retry executor will try again."""
        return cls(code, message, Severity.RETRYABLE, stage=stage, context=context)

    @classmethod
    def fallback(cls, code: str, message: str, stage: str | None = None, **context: Any) -> StageError:
        """Provider failed and the caller should move to the next provider."""
        return cls(code, message, Severity.FALLBACK, stage=stage, context=context)

    @classmethod
    def degraded(cls, code: str, message: str, stage: str | None = None, **context: Any) -> StageError:
        return cls(code, message, Severity.DEGRADED, stage=stage, context=context)

    @classmethod
    def recoverable(cls, code: str, message: str, stage: str | None = None, **context: Any) -> StageError:
        return cls(code, message, Severity.RECOVERABLE, stage=stage, context=context)

    @classmethod
    def critical(cls, code: str, message: str, stage: str | None = None, **context: Any) -> StageError:
        return cls(code, message, Severity.CRITICAL, stage=stage, context=context)

    @classmethod
    def from_exception(cls, exc: BaseException, stage: str | None = None) -> StageError:
        """Normalize any exception into a StageError.

        StageErrors pass through unchanged (their stage is filled in when
        missing). Anything else is treated as CRITICAL with code
        UNKNOWN_ERROR, since an unstructured failure carries no evidence
        that retrying would help.
        """
        if isinstance(exc, StageError):
            if exc.stage is None:
                exc.stage = stage
            return exc
        return cls(
            UNKNOWN_ERROR_CODE,
            str(exc) or type(exc).__name__,
            Severity.CRITICAL,
            stage=stage,
            context={"exception_type": type(exc).__name__},
        )

    def escalate(self, *, retry_attempts: int, **context: Any) -> StageError:
        """Return a CRITICAL copy that remembers the pre-escalation severity."""
        return StageError(
            self.code,
            self.message,
            Severity.CRITICAL,
            stage=self.stage,
            context={**self.context, **context},
            timestamp=self.timestamp,
            original_severity=self.original_severity,
            retry_attempts=retry_attempts,
        )


@dataclass(frozen=True)
class EngineError:
    """Precondition violation reported by Engine.execute_run/resume_run.

    Returned as a value alongside RunResult; callers narrow with isinstance.
    """

    kind: EngineErrorKind
    message: str
    run_id: str

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

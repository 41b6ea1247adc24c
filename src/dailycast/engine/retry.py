# src/dailycast/engine/retry.py
"""RetryExecutor: bounded exponential backoff around one stage invocation.

Built on tenacity. Only RETRYABLE errors are retried; every other
severity fails on the spot. However the executor gives up, the error it
raises is escalated to CRITICAL, with the pre-escalation severity kept
on StageError.original_severity so the skip/fail classifier can still
tell a transient failure from a configuration error.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from dailycast.contracts import Severity, StageError
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.engine.stages import RetryPolicy

T = TypeVar("T")

OnRetry = Callable[[int, float, StageError], None]


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Successful result plus how many calls it took.

    attempts counts calls (1 means the first try succeeded); retries is
    attempts - 1.
    """

    result: T
    attempts: int

    @property
    def retries(self) -> int:
        return self.attempts - 1


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, StageError) and error.severity == Severity.RETRYABLE


class RetryExecutor:
    """Runs a stage operation under its RetryPolicy.

    Example:
        executor = RetryExecutor(clock=clock)
        outcome = executor.execute(
            "tts",
            lambda: synthesize(stage_input),
            table.retry_policy_of("tts"),
            on_retry=lambda attempt, delay, error: slog.warning("stage_retry", attempt=attempt),
        )
    """

    def __init__(self, clock: Clock = DEFAULT_CLOCK) -> None:
        self._clock = clock

    def execute(
        self,
        stage: str,
        operation: Callable[[], T],
        policy: RetryPolicy,
        *,
        on_retry: OnRetry | None = None,
    ) -> RetryOutcome[T]:
        """Execute operation with retry logic.

        Args:
            stage: Stage name, stamped onto errors that lack one
            operation: Zero-argument callable performing the unit of work
            policy: Retry limits and backoff
            on_retry: Observer called before each backoff sleep with
                (retry number starting at 1, delay in seconds, error).
                It cannot change control flow.

        Returns:
            RetryOutcome with the operation's result

        Raises:
            StageError: Escalated to CRITICAL on terminal failure.
                retry_attempts is the number of retries performed (0 when
                the first call failed without being retried); context
                gains exhausted_retries and retry_history.
        """
        calls = 0
        history: list[dict[str, Any]] = []

        def call() -> T:
            nonlocal calls
            calls += 1
            try:
                return operation()
            except StageError:
                raise
            except Exception as e:
                raise StageError.from_exception(e, stage) from e

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()  # type: ignore[union-attr]
            delay = retry_state.next_action.sleep  # type: ignore[union-attr]
            if not isinstance(error, StageError):
                raise TypeError(f"expected StageError from call(), got {type(error).__name__}")
            history.append({"attempt": retry_state.attempt_number, "code": error.code, "delay": delay})
            if on_retry is not None:
                on_retry(retry_state.attempt_number, delay, error)

        retrying = Retrying(
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=wait_exponential(multiplier=policy.base_delay, exp_base=2, max=policy.max_delay),
            retry=retry_if_exception(_is_retryable),
            sleep=self._clock.sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            result = retrying(call)
        except StageError as e:
            if e.stage is None:
                e.stage = stage
            retries = calls - 1
            raise e.escalate(
                retry_attempts=retries,
                exhausted_retries=_is_retryable(e) and retries >= policy.max_retries,
                retry_history=history,
            ) from e

        return RetryOutcome(result=result, attempts=calls)

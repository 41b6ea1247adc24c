# src/dailycast/engine/lock.py
"""Advisory concurrency lock over persisted run state."""

from __future__ import annotations

from datetime import timedelta

import structlog

from dailycast.contracts import RunStatus
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.state import RunStateStore

slog = structlog.get_logger(__name__)

MAX_RUN_DURATION = timedelta(hours=4)


class ConcurrencyLock:
    """Prevents two runs for the same calendar key from executing at once.

    The lock is "held" when the persisted run is RUNNING and started less
    than max_run_duration ago. An older RUNNING run is presumed dead (the
    process crashed without marking it) and may be overridden.

    This is NOT a mutex. It reads persisted state and the caller writes
    RUNNING afterwards, so two processes that both check inside the same
    read-check-write window will both see "not locked" and both start.
    The daily scheduler fires once per key, which keeps that window
    theoretical; anything that triggers runs concurrently needs a real
    lock in front of the engine.
    """

    def __init__(
        self,
        store: RunStateStore,
        clock: Clock = DEFAULT_CLOCK,
        max_run_duration: timedelta = MAX_RUN_DURATION,
    ) -> None:
        self._store = store
        self._clock = clock
        self._max_run_duration = max_run_duration

    def check(self, run_id: str) -> bool:
        """Return True if another execution of run_id is in progress."""
        try:
            state = self._store.get_state(run_id)
        except Exception:
            slog.warning("lock_state_read_failed", run_id=run_id, exc_info=True)
            return False

        if state is None or state.status != RunStatus.RUNNING:
            return False

        elapsed = self._clock.now() - state.start_time
        if elapsed < self._max_run_duration:
            slog.warning("run_already_running", run_id=run_id, elapsed_seconds=elapsed.total_seconds())
            return True

        slog.warning("stale_run_lock_overridden", run_id=run_id, elapsed_seconds=elapsed.total_seconds())
        return False

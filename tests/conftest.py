# tests/conftest.py
"""Shared test fixtures.

Everything runs against an in-memory SQLite StateDB and a MockClock, so
retry backoff never really sleeps and lock staleness is deterministic.

Stage units of work are ScriptedStage instances: each call pops the next
scripted outcome (a StageOutput to return or an exception to raise) and
the last outcome repeats once the script runs out.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from dailycast.contracts import (
    ProviderInfo,
    ProviderTier,
    ServiceCost,
    StageCost,
    StageInput,
    StageOutput,
)
from dailycast.core.alerts import NullAlertDispatcher
from dailycast.core.clock import MockClock
from dailycast.core.config import EngineSettings
from dailycast.core.incidents import IncidentLog
from dailycast.core.queue import TopicQueue
from dailycast.core.state import RunStateStore, StateDB
from dailycast.engine.cost_hook import CostHook
from dailycast.engine.engine import Engine
from dailycast.engine.retry import RetryExecutor
from dailycast.engine.stages import StageTable

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Stage helpers
# =============================================================================

RUN_ID = "2026-01-19"


def make_output(
    data: Any = None,
    *,
    provider: str = "primary-provider",
    tier: ProviderTier = ProviderTier.PRIMARY,
    cost: float = 0.0,
    services: Sequence[tuple[str, float]] = (),
    warnings: Sequence[str] = (),
    duration_ms: int = 100,
) -> StageOutput:
    """Build a StageOutput with sensible defaults."""
    return StageOutput(
        data=data,
        provider=ProviderInfo(name=provider, tier=tier),
        duration_ms=duration_ms,
        cost=StageCost(total=cost, breakdown=tuple(ServiceCost(service=s, cost=c) for s, c in services)),
        warnings=tuple(warnings),
    )


class ScriptedStage:
    """Stage unit of work driven by a script of outcomes.

    Example:
        stage = ScriptedStage(StageError.retryable_error("X_TIMEOUT", "slow"), make_output({"ok": True}))
        # first call raises, every later call returns the output
    """

    def __init__(self, *outcomes: StageOutput | BaseException) -> None:
        if not outcomes:
            outcomes = (make_output(),)
        self._outcomes = list(outcomes)
        self.inputs: list[StageInput] = []

    @property
    def calls(self) -> int:
        return len(self.inputs)

    def __call__(self, stage_input: StageInput) -> StageOutput:
        self.inputs.append(stage_input)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> MockClock:
    return MockClock(wall_start=datetime(2026, 1, 19, 6, 0, tzinfo=UTC))


@pytest.fixture
def db() -> Iterator[StateDB]:
    database = StateDB.in_memory()
    yield database
    database.close()


@pytest.fixture
def store(db: StateDB, clock: MockClock) -> RunStateStore:
    return RunStateStore(db, clock=clock)


@pytest.fixture
def topic_queue(db: StateDB, clock: MockClock) -> TopicQueue:
    return TopicQueue(db, clock=clock)


@pytest.fixture
def incident_log(db: StateDB, clock: MockClock) -> IncidentLog:
    return IncidentLog(db, clock=clock)


@pytest.fixture
def alerts() -> NullAlertDispatcher:
    return NullAlertDispatcher()


@pytest.fixture
def make_engine(
    store: RunStateStore,
    incident_log: IncidentLog,
    alerts: NullAlertDispatcher,
    topic_queue: TopicQueue,
    clock: MockClock,
) -> Callable[..., Engine]:
    """Factory for engines sharing this test's store, queue, and clock."""

    def factory(
        table: StageTable,
        registry: Mapping[str, Any],
        *,
        cost_hook: CostHook | None = None,
        settings: EngineSettings | None = None,
    ) -> Engine:
        return Engine(
            table,
            registry,
            store,
            incidents=incident_log,
            alerts=alerts,
            queue=topic_queue,
            clock=clock,
            executor=RetryExecutor(clock=clock),
            cost_hook=cost_hook,
            settings=settings,
        )

    return factory

# tests/engine/test_cost_hook.py
"""Tests for post-run cost bookkeeping."""

from __future__ import annotations

import pytest

from dailycast.contracts import (
    AlertLevel,
    ProviderInfo,
    ServiceCost,
    StageCost,
    StageRecord,
    StageStatus,
)
from dailycast.core.alerts import NullAlertDispatcher
from dailycast.core.clock import MockClock
from dailycast.core.config import CostSettings
from dailycast.core.cost import BudgetChecker, CostCategorizer
from dailycast.core.state import StateDB
from dailycast.engine.cost_hook import CostHook
from dailycast.engine.loop import LoopState
from tests.conftest import RUN_ID


def _record(stage: str, *services: tuple[str, float]) -> StageRecord:
    return StageRecord(
        stage=stage,
        status=StageStatus.COMPLETED,
        provider=ProviderInfo(name="p"),
        cost=StageCost(total=sum(c for _, c in services), breakdown=tuple(ServiceCost(s, c) for s, c in services)),
    )


class BrokenChecker:
    def record_spend(self, run_id: str, amount: float) -> None:
        raise RuntimeError("budget table missing")


@pytest.fixture
def hook(db: StateDB, alerts: NullAlertDispatcher, clock: MockClock) -> CostHook:
    settings = CostSettings()
    return CostHook(CostCategorizer(settings.categories), BudgetChecker(db, alerts, settings, clock=clock))


class TestCostHook:
    def test_breakdown_by_category(self, hook: CostHook) -> None:
        state = LoopState(
            completed_stages=["script-gen", "tts"],
            stage_records={
                "script-gen": _record("script-gen", ("gemini-2.5-pro", 0.20)),
                "tts": _record("tts", ("chirp3-hd", 0.05), ("gemini-2.5-flash", 0.01)),
            },
        )

        breakdown = hook.breakdown(state)

        assert breakdown["gemini"] == pytest.approx(0.21)
        assert breakdown["tts"] == pytest.approx(0.05)
        assert breakdown["render"] == 0.0

    def test_breakdown_ignores_stages_that_did_not_complete(self, hook: CostHook) -> None:
        state = LoopState(
            completed_stages=["tts"],
            stage_records={
                "tts": _record("tts", ("chirp3-hd", 0.05)),
                "visual-gen": _record("visual-gen", ("video-render", 1.0)),
            },
        )

        assert hook.breakdown(state)["render"] == 0.0

    def test_apply_records_spend_and_alerts(self, hook: CostHook, alerts: NullAlertDispatcher) -> None:
        state = LoopState(
            completed_stages=["script-gen"],
            stage_records={"script-gen": _record("script-gen", ("gemini-2.5-pro", 0.9))},
            total_cost=0.9,
        )

        result = hook.apply(RUN_ID, state)

        assert result is not None
        assert result.triggered
        assert result.level == AlertLevel.WARNING
        assert ("gemini", "$0.90") in alerts.sent[0].fields

    def test_apply_below_threshold(self, hook: CostHook, alerts: NullAlertDispatcher) -> None:
        result = hook.apply(RUN_ID, LoopState(total_cost=0.1))

        assert result is not None
        assert not result.triggered
        assert alerts.sent == []

    def test_apply_never_raises(self) -> None:
        hook = CostHook(CostCategorizer(CostSettings().categories), BrokenChecker())  # type: ignore[arg-type]

        assert hook.apply(RUN_ID, LoopState(total_cost=0.1)) is None

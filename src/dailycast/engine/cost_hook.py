# src/dailycast/engine/cost_hook.py
"""Cost hook: budget bookkeeping once a run has finished."""

from __future__ import annotations

import structlog

from dailycast.core.cost import BudgetChecker, CostAlertResult, CostCategorizer
from dailycast.engine.loop import LoopState

slog = structlog.get_logger(__name__)


class CostHook:
    """Records a run's spend and checks it against the cost thresholds."""

    def __init__(self, categorizer: CostCategorizer, checker: BudgetChecker) -> None:
        self._categorizer = categorizer
        self._checker = checker

    def breakdown(self, state: LoopState) -> dict[str, float]:
        """Per-category cost of the completed stages."""
        totals = self._categorizer.empty_breakdown()
        for stage in state.completed_stages:
            record = state.stage_records.get(stage)
            if record is None or record.cost is None:
                continue
            for item in record.cost.breakdown:
                totals[self._categorizer.categorize(item.service)] += item.cost
        return totals

    def apply(self, run_id: str, state: LoopState) -> CostAlertResult | None:
        """Record spend and check thresholds. Never raises.

        Returns:
            The threshold check result, or None if bookkeeping failed
        """
        try:
            self._checker.record_spend(run_id, state.total_cost)
            result = self._checker.check_thresholds(state.total_cost, run_id, self.breakdown(state))
        except Exception:
            slog.error("cost_tracking_failed", run_id=run_id, total_cost=state.total_cost, exc_info=True)
            return None

        if result.triggered:
            slog.warning(
                "cost_alert_triggered",
                run_id=run_id,
                total_cost=state.total_cost,
                level=result.level.value if result.level is not None else None,
                sent=result.sent,
            )
        return result

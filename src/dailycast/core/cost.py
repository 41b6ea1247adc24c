"""Cost categorization, budget tracking, and per-run cost threshold alerts."""

from __future__ import annotations

import fnmatch
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import func, select, update

from dailycast.contracts import AlertLevel, AlertMessage
from dailycast.core.alerts import AlertDispatcher
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.config import CostSettings
from dailycast.core.state.database import StateDB
from dailycast.core.state.schema import budget_spend_table, cost_alert_state_table
from dailycast.core.state.store import as_utc

logger = structlog.get_logger(__name__)


class CostCategorizer:
    """Maps service names onto cost categories using fnmatch patterns.

    Categories are tried in declaration order and matching is
    case-insensitive. A service that matches no pattern is attributed to
    the last category.
    """

    def __init__(self, categories: Mapping[str, Sequence[str]]) -> None:
        if not categories:
            raise ValueError("at least one cost category is required")
        self._categories = [(name, tuple(p.lower() for p in patterns)) for name, patterns in categories.items()]

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._categories]

    def categorize(self, service: str) -> str:
        lowered = service.lower()
        for name, patterns in self._categories:
            if any(fnmatch.fnmatchcase(lowered, pattern) for pattern in patterns):
                return name
        return self._categories[-1][0]

    def empty_breakdown(self) -> dict[str, float]:
        return dict.fromkeys(self.names, 0.0)


@dataclass(frozen=True)
class CostAlertResult:
    """Outcome of a threshold check.

    triggered says a threshold was crossed; sent says an alert went out
    (it may not have, because of the cooldown or a transport failure).
    """

    triggered: bool
    sent: bool
    level: AlertLevel | None = None
    reason: str | None = None


class BudgetChecker:
    """Tracks monthly spend and alerts when a single run's cost crosses a threshold."""

    def __init__(
        self,
        db: StateDB,
        alerts: AlertDispatcher,
        settings: CostSettings | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        self._db = db
        self._alerts = alerts
        self._settings = settings if settings is not None else CostSettings()
        self._clock = clock

    def record_spend(self, run_id: str, amount: float) -> None:
        """Record a run's total cost. Re-recording a run replaces its amount."""
        now = self._clock.now()
        values = {"month": now.strftime("%Y-%m"), "amount": amount, "recorded_at": now}
        with self._db.connection() as conn:
            result = conn.execute(
                update(budget_spend_table).where(budget_spend_table.c.run_id == run_id).values(**values)
            )
            if result.rowcount == 0:
                conn.execute(budget_spend_table.insert().values(run_id=run_id, **values))

    def month_spent(self, month: str | None = None) -> float:
        month = month if month is not None else self._clock.now().strftime("%Y-%m")
        with self._db.connection() as conn:
            total = conn.execute(
                select(func.coalesce(func.sum(budget_spend_table.c.amount), 0.0)).where(
                    budget_spend_table.c.month == month
                )
            ).scalar_one()
        return float(total)

    def budget_remaining(self) -> float:
        return self._settings.monthly_budget - self.month_spent()

    def check_thresholds(self, total: float, run_id: str, breakdown: Mapping[str, float]) -> CostAlertResult:
        """Alert if the run's total crosses the warning or critical threshold.

        Each level has its own cooldown so a burst of expensive runs sends
        one alert per level per cooldown window.
        """
        if total >= self._settings.critical_threshold:
            level, threshold = AlertLevel.CRITICAL, self._settings.critical_threshold
        elif total >= self._settings.warning_threshold:
            level, threshold = AlertLevel.WARNING, self._settings.warning_threshold
        else:
            logger.debug("cost_within_thresholds", run_id=run_id, total=total)
            return CostAlertResult(triggered=False, sent=False)

        now = self._clock.now()
        last_sent = self._last_sent(level)
        if last_sent is not None and now - last_sent < timedelta(seconds=self._settings.alert_cooldown_seconds):
            logger.info("cost_alert_cooldown", run_id=run_id, level=level.value, total=total)
            return CostAlertResult(triggered=True, sent=False, level=level, reason="alert in cooldown period")

        message = AlertMessage(
            level=level,
            title=f"Cost alert: {level.value}",
            description=f"Run {run_id} cost ${total:.2f}, above the {level.value.lower()} threshold (${threshold:.2f})",
            timestamp=now,
            fields=(
                *((category, f"${amount:.2f}") for category, amount in breakdown.items()),
                ("Budget remaining", f"${self.budget_remaining():.2f}"),
            ),
        )
        result = self._alerts.dispatch(message)
        if not result.success:
            return CostAlertResult(triggered=True, sent=False, level=level, reason=result.error)

        self._mark_sent(level)
        logger.warning("cost_alert_sent", run_id=run_id, level=level.value, total=total, threshold=threshold)
        return CostAlertResult(triggered=True, sent=True, level=level)

    def _last_sent(self, level: AlertLevel) -> datetime | None:
        with self._db.connection() as conn:
            value = conn.execute(
                select(cost_alert_state_table.c.last_sent_at).where(cost_alert_state_table.c.level == level.value)
            ).scalar_one_or_none()
        return as_utc(value)

    def _mark_sent(self, level: AlertLevel) -> None:
        now = self._clock.now()
        with self._db.connection() as conn:
            result = conn.execute(
                update(cost_alert_state_table)
                .where(cost_alert_state_table.c.level == level.value)
                .values(last_sent_at=now, sent_count=cost_alert_state_table.c.sent_count + 1)
            )
            if result.rowcount == 0:
                conn.execute(cost_alert_state_table.insert().values(level=level.value, last_sent_at=now, sent_count=1))

"""TopicQueue: topics carried over from a skipped day to a later run.

A run that skips on a CRITICAL stage queues its topic for tomorrow. The
next day's run claims it instead of sourcing a fresh topic. Each queued
topic is retried at most max_retries times before being abandoned.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select, update

from dailycast.contracts import QueuedTopic, QueueStatus
from dailycast.core.clock import DEFAULT_CLOCK, Clock
from dailycast.core.state.database import StateDB
from dailycast.core.state.schema import queued_topics_table
from dailycast.core.state.store import as_utc

slog = structlog.get_logger(__name__)

QUEUE_MAX_RETRIES = 2


class TopicQueue:
    """SQL-backed queue keyed by target date (YYYY-MM-DD)."""

    def __init__(self, db: StateDB, clock: Clock = DEFAULT_CLOCK, max_retries: int = QUEUE_MAX_RETRIES) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self._db = db
        self._clock = clock
        self._max_retries = max_retries

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def queue_failed_topic(self, topic: str, failure_reason: str, failure_stage: str, original_date: str) -> str:
        """Queue a topic for tomorrow's run.

        Replaces anything already queued for tomorrow.

        Returns:
            The target date (YYYY-MM-DD) the topic was queued for
        """
        now = self._clock.now()
        target_date = (now.date() + timedelta(days=1)).isoformat()
        values = {
            "topic": topic,
            "failure_reason": failure_reason,
            "failure_stage": failure_stage,
            "original_date": original_date,
            "queued_at": now,
            "retry_count": 0,
            "max_retries": self._max_retries,
            "status": QueueStatus.PENDING.value,
        }
        with self._db.connection() as conn:
            conn.execute(delete(queued_topics_table).where(queued_topics_table.c.target_date == target_date))
            conn.execute(queued_topics_table.insert().values(target_date=target_date, **values))
        slog.info(
            "topic_queued",
            topic=topic,
            target_date=target_date,
            failure_reason=failure_reason,
            failure_stage=failure_stage,
        )
        return target_date

    def get_queued_topic(self, date: str) -> QueuedTopic | None:
        with self._db.connection() as conn:
            row = conn.execute(select(queued_topics_table).where(queued_topics_table.c.target_date == date)).first()
        return self._from_row(row) if row is not None else None

    def check_today_queued_topic(self, today: str) -> QueuedTopic | None:
        """Return today's queued topic if it is still pending."""
        topic = self.get_queued_topic(today)
        if topic is not None and topic.status == QueueStatus.PENDING:
            return topic
        return None

    def list_pending(self) -> list[QueuedTopic]:
        with self._db.connection() as conn:
            rows = conn.execute(
                select(queued_topics_table)
                .where(queued_topics_table.c.status == QueueStatus.PENDING.value)
                .order_by(queued_topics_table.c.target_date)
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def increment_retry_count(self, date: str) -> QueuedTopic | None:
        """Consume one retry of the topic queued for date.

        Returns:
            The updated topic (status processing), or None if the new count
            reached max_retries and the topic was abandoned

        Raises:
            LookupError: If nothing is queued for date
        """
        topic = self.get_queued_topic(date)
        if topic is None:
            raise LookupError(f"No queued topic for {date}")

        new_count = topic.retry_count + 1
        if new_count >= topic.max_retries:
            self._set(date, retry_count=new_count, status=QueueStatus.ABANDONED.value)
            slog.warning("queued_topic_abandoned", topic=topic.topic, date=date, retry_count=new_count)
            return None

        self._set(date, retry_count=new_count, status=QueueStatus.PROCESSING.value)
        return self.get_queued_topic(date)

    def clear_queued_topic(self, date: str) -> None:
        with self._db.connection() as conn:
            conn.execute(delete(queued_topics_table).where(queued_topics_table.c.target_date == date))
        slog.info("queued_topic_cleared", date=date)

    def _set(self, date: str, **values: Any) -> None:
        with self._db.connection() as conn:
            conn.execute(update(queued_topics_table).where(queued_topics_table.c.target_date == date).values(**values))

    @staticmethod
    def _from_row(row: Any) -> QueuedTopic:
        return QueuedTopic(
            topic=row.topic,
            failure_reason=row.failure_reason,
            failure_stage=row.failure_stage,
            original_date=row.original_date,
            target_date=row.target_date,
            queued_at=as_utc(row.queued_at),  # type: ignore[arg-type]
            retry_count=row.retry_count,
            max_retries=row.max_retries,
            status=QueueStatus(row.status),
        )

# src/dailycast/engine/bridge.py
"""Queued-topic bridge between a skipped day and the next run.

Every queue interaction here is best-effort: if the queue cannot be read
or written, the run simply sources a fresh topic.
"""

from __future__ import annotations

from typing import Any

import structlog

from dailycast.contracts import QueuedTopic
from dailycast.core.queue import QUEUE_MAX_RETRIES, TopicQueue

slog = structlog.get_logger(__name__)


def initial_data(topic: QueuedTopic | None) -> Any:
    """Loop input for the first stage: the claimed topic, or nothing."""
    if topic is None:
        return None
    return {"queued_topic": topic.topic, "from_queue": True}


class QueuedTopicBridge:
    """Claims today's queued topic before the loop and releases it after success."""

    def __init__(self, queue: TopicQueue, max_retries: int = QUEUE_MAX_RETRIES) -> None:
        self._queue = queue
        self._max_retries = max_retries

    def claim(self, run_id: str) -> QueuedTopic | None:
        """Take today's pending queued topic, consuming one of its retries.

        Returns:
            The claimed topic, or None when nothing is queued, the topic
            has used up its retries (it is cleared), or the queue failed
        """
        try:
            queued = self._queue.check_today_queued_topic(run_id)
            if queued is None:
                return None

            if queued.retry_count >= self._max_retries:
                slog.warning(
                    "queued_topic_retries_exhausted",
                    run_id=run_id,
                    topic=queued.topic,
                    retry_count=queued.retry_count,
                )
                self._queue.clear_queued_topic(run_id)
                return None

            claimed = self._queue.increment_retry_count(run_id)
        except Exception:
            slog.error("queued_topic_claim_failed", run_id=run_id, exc_info=True)
            return None

        if claimed is None:
            return None
        slog.info(
            "queued_topic_claimed",
            run_id=run_id,
            topic=claimed.topic,
            retry_count=claimed.retry_count,
            original_date=claimed.original_date,
        )
        return claimed

    def release(self, run_id: str) -> None:
        """Clear the consumed entry after a successful run."""
        try:
            self._queue.clear_queued_topic(run_id)
        except Exception:
            slog.error("queued_topic_release_failed", run_id=run_id, exc_info=True)

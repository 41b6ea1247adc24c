# src/dailycast/core/alerts.py
"""Operator alert dispatch.

Dispatchers report failures as AlertResult values instead of raising:
an alert that cannot be delivered must never change a run's outcome.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

from dailycast.contracts import AlertLevel, AlertMessage, AlertResult

logger = structlog.get_logger(__name__)

# Discord embed colors (decimal RGB)
_LEVEL_COLORS: dict[AlertLevel, int] = {
    AlertLevel.INFO: 0x3498DB,
    AlertLevel.WARNING: 0xF1C40F,
    AlertLevel.CRITICAL: 0xE74C3C,
}


class AlertDispatcher(Protocol):
    """Anything that can deliver an AlertMessage."""

    def dispatch(self, message: AlertMessage) -> AlertResult: ...


class NullAlertDispatcher:
    """Dispatcher used when no transport is configured: logs and succeeds."""

    def __init__(self) -> None:
        self.sent: list[AlertMessage] = []

    def dispatch(self, message: AlertMessage) -> AlertResult:
        self.sent.append(message)
        logger.info("alert_not_sent_no_transport", level=message.level.value, title=message.title)
        return AlertResult(success=True)


def build_webhook_payload(message: AlertMessage) -> dict[str, Any]:
    """Render an AlertMessage as a Discord-compatible embed payload."""
    return {
        "embeds": [
            {
                "title": message.title,
                "description": message.description,
                "color": _LEVEL_COLORS[message.level],
                "fields": [{"name": name, "value": value, "inline": True} for name, value in message.fields],
                "timestamp": message.timestamp.isoformat(),
            }
        ]
    }


class WebhookAlertDispatcher:
    """POSTs alerts as JSON embeds to a webhook URL.

    Example:
        dispatcher = WebhookAlertDispatcher("https://discord.com/api/webhooks/...")
        result = dispatcher.dispatch(message)
        if not result.success:
            logger.warning("alert_failed", error=result.error)
    """

    def __init__(self, url: str, *, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self._url = url
        # Shared client for connection pooling across alerts in one run
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def dispatch(self, message: AlertMessage) -> AlertResult:
        try:
            response = self._client.post(self._url, json=build_webhook_payload(message))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("alert_rejected", status_code=e.response.status_code, title=message.title)
            return AlertResult(success=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning("alert_transport_error", error=str(e), title=message.title)
            return AlertResult(success=False, error=f"{type(e).__name__}: {e}")
        return AlertResult(success=True)

    def close(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._owns_client:
            self._client.close()

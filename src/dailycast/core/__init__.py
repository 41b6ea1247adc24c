# src/dailycast/core/__init__.py
"""Core infrastructure: configuration, logging, state store, and side-channel collaborators."""

from dailycast.core.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from dailycast.core.config import (
    AlertSettings,
    CostSettings,
    DailycastSettings,
    DatabaseSettings,
    EngineSettings,
    LoggingSettings,
    QueueSettings,
    RetryPolicySettings,
    StageSettings,
    load_settings,
)
from dailycast.core.logging import configure_logging, get_logger
from dailycast.core.state import RunNotFoundError, RunStateStore, StageOutputNotFoundError, StateDB

__all__ = [
    # clock
    "DEFAULT_CLOCK",
    "Clock",
    "MockClock",
    "SystemClock",
    # config
    "AlertSettings",
    "CostSettings",
    "DailycastSettings",
    "DatabaseSettings",
    "EngineSettings",
    "LoggingSettings",
    "QueueSettings",
    "RetryPolicySettings",
    "StageSettings",
    "load_settings",
    # logging
    "configure_logging",
    "get_logger",
    # state
    "RunNotFoundError",
    "RunStateStore",
    "StageOutputNotFoundError",
    "StateDB",
]

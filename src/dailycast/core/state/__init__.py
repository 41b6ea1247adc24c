"""Run state persistence: database, schema, and the state store."""

from dailycast.core.state.database import StateDB
from dailycast.core.state.store import (
    RunNotFoundError,
    RunNotPausableError,
    RunStateStore,
    StageOutputNotFoundError,
)

__all__ = [
    "RunNotFoundError",
    "RunNotPausableError",
    "RunStateStore",
    "StageOutputNotFoundError",
    "StateDB",
]

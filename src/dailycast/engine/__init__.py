"""Execution engine: stage sequencing, retries, skip/fail decisions, and resume."""

from dailycast.engine.bridge import QueuedTopicBridge
from dailycast.engine.classifier import CLASSIFICATION_RULES, classify_error, decide
from dailycast.engine.cost_hook import CostHook
from dailycast.engine.engine import Engine
from dailycast.engine.finalizer import Finalizer
from dailycast.engine.lock import MAX_RUN_DURATION, ConcurrencyLock
from dailycast.engine.loop import LoopState, StageLoop
from dailycast.engine.quality_gate import quality_gate_check
from dailycast.engine.retry import RetryExecutor, RetryOutcome
from dailycast.engine.spans import SpanFactory
from dailycast.engine.stages import (
    DEFAULT_RETRY_POLICY,
    DEFAULT_STAGE_TABLE,
    RetryPolicy,
    StageDefinition,
    StageTable,
)

__all__ = [
    "CLASSIFICATION_RULES",
    "DEFAULT_RETRY_POLICY",
    "DEFAULT_STAGE_TABLE",
    "MAX_RUN_DURATION",
    "ConcurrencyLock",
    "CostHook",
    "Engine",
    "Finalizer",
    "LoopState",
    "QueuedTopicBridge",
    "RetryExecutor",
    "RetryOutcome",
    "RetryPolicy",
    "SpanFactory",
    "StageDefinition",
    "StageLoop",
    "StageTable",
    "classify_error",
    "decide",
    "quality_gate_check",
]

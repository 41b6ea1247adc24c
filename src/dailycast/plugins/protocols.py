"""Protocol for stage units of work.

A stage is anything callable with a StageInput that returns a StageOutput
or raises StageError. Plain functions, bound methods, and callable objects
all qualify.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from dailycast.contracts import StageInput, StageOutput


@runtime_checkable
class StageProtocol(Protocol):
    """One pluggable unit of work in the ordered pipeline.

    Implementations must honor stage_input.config.timeout_seconds
    themselves; the engine never preempts a running stage.

    Raises:
        StageError: With a severity describing how the engine should react
    """

    def __call__(self, stage_input: StageInput) -> StageOutput: ...

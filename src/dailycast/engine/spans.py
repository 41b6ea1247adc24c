# src/dailycast/engine/spans.py
"""Tracing for runs and stages.

One span per execute/resume call, with a child span per stage invocation
(retries included). Without a tracer every span is a NoOpSpan, so the
engine never checks whether tracing is enabled.

    run:execute | run:resume      run.id, run.status
    └── stage:{name}              stage.name, stage.max_retries,
                                  stage.outcome, stage.provider | stage.error_code
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer


class NoOpSpan:
    """Accepts and discards span calls when tracing is disabled."""

    def set_attribute(self, key: str, value: Any) -> None:
        return None

    def is_recording(self) -> bool:
        return False


_NOOP = NoOpSpan()


class SpanFactory:
    """Opens run and stage spans on an injected OpenTelemetry tracer.

    Example:
        spans = SpanFactory(trace.get_tracer("dailycast"))
        with spans.run_span("2026-01-19", mode="resume") as span:
            ...
            span.set_attribute("run.status", "completed")
    """

    def __init__(self, tracer: Tracer | None = None) -> None:
        self._tracer = tracer

    @property
    def enabled(self) -> bool:
        return self._tracer is not None

    @contextmanager
    def _span(self, name: str, attributes: Mapping[str, Any]) -> Iterator[Span | NoOpSpan]:
        if self._tracer is None:
            yield _NOOP
            return
        with self._tracer.start_as_current_span(name) as span:
            for key, value in attributes.items():
                span.set_attribute(key, value)
            yield span

    def run_span(self, run_id: str, *, mode: str) -> AbstractContextManager[Span | NoOpSpan]:
        """Span for a whole run; mode is "execute" or "resume"."""
        return self._span(f"run:{mode}", {"run.id": run_id})

    def stage_span(self, stage: str, *, max_retries: int) -> AbstractContextManager[Span | NoOpSpan]:
        return self._span(f"stage:{stage}", {"stage.name": stage, "stage.max_retries": max_retries})

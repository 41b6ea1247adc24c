# tests/engine/test_spans.py
"""Tests for SpanFactory."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace

from dailycast.engine.spans import NoOpSpan, SpanFactory


class RecordingSpan:
    def __init__(self, name: str) -> None:
        self.name = name
        self.attributes: dict[str, Any] = {}

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class RecordingTracer:
    def __init__(self) -> None:
        self.spans: list[RecordingSpan] = []

    @contextmanager
    def start_as_current_span(self, name: str) -> Iterator[RecordingSpan]:
        span = RecordingSpan(name)
        self.spans.append(span)
        yield span


class TestSpanFactory:
    def test_disabled_yields_noop(self) -> None:
        factory = SpanFactory()

        assert not factory.enabled
        with factory.run_span("2026-01-19", mode="execute") as span:
            assert isinstance(span, NoOpSpan)
            assert not span.is_recording()

    def test_run_and_stage_spans_carry_attributes(self) -> None:
        tracer = RecordingTracer()
        factory = SpanFactory(tracer)  # type: ignore[arg-type]

        with factory.run_span("2026-01-19", mode="resume"):
            with factory.stage_span("tts", max_retries=5):
                pass

        assert [s.name for s in tracer.spans] == ["run:resume", "stage:tts"]
        assert tracer.spans[0].attributes == {"run.id": "2026-01-19"}
        assert tracer.spans[1].attributes == {"stage.name": "tts", "stage.max_retries": 5}

    def test_api_tracer_without_sdk(self) -> None:
        factory = SpanFactory(trace.get_tracer("dailycast-tests"))

        assert factory.enabled
        with factory.stage_span("tts", max_retries=1) as span:
            span.set_attribute("stage.provider", "chirp3-hd")

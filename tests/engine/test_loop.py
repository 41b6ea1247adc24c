# tests/engine/test_loop.py
"""Tests for StageLoop branching, chaining, and failure side effects."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import pytest

from dailycast.contracts import (
    AlertLevel,
    Criticality,
    IncidentSeverity,
    ProviderInfo,
    ProviderTier,
    Severity,
    StageCost,
    StageError,
    StageOutput,
    StageStatus,
)
from dailycast.core.alerts import NullAlertDispatcher
from dailycast.core.clock import MockClock
from dailycast.core.config import EngineSettings
from dailycast.core.incidents import IncidentLog
from dailycast.core.queue import TopicQueue
from dailycast.core.state import RunStateStore
from dailycast.engine.loop import INVALID_STAGE_OUTPUT_CODE, LoopState, StageLoop, extract_topic
from dailycast.engine.retry import RetryExecutor
from dailycast.engine.stages import RetryPolicy, StageDefinition, StageTable
from tests.conftest import RUN_ID, ScriptedStage, make_output

POLICY = RetryPolicy(max_retries=2, base_delay=1.0)


def _table(*stages: tuple[str, Criticality] | StageDefinition) -> StageTable:
    return StageTable(
        s if isinstance(s, StageDefinition) else StageDefinition(s[0], s[1], retry=POLICY) for s in stages
    )


class BrokenIncidentLog:
    def log_incident(self, incident: object) -> str:
        raise RuntimeError("incident table missing")


@pytest.fixture
def make_loop(
    store: RunStateStore,
    incident_log: IncidentLog,
    alerts: NullAlertDispatcher,
    topic_queue: TopicQueue,
    clock: MockClock,
) -> Callable[..., StageLoop]:
    store.initialize_run(RUN_ID)

    def factory(table: StageTable, registry: Mapping[str, Any], *, incidents: Any = None) -> StageLoop:
        return StageLoop(
            table,
            registry,
            store,
            RetryExecutor(clock=clock),
            incidents if incidents is not None else incident_log,
            alerts,
            topic_queue,
            settings=EngineSettings(topic_stage="topic", stage_timeout_seconds=120.0),
            clock=clock,
        )

    return factory


class TestExtractTopic:
    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            ({"topic": "Solar storms"}, "Solar storms"),
            ({"topic": {"title": "Deep sea vents"}}, "Deep sea vents"),
            ({"topic": ""}, None),
            ({"topic": {"name": "x"}}, None),
            ({"other": 1}, None),
            (["topic"], None),
            (None, None),
        ],
    )
    def test_shapes(self, data: Any, expected: str | None) -> None:
        assert extract_topic(data) == expected


class TestChaining:
    def test_each_stage_gets_previous_output(self, make_loop: Callable[..., StageLoop]) -> None:
        a = ScriptedStage(make_output({"from": "a"}))
        b = ScriptedStage(make_output({"from": "b"}))
        loop = make_loop(_table(("a", Criticality.CRITICAL), ("b", Criticality.CRITICAL)), {"a": a, "b": b})

        state = loop.run(RUN_ID, 0, LoopState(data={"seed": True}))

        assert a.inputs[0].data == {"seed": True}
        assert a.inputs[0].previous_stage is None
        assert b.inputs[0].data == {"from": "a"}
        assert b.inputs[0].previous_stage == "a"
        assert state.completed_stages == ["a", "b"]
        assert state.data == {"from": "b"}
        assert state.previous_stage == "b"

    def test_stage_input_carries_config(self, make_loop: Callable[..., StageLoop]) -> None:
        a = ScriptedStage()
        loop = make_loop(_table(("a", Criticality.CRITICAL)), {"a": a})

        loop.run(RUN_ID, 0, LoopState())

        config = a.inputs[0].config
        assert config.timeout_seconds == 120.0
        assert config.retries == 2
        assert a.inputs[0].run_id == RUN_ID

    def test_start_index_skips_earlier_stages(self, make_loop: Callable[..., StageLoop]) -> None:
        a, b = ScriptedStage(), ScriptedStage()
        loop = make_loop(_table(("a", Criticality.CRITICAL), ("b", Criticality.CRITICAL)), {"a": a, "b": b})

        state = loop.run(RUN_ID, 1, LoopState())

        assert a.calls == 0
        assert state.completed_stages == ["b"]

    def test_always_run_stage_is_left_to_the_finalizer(self, make_loop: Callable[..., StageLoop]) -> None:
        notify = ScriptedStage()
        table = _table(
            ("a", Criticality.CRITICAL),
            StageDefinition("notify", Criticality.RECOVERABLE, always_run=True),
        )
        loop = make_loop(table, {"a": ScriptedStage(), "notify": notify})

        state = loop.run(RUN_ID, 0, LoopState())

        assert notify.calls == 0
        assert state.completed_stages == ["a"]

    def test_unregistered_stage_is_skipped(self, make_loop: Callable[..., StageLoop]) -> None:
        b = ScriptedStage()
        loop = make_loop(_table(("a", Criticality.CRITICAL), ("b", Criticality.CRITICAL)), {"b": b})

        state = loop.run(RUN_ID, 0, LoopState(data={"seed": 1}))

        assert state.skipped_stages == ["a"]
        assert state.completed_stages == ["b"]
        assert b.inputs[0].data == {"seed": 1}


class TestSuccessBookkeeping:
    def test_record_and_persistence(
        self, make_loop: Callable[..., StageLoop], store: RunStateStore, clock: MockClock
    ) -> None:
        a = ScriptedStage(
            StageError.retryable_error("A_TIMEOUT", "slow"),
            make_output({"script": "hello"}, provider="gemini-2.5-pro", cost=0.12, duration_ms=900),
        )
        loop = make_loop(_table(("a", Criticality.CRITICAL)), {"a": a})

        state = loop.run(RUN_ID, 0, LoopState())

        record = state.stage_records["a"]
        assert record.status == StageStatus.COMPLETED
        assert record.duration_ms == 900
        assert record.retry_attempts == 1
        assert state.total_cost == pytest.approx(0.12)
        assert state.stage_outputs["a"].data == {"script": "hello"}

        persisted = store.get_state(RUN_ID)
        assert persisted is not None
        assert persisted.stages["a"].status == StageStatus.COMPLETED
        assert persisted.stages["a"].retry_attempts == 1
        assert persisted.stages["a"].provider is not None
        assert persisted.stages["a"].provider.name == "gemini-2.5-pro"
        assert store.load_stage_output(RUN_ID, "a") == {"script": "hello"}

    def test_warnings_and_fallback_update_quality(
        self, make_loop: Callable[..., StageLoop], store: RunStateStore
    ) -> None:
        tts = ScriptedStage(make_output(provider="wavenet", tier=ProviderTier.FALLBACK, warnings=["audio clipped"]))
        loop = make_loop(_table(("tts", Criticality.CRITICAL)), {"tts": tts})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.quality.fallbacks_used == ("tts:wavenet",)
        assert state.quality.flags == ("audio clipped",)
        persisted = store.get_state(RUN_ID)
        assert persisted is not None
        assert persisted.quality_context == state.quality

    def test_unstorable_payload_keeps_quality_and_retries(
        self, make_loop: Callable[..., StageLoop], store: RunStateStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def refuse(run_id: str, stage: str, data: Any) -> None:
            raise ValueError("Out of range float values are not JSON compliant")

        monkeypatch.setattr(store, "persist_stage_output", refuse)
        tts = ScriptedStage(
            StageError.retryable_error("TTS_TIMEOUT", "slow"),
            make_output({"level": float("nan")}, provider="wavenet", tier=ProviderTier.FALLBACK),
        )
        loop = make_loop(_table(("tts", Criticality.CRITICAL)), {"tts": tts})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.completed_stages == ["tts"]
        persisted = store.get_state(RUN_ID)
        assert persisted is not None
        assert persisted.stages["tts"].status == StageStatus.COMPLETED
        assert persisted.stages["tts"].retry_attempts == 1
        assert persisted.quality_context is not None
        assert persisted.quality_context.fallbacks_used == ("tts:wavenet",)

    def test_topic_stage_sets_current_topic(self, make_loop: Callable[..., StageLoop]) -> None:
        topic = ScriptedStage(make_output({"topic": {"title": "Solar storms"}}))
        loop = make_loop(_table(("topic", Criticality.CRITICAL)), {"topic": topic})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.current_topic == "Solar storms"


class TestFailureBranches:
    def test_recoverable_stage_is_skipped_and_chain_continues(self, make_loop: Callable[..., StageLoop]) -> None:
        a = ScriptedStage(make_output({"from": "a"}))
        b = ScriptedStage(StageError.retryable_error("B_TIMEOUT", "slow"))
        c = ScriptedStage()
        table = _table(("a", Criticality.CRITICAL), ("b", Criticality.RECOVERABLE), ("c", Criticality.CRITICAL))
        loop = make_loop(table, {"a": a, "b": b, "c": c})

        state = loop.run(RUN_ID, 0, LoopState())

        assert b.calls == 3
        assert state.skipped_stages == ["b"]
        assert state.completed_stages == ["a", "c"]
        assert c.inputs[0].data == {"from": "a"}
        assert c.inputs[0].previous_stage == "a"
        assert not state.stopped

    def test_recoverable_error_on_critical_stage_continues(self, make_loop: Callable[..., StageLoop]) -> None:
        a = ScriptedStage(StageError.recoverable("A_PARTIAL", "optional part missing"))
        loop = make_loop(_table(("a", Criticality.CRITICAL), ("b", Criticality.CRITICAL)), {"a": a, "b": ScriptedStage()})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.skipped_stages == ["a"]
        assert state.completed_stages == ["b"]

    def test_degraded_stage_flags_quality(self, make_loop: Callable[..., StageLoop], store: RunStateStore) -> None:
        visuals = ScriptedStage(StageError.retryable_error("VISUAL_TIMEOUT", "slow"))
        loop = make_loop(_table(("visual-gen", Criticality.DEGRADED)), {"visual-gen": visuals})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.quality.degraded_stages == ("visual-gen",)
        assert state.skipped_stages == ["visual-gen"]
        persisted = store.get_state(RUN_ID)
        assert persisted is not None
        assert persisted.quality_context is not None
        assert persisted.quality_context.degraded_stages == ("visual-gen",)

    def test_degraded_error_on_critical_stage_continues(self, make_loop: Callable[..., StageLoop]) -> None:
        a = ScriptedStage(StageError.degraded("PRONUNCIATION_PARTIAL", "some words unknown"))
        loop = make_loop(_table(("a", Criticality.CRITICAL)), {"a": a})

        state = loop.run(RUN_ID, 0, LoopState())

        assert not state.stopped
        assert state.quality.degraded_stages == ("a",)

    def test_critical_error_on_recoverable_stage_aborts(self, make_loop: Callable[..., StageLoop]) -> None:
        a = ScriptedStage(StageError.critical("CONFIG_MISSING", "no api key"))
        b = ScriptedStage()
        loop = make_loop(_table(("a", Criticality.RECOVERABLE), ("b", Criticality.CRITICAL)), {"a": a, "b": b})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.aborted
        assert b.calls == 0

    def test_hard_failure_aborts(self, make_loop: Callable[..., StageLoop], store: RunStateStore) -> None:
        a = ScriptedStage(StageError.critical("SCRIPT_INVALID", "malformed"))
        b = ScriptedStage()
        loop = make_loop(_table(("a", Criticality.CRITICAL), ("b", Criticality.CRITICAL)), {"a": a, "b": b})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.aborted
        assert not state.skipped
        assert state.abort_error is not None
        assert state.abort_error.code == "SCRIPT_INVALID"
        assert b.calls == 0
        persisted = store.get_state(RUN_ID)
        assert persisted is not None
        error = persisted.stages["a"].error
        assert error is not None
        assert error.severity == Severity.CRITICAL
        assert error.incident_id == "2026-01-19-001"

    def test_invalid_output_is_a_hard_failure(self, make_loop: Callable[..., StageLoop]) -> None:
        class ReturnsDict:
            def __call__(self, stage_input: object) -> dict[str, str]:
                return {"not": "a StageOutput"}

        loop = make_loop(_table(("a", Criticality.CRITICAL)), {"a": ReturnsDict()})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.aborted
        assert state.abort_error is not None
        assert state.abort_error.code == INVALID_STAGE_OUTPUT_CODE

    @pytest.mark.parametrize(
        ("output", "fragment"),
        [
            (StageOutput(data={"x": 1}, provider=None), "provider"),  # type: ignore[arg-type]
            (StageOutput(data={"x": 1}, provider=ProviderInfo("gemini"), cost=0.5), "cost"),  # type: ignore[arg-type]
        ],
    )
    def test_malformed_output_is_a_hard_failure(
        self, make_loop: Callable[..., StageLoop], store: RunStateStore, output: StageOutput, fragment: str
    ) -> None:
        b = ScriptedStage()
        table = _table(("a", Criticality.CRITICAL), ("b", Criticality.CRITICAL))
        loop = make_loop(table, {"a": ScriptedStage(output), "b": b})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.aborted
        assert state.abort_error is not None
        assert state.abort_error.code == INVALID_STAGE_OUTPUT_CODE
        assert fragment in state.abort_error.message
        assert state.completed_stages == []
        assert b.calls == 0
        persisted = store.get_state(RUN_ID)
        assert persisted is not None
        assert persisted.stages["a"].status == StageStatus.FAILED

    def test_unrecordable_result_leaves_state_untouched(self, make_loop: Callable[..., StageLoop]) -> None:
        bad = StageOutput(
            data={"x": 1},
            provider=ProviderInfo("gemini"),
            cost=StageCost(0.4),
            warnings=5,  # type: ignore[arg-type]
        )
        loop = make_loop(_table(("a", Criticality.CRITICAL)), {"a": ScriptedStage(bad)})

        state = loop.run(RUN_ID, 0, LoopState(data={"seed": True}))

        assert state.aborted
        assert state.abort_error is not None
        assert state.abort_error.code == INVALID_STAGE_OUTPUT_CODE
        assert state.completed_stages == []
        assert state.stage_records["a"].status == StageStatus.FAILED
        assert state.total_cost == 0.0
        assert state.data == {"seed": True}

    def test_exhausted_retries_skip_and_requeue_topic(
        self, make_loop: Callable[..., StageLoop], topic_queue: TopicQueue
    ) -> None:
        topic = ScriptedStage(make_output({"topic": "Solar storms"}))
        tts = ScriptedStage(StageError.retryable_error("TTS_TIMEOUT", "provider took too long"))
        loop = make_loop(_table(("topic", Criticality.CRITICAL), ("tts", Criticality.CRITICAL)), {"topic": topic, "tts": tts})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.skipped
        assert not state.aborted
        assert tts.calls == 3
        assert state.skip_info is not None
        assert state.skip_info.stage == "tts"
        assert state.skip_info.reason.startswith("retries exhausted")
        assert state.skip_info.topic_queued
        assert state.skip_info.queued_for_date == "2026-01-20"
        assert state.skip_info.incident_id == "2026-01-19-001"
        queued = topic_queue.get_queued_topic("2026-01-20")
        assert queued is not None
        assert queued.topic == "Solar storms"
        assert queued.failure_reason == "TTS_TIMEOUT"

    def test_skip_without_topic_does_not_queue(self, make_loop: Callable[..., StageLoop], topic_queue: TopicQueue) -> None:
        tts = ScriptedStage(StageError.retryable_error("TTS_TIMEOUT", "slow"))
        loop = make_loop(_table(("tts", Criticality.CRITICAL)), {"tts": tts})

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.skip_info is not None
        assert not state.skip_info.topic_queued
        assert state.skip_info.queued_for_date is None
        assert topic_queue.list_pending() == []


class TestIncidents:
    def test_critical_incident_is_logged_and_alerted(
        self, make_loop: Callable[..., StageLoop], incident_log: IncidentLog, alerts: NullAlertDispatcher
    ) -> None:
        a = ScriptedStage(StageError.critical("CONFIG_MISSING", "no api key"))
        loop = make_loop(_table(("a", Criticality.CRITICAL)), {"a": a})

        loop.run(RUN_ID, 0, LoopState())

        incidents = incident_log.list_incidents(RUN_ID)
        assert len(incidents) == 1
        assert incidents[0].severity == IncidentSeverity.CRITICAL
        assert incidents[0].error_code == "CONFIG_MISSING"
        assert incidents[0].context["attempt"] == 0
        assert len(alerts.sent) == 1
        assert alerts.sent[0].level == AlertLevel.CRITICAL
        assert alerts.sent[0].title == "Pipeline incident: 2026-01-19-001"

    def test_non_critical_incident_is_not_alerted(
        self, make_loop: Callable[..., StageLoop], incident_log: IncidentLog, alerts: NullAlertDispatcher
    ) -> None:
        b = ScriptedStage(StageError.retryable_error("B_TIMEOUT", "slow"))
        loop = make_loop(_table(("b", Criticality.RECOVERABLE)), {"b": b})

        loop.run(RUN_ID, 0, LoopState())

        incidents = incident_log.list_incidents(RUN_ID)
        assert [i.severity for i in incidents] == [IncidentSeverity.RECOVERABLE]
        assert incidents[0].context["attempt"] == 2
        assert alerts.sent == []

    def test_broken_incident_log_does_not_change_outcome(self, make_loop: Callable[..., StageLoop]) -> None:
        a = ScriptedStage(StageError.recoverable("A_PARTIAL", "optional part missing"))
        loop = make_loop(
            _table(("a", Criticality.CRITICAL), ("b", Criticality.CRITICAL)),
            {"a": a, "b": ScriptedStage()},
            incidents=BrokenIncidentLog(),
        )

        state = loop.run(RUN_ID, 0, LoopState())

        assert state.completed_stages == ["b"]
        error = state.stage_records["a"].error
        assert error is not None
        assert error.incident_id is None

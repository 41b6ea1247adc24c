# tests/contracts/test_run_contracts.py
"""Invariants of run, stage, and quality contracts."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dailycast.contracts import (
    ProviderInfo,
    ProviderTier,
    QualityContext,
    RunResult,
    RunStatus,
    ServiceCost,
    Severity,
    SkipDecision,
    SkipInfo,
    StageCost,
    StageErrorInfo,
    StageOutput,
    StageRecord,
    StageStatus,
)


class TestStageRecordInvariants:
    def test_completed_requires_provider_and_cost(self) -> None:
        with pytest.raises(ValueError, match="provider and cost"):
            StageRecord(stage="tts", status=StageStatus.COMPLETED, provider=ProviderInfo(name="chirp3-hd"))

    def test_failed_requires_error(self) -> None:
        with pytest.raises(ValueError, match="must have error"):
            StageRecord(stage="tts", status=StageStatus.FAILED)

    def test_negative_retry_attempts_rejected(self) -> None:
        with pytest.raises(ValueError, match="retry_attempts"):
            StageRecord(stage="tts", status=StageStatus.RUNNING, retry_attempts=-1)

    def test_valid_completed_record(self) -> None:
        record = StageRecord(
            stage="tts",
            status=StageStatus.COMPLETED,
            provider=ProviderInfo(name="chirp3-hd", tier=ProviderTier.FALLBACK, attempts=2),
            cost=StageCost(total=0.02),
        )

        assert record.provider is not None
        assert record.provider.tier == ProviderTier.FALLBACK

    def test_valid_failed_record(self) -> None:
        record = StageRecord(
            stage="tts",
            status=StageStatus.FAILED,
            error=StageErrorInfo(code="TTS_TIMEOUT", message="slow", severity=Severity.RETRYABLE),
        )

        assert record.error is not None
        assert record.error.incident_id is None


class TestCostContracts:
    def test_negative_service_cost_rejected(self) -> None:
        with pytest.raises(ValueError):
            ServiceCost(service="gemini-2.5-pro", cost=-0.01)

    def test_stage_cost_dict_round_trip(self) -> None:
        cost = StageCost(total=0.3, breakdown=(ServiceCost("gemini-2.5-pro", 0.2), ServiceCost("chirp3-hd", 0.1)))

        assert StageCost.from_dict(cost.to_dict()) == cost

    def test_output_total_cost_defaults_to_zero(self) -> None:
        output = StageOutput(data={}, provider=ProviderInfo(name="x"))

        assert output.total_cost == 0.0


class TestQualityContext:
    def test_empty_by_default(self) -> None:
        assert QualityContext().is_empty

    def test_with_methods_append_and_do_not_mutate(self) -> None:
        base = QualityContext()

        updated = base.with_degraded("pronunciation").with_fallback("tts", "wavenet").with_flags(["word-count low"])

        assert base.is_empty
        assert updated.degraded_stages == ("pronunciation",)
        assert updated.fallbacks_used == ("tts:wavenet",)
        assert updated.flags == ("word-count low",)

    def test_with_no_flags_returns_same_context(self) -> None:
        base = QualityContext(flags=("a",))

        assert base.with_flags(()) is base

    def test_dict_round_trip(self) -> None:
        context = QualityContext(degraded_stages=("a",), fallbacks_used=("b:c",), flags=("d",))

        assert QualityContext.from_dict(context.to_dict()) == context


class TestSkipContracts:
    def test_skip_decision_requires_reason(self) -> None:
        with pytest.raises(ValueError, match="reason"):
            SkipDecision(skip=True, reason="", stage="tts")

    def test_non_skip_decision_may_have_empty_reason(self) -> None:
        assert SkipDecision(skip=False, reason="", stage="tts").reason == ""

    def test_skip_info_dict_round_trip(self) -> None:
        info = SkipInfo(
            reason="fallback chain exhausted for tts",
            stage="tts",
            topic_queued=True,
            queued_for_date="2026-01-20",
            incident_id="2026-01-19-001",
        )

        assert SkipInfo.from_dict(info.to_dict()) == info


class TestRunResult:
    def _result(self, **overrides: object) -> RunResult:
        fields: dict[str, object] = {
            "success": False,
            "run_id": "2026-01-19",
            "status": RunStatus.FAILED,
            "stage_outputs": {},
            "stage_records": {},
            "completed_stages": [],
            "skipped_stages": [],
            "quality_context": QualityContext(),
            "total_duration_ms": 0,
            "total_cost": 0.0,
        }
        fields.update(overrides)
        return RunResult(**fields)  # type: ignore[arg-type]

    def test_success_requires_completed(self) -> None:
        with pytest.raises(ValueError, match="success=True"):
            self._result(success=True, status=RunStatus.FAILED)

    def test_skipped_requires_skip_info(self) -> None:
        with pytest.raises(ValueError, match="skip_info"):
            self._result(status=RunStatus.SKIPPED)

    def test_completed_success(self) -> None:
        assert self._result(success=True, status=RunStatus.COMPLETED).success


def test_provider_info_round_trip() -> None:
    provider = ProviderInfo(name="gemini-2.5-pro", tier=ProviderTier.FALLBACK, attempts=3)

    assert ProviderInfo.from_dict(provider.to_dict()) == provider


def test_timestamps_are_plain_datetimes() -> None:
    record = StageRecord(stage="a", status=StageStatus.RUNNING, start_time=datetime(2026, 1, 19, tzinfo=UTC))

    assert record.start_time is not None
    assert record.start_time.tzinfo is UTC

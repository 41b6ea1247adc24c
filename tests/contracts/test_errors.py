# tests/contracts/test_errors.py
"""Tests for StageError and EngineError."""

from __future__ import annotations

import pytest

from dailycast.contracts import (
    UNKNOWN_ERROR_CODE,
    EngineError,
    EngineErrorKind,
    Severity,
    StageError,
)


class TestStageErrorFactories:
    @pytest.mark.parametrize(
        ("factory", "severity"),
        [
            (StageError.retryable_error, Severity.RETRYABLE),
            (StageError.fallback, Severity.FALLBACK),
            (StageError.degraded, Severity.DEGRADED),
            (StageError.recoverable, Severity.RECOVERABLE),
            (StageError.critical, Severity.CRITICAL),
        ],
    )
    def test_factory_sets_severity(self, factory: object, severity: Severity) -> None:
        error = factory("X_CODE", "boom", "tts", provider="chirp3-hd")  # type: ignore[operator]

        assert error.severity == severity
        assert error.original_severity == severity
        assert error.stage == "tts"
        assert error.context == {"provider": "chirp3-hd"}
        assert error.retry_attempts == 0

    def test_retryable_property_only_for_retryable(self) -> None:
        assert StageError.retryable_error("A", "a").retryable is True
        assert StageError.fallback("A", "a").retryable is False
        assert StageError.critical("A", "a").retryable is False

    def test_str_is_message(self) -> None:
        assert str(StageError.critical("CONFIG_MISSING", "no api key")) == "no api key"


class TestFromException:
    def test_stage_error_passes_through(self) -> None:
        original = StageError.retryable_error("TTS_TIMEOUT", "slow")

        converted = StageError.from_exception(original, "tts")

        assert converted is original
        assert converted.stage == "tts"

    def test_existing_stage_is_kept(self) -> None:
        original = StageError.retryable_error("TTS_TIMEOUT", "slow", stage="script-gen")

        assert StageError.from_exception(original, "tts").stage == "script-gen"

    def test_plain_exception_becomes_critical_unknown(self) -> None:
        converted = StageError.from_exception(KeyError("missing"), "research")

        assert converted.code == UNKNOWN_ERROR_CODE
        assert converted.severity == Severity.CRITICAL
        assert converted.stage == "research"
        assert converted.context == {"exception_type": "KeyError"}

    def test_empty_message_falls_back_to_type_name(self) -> None:
        assert StageError.from_exception(RuntimeError(), None).message == "RuntimeError"


class TestEscalate:
    def test_escalation_preserves_original_severity(self) -> None:
        error = StageError.retryable_error("TTS_TIMEOUT", "slow", "tts", provider="chirp3-hd")

        escalated = error.escalate(retry_attempts=3, exhausted_retries=True)

        assert escalated.severity == Severity.CRITICAL
        assert escalated.original_severity == Severity.RETRYABLE
        assert escalated.retry_attempts == 3
        assert escalated.context == {"provider": "chirp3-hd", "exhausted_retries": True}
        assert escalated.timestamp == error.timestamp
        assert escalated.code == error.code

    def test_escalating_twice_keeps_first_original(self) -> None:
        error = StageError.fallback("TTS_ALL_PROVIDERS_FAILED", "gave up", "tts")

        twice = error.escalate(retry_attempts=0).escalate(retry_attempts=0)

        assert twice.original_severity == Severity.FALLBACK


class TestEngineError:
    def test_is_a_value_not_an_exception(self) -> None:
        error = EngineError(EngineErrorKind.ALREADY_RUNNING, "Run 2026-01-19 is already running", "2026-01-19")

        assert not isinstance(error, BaseException)
        assert str(error) == "[already_running] Run 2026-01-19 is already running"

    def test_frozen(self) -> None:
        error = EngineError(EngineErrorKind.INVALID_STAGE, "bad", "2026-01-19")

        with pytest.raises(AttributeError):
            error.message = "changed"  # type: ignore[misc]

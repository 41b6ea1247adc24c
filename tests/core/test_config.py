# tests/core/test_config.py
"""Tests for settings models, YAML loading, and rendering."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from dailycast.contracts import Criticality
from dailycast.core.config import (
    CostSettings,
    DailycastSettings,
    LoggingSettings,
    RetryPolicySettings,
    StageSettings,
    load_settings,
    render_settings,
)


class TestSettingsModels:
    def test_defaults(self) -> None:
        settings = DailycastSettings()

        assert settings.stages is None
        assert settings.database.url == "sqlite:///./state/dailycast.db"
        assert settings.engine.max_run_duration_seconds == 4 * 60 * 60
        assert settings.engine.topic_stage == "news-sourcing"
        assert settings.queue.max_retries == 2
        assert settings.cost.warning_threshold == 0.75
        assert settings.cost.critical_threshold == 1.00
        assert list(settings.cost.categories) == ["gemini", "tts", "render"]

    def test_settings_are_frozen(self) -> None:
        settings = RetryPolicySettings()

        with pytest.raises(ValidationError):
            settings.max_retries = 5  # type: ignore[misc]

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicySettings(max_retries=-1)

    def test_duplicate_stage_names_rejected(self) -> None:
        with pytest.raises(ValidationError, match="duplicate stage names"):
            DailycastSettings(stages=[StageSettings(name="a"), StageSettings(name="a")])

    def test_two_always_run_stages_rejected(self) -> None:
        with pytest.raises(ValidationError, match="always_run"):
            DailycastSettings(
                stages=[StageSettings(name="a", always_run=True), StageSettings(name="b", always_run=True)]
            )

    def test_empty_stage_list_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must not be empty"):
            DailycastSettings(stages=[])

    def test_critical_below_warning_rejected(self) -> None:
        with pytest.raises(ValidationError, match="critical_threshold"):
            CostSettings(warning_threshold=2.0, critical_threshold=1.0)

    def test_log_level_normalized(self) -> None:
        assert LoggingSettings(level="debug").level == "DEBUG"

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LoggingSettings(level="chatty")


class TestLoadSettings:
    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "missing.yaml")

    def test_loads_yaml_with_stages(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "database": {"url": "sqlite:///:memory:"},
                    "stages": [
                        {"name": "topic", "criticality": "CRITICAL", "retry": {"max_retries": 1}},
                        {"name": "notify", "criticality": "RECOVERABLE", "always_run": True},
                    ],
                }
            )
        )

        settings = load_settings(path)

        assert settings.database.url == "sqlite:///:memory:"
        assert settings.stages is not None
        assert [s.name for s in settings.stages] == ["topic", "notify"]
        assert settings.stages[0].retry.max_retries == 1
        assert settings.stages[1].criticality == Criticality.RECOVERABLE
        assert settings.stages[1].always_run is True

    def test_env_var_expansion_with_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DC_TEST_WEBHOOK", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text('alerts:\n  webhook_url: "${DC_TEST_WEBHOOK:-https://example.invalid/hook}"\n')

        settings = load_settings(path)

        assert settings.alerts.webhook_url == "https://example.invalid/hook"

    def test_env_var_expansion_uses_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DC_TEST_WEBHOOK", "https://hooks.example/abc")
        path = tmp_path / "settings.yaml"
        path.write_text('alerts:\n  webhook_url: "${DC_TEST_WEBHOOK}"\n')

        settings = load_settings(path)

        assert settings.alerts.webhook_url == "https://hooks.example/abc"

    def test_invalid_values_raise_validation_error(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("queue:\n  max_retries: -3\n")

        with pytest.raises(ValidationError):
            load_settings(path)


class TestRenderSettings:
    def test_webhook_is_masked(self) -> None:
        settings = DailycastSettings.model_validate({"alerts": {"webhook_url": "https://hooks.example/secret-token"}})

        rendered = render_settings(settings)

        assert "secret-token" not in rendered
        assert yaml.safe_load(rendered)["alerts"]["webhook_url"] == "<configured>"

    def test_unset_webhook_stays_null(self) -> None:
        assert yaml.safe_load(render_settings(DailycastSettings()))["alerts"]["webhook_url"] is None

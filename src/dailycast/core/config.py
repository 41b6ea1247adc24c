# src/dailycast/core/config.py
"""
Configuration schema and loading for dailycast.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from dailycast.contracts.enums import Criticality


class RetryPolicySettings(BaseModel):
    """Per-stage retry policy.

    max_retries counts retries, not tries: max_retries=3 means up to 4 calls.
    """

    model_config = {"frozen": True}

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_seconds: float = Field(default=2.0, ge=0, description="Backoff before the first retry")
    max_delay_seconds: float = Field(default=30.0, gt=0, description="Backoff ceiling")


class StageSettings(BaseModel):
    """One entry of the ordered stage table."""

    model_config = {"frozen": True}

    name: str = Field(min_length=1, description="Stage name, matched against registered units of work")
    criticality: Criticality = Field(default=Criticality.CRITICAL)
    retry: RetryPolicySettings = Field(default_factory=RetryPolicySettings)
    always_run: bool = Field(default=False, description="Run once at the end, even on abort/skip")


class DatabaseSettings(BaseModel):
    """State store connection."""

    model_config = {"frozen": True}

    url: str = Field(default="sqlite:///./state/dailycast.db", description="SQLAlchemy connection URL")


class AlertSettings(BaseModel):
    """Operator alert transport. No webhook means alerts are only logged."""

    model_config = {"frozen": True}

    webhook_url: str | None = Field(default=None, description="JSON webhook endpoint (Discord-compatible)")
    timeout_seconds: float = Field(default=10.0, gt=0)


class CostSettings(BaseModel):
    """Per-run cost thresholds and category mapping.

    categories maps a category name to fnmatch patterns over service names.
    Order matters: the first matching category wins, and services matching
    nothing are attributed to the last category.
    """

    model_config = {"frozen": True}

    warning_threshold: float = Field(default=0.75, gt=0)
    critical_threshold: float = Field(default=1.00, gt=0)
    alert_cooldown_seconds: float = Field(default=3600.0, ge=0)
    monthly_budget: float = Field(default=50.0, gt=0)
    categories: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "gemini": ["gemini-*"],
            "tts": ["chirp*", "wavenet*", "*-tts*"],
            "render": ["render*", "*video-render*"],
        }
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> "CostSettings":
        if self.critical_threshold < self.warning_threshold:
            raise ValueError(
                f"critical_threshold ({self.critical_threshold}) must be >= warning_threshold ({self.warning_threshold})"
            )
        if not self.categories:
            raise ValueError("at least one cost category is required")
        return self


class QueueSettings(BaseModel):
    """Queued-topic retry limits."""

    model_config = {"frozen": True}

    max_retries: int = Field(default=2, ge=0, description="Runs a queued topic may be retried on")


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    json_output: bool = False
    level: str = Field(default="INFO")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v}")
        return upper


class EngineSettings(BaseModel):
    """Execution engine tunables."""

    model_config = {"frozen": True}

    max_run_duration_seconds: float = Field(
        default=4 * 60 * 60,
        gt=0,
        description="A running run older than this is treated as a stale lock",
    )
    stage_timeout_seconds: float = Field(default=300.0, gt=0, description="Timeout passed to each stage")
    topic_stage: str | None = Field(
        default="news-sourcing",
        description="Stage whose output names the day's topic (for re-queueing on skip)",
    )
    state_init_attempts: int = Field(default=3, gt=0)


class DailycastSettings(BaseModel):
    """Top-level dailycast configuration.

    stages=None selects the built-in daily stage table.
    """

    model_config = {"frozen": True}

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    stages: list[StageSettings] | None = Field(default=None)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    cost: CostSettings = Field(default_factory=CostSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: list[StageSettings] | None) -> list[StageSettings] | None:
        if v is None:
            return v
        if not v:
            raise ValueError("stages must not be empty (omit it to use the default table)")
        names = [s.name for s in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate stage names: {duplicates}")
        if sum(1 for s in v if s.always_run) > 1:
            raise ValueError("at most one stage may be always_run")
        return v


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Unset variables without a default are left as-is so validation reports them.
    """
    import os

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        if match.group(2) is not None:
            return match.group(2)
        return match.group(0)

    def expand(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_VAR_PATTERN.sub(replacer, value)
        if isinstance(value, dict):
            return {k: expand(v) for k, v in value.items()}
        if isinstance(value, list):
            return [expand(item) for item in value]
        return value

    return {k: expand(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    """Dynaconf upper-cases keys at every level; pydantic fields are lowercase."""
    if isinstance(value, dict):
        return {k.lower() if isinstance(k, str) else k: _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path) -> DailycastSettings:
    """Load settings from YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (DAILYCAST_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: DAILYCAST_DATABASE__URL for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="DAILYCAST",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return DailycastSettings(**raw_config)


def render_settings(settings: DailycastSettings) -> str:
    """Render resolved settings as YAML for operator inspection.

    The alert webhook URL usually embeds a token, so only its presence is shown.
    """
    data = settings.model_dump(mode="json")
    if data["alerts"]["webhook_url"] is not None:
        data["alerts"]["webhook_url"] = "<configured>"
    return yaml.safe_dump(data, sort_keys=False)

# src/dailycast/cli.py
"""dailycast command line interface.

Entry point for the dailycast CLI tool. Exit codes for run/resume:
0 completed, 1 failed or refused, 2 skipped (eligible for tomorrow).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from dailycast import __version__
from dailycast.contracts import EngineError, RunResult, RunStatus
from dailycast.core.clock import DEFAULT_CLOCK
from dailycast.core.config import DailycastSettings, load_settings, render_settings
from dailycast.core.logging import configure_from_settings, configure_logging
from dailycast.core.queue import TopicQueue
from dailycast.core.state import RunNotFoundError, RunNotPausableError, RunStateStore, StateDB
from dailycast.engine.engine import Engine
from dailycast.engine.stages import DEFAULT_STAGE_TABLE, StageTable
from dailycast.plugins.manager import StagePluginManager, StageRegistry

__all__ = ["app"]

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SKIPPED = 2

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class LogOverrides:
    """Logging flags given on the command line; None defers to settings."""

    json_output: bool | None = None
    level: str | None = None


app = typer.Typer(
    name="dailycast",
    help="dailycast: daily content pipeline execution engine.",
    no_args_is_help=True,
)

SettingsOption = typer.Option(
    None,
    "--settings",
    "-s",
    help="Path to settings YAML file (defaults apply when omitted).",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"dailycast version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_FAILED)
        return load_dotenv(env_file, override=False)

    # Searches current dir and parents; never overrides existing env vars
    return load_dotenv(override=False)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file (skips automatic search)."),
    json_logs: bool | None = typer.Option(
        None,
        "--json-logs/--console-logs",
        help="Output structured JSON logs (overrides logging.json_output).",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Log level: DEBUG, INFO, WARNING, ERROR (overrides logging.level).",
    ),
) -> None:
    """dailycast: daily content pipeline execution engine."""
    if log_level is not None and log_level.upper() not in LOG_LEVELS:
        typer.echo(f"Error: invalid log level: {log_level}", err=True)
        raise typer.Exit(EXIT_FAILED)
    ctx.obj = LogOverrides(json_output=json_logs, level=log_level)
    # Settings may refine this once a command has loaded them
    configure_logging(json_output=bool(json_logs), level=log_level or "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


# === Helpers ===


def _load_config(ctx: typer.Context, settings: str | None) -> DailycastSettings:
    """Load settings and apply their logging section under the CLI overrides."""
    config = _read_settings(settings)
    overrides = ctx.obj if isinstance(ctx.obj, LogOverrides) else LogOverrides()
    configure_from_settings(config.logging, json_output=overrides.json_output, level=overrides.level)
    return config


def _read_settings(settings: str | None) -> DailycastSettings:
    if settings is None:
        return DailycastSettings()

    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(EXIT_FAILED) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(EXIT_FAILED) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(EXIT_FAILED) from None


def _build_registry() -> StageRegistry:
    """Discover stage units of work from installed plugins."""
    manager = StagePluginManager()
    manager.load_entrypoints()
    try:
        return manager.build_registry()
    except ValueError as e:
        typer.echo(f"Error registering stages: {e}", err=True)
        raise typer.Exit(EXIT_FAILED) from None


def _stage_table(config: DailycastSettings) -> StageTable:
    return StageTable.from_settings(config.stages) if config.stages is not None else DEFAULT_STAGE_TABLE


def _today() -> str:
    return DEFAULT_CLOCK.now().date().isoformat()


def _report(result: RunResult | EngineError) -> None:
    """Print the outcome and exit with the matching code."""
    if isinstance(result, EngineError):
        typer.echo(f"Error: {result}", err=True)
        raise typer.Exit(EXIT_FAILED)

    typer.echo(f"Run {result.run_id}: {result.status.value}")
    typer.echo(f"  Completed: {', '.join(result.completed_stages) or '-'}")
    if result.skipped_stages:
        typer.echo(f"  Skipped stages: {', '.join(result.skipped_stages)}")
    if result.quality_context.degraded_stages:
        typer.echo(f"  Degraded: {', '.join(result.quality_context.degraded_stages)}")
    typer.echo(f"  Total cost: ${result.total_cost:.4f}")
    typer.echo(f"  Duration: {result.total_duration_ms} ms")

    if result.status == RunStatus.SKIPPED and result.skip_info is not None:
        typer.echo(f"  Skip reason: {result.skip_info.reason}")
        if result.skip_info.topic_queued:
            typer.echo(f"  Topic queued for {result.skip_info.queued_for_date}")
        raise typer.Exit(EXIT_SKIPPED)
    if result.status == RunStatus.FAILED:
        if result.error is not None:
            typer.echo(f"  Error: [{result.error.code}] {result.error.message} (stage {result.error.stage})", err=True)
        raise typer.Exit(EXIT_FAILED)
    if result.quality_decision is not None:
        typer.echo(f"  Quality gate: {result.quality_decision.decision.value} ({result.quality_decision.reason})")


# === Commands ===


@app.command()
def run(
    ctx: typer.Context,
    run_id: str | None = typer.Argument(None, help="Run key (YYYY-MM-DD). Defaults to today (UTC)."),
    settings: str | None = SettingsOption,
) -> None:
    """Execute every stage for a run."""
    config = _load_config(ctx, settings)
    registry = _build_registry()
    with StateDB.from_url(config.database.url) as db, Engine.from_settings(config, registry, db) as engine:
        result = engine.execute_run(run_id if run_id is not None else _today())
    _report(result)


@app.command()
def resume(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="Run key to resume."),
    from_stage: str | None = typer.Option(None, "--from-stage", help="Stage to restart at."),
    settings: str | None = SettingsOption,
) -> None:
    """Resume a failed, skipped, or paused run."""
    config = _load_config(ctx, settings)
    registry = _build_registry()
    with StateDB.from_url(config.database.url) as db, Engine.from_settings(config, registry, db) as engine:
        result = engine.resume_run(run_id, from_stage)
    _report(result)


@app.command()
def status(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="Run key to inspect."),
    settings: str | None = SettingsOption,
) -> None:
    """Show a run's status and per-stage outcomes."""
    config = _load_config(ctx, settings)
    with StateDB.from_url(config.database.url) as db:
        state = RunStateStore(db).get_state(run_id)

    if state is None:
        typer.echo(f"Error: Run not found: {run_id}", err=True)
        raise typer.Exit(EXIT_FAILED)

    typer.echo(f"Run {state.run_id}: {state.status.value}")
    typer.echo(f"  Started: {state.start_time.isoformat()}")
    typer.echo(f"  Total cost: ${state.total_cost:.4f}")
    if state.skip_info is not None:
        typer.echo(f"  Skip reason: {state.skip_info.reason}")
    if state.failure_info is not None:
        typer.echo(f"  Failure: [{state.failure_info.code}] {state.failure_info.message}")

    for name in _stage_table(config).order:
        record = state.stages.get(name)
        if record is None:
            typer.echo(f"  {name:<16} -")
            continue
        line = f"  {name:<16} {record.status.value:<10}"
        if record.retry_attempts:
            line += f" retries={record.retry_attempts}"
        if record.provider is not None:
            line += f" provider={record.provider.name}({record.provider.tier.value})"
        if record.error is not None:
            line += f" error={record.error.code}"
        typer.echo(line)


@app.command()
def pause(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="Run key to pause."),
    settings: str | None = SettingsOption,
) -> None:
    """Mark a run paused so it can be resumed later."""
    config = _load_config(ctx, settings)
    with StateDB.from_url(config.database.url) as db:
        try:
            RunStateStore(db).mark_paused(run_id)
        except RunNotFoundError:
            typer.echo(f"Error: Run not found: {run_id}", err=True)
            raise typer.Exit(EXIT_FAILED) from None
        except RunNotPausableError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(EXIT_FAILED) from None
    typer.echo(f"Run {run_id} paused.")


@app.command()
def queue(ctx: typer.Context, settings: str | None = SettingsOption) -> None:
    """List topics queued for a future run."""
    config = _load_config(ctx, settings)
    with StateDB.from_url(config.database.url) as db:
        pending = TopicQueue(db, max_retries=config.queue.max_retries).list_pending()

    if not pending:
        typer.echo("No queued topics.")
        return
    for topic in pending:
        typer.echo(
            f"{topic.target_date}  {topic.topic}  "
            f"(from {topic.original_date}, failed at {topic.failure_stage}: {topic.failure_reason}, "
            f"retries {topic.retry_count}/{topic.max_retries})"
        )


@app.command()
def stages(ctx: typer.Context, settings: str | None = SettingsOption) -> None:
    """Show the configured stage table."""
    table = _stage_table(_load_config(ctx, settings))
    for definition in table:
        marker = " (always runs)" if definition.always_run else ""
        typer.echo(
            f"{definition.name:<16} {definition.criticality.value:<12} "
            f"retries={definition.retry.max_retries} base_delay={definition.retry.base_delay}s{marker}"
        )


@app.command()
def config(ctx: typer.Context, settings: str | None = SettingsOption) -> None:
    """Show the effective settings."""
    typer.echo(render_settings(_load_config(ctx, settings)), nl=False)


if __name__ == "__main__":
    app()

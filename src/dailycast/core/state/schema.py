"""SQLAlchemy table definitions for the run state store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

# Shared metadata for all tables
metadata = MetaData()

# === Runs and Stages ===

runs_table = Table(
    "runs",
    metadata,
    Column("run_id", String(64), primary_key=True),
    Column("status", String(32), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("ended_at", DateTime(timezone=True)),
    Column("total_cost", Float, nullable=False, default=0.0),
    # Persisted after every completed stage so a resume inherits it verbatim
    Column("quality_context_json", Text),
    Column("skip_info_json", Text),
    Column("failure_info_json", Text),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

stage_records_table = Table(
    "stage_records",
    metadata,
    Column("run_id", String(64), ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False),
    Column("stage", String(64), nullable=False),
    Column("status", String(32), nullable=False),
    Column("started_at", DateTime(timezone=True)),
    Column("ended_at", DateTime(timezone=True)),
    Column("duration_ms", Integer),
    Column("retry_attempts", Integer, nullable=False, default=0),
    Column("provider_json", Text),
    Column("cost_json", Text),
    Column("error_json", Text),
    PrimaryKeyConstraint("run_id", "stage"),
)

# Stage payloads are kept apart from stage_records: they can be large and
# are only read when resuming.
stage_outputs_table = Table(
    "stage_outputs",
    metadata,
    Column("run_id", String(64), ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False),
    Column("stage", String(64), nullable=False),
    Column("data_json", Text, nullable=False),
    Column("persisted_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint("run_id", "stage"),
)

# === Side Channels ===

queued_topics_table = Table(
    "queued_topics",
    metadata,
    # One queued topic per target day
    Column("target_date", String(10), primary_key=True),
    Column("topic", Text, nullable=False),
    Column("failure_reason", String(128), nullable=False),
    Column("failure_stage", String(64), nullable=False),
    Column("original_date", String(10), nullable=False),
    Column("queued_at", DateTime(timezone=True), nullable=False),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("max_retries", Integer, nullable=False),
    Column("status", String(32), nullable=False),
)

incidents_table = Table(
    "incidents",
    metadata,
    Column("incident_id", String(32), primary_key=True),
    Column("date", String(10), nullable=False),
    Column("run_id", String(64), nullable=False),
    Column("stage", String(64), nullable=False),
    Column("error_code", String(128), nullable=False),
    Column("error_message", Text, nullable=False),
    Column("severity", String(32), nullable=False),
    Column("root_cause", String(32), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("context_json", Text, nullable=False),
    Column("logged_at", DateTime(timezone=True), nullable=False),
)

Index("ix_incidents_date", incidents_table.c.date)

budget_spend_table = Table(
    "budget_spend",
    metadata,
    Column("run_id", String(64), primary_key=True),
    Column("month", String(7), nullable=False),
    Column("amount", Float, nullable=False),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
)

Index("ix_budget_spend_month", budget_spend_table.c.month)

cost_alert_state_table = Table(
    "cost_alert_state",
    metadata,
    Column("level", String(16), primary_key=True),
    Column("last_sent_at", DateTime(timezone=True), nullable=False),
    Column("sent_count", Integer, nullable=False, default=0),
)

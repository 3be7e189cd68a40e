# src/hopper/core/repository/schema.py
"""SQLAlchemy table definitions for the job repository.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# Shared metadata for all tables
metadata = MetaData()

# === Job Instances ===

job_instances_table = Table(
    "job_instances",
    metadata,
    Column("job_instance_id", Integer, primary_key=True, autoincrement=True),
    Column("job_name", String(128), nullable=False),
    # sha256 of the canonical JSON of the identifying parameters
    Column("job_key", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    # One logical run per (job, identifying parameters); concurrent launches
    # from separate processes race on this constraint
    UniqueConstraint("job_name", "job_key", name="uq_job_instances_name_key"),
)

# === Job Executions ===

job_executions_table = Table(
    "job_executions",
    metadata,
    Column("job_execution_id", Integer, primary_key=True, autoincrement=True),
    Column("job_instance_id", Integer, ForeignKey("job_instances.job_instance_id"), nullable=False),
    Column("status", String(16), nullable=False),
    Column("create_time", DateTime(timezone=True), nullable=False),
    Column("start_time", DateTime(timezone=True)),
    Column("end_time", DateTime(timezone=True)),
    Column("exit_description", Text),
    # The FAILED/STOPPED execution this one resumes, if any
    Column("resumed_from", Integer, ForeignKey("job_executions.job_execution_id")),
    Column("last_updated", DateTime(timezone=True), nullable=False),
)

Index("ix_job_executions_instance", job_executions_table.c.job_instance_id)
Index("ix_job_executions_status", job_executions_table.c.status)

job_execution_params_table = Table(
    "job_execution_params",
    metadata,
    Column("job_execution_id", Integer, ForeignKey("job_executions.job_execution_id"), nullable=False),
    Column("name", String(256), nullable=False),
    Column("type", String(16), nullable=False),  # string, long, double, date
    Column("value", Text, nullable=False),  # JobParameter.encode()
    Column("identifying", Boolean, nullable=False),
    PrimaryKeyConstraint("job_execution_id", "name"),
)

# === Step Executions ===

step_executions_table = Table(
    "step_executions",
    metadata,
    Column("step_execution_id", Integer, primary_key=True, autoincrement=True),
    Column("job_execution_id", Integer, ForeignKey("job_executions.job_execution_id"), nullable=False),
    Column("step_name", String(128), nullable=False),
    Column("status", String(16), nullable=False),
    Column("start_time", DateTime(timezone=True)),
    Column("end_time", DateTime(timezone=True)),
    Column("read_count", Integer, nullable=False, default=0),
    Column("write_count", Integer, nullable=False, default=0),
    Column("filter_count", Integer, nullable=False, default=0),
    Column("commit_count", Integer, nullable=False, default=0),
    Column("rollback_count", Integer, nullable=False, default=0),
    Column("read_skip_count", Integer, nullable=False, default=0),
    Column("process_skip_count", Integer, nullable=False, default=0),
    Column("write_skip_count", Integer, nullable=False, default=0),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("exit_description", Text),
    Column("last_updated", DateTime(timezone=True), nullable=False),
)

Index("ix_step_executions_job", step_executions_table.c.job_execution_id)
Index("ix_step_executions_name", step_executions_table.c.step_name)

step_execution_contexts_table = Table(
    "step_execution_contexts",
    metadata,
    Column("step_execution_id", Integer, ForeignKey("step_executions.step_execution_id"), primary_key=True),
    Column("context_json", Text, nullable=False),  # context_dumps()
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# src/hopper/core/repository/loaders.py
"""Row loaders for repository records.

Handles the seam between SQLAlchemy rows (strings) and domain objects
(strict enum types). This is NOT a trust boundary - the repository database
is our own data, so a row that does not convert cleanly is a crash, not a
value to be repaired.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.engine import Row as SARow

from hopper.contracts.enums import BatchStatus, ParameterType
from hopper.contracts.execution import ExecutionContext, JobExecution, JobInstance, StepExecution
from hopper.contracts.parameters import JobParameter, JobParameters
from hopper.core.repository.serialization import context_loads


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way out; every stored timestamp is UTC."""
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _optional_utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


class JobInstanceLoader:
    """Loader for JobInstance records."""

    def load(self, row: SARow[Any]) -> JobInstance:
        return JobInstance(
            job_instance_id=row.job_instance_id,
            job_name=row.job_name,
            job_key=row.job_key,
            created_at=as_utc(row.created_at),
        )


class JobParametersLoader:
    """Loader for the parameter rows of one job execution."""

    def load(self, rows: Iterable[SARow[Any]]) -> JobParameters:
        return JobParameters(
            {row.name: JobParameter.decode(row.value, ParameterType(row.type), bool(row.identifying)) for row in rows}
        )


class JobExecutionLoader:
    """Loader for JobExecution records.

    The job name lives on the instance row, so queries join job_instances.
    """

    def load(self, row: SARow[Any], parameters: JobParameters) -> JobExecution:
        return JobExecution(
            job_execution_id=row.job_execution_id,
            job_instance_id=row.job_instance_id,
            job_name=row.job_name,
            parameters=parameters,
            status=BatchStatus(row.status),  # Convert HERE
            create_time=as_utc(row.create_time),
            start_time=_optional_utc(row.start_time),
            end_time=_optional_utc(row.end_time),
            exit_description=row.exit_description,
            resumed_from=row.resumed_from,
            last_updated=_optional_utc(row.last_updated),
        )


class StepExecutionLoader:
    """Loader for StepExecution records joined with their context."""

    def load(self, row: SARow[Any]) -> StepExecution:
        context = ExecutionContext(context_loads(row.context_json)) if row.context_json is not None else ExecutionContext()
        return StepExecution(
            step_execution_id=row.step_execution_id,
            job_execution_id=row.job_execution_id,
            step_name=row.step_name,
            status=BatchStatus(row.status),  # Convert HERE
            start_time=_optional_utc(row.start_time),
            end_time=_optional_utc(row.end_time),
            read_count=row.read_count,
            write_count=row.write_count,
            filter_count=row.filter_count,
            commit_count=row.commit_count,
            rollback_count=row.rollback_count,
            read_skip_count=row.read_skip_count,
            process_skip_count=row.process_skip_count,
            write_skip_count=row.write_skip_count,
            retry_count=row.retry_count,
            exit_description=row.exit_description,
            execution_context=context,
            last_updated=_optional_utc(row.last_updated),
        )

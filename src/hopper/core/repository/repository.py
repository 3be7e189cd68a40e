# src/hopper/core/repository/repository.py
"""JobRepository: the durable record of what ran and how far it got.

All launch decisions (new run, resume, reject) are made here inside a single
transaction, so two launches of the same identifying parameters cannot both
be accepted. Every write is committed before the call returns.

Database errors are raised as JobRepositoryError. Without the repository no
execution state can be trusted, so callers fail closed.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import Connection, Select, func, select
from sqlalchemy.exc import SQLAlchemyError

from hopper.contracts.enums import STATUS_TRANSITIONS, BatchStatus
from hopper.contracts.errors import (
    JobExecutionAlreadyRunningError,
    JobExecutionNotRunningError,
    JobInstanceAlreadyCompleteError,
    JobRepositoryError,
    JobRestartError,
    NoSuchJobExecutionError,
    StatusTransitionError,
)
from hopper.contracts.execution import ExecutionContext, JobExecution, JobInstance, StepExecution
from hopper.contracts.parameters import JobParameters
from hopper.core.canonical import stable_hash
from hopper.core.repository.loaders import (
    JobExecutionLoader,
    JobInstanceLoader,
    JobParametersLoader,
    StepExecutionLoader,
)
from hopper.core.repository.schema import (
    job_execution_params_table,
    job_executions_table,
    job_instances_table,
    step_execution_contexts_table,
    step_executions_table,
)
from hopper.core.repository.serialization import context_dumps

if TYPE_CHECKING:
    from hopper.contracts.definition import JobDefinition
    from hopper.core.repository.database import RepositoryDB

logger = structlog.get_logger(__name__)

_RUNNING_VALUES = tuple(status.value for status in BatchStatus if status.is_running)


def _now() -> datetime:
    return datetime.now(UTC)


def job_key(parameters: JobParameters) -> str:
    """Identity of a JobInstance: hash of the identifying parameters only."""
    return stable_hash(parameters.key_material())


def _check_transition(kind: str, entity_id: int, current: BatchStatus, new: BatchStatus) -> None:
    if new == current:
        return
    if new not in STATUS_TRANSITIONS[current]:
        raise StatusTransitionError(f"{kind} {entity_id} cannot move from {current.value} to {new.value}")


def _job_execution_query() -> Select[Any]:
    return select(job_executions_table, job_instances_table.c.job_name).select_from(
        job_executions_table.join(job_instances_table, job_executions_table.c.job_instance_id == job_instances_table.c.job_instance_id)
    )


def _step_execution_query() -> Select[Any]:
    return select(step_executions_table, step_execution_contexts_table.c.context_json).select_from(
        step_executions_table.outerjoin(
            step_execution_contexts_table,
            step_executions_table.c.step_execution_id == step_execution_contexts_table.c.step_execution_id,
        )
    )


class JobRepository:
    """Durable store of job instances, job/step executions and contexts.

    In-process access is serialized with a re-entrant lock; separate
    processes are kept apart by database transactions and the unique
    (job_name, job_key) constraint.

    Example:
        db = RepositoryDB.in_memory()
        repository = JobRepository(db)
        execution = repository.create_job_execution(job, parameters)
        repository.update_job_status(execution.job_execution_id, BatchStatus.STARTED)
    """

    def __init__(self, db: RepositoryDB) -> None:
        self._db = db
        self._lock = threading.RLock()
        self._instance_loader = JobInstanceLoader()
        self._parameters_loader = JobParametersLoader()
        self._execution_loader = JobExecutionLoader()
        self._step_loader = StepExecutionLoader()

    @property
    def db(self) -> RepositoryDB:
        return self._db

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        with self._lock:
            try:
                with self._db.connection() as conn:
                    yield conn
            except SQLAlchemyError as e:
                raise JobRepositoryError(f"Job repository operation failed: {e}") from e

    @contextmanager
    def chunk_transaction(self) -> Iterator[Connection]:
        """Open the transaction one chunk commits in.

        Writers targeting the repository database write through the yielded
        connection, so their rows, the step counters and the execution
        context commit together or not at all. Exceptions roll everything
        back and propagate; database errors surface as JobRepositoryError.
        """
        with self._transaction() as conn:
            yield conn

    # === Job instances ===

    def find_job_instance(self, job_name: str, parameters: JobParameters) -> JobInstance | None:
        with self._transaction() as conn:
            row = conn.execute(
                select(job_instances_table).where(
                    job_instances_table.c.job_name == job_name,
                    job_instances_table.c.job_key == job_key(parameters),
                )
            ).fetchone()
        return self._instance_loader.load(row) if row is not None else None

    def get_job_names(self) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute(select(job_instances_table.c.job_name).distinct().order_by(job_instances_table.c.job_name)).fetchall()
        return [row.job_name for row in rows]

    # === Job executions ===

    def create_job_execution(self, job: JobDefinition, parameters: JobParameters) -> JobExecution:
        """Accept a launch: classify it and persist a STARTING execution.

        Duplicate detection, restart classification and the insert happen in
        one transaction.

        Raises:
            JobExecutionAlreadyRunningError: An execution of the instance is running
            JobInstanceAlreadyCompleteError: The instance completed and the job
                does not allow completed reruns
            JobRestartError: The instance failed/stopped and the job is not restartable
            JobRepositoryError: The database could not be read or written
        """
        key = job_key(parameters)
        now = _now()
        with self._transaction() as conn:
            instance_row = conn.execute(
                select(job_instances_table.c.job_instance_id).where(
                    job_instances_table.c.job_name == job.name,
                    job_instances_table.c.job_key == key,
                )
            ).fetchone()

            resumed_from: int | None = None
            if instance_row is None:
                result = conn.execute(job_instances_table.insert().values(job_name=job.name, job_key=key, created_at=now))
                instance_id = result.inserted_primary_key[0]
            else:
                instance_id = instance_row.job_instance_id
                running = conn.execute(
                    select(job_executions_table.c.job_execution_id)
                    .where(
                        job_executions_table.c.job_instance_id == instance_id,
                        job_executions_table.c.status.in_(_RUNNING_VALUES),
                    )
                    .order_by(job_executions_table.c.job_execution_id.desc())
                ).fetchone()
                if running is not None:
                    raise JobExecutionAlreadyRunningError(job.name, running.job_execution_id)

                latest = conn.execute(
                    select(job_executions_table.c.job_execution_id, job_executions_table.c.status)
                    .where(job_executions_table.c.job_instance_id == instance_id)
                    .order_by(job_executions_table.c.job_execution_id.desc())
                    .limit(1)
                ).fetchone()
                if latest is not None:
                    latest_status = BatchStatus(latest.status)
                    if latest_status == BatchStatus.COMPLETED:
                        if not job.allow_completed_rerun:
                            raise JobInstanceAlreadyCompleteError(job.name, latest.job_execution_id)
                    elif latest_status.is_restartable:
                        if not job.restartable:
                            raise JobRestartError(
                                f"Job '{job.name}' is not restartable; execution {latest.job_execution_id} "
                                f"ended {latest_status.value} for these identifying parameters"
                            )
                        resumed_from = latest.job_execution_id

            result = conn.execute(
                job_executions_table.insert().values(
                    job_instance_id=instance_id,
                    status=BatchStatus.STARTING.value,
                    create_time=now,
                    resumed_from=resumed_from,
                    last_updated=now,
                )
            )
            execution_id: int = result.inserted_primary_key[0]
            if parameters:
                conn.execute(
                    job_execution_params_table.insert(),
                    [
                        {
                            "job_execution_id": execution_id,
                            "name": name,
                            "type": parameter.type.value,
                            "value": parameter.encode(),
                            "identifying": parameter.identifying,
                        }
                        for name, parameter in parameters.items()
                    ],
                )
            execution = self._require_job_execution(conn, execution_id)

        logger.info(
            "Job execution created",
            job_name=job.name,
            job_execution_id=execution_id,
            job_instance_id=instance_id,
            resumed_from=resumed_from,
        )
        return execution

    def _load_job_execution(self, conn: Connection, execution_id: int) -> JobExecution | None:
        row = conn.execute(_job_execution_query().where(job_executions_table.c.job_execution_id == execution_id)).fetchone()
        if row is None:
            return None
        return self._hydrate(conn, row)

    def _require_job_execution(self, conn: Connection, execution_id: int) -> JobExecution:
        execution = self._load_job_execution(conn, execution_id)
        if execution is None:
            raise NoSuchJobExecutionError(execution_id)
        return execution

    def _hydrate(self, conn: Connection, row: Any) -> JobExecution:
        param_rows = conn.execute(
            select(job_execution_params_table).where(job_execution_params_table.c.job_execution_id == row.job_execution_id)
        ).fetchall()
        execution = self._execution_loader.load(row, self._parameters_loader.load(param_rows))
        execution.step_executions = self._load_step_executions(conn, row.job_execution_id)
        return execution

    def get_job_execution(self, job_execution_id: int) -> JobExecution:
        """Load an execution with its parameters and step executions.

        Raises:
            NoSuchJobExecutionError: If no execution has this id
        """
        with self._transaction() as conn:
            return self._require_job_execution(conn, job_execution_id)

    def get_job_status(self, job_execution_id: int) -> BatchStatus:
        """Current persisted status (cheap poll used at chunk boundaries)."""
        with self._transaction() as conn:
            return self._current_job_status(conn, job_execution_id)

    def _current_job_status(self, conn: Connection, job_execution_id: int) -> BatchStatus:
        row = conn.execute(
            select(job_executions_table.c.status).where(job_executions_table.c.job_execution_id == job_execution_id)
        ).fetchone()
        if row is None:
            raise NoSuchJobExecutionError(job_execution_id)
        return BatchStatus(row.status)

    def find_execution(self, job_name: str, parameters: JobParameters) -> JobExecution | None:
        """Latest execution of the instance matching (job_name, identifying parameters)."""
        executions = self.find_executions(job_name, parameters, limit=1)
        return executions[0] if executions else None

    def find_executions(
        self,
        job_name: str | None = None,
        parameters: JobParameters | None = None,
        *,
        statuses: Sequence[BatchStatus] | None = None,
        limit: int | None = None,
    ) -> list[JobExecution]:
        """Executions matching the filters, newest first.

        Args:
            job_name: Restrict to one job
            parameters: Restrict to the instance of these identifying parameters
                (requires job_name)
            statuses: Restrict to these statuses
            limit: Maximum number of executions returned
        """
        if parameters is not None and job_name is None:
            raise ValueError("find_executions(parameters=...) requires job_name")
        query = _job_execution_query().order_by(job_executions_table.c.job_execution_id.desc())
        if job_name is not None:
            query = query.where(job_instances_table.c.job_name == job_name)
        if parameters is not None:
            query = query.where(job_instances_table.c.job_key == job_key(parameters))
        if statuses is not None:
            query = query.where(job_executions_table.c.status.in_([status.value for status in statuses]))
        if limit is not None:
            query = query.limit(limit)
        with self._transaction() as conn:
            return [self._hydrate(conn, row) for row in conn.execute(query).fetchall()]

    def find_running_executions(self, job_name: str | None = None) -> list[JobExecution]:
        return self.find_executions(job_name, statuses=[status for status in BatchStatus if status.is_running])

    def update_job_status(
        self,
        job_execution_id: int,
        status: BatchStatus,
        *,
        exit_description: str | None = None,
    ) -> JobExecution:
        """Move a job execution forward.

        STARTED stamps the start time; terminal statuses stamp the end time.

        Raises:
            StatusTransitionError: If the update would move the status backwards
            NoSuchJobExecutionError: If no execution has this id
        """
        now = _now()
        with self._transaction() as conn:
            current = self._current_job_status(conn, job_execution_id)
            _check_transition("Job execution", job_execution_id, current, status)
            values: dict[str, Any] = {"status": status.value, "last_updated": now}
            if status == BatchStatus.STARTED and current == BatchStatus.STARTING:
                values["start_time"] = now
            if status.is_terminal and not current.is_terminal:
                values["end_time"] = now
            if exit_description is not None:
                values["exit_description"] = exit_description
            conn.execute(
                job_executions_table.update().where(job_executions_table.c.job_execution_id == job_execution_id).values(**values)
            )
            execution = self._require_job_execution(conn, job_execution_id)
        logger.debug("Job status updated", job_execution_id=job_execution_id, status=status.value)
        return execution

    def request_stop(self, job_execution_id: int) -> JobExecution:
        """Persist STOPPING for a running execution (idempotent while stopping).

        Raises:
            JobExecutionNotRunningError: If the execution already ended
            NoSuchJobExecutionError: If no execution has this id
        """
        with self._transaction() as conn:
            current = self._current_job_status(conn, job_execution_id)
            if not current.is_running:
                raise JobExecutionNotRunningError(f"Job execution {job_execution_id} is not running (status: {current.value})")
            if current != BatchStatus.STOPPING:
                conn.execute(
                    job_executions_table.update()
                    .where(job_executions_table.c.job_execution_id == job_execution_id)
                    .values(status=BatchStatus.STOPPING.value, last_updated=_now())
                )
            return self._require_job_execution(conn, job_execution_id)

    def fail_abandoned_execution(self, job_execution_id: int, exit_description: str) -> JobExecution:
        """Mark an execution left running by a dead process as FAILED.

        Its running step executions are failed too, so a restart resumes them
        from their last committed context.

        Raises:
            JobExecutionNotRunningError: If the execution already ended
        """
        now = _now()
        with self._transaction() as conn:
            current = self._current_job_status(conn, job_execution_id)
            if not current.is_running:
                raise JobExecutionNotRunningError(f"Job execution {job_execution_id} is not running (status: {current.value})")
            conn.execute(
                step_executions_table.update()
                .where(
                    step_executions_table.c.job_execution_id == job_execution_id,
                    step_executions_table.c.status.in_(_RUNNING_VALUES),
                )
                .values(status=BatchStatus.FAILED.value, end_time=now, exit_description=exit_description, last_updated=now)
            )
            conn.execute(
                job_executions_table.update()
                .where(job_executions_table.c.job_execution_id == job_execution_id)
                .values(status=BatchStatus.FAILED.value, end_time=now, exit_description=exit_description, last_updated=now)
            )
            execution = self._require_job_execution(conn, job_execution_id)
        logger.warning("Abandoned job execution marked failed", job_execution_id=job_execution_id)
        return execution

    # === Step executions ===

    def create_step_execution(
        self,
        job_execution_id: int,
        step_name: str,
        execution_context: ExecutionContext | None = None,
    ) -> StepExecution:
        """Persist a new STARTING step execution with its initial context."""
        now = _now()
        context = execution_context if execution_context is not None else ExecutionContext()
        with self._transaction() as conn:
            result = conn.execute(
                step_executions_table.insert().values(
                    job_execution_id=job_execution_id,
                    step_name=step_name,
                    status=BatchStatus.STARTING.value,
                    last_updated=now,
                )
            )
            step_execution_id: int = result.inserted_primary_key[0]
            conn.execute(
                step_execution_contexts_table.insert().values(
                    step_execution_id=step_execution_id,
                    context_json=context_dumps(context.to_dict()),
                    updated_at=now,
                )
            )
            return self._require_step_execution(conn, step_execution_id)

    def update_step_execution(self, step_execution: StepExecution, connection: Connection | None = None) -> None:
        """Persist status, times, counters and context of a step execution.

        Args:
            step_execution: The in-memory step execution to persist
            connection: Open chunk transaction to write in. Without one the
                update is committed on its own.

        Raises:
            StatusTransitionError: If the status would move backwards
        """
        if connection is not None:
            self._write_step_execution(connection, step_execution)
            return
        with self._transaction() as conn:
            self._write_step_execution(conn, step_execution)

    def _write_step_execution(self, conn: Connection, step: StepExecution) -> None:
        row = conn.execute(
            select(step_executions_table.c.status).where(step_executions_table.c.step_execution_id == step.step_execution_id)
        ).fetchone()
        if row is None:
            raise JobRepositoryError(f"Step execution {step.step_execution_id} does not exist")
        _check_transition("Step execution", step.step_execution_id, BatchStatus(row.status), step.status)

        now = _now()
        conn.execute(
            step_executions_table.update()
            .where(step_executions_table.c.step_execution_id == step.step_execution_id)
            .values(
                status=step.status.value,
                start_time=step.start_time,
                end_time=step.end_time,
                read_count=step.read_count,
                write_count=step.write_count,
                filter_count=step.filter_count,
                commit_count=step.commit_count,
                rollback_count=step.rollback_count,
                read_skip_count=step.read_skip_count,
                process_skip_count=step.process_skip_count,
                write_skip_count=step.write_skip_count,
                retry_count=step.retry_count,
                exit_description=step.exit_description,
                last_updated=now,
            )
        )
        conn.execute(
            step_execution_contexts_table.update()
            .where(step_execution_contexts_table.c.step_execution_id == step.step_execution_id)
            .values(context_json=context_dumps(step.execution_context.to_dict()), updated_at=now)
        )
        step.last_updated = now

    def _load_step_executions(self, conn: Connection, job_execution_id: int) -> list[StepExecution]:
        rows = conn.execute(
            _step_execution_query()
            .where(step_executions_table.c.job_execution_id == job_execution_id)
            .order_by(step_executions_table.c.step_execution_id)
        ).fetchall()
        return [self._step_loader.load(row) for row in rows]

    def _require_step_execution(self, conn: Connection, step_execution_id: int) -> StepExecution:
        row = conn.execute(_step_execution_query().where(step_executions_table.c.step_execution_id == step_execution_id)).fetchone()
        if row is None:
            raise JobRepositoryError(f"Step execution {step_execution_id} does not exist")
        return self._step_loader.load(row)

    def get_step_execution(self, step_execution_id: int) -> StepExecution:
        with self._transaction() as conn:
            return self._require_step_execution(conn, step_execution_id)

    def get_step_executions(self, job_execution_id: int) -> list[StepExecution]:
        """Step executions of one job execution in start order."""
        with self._transaction() as conn:
            self._current_job_status(conn, job_execution_id)
            return self._load_step_executions(conn, job_execution_id)

    def get_last_step_execution(
        self,
        job_instance_id: int,
        step_name: str,
        *,
        before_execution_id: int | None = None,
    ) -> StepExecution | None:
        """Most recent execution of a step across the executions of one instance.

        Args:
            job_instance_id: The job instance
            step_name: The step
            before_execution_id: Only consider job executions older than this one
        """
        query = (
            _step_execution_query()
            .join(job_executions_table, step_executions_table.c.job_execution_id == job_executions_table.c.job_execution_id)
            .where(
                job_executions_table.c.job_instance_id == job_instance_id,
                step_executions_table.c.step_name == step_name,
            )
            .order_by(step_executions_table.c.step_execution_id.desc())
            .limit(1)
        )
        if before_execution_id is not None:
            query = query.where(job_executions_table.c.job_execution_id < before_execution_id)
        with self._transaction() as conn:
            row = conn.execute(query).fetchone()
        return self._step_loader.load(row) if row is not None else None

    def count_step_executions(self, job_instance_id: int, step_name: str) -> int:
        """How often a step was started within one instance (for start limits)."""
        query = (
            select(func.count())
            .select_from(
                step_executions_table.join(
                    job_executions_table,
                    step_executions_table.c.job_execution_id == job_executions_table.c.job_execution_id,
                )
            )
            .where(
                job_executions_table.c.job_instance_id == job_instance_id,
                step_executions_table.c.step_name == step_name,
            )
        )
        with self._transaction() as conn:
            count: int = conn.execute(query).scalar_one()
        return count

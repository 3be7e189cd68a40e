# src/hopper/engine/step.py
"""StepExecutor: runs one step of a job execution.

Creates and persists the StepExecution, restores the context of a failed or
stopped predecessor, drives the chunk pipeline (or the tasklet loop) and
records the outcome. Record-level and step-level failures end up as a FAILED
step with ``"<ErrorType>: <message>"`` as exit description; repository
failures propagate, because nothing can be recorded without the repository.
"""

from __future__ import annotations

import dataclasses
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from hopper.contracts.context import StepContext
from hopper.contracts.definition import ChunkStepDefinition, StepDefinition, TaskletStepDefinition
from hopper.contracts.enums import BatchStatus, RepeatStatus
from hopper.contracts.errors import ChunkProcessingError, JobRepositoryError, StartLimitExceededError
from hopper.contracts.execution import ExecutionContext, JobExecution, StepExecution
from hopper.engine.pipeline import ChunkPipeline
from hopper.engine.pooling import PooledProcessor

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from hopper.core.repository import JobRepository

logger = structlog.get_logger(__name__)


def describe_error(error: BaseException) -> str:
    """Exit description of a failed step or job."""
    if isinstance(error, ChunkProcessingError):
        error = error.cause
    return f"{type(error).__name__}: {error}"


class RepositoryChunkControl:
    """Chunk transactions, persistence and the stop flag, backed by the job repository."""

    def __init__(self, repository: JobRepository, job_execution_id: int) -> None:
        self._repository = repository
        self._job_execution_id = job_execution_id

    def transaction(self) -> AbstractContextManager[Connection]:
        return self._repository.chunk_transaction()

    def persist(self, staged: StepExecution, connection: Connection) -> None:
        self._repository.update_step_execution(staged, connection)

    def stop_requested(self) -> bool:
        return self._repository.get_job_status(self._job_execution_id) == BatchStatus.STOPPING


class StepExecutor:
    """Executes step definitions against the job repository.

    Example:
        executor = StepExecutor(repository)
        step_execution = executor.execute(step, job_execution, last_step_execution=None)
        assert step_execution.status == BatchStatus.COMPLETED
    """

    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository

    def execute(
        self,
        step: StepDefinition,
        job_execution: JobExecution,
        last_step_execution: StepExecution | None = None,
    ) -> StepExecution:
        """Run one step and return its persisted, terminal StepExecution.

        Args:
            step: The step to run
            job_execution: The job execution the step belongs to
            last_step_execution: The previous execution of this step in the same
                job instance. If it FAILED or STOPPED its context is restored so
                the step resumes after its last committed chunk.

        Raises:
            StartLimitExceededError: The step was already started start_limit times
            JobRepositoryError: Execution state could not be persisted
        """
        if step.start_limit is not None:
            starts = self._repository.count_step_executions(job_execution.job_instance_id, step.name)
            if starts >= step.start_limit:
                raise StartLimitExceededError(step.name, step.start_limit)

        context = ExecutionContext()
        if last_step_execution is not None and last_step_execution.status.is_restartable:
            context = last_step_execution.execution_context.copy()

        step_execution = self._repository.create_step_execution(job_execution.job_execution_id, step.name, context)
        job_execution.step_executions.append(step_execution)
        log = logger.bind(
            job_execution_id=job_execution.job_execution_id,
            step_name=step.name,
            step_execution_id=step_execution.step_execution_id,
        )

        step_execution.status = BatchStatus.STARTED
        step_execution.start_time = datetime.now(UTC)
        self._repository.update_step_execution(step_execution)
        log.info("Step started", resumed=bool(context))

        ctx = StepContext(job_execution=job_execution, step_execution=step_execution)
        try:
            if isinstance(step, ChunkStepDefinition):
                status = self._run_chunk_step(step, ctx)
            elif isinstance(step, TaskletStepDefinition):
                status = self._run_tasklet_step(step, ctx)
            else:
                raise TypeError(f"Unsupported step definition: {type(step).__name__}")
        except JobRepositoryError:
            log.error("Step aborted: job repository unavailable")
            raise
        except Exception as e:
            step_execution.status = BatchStatus.FAILED
            step_execution.exit_description = describe_error(e)
            log.error("Step failed", error=step_execution.exit_description, exc_info=True)
        else:
            step_execution.status = status

        step_execution.end_time = datetime.now(UTC)
        self._repository.update_step_execution(step_execution)
        log.info("Step finished", **step_execution.summary())
        return step_execution

    def _run_chunk_step(self, step: ChunkStepDefinition, ctx: StepContext) -> BatchStatus:
        parameters = ctx.job_parameters
        reader = step.reader_factory(parameters)
        writer = step.writer_factory(parameters)
        processor = step.processor_factory(parameters) if step.processor_factory is not None else None
        control = RepositoryChunkControl(self._repository, ctx.job_execution.job_execution_id)

        with PooledProcessor(step.workers, thread_name_prefix=f"{step.name}-worker") as pool:
            pipeline = ChunkPipeline.build(
                control,
                skip_policy=step.skip_policy,
                retry=step.retry,
                pool=pool,
                filter_accounting=step.filter_accounting,
            )
            result = pipeline.run(reader, processor, writer, step.chunk_size, ctx)
        return result.status

    def _run_tasklet_step(self, step: TaskletStepDefinition, ctx: StepContext) -> BatchStatus:
        """Call the tasklet until FINISHED, one transaction per call."""
        step_execution = ctx.step_execution
        control = RepositoryChunkControl(self._repository, ctx.job_execution.job_execution_id)
        while True:
            if control.stop_requested():
                return BatchStatus.STOPPED
            try:
                with control.transaction() as conn:
                    ctx.connection = conn
                    try:
                        repeat = step.tasklet.execute(ctx)
                    finally:
                        ctx.connection = None
                    if not isinstance(repeat, RepeatStatus):
                        raise TypeError(f"Tasklet of step '{step.name}' returned {repeat!r}, expected RepeatStatus")
                    staged = dataclasses.replace(step_execution, commit_count=step_execution.commit_count + 1)
                    control.persist(staged, conn)
            except Exception:
                step_execution.rollback_count += 1
                raise
            step_execution.commit_count += 1
            if repeat == RepeatStatus.FINISHED:
                return BatchStatus.COMPLETED

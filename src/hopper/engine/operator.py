# src/hopper/engine/operator.py
"""JobOperator: the job execution state machine.

Accepts launches, sequences steps and records job status:

    STARTING -> STARTED -> {COMPLETED | FAILED | STOPPED}
                    \\-> STOPPING -> {STOPPED | COMPLETED | FAILED}

STARTING is persisted by the repository when a launch is accepted; STARTED
only after that record is durable. Failures inside a job are recorded, not
raised. Repository failures are raised, because nothing can be recorded
without it: the execution is left running and can later be recovered.
"""

from __future__ import annotations

import functools
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

import structlog

from hopper.contracts.definition import JobDefinition
from hopper.contracts.enums import BatchStatus
from hopper.contracts.errors import (
    JobExecutionAlreadyRunningError,
    JobParametersInvalidError,
    JobRepositoryError,
    JobRestartError,
    NoSuchJobError,
)
from hopper.contracts.execution import JobExecution
from hopper.contracts.parameters import JobParameters
from hopper.engine.step import StepExecutor, describe_error

if TYPE_CHECKING:
    from hopper.core.repository import JobRepository

logger = structlog.get_logger(__name__)

_RECOVERED_DESCRIPTION = "JobExecutionAbandoned: execution was left running by a terminated process"


class JobOperator:
    """Launches, stops, restarts and recovers job executions.

    Example:
        operator = JobOperator(repository, max_concurrent_jobs=2)
        operator.register(job)

        execution = operator.start("dogs", parameters)     # returns STARTING
        finished = operator.wait(execution.job_execution_id)
        assert finished.status == BatchStatus.COMPLETED
    """

    def __init__(
        self,
        repository: JobRepository,
        *,
        max_concurrent_jobs: int = 4,
        step_executor: StepExecutor | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ValueError(f"max_concurrent_jobs must be >= 1, got {max_concurrent_jobs}")
        self._repository = repository
        self._step_executor = step_executor if step_executor is not None else StepExecutor(repository)
        self._poll_interval = poll_interval
        self._jobs: dict[str, JobDefinition] = {}
        self._futures: dict[int, Future[JobExecution]] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent_jobs, thread_name_prefix="hopper-job")

    @property
    def repository(self) -> JobRepository:
        return self._repository

    # === Registry ===

    def register(self, job: JobDefinition) -> None:
        with self._lock:
            if job.name in self._jobs:
                raise ValueError(f"Job '{job.name}' is already registered")
            self._jobs[job.name] = job

    def get_job(self, name: str) -> JobDefinition:
        with self._lock:
            if name not in self._jobs:
                available = ", ".join(sorted(self._jobs)) or "none"
                raise NoSuchJobError(f"No job named '{name}'. Registered jobs: {available}")
            return self._jobs[name]

    @property
    def job_names(self) -> list[str]:
        with self._lock:
            return sorted(self._jobs)

    def _resolve(self, job: JobDefinition | str) -> JobDefinition:
        return job if isinstance(job, JobDefinition) else self.get_job(job)

    # === Launch ===

    def _validate_parameters(self, job: JobDefinition, parameters: JobParameters) -> None:
        missing = sorted(job.required_parameters - set(parameters))
        if missing:
            raise JobParametersInvalidError(f"Job '{job.name}' requires parameters: {', '.join(missing)}")

    def _accept(self, job: JobDefinition, parameters: JobParameters) -> JobExecution:
        self._validate_parameters(job, parameters)
        return self._repository.create_job_execution(job, parameters)

    def launch(self, job: JobDefinition | str, parameters: JobParameters) -> JobExecution:
        """Accept a launch and run it to completion on the calling thread.

        Raises:
            JobLaunchError: The launch was rejected (no execution was created)
            JobRepositoryError: Execution state could not be persisted
        """
        definition = self._resolve(job)
        execution = self._accept(definition, parameters)
        return self._run(definition, execution)

    def start(self, job: JobDefinition | str, parameters: JobParameters) -> JobExecution:
        """Accept a launch and run it on the operator's thread pool.

        Returns:
            The STARTING execution; poll the repository or call wait().

        Raises:
            JobLaunchError: The launch was rejected (no execution was created)
            JobRepositoryError: The launch could not be recorded
        """
        definition = self._resolve(job)
        execution = self._accept(definition, parameters)
        future = self._executor.submit(self._run, definition, execution)
        with self._lock:
            self._futures[execution.job_execution_id] = future
        future.add_done_callback(functools.partial(self._finished, execution.job_execution_id))
        return execution

    def start_next_instance(self, job: JobDefinition | str) -> JobExecution:
        """Start a fresh instance using the job's incrementer on the last parameters.

        Raises:
            JobParametersInvalidError: The job has no incrementer
        """
        definition = self._resolve(job)
        if definition.incrementer is None:
            raise JobParametersInvalidError(f"Job '{definition.name}' has no parameters incrementer")
        latest = self._repository.find_executions(definition.name, limit=1)
        previous = latest[0].parameters if latest else None
        return self.start(definition, definition.incrementer.get_next(previous))

    def restart(self, job_execution_id: int) -> JobExecution:
        """Relaunch a FAILED or STOPPED execution with its stored parameters.

        Raises:
            JobRestartError: The execution did not fail or stop
            NoSuchJobExecutionError: No execution has this id
        """
        previous = self._repository.get_job_execution(job_execution_id)
        if not previous.status.is_restartable:
            raise JobRestartError(
                f"Job execution {job_execution_id} is {previous.status.value}; only failed or stopped executions can be restarted"
            )
        return self.start(previous.job_name, previous.parameters)

    # === Control ===

    def stop(self, job_execution_id: int) -> JobExecution:
        """Request a cooperative stop; honoured at the next chunk boundary.

        Raises:
            JobExecutionNotRunningError: The execution already ended
        """
        execution = self._repository.request_stop(job_execution_id)
        logger.info("Stop requested", job_execution_id=job_execution_id, job_name=execution.job_name)
        return execution

    def recover(self, job_execution_id: int) -> JobExecution:
        """Mark an execution abandoned by a crashed process as FAILED.

        Raises:
            JobExecutionAlreadyRunningError: The execution is running in this process
            JobExecutionNotRunningError: The execution already ended
        """
        with self._lock:
            future = self._futures.get(job_execution_id)
        if future is not None and not future.done():
            execution = self._repository.get_job_execution(job_execution_id)
            raise JobExecutionAlreadyRunningError(execution.job_name, job_execution_id)
        return self._repository.fail_abandoned_execution(job_execution_id, _RECOVERED_DESCRIPTION)

    def wait(self, job_execution_id: int, timeout: float | None = None) -> JobExecution:
        """Block until the execution reaches a terminal status.

        Executions started by this operator are awaited directly (a repository
        failure inside the run is re-raised here); others are polled.

        Raises:
            TimeoutError: The execution did not finish within timeout seconds
        """
        with self._lock:
            future = self._futures.get(job_execution_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            finally:
                if future.done():
                    with self._lock:
                        self._futures.pop(job_execution_id, None)
            return self._repository.get_job_execution(job_execution_id)

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            execution = self._repository.get_job_execution(job_execution_id)
            if execution.status.is_terminal:
                return execution
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"Job execution {job_execution_id} still {execution.status.value} after {timeout}s")
            time.sleep(self._poll_interval)

    def get_execution(self, job_execution_id: int) -> JobExecution:
        return self._repository.get_job_execution(job_execution_id)

    def find_executions(self, job_name: str | None = None, parameters: JobParameters | None = None) -> list[JobExecution]:
        return self._repository.find_executions(job_name, parameters)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> JobOperator:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.shutdown()

    # === Execution ===

    def _finished(self, job_execution_id: int, future: Future[JobExecution]) -> None:
        """Release a finished run. A crashed run stays tracked until wait() re-raises its error."""
        error = None if future.cancelled() else future.exception()
        if error is not None:
            logger.error("Job execution aborted", job_execution_id=job_execution_id, error=describe_error(error))
            return
        with self._lock:
            self._futures.pop(job_execution_id, None)

    def _run(self, job: JobDefinition, execution: JobExecution) -> JobExecution:
        execution_id = execution.job_execution_id
        log = logger.bind(job_name=job.name, job_execution_id=execution_id)

        if self._repository.get_job_status(execution_id) == BatchStatus.STOPPING:
            log.info("Job stopped before it started")
            return self._repository.update_job_status(execution_id, BatchStatus.STOPPED)

        execution = self._repository.update_job_status(execution_id, BatchStatus.STARTED)
        log.info("Job started", parameters=execution.parameters.to_values(), resumed_from=execution.resumed_from)

        status = BatchStatus.COMPLETED
        exit_description: str | None = None
        try:
            for step in job.steps:
                last = None
                if execution.resumed_from is not None:
                    last = self._repository.get_last_step_execution(
                        execution.job_instance_id, step.name, before_execution_id=execution_id
                    )
                    if last is not None and last.status == BatchStatus.COMPLETED and not step.allow_start_if_complete:
                        log.info("Step already completed, reusing its result", step_name=step.name)
                        continue

                if self._repository.get_job_status(execution_id) == BatchStatus.STOPPING:
                    status = BatchStatus.STOPPED
                    break

                step_execution = self._step_executor.execute(step, execution, last)
                if step_execution.status == BatchStatus.FAILED:
                    status = BatchStatus.FAILED
                    exit_description = step_execution.exit_description
                    break
                if step_execution.status == BatchStatus.STOPPED:
                    status = BatchStatus.STOPPED
                    break
        except JobRepositoryError:
            log.error("Job aborted: job repository unavailable", exc_info=True)
            raise
        except Exception as e:
            status = BatchStatus.FAILED
            exit_description = describe_error(e)
            log.error("Job failed", error=exit_description)

        # A stop that arrives while the last step finishes leaves the job COMPLETED
        finished = self._repository.update_job_status(execution_id, status, exit_description=exit_description)
        log.info("Job finished", status=finished.status.value, exit_description=finished.exit_description)
        return finished

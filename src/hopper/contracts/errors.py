# src/hopper/contracts/errors.py
"""Exception hierarchy for launches, steps, records and the repository.

Launch rejections are raised synchronously to the caller and never create an
execution. Record-level errors are handled by the retry and skip policies.
Step-level failures are recorded on the step and job executions. Repository
errors are fatal for the current launch attempt.
"""

from __future__ import annotations

from typing import Any


class HopperError(Exception):
    """Base class for all hopper errors."""


# =============================================================================
# Launch rejections
# =============================================================================


class JobLaunchError(HopperError):
    """A launch request was rejected before any execution was created."""


class NoSuchJobError(JobLaunchError):
    """No job is registered under the requested name."""


class JobInstanceAlreadyCompleteError(JobLaunchError):
    """The identifying parameters match an instance that already completed."""

    def __init__(self, job_name: str, job_execution_id: int) -> None:
        self.job_name = job_name
        self.job_execution_id = job_execution_id
        super().__init__(
            f"Job '{job_name}' already completed for these identifying parameters "
            f"(execution {job_execution_id}). Change an identifying parameter or use an incrementer to run again."
        )


class JobExecutionAlreadyRunningError(JobLaunchError):
    """An execution of the same instance is still running."""

    def __init__(self, job_name: str, job_execution_id: int) -> None:
        self.job_name = job_name
        self.job_execution_id = job_execution_id
        super().__init__(f"Job '{job_name}' is already running for these identifying parameters (execution {job_execution_id})")


class JobRestartError(JobLaunchError):
    """The instance exists but the job does not allow restarting it."""


class JobParametersInvalidError(JobLaunchError):
    """Launch parameters failed validation against the job definition."""


# =============================================================================
# Operator requests
# =============================================================================


class NoSuchJobExecutionError(HopperError):
    """No job execution exists with the requested id."""

    def __init__(self, job_execution_id: int) -> None:
        self.job_execution_id = job_execution_id
        super().__init__(f"No job execution with id {job_execution_id}")


class JobExecutionNotRunningError(HopperError):
    """A stop was requested for an execution that is not running."""


class StatusTransitionError(HopperError):
    """A status update would move an execution backwards.

    Statuses only move forward (STARTING -> STARTED -> terminal). Seeing one
    of these means two writers are updating the same execution.
    """


# =============================================================================
# Record and step errors
# =============================================================================


class ItemReadError(HopperError):
    """A single input record could not be read (e.g. malformed line).

    The reader has already moved past the bad input, so the error can be
    skipped without losing position.
    """

    def __init__(self, message: str, *, line_number: int | None = None, raw: str | None = None) -> None:
        self.line_number = line_number
        self.raw = raw
        super().__init__(message)


class RecordRejectedError(HopperError):
    """A processor refused a record on purpose."""

    def __init__(self, message: str, *, record: Any = None) -> None:
        self.record = record
        super().__init__(message)


class SkipLimitExceededError(HopperError):
    """A skippable error arrived after the skip limit was used up."""

    def __init__(self, skip_limit: int, cause: BaseException) -> None:
        self.skip_limit = skip_limit
        self.cause = cause
        super().__init__(f"Skip limit of {skip_limit} exceeded: {type(cause).__name__}: {cause}")


class StartLimitExceededError(HopperError):
    """A step was started more often than its start limit allows."""

    def __init__(self, step_name: str, start_limit: int) -> None:
        self.step_name = step_name
        self.start_limit = start_limit
        super().__init__(f"Step '{step_name}' has reached its start limit of {start_limit}")


class ChunkProcessingError(HopperError):
    """A chunk could not be processed or written and the step must fail.

    Attributes:
        cause: The error that triggered the failure
        stage: "read", "process" or "write"
    """

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {type(cause).__name__}: {cause}")


# =============================================================================
# Infrastructure
# =============================================================================


class JobRepositoryError(HopperError):
    """The job repository could not be read or written.

    No execution state can be trusted without the repository, so callers
    must fail closed rather than continue.
    """

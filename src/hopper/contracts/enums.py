# src/hopper/contracts/enums.py
"""Status codes and modes shared across subsystem boundaries."""

from enum import StrEnum


class BatchStatus(StrEnum):
    """Status of a job or step execution.

    Stored in the database (job_executions.status, step_executions.status).

    Lifecycle: STARTING -> STARTED -> {COMPLETED, FAILED, STOPPED}, with
    STOPPING between STARTED and a terminal status when a stop is requested.
    """

    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_running(self) -> bool:
        return self in _RUNNING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def is_restartable(self) -> bool:
        """Terminal statuses a new execution may resume from."""
        return self in (BatchStatus.FAILED, BatchStatus.STOPPED)


_RUNNING_STATUSES = frozenset({BatchStatus.STARTING, BatchStatus.STARTED, BatchStatus.STOPPING})
_TERMINAL_STATUSES = frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.STOPPED})

# Allowed status changes. Anything else is a regression and is rejected
# by the repository.
STATUS_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.STARTING: frozenset({BatchStatus.STARTED, BatchStatus.STOPPING, BatchStatus.FAILED, BatchStatus.STOPPED}),
    BatchStatus.STARTED: frozenset({BatchStatus.STOPPING, BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.STOPPED}),
    BatchStatus.STOPPING: frozenset({BatchStatus.STOPPED, BatchStatus.COMPLETED, BatchStatus.FAILED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.FAILED: frozenset(),
    BatchStatus.STOPPED: frozenset(),
}


class ParameterType(StrEnum):
    """Type of a job parameter value.

    Stored in the database (job_execution_params.type).
    """

    STRING = "string"
    LONG = "long"
    DOUBLE = "double"
    DATE = "date"


class RepeatStatus(StrEnum):
    """Return value of a tasklet: call again, or done."""

    CONTINUABLE = "continuable"
    FINISHED = "finished"


class FilterAccounting(StrEnum):
    """How records filtered out by a processor show up in step counters.

    Values:
        INVISIBLE: Filtered records appear in no counter
        COUNTED: Filtered records increment filter_count
        SKIPPED: Filtered records increment process_skip_count (reporting only,
            the skip policy is never consulted for them)
    """

    INVISIBLE = "invisible"
    COUNTED = "counted"
    SKIPPED = "skipped"

# src/hopper/contracts/execution.py
"""Execution records: job instances, job and step executions, contexts.

These are strict contracts - status fields must be BatchStatus enums.
The repository layer converts database strings to enums on load.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from hopper.contracts.enums import BatchStatus
from hopper.contracts.parameters import JobParameters


def _validate_status(value: object, field_name: str) -> None:
    if not isinstance(value, BatchStatus):
        raise TypeError(f"{field_name} must be BatchStatus, got {type(value).__name__}: {value!r}")


class ExecutionContext(MutableMapping[str, Any]):
    """Per-step key/value state persisted with every chunk commit.

    Readers store their position here (e.g. ``reader.read.count``) so a
    restarted step can resume after the last committed record. Values must be
    JSON-serializable; datetimes are preserved.
    """

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(data or {})

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ExecutionContext({self._data!r})"

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._data.get(key, default)
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"Execution context key '{key}' holds {type(value).__name__}, expected int")
        return value

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def copy(self) -> ExecutionContext:
        return ExecutionContext(self._data)


@dataclass(frozen=True)
class JobInstance:
    """A logical run: one job name plus one identifying parameter set."""

    job_instance_id: int
    job_name: str
    job_key: str
    created_at: datetime


@dataclass
class StepContribution:
    """Counter deltas produced by one chunk, applied only when it commits."""

    read_count: int = 0
    write_count: int = 0
    filter_count: int = 0
    read_skip_count: int = 0
    process_skip_count: int = 0
    write_skip_count: int = 0
    retry_count: int = 0

    @property
    def skip_count(self) -> int:
        return self.read_skip_count + self.process_skip_count + self.write_skip_count


@dataclass
class StepExecution:
    """One attempt to run one step within a job execution."""

    step_execution_id: int
    job_execution_id: int
    step_name: str
    status: BatchStatus
    start_time: datetime | None = None
    end_time: datetime | None = None
    read_count: int = 0
    write_count: int = 0
    filter_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0
    read_skip_count: int = 0
    process_skip_count: int = 0
    write_skip_count: int = 0
    retry_count: int = 0
    exit_description: str | None = None
    execution_context: ExecutionContext = field(default_factory=ExecutionContext)
    last_updated: datetime | None = None

    def __post_init__(self) -> None:
        _validate_status(self.status, "status")

    @property
    def skip_count(self) -> int:
        return self.read_skip_count + self.process_skip_count + self.write_skip_count

    def apply_contribution(self, contribution: StepContribution) -> None:
        """Add a committed chunk's counters and count the commit."""
        self.read_count += contribution.read_count
        self.write_count += contribution.write_count
        self.filter_count += contribution.filter_count
        self.read_skip_count += contribution.read_skip_count
        self.process_skip_count += contribution.process_skip_count
        self.write_skip_count += contribution.write_skip_count
        self.retry_count += contribution.retry_count
        self.commit_count += 1

    def summary(self) -> dict[str, Any]:
        """Counters and status as a plain dict (CLI and logging)."""
        return {
            "step_execution_id": self.step_execution_id,
            "step_name": self.step_name,
            "status": self.status.value,
            "read_count": self.read_count,
            "write_count": self.write_count,
            "filter_count": self.filter_count,
            "commit_count": self.commit_count,
            "rollback_count": self.rollback_count,
            "skip_count": self.skip_count,
            "read_skip_count": self.read_skip_count,
            "process_skip_count": self.process_skip_count,
            "write_skip_count": self.write_skip_count,
            "retry_count": self.retry_count,
            "exit_description": self.exit_description,
        }


@dataclass
class JobExecution:
    """One attempt to run a job with specific parameters.

    Created STARTING when a launch is accepted; only ever moves forward.
    """

    job_execution_id: int
    job_instance_id: int
    job_name: str
    parameters: JobParameters
    status: BatchStatus
    create_time: datetime
    start_time: datetime | None = None
    end_time: datetime | None = None
    exit_description: str | None = None
    resumed_from: int | None = None
    last_updated: datetime | None = None
    step_executions: list[StepExecution] = field(default_factory=list)

    def __post_init__(self) -> None:
        _validate_status(self.status, "status")

    @property
    def is_running(self) -> bool:
        return self.status.is_running

    def summary(self) -> dict[str, Any]:
        return {
            "job_execution_id": self.job_execution_id,
            "job_instance_id": self.job_instance_id,
            "job_name": self.job_name,
            "status": self.status.value,
            "parameters": {name: p.encode() for name, p in self.parameters.items()},
            "create_time": self.create_time.isoformat(),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "exit_description": self.exit_description,
            "resumed_from": self.resumed_from,
            "steps": [step.summary() for step in self.step_executions],
        }

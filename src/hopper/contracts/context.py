# src/hopper/contracts/context.py
"""StepContext: what readers, processors, writers and tasklets can see."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from hopper.contracts.execution import ExecutionContext, JobExecution, StepExecution
    from hopper.contracts.parameters import JobParameters


@dataclass
class StepContext:
    """Run metadata handed to plugins during a step.

    Attributes:
        job_execution: The job execution the step belongs to
        step_execution: The step execution being driven
        connection: Open repository transaction of the chunk being committed.
            Set only while a chunk (or tasklet iteration) is committing; writers
            that target the repository database write through it so their rows
            commit atomically with the checkpoint.
    """

    job_execution: JobExecution
    step_execution: StepExecution
    connection: Connection | None = None

    @property
    def job_parameters(self) -> JobParameters:
        return self.job_execution.parameters

    @property
    def execution_context(self) -> ExecutionContext:
        return self.step_execution.execution_context

    @property
    def step_name(self) -> str:
        return self.step_execution.step_name

"""Shared contracts for cross-boundary data types.

Everything that crosses a subsystem boundary (definitions, parameters,
execution records, plugin protocols, errors) is defined here.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from hopper.core.config.

Import patterns:
    from hopper.contracts import BatchStatus, JobExecution, JobParametersBuilder
    from hopper.core.config import HopperSettings
"""

from hopper.contracts.context import StepContext
from hopper.contracts.definition import (
    ChunkStepDefinition,
    JobDefinition,
    ProcessorFactory,
    ReaderFactory,
    RetryPolicy,
    StepDefinition,
    TaskletStepDefinition,
    WriterFactory,
)
from hopper.contracts.enums import (
    STATUS_TRANSITIONS,
    BatchStatus,
    FilterAccounting,
    ParameterType,
    RepeatStatus,
)
from hopper.contracts.errors import (
    ChunkProcessingError,
    HopperError,
    ItemReadError,
    JobExecutionAlreadyRunningError,
    JobExecutionNotRunningError,
    JobInstanceAlreadyCompleteError,
    JobLaunchError,
    JobParametersInvalidError,
    JobRepositoryError,
    JobRestartError,
    NoSuchJobError,
    NoSuchJobExecutionError,
    RecordRejectedError,
    SkipLimitExceededError,
    StartLimitExceededError,
    StatusTransitionError,
)
from hopper.contracts.execution import (
    ExecutionContext,
    JobExecution,
    JobInstance,
    StepContribution,
    StepExecution,
)
from hopper.contracts.parameters import (
    JobParameter,
    JobParameters,
    JobParametersBuilder,
    JobParametersIncrementer,
    RunIdIncrementer,
    parse_parameter,
)
from hopper.contracts.protocols import (
    ItemProcessor,
    ItemReader,
    ItemStream,
    ItemWriter,
    SkipPolicy,
    Tasklet,
)

__all__ = [
    "STATUS_TRANSITIONS",
    "BatchStatus",
    "ChunkProcessingError",
    "ChunkStepDefinition",
    "ExecutionContext",
    "FilterAccounting",
    "HopperError",
    "ItemProcessor",
    "ItemReadError",
    "ItemReader",
    "ItemStream",
    "ItemWriter",
    "JobDefinition",
    "JobExecution",
    "JobExecutionAlreadyRunningError",
    "JobExecutionNotRunningError",
    "JobInstance",
    "JobInstanceAlreadyCompleteError",
    "JobLaunchError",
    "JobParameter",
    "JobParameters",
    "JobParametersBuilder",
    "JobParametersIncrementer",
    "JobParametersInvalidError",
    "JobRepositoryError",
    "JobRestartError",
    "NoSuchJobError",
    "NoSuchJobExecutionError",
    "ParameterType",
    "ProcessorFactory",
    "ReaderFactory",
    "RecordRejectedError",
    "RepeatStatus",
    "RetryPolicy",
    "RunIdIncrementer",
    "SkipLimitExceededError",
    "SkipPolicy",
    "StartLimitExceededError",
    "StatusTransitionError",
    "StepContext",
    "StepContribution",
    "StepDefinition",
    "StepExecution",
    "Tasklet",
    "TaskletStepDefinition",
    "WriterFactory",
    "parse_parameter",
]

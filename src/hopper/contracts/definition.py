# src/hopper/contracts/definition.py
"""Job and step definitions.

Definitions are immutable descriptions of WHAT to run. They hold factories
rather than live readers and writers, because every step execution needs
fresh stream state (an open file handle, a restored position).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hopper.contracts.enums import FilterAccounting

if TYPE_CHECKING:
    from hopper.contracts.parameters import JobParameters, JobParametersIncrementer
    from hopper.contracts.protocols import ItemProcessor, ItemReader, ItemWriter, SkipPolicy, Tasklet

ReaderFactory = Callable[["JobParameters"], "ItemReader"]
WriterFactory = Callable[["JobParameters"], "ItemWriter"]
ProcessorFactory = Callable[["JobParameters"], "ItemProcessor"]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and which record-level failures are retried before skipping.

    Attributes:
        max_attempts: Total attempts including the first (1 disables retry)
        base_delay: Initial backoff in seconds
        max_delay: Backoff ceiling in seconds
        jitter: Random jitter added to each backoff, in seconds
        exponential_base: Backoff multiplier
        retryable: Exception types that are worth retrying
    """

    max_attempts: int = 1
    base_delay: float = 0.0
    max_delay: float = 1.0
    jitter: float = 0.0
    exponential_base: float = 2.0
    retryable: tuple[type[BaseException], ...] = ()

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("Retry delays must be non-negative")
        if self.exponential_base < 1:
            raise ValueError(f"exponential_base must be >= 1, got {self.exponential_base}")

    def is_retryable(self, error: BaseException) -> bool:
        return self.max_attempts > 1 and isinstance(error, self.retryable)


@dataclass(frozen=True)
class StepDefinition:
    """Fields common to every step kind.

    Attributes:
        name: Step name, unique within its job
        allow_start_if_complete: Re-run the step on restart even if it completed
        start_limit: Maximum starts of this step within one job instance (None: unlimited)
    """

    name: str
    allow_start_if_complete: bool = False
    start_limit: int | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Step name must not be empty")
        if self.start_limit is not None and self.start_limit < 1:
            raise ValueError(f"start_limit must be >= 1, got {self.start_limit}")


@dataclass(frozen=True, kw_only=True)
class ChunkStepDefinition(StepDefinition):
    """A read -> process -> write step committed in chunks."""

    reader_factory: ReaderFactory
    writer_factory: WriterFactory
    processor_factory: ProcessorFactory | None = None
    chunk_size: int = 10
    skip_policy: SkipPolicy | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    workers: int = 1
    filter_accounting: FilterAccounting = FilterAccounting.INVISIBLE

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if not isinstance(self.filter_accounting, FilterAccounting):
            raise TypeError(f"filter_accounting must be FilterAccounting, got {self.filter_accounting!r}")


@dataclass(frozen=True, kw_only=True)
class TaskletStepDefinition(StepDefinition):
    """A step whose body is a single tasklet."""

    tasklet: Tasklet


@dataclass(frozen=True)
class JobDefinition:
    """Named, ordered sequence of steps.

    Attributes:
        name: Job name (unique per operator)
        steps: Steps in execution order
        restartable: Whether a FAILED/STOPPED instance may be relaunched
        allow_completed_rerun: Whether a COMPLETED instance may be relaunched
            (every step runs again from scratch)
        required_parameters: Parameter names that must be present at launch
        incrementer: Derives fresh parameters for start_next_instance()
    """

    name: str
    steps: tuple[StepDefinition, ...]
    restartable: bool = True
    allow_completed_rerun: bool = False
    required_parameters: frozenset[str] = frozenset()
    incrementer: JobParametersIncrementer | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Job name must not be empty")
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "required_parameters", frozenset(self.required_parameters))
        if not self.steps:
            raise ValueError(f"Job '{self.name}' must have at least one step")
        names = [step.name for step in self.steps]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Job '{self.name}' has duplicate step names: {duplicates}")

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def get_step(self, name: str) -> StepDefinition:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(f"Job '{self.name}' has no step '{name}'")

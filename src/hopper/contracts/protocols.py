# src/hopper/contracts/protocols.py
"""Capability protocols for the three chunk stages and their helpers.

The chunk pipeline depends only on these protocols, so readers, processors
and writers are swappable per job.

Plugin Types:
- ItemReader: Yields records one at a time, None at end of input
- ItemProcessor: Transforms a record, or returns None to filter it out
- ItemWriter: Writes a whole chunk as one batch
- ItemStream: Optional open/update/close lifecycle with restart state
- Tasklet: Single unit of work for non-chunk steps
- SkipPolicy: Decides whether a record-level error is tolerated
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from hopper.contracts.context import StepContext
    from hopper.contracts.enums import RepeatStatus
    from hopper.contracts.execution import ExecutionContext


@runtime_checkable
class ItemReader(Protocol):
    """Reads records lazily.

    Example:
        class ListReader:
            def read(self) -> Any | None:
                return self._items.pop(0) if self._items else None
    """

    def read(self) -> Any | None:
        """Return the next record, or None when the input is exhausted.

        Raises:
            ItemReadError: If one record is unreadable but reading can continue.
        """
        ...


@runtime_checkable
class ItemProcessor(Protocol):
    """Transforms one record.

    Returning None filters the record: it is dropped before the writer and is
    neither an error nor a skip.
    """

    def process(self, item: Any) -> Any | None: ...


@runtime_checkable
class ItemWriter(Protocol):
    """Writes all surviving records of a chunk as one batch."""

    def write(self, items: Sequence[Any], ctx: "StepContext") -> None: ...


@runtime_checkable
class ItemStream(Protocol):
    """Lifecycle for readers and writers that hold resources or restart state.

    Lifecycle:
    1. open(execution_context) - Acquire resources, restore position on restart
    2. update(execution_context) - Save position; called right before each commit
    3. close() - Release resources (always called, also on failure)
    """

    def open(self, execution_context: "ExecutionContext") -> None: ...

    def update(self, execution_context: "ExecutionContext") -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class Tasklet(Protocol):
    """A step body that is not chunk-oriented (setup, cleanup, notifications).

    Called repeatedly, each call in its own transaction, until it returns
    RepeatStatus.FINISHED.
    """

    def execute(self, ctx: "StepContext") -> "RepeatStatus": ...


@runtime_checkable
class SkipPolicy(Protocol):
    """Classifies a record-level failure as tolerable or fatal."""

    def should_skip(self, error: BaseException, skip_count: int) -> bool:
        """Decide whether to skip the failed record.

        Args:
            error: The error raised for the record
            skip_count: Skips already counted in this step execution

        Returns:
            True to skip the record and continue, False to fail the step.

        Raises:
            SkipLimitExceededError: If the error is skippable but the limit is used up.
        """
        ...

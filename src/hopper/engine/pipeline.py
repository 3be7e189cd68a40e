# src/hopper/engine/pipeline.py
"""ChunkPipeline: read -> process -> write in fixed-size, atomically committed chunks.

One run of the pipeline drives one step execution:

1. Read up to chunk_size records (read errors go to the skip policy)
2. Process them, optionally on a worker pool; outcomes come back in read order
3. Open the chunk transaction, write the surviving records as one batch,
   capture stream positions into a staged context and persist counters plus
   context in the same transaction
4. Only after the transaction commits is the in-memory step execution
   advanced, so a failed chunk never leaves phantom counts or positions

Stop requests are checked between chunks. Errors that the skip policy does
not absorb abort the run with ChunkProcessingError; the failing chunk's
transaction is rolled back.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from contextlib import AbstractContextManager, ExitStack
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from hopper.contracts.enums import BatchStatus, FilterAccounting
from hopper.contracts.errors import ChunkProcessingError, ItemReadError, SkipLimitExceededError
from hopper.contracts.execution import StepContribution, StepExecution
from hopper.contracts.protocols import ItemStream
from hopper.engine.retry import MaxRetriesExceeded, RetryManager
from hopper.engine.skip import NeverSkipPolicy

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from hopper.contracts.context import StepContext
    from hopper.contracts.definition import RetryPolicy
    from hopper.contracts.protocols import ItemProcessor, ItemReader, ItemWriter, SkipPolicy
    from hopper.engine.pooling import PooledProcessor

logger = structlog.get_logger(__name__)


class ChunkControl(Protocol):
    """What the pipeline needs from its step: transactions, persistence, stop flag."""

    def transaction(self) -> AbstractContextManager[Connection]:
        """Open the transaction one chunk commits in."""
        ...

    def persist(self, staged: StepExecution, connection: Connection) -> None:
        """Write the staged step execution (counters and context) in the chunk transaction."""
        ...

    def stop_requested(self) -> bool: ...


@dataclass(frozen=True)
class StepResult:
    """How a pipeline run ended (failures raise instead).

    Attributes:
        status: COMPLETED (input exhausted) or STOPPED (stop honoured at a chunk boundary)
        chunks: Chunks committed by this run
    """

    status: BatchStatus
    chunks: int


@dataclass
class _ItemOutcome:
    """Result of processing one record, errors captured rather than raised."""

    item: Any
    output: Any = None
    error: BaseException | None = None
    retries: int = 0


class ChunkPipeline:
    """Drives the chunk loop for one step execution.

    Example:
        pipeline = ChunkPipeline(
            control,
            skip_policy=LimitCheckingSkipPolicy(skip_limit=1),
            pool=PooledProcessor(pool_size=4),
        )
        result = pipeline.run(reader, processor, writer, chunk_size=5, context=ctx)
    """

    def __init__(
        self,
        control: ChunkControl,
        *,
        skip_policy: SkipPolicy | None = None,
        retry_manager: RetryManager | None = None,
        pool: PooledProcessor[Any, _ItemOutcome] | None = None,
        filter_accounting: FilterAccounting = FilterAccounting.INVISIBLE,
    ) -> None:
        self._control = control
        self._skip_policy = skip_policy if skip_policy is not None else NeverSkipPolicy()
        self._retry = retry_manager
        self._pool = pool
        self._filter_accounting = filter_accounting

    @classmethod
    def build(
        cls,
        control: ChunkControl,
        *,
        skip_policy: SkipPolicy | None,
        retry: RetryPolicy,
        pool: PooledProcessor[Any, _ItemOutcome] | None,
        filter_accounting: FilterAccounting,
    ) -> ChunkPipeline:
        return cls(
            control,
            skip_policy=skip_policy,
            retry_manager=RetryManager(retry) if retry.max_attempts > 1 else None,
            pool=pool,
            filter_accounting=filter_accounting,
        )

    # === Run loop ===

    def run(
        self,
        reader: ItemReader,
        processor: ItemProcessor | None,
        writer: ItemWriter,
        chunk_size: int,
        context: StepContext,
    ) -> StepResult:
        """Run chunks until the input is exhausted or a stop is requested.

        Raises:
            ChunkProcessingError: A record failure was not skippable, or a
                reader/writer failed outright
            JobRepositoryError: A chunk could not be committed
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

        step = context.step_execution
        streams = [component for component in (reader, writer) if isinstance(component, ItemStream)]
        with ExitStack() as stack:
            for stream in streams:
                stream.open(step.execution_context)
                stack.callback(stream.close)

            chunks = 0
            while True:
                if self._control.stop_requested():
                    logger.info("Stop honoured at chunk boundary", step_name=step.step_name, chunks=chunks)
                    return StepResult(BatchStatus.STOPPED, chunks)

                contribution = StepContribution()
                items, exhausted = self._read_chunk(reader, chunk_size, contribution, step)
                if not items and contribution.read_skip_count == 0:
                    return StepResult(BatchStatus.COMPLETED, chunks)

                outputs = self._process_chunk(items, processor, contribution, step)
                self._commit_chunk(outputs, writer, streams, contribution, context)
                chunks += 1
                logger.debug(
                    "Chunk committed",
                    step_name=step.step_name,
                    chunk=chunks,
                    read=contribution.read_count,
                    written=contribution.write_count,
                    skipped=contribution.skip_count,
                )
                if exhausted:
                    return StepResult(BatchStatus.COMPLETED, chunks)

    # === Read ===

    def _read_chunk(
        self,
        reader: ItemReader,
        chunk_size: int,
        contribution: StepContribution,
        step: StepExecution,
    ) -> tuple[list[Any], bool]:
        items: list[Any] = []
        while len(items) < chunk_size:
            try:
                item = reader.read()
            except ItemReadError as e:
                self._skip_or_fail("read", e, contribution, step)
                contribution.read_skip_count += 1
                continue
            except Exception as e:
                raise ChunkProcessingError("read", e) from e
            if item is None:
                return items, True
            items.append(item)
            contribution.read_count += 1
        return items, False

    # === Process ===

    def _process_one(self, processor: ItemProcessor, item: Any) -> _ItemOutcome:
        outcome = _ItemOutcome(item)

        def count_retry(attempt: int, error: BaseException) -> None:
            outcome.retries += 1

        try:
            if self._retry is None:
                outcome.output = processor.process(item)
            else:
                outcome.output = self._retry.execute_with_retry(lambda: processor.process(item), on_retry=count_retry)
        except MaxRetriesExceeded as e:
            outcome.error = e.last_error
        except Exception as e:
            outcome.error = e
        return outcome

    def _process_chunk(
        self,
        items: list[Any],
        processor: ItemProcessor | None,
        contribution: StepContribution,
        step: StepExecution,
    ) -> list[Any]:
        if processor is None or not items:
            return list(items)

        process = partial(self._process_one, processor)
        if self._pool is not None:
            outcomes = [entry.result for entry in self._pool.map_ordered(items, process)]
        else:
            outcomes = [process(item) for item in items]

        # Decisions are made here, on the step thread, in read order
        outputs: list[Any] = []
        for outcome in outcomes:
            contribution.retry_count += outcome.retries
            if outcome.error is not None:
                self._skip_or_fail("process", outcome.error, contribution, step)
                contribution.process_skip_count += 1
            elif outcome.output is None:
                self._count_filtered(contribution)
            else:
                outputs.append(outcome.output)
        return outputs

    def _count_filtered(self, contribution: StepContribution) -> None:
        if self._filter_accounting == FilterAccounting.COUNTED:
            contribution.filter_count += 1
        elif self._filter_accounting == FilterAccounting.SKIPPED:
            # filter_count tracks how much of process_skip_count is filtering
            contribution.filter_count += 1
            contribution.process_skip_count += 1

    # === Write and commit ===

    def _commit_chunk(
        self,
        outputs: list[Any],
        writer: ItemWriter,
        streams: list[ItemStream],
        contribution: StepContribution,
        context: StepContext,
    ) -> None:
        step = context.step_execution
        staged_context = step.execution_context.copy()
        staged = step
        try:
            with self._control.transaction() as conn:
                context.connection = conn
                try:
                    if outputs:
                        self._write(outputs, writer, conn, contribution, context)
                    for stream in streams:
                        stream.update(staged_context)
                    staged = dataclasses.replace(step, execution_context=staged_context)
                    staged.apply_contribution(contribution)
                    self._control.persist(staged, conn)
                finally:
                    context.connection = None
        except Exception:
            step.rollback_count += 1
            raise

        # Committed: advance the live step execution
        step.apply_contribution(contribution)
        step.execution_context.clear()
        step.execution_context.update(staged_context)
        step.last_updated = staged.last_updated

    def _write_attempt(self, items: list[Any], writer: ItemWriter, conn: Connection, context: StepContext) -> Callable[[], None]:
        def attempt() -> None:
            with conn.begin_nested():
                writer.write(items, context)

        return attempt

    def _write_with_retry(
        self,
        items: list[Any],
        writer: ItemWriter,
        conn: Connection,
        contribution: StepContribution,
        context: StepContext,
    ) -> None:
        attempt = self._write_attempt(items, writer, conn, context)
        if self._retry is None:
            attempt()
            return

        def count_retry(attempt_number: int, error: BaseException) -> None:
            contribution.retry_count += 1

        try:
            self._retry.execute_with_retry(attempt, on_retry=count_retry)
        except MaxRetriesExceeded as e:
            raise e.last_error from e

    def _write(
        self,
        outputs: list[Any],
        writer: ItemWriter,
        conn: Connection,
        contribution: StepContribution,
        context: StepContext,
    ) -> None:
        step = context.step_execution
        try:
            self._write_with_retry(outputs, writer, conn, contribution, context)
            contribution.write_count += len(outputs)
            return
        except Exception as e:
            batch_error = e

        # Batch failed and was rolled back to its savepoint. Scan only if the
        # error is one the policy would skip; otherwise the chunk fails as a whole.
        self._skip_or_fail("write", batch_error, contribution, step, log=False)
        step.rollback_count += 1
        logger.info("Scanning chunk after write failure", step_name=step.step_name, items=len(outputs), error=str(batch_error))
        for item in outputs:
            try:
                self._write_with_retry([item], writer, conn, contribution, context)
            except Exception as e:
                self._skip_or_fail("write", e, contribution, step)
                contribution.write_skip_count += 1
                continue
            contribution.write_count += 1

    # === Skip decisions ===

    def _policy_skip_count(self, contribution: StepContribution, step: StepExecution) -> int:
        """Skips that count against the policy: filtered records never do."""
        committed = step.skip_count
        pending = contribution.skip_count
        if self._filter_accounting == FilterAccounting.SKIPPED:
            committed -= step.filter_count
            pending -= contribution.filter_count
        return committed + pending

    def _skip_or_fail(
        self,
        stage: str,
        error: BaseException,
        contribution: StepContribution,
        step: StepExecution,
        *,
        log: bool = True,
    ) -> None:
        """Return if the record may be skipped, raise ChunkProcessingError otherwise."""
        try:
            skip = self._skip_policy.should_skip(error, self._policy_skip_count(contribution, step))
        except SkipLimitExceededError as limit:
            raise ChunkProcessingError(stage, limit) from error
        if not skip:
            raise ChunkProcessingError(stage, error) from error
        if not log:
            return
        logger.warning(
            "Record skipped",
            step_name=step.step_name,
            stage=stage,
            error_type=type(error).__name__,
            error=str(error),
        )


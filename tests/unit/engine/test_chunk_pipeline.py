# tests/unit/engine/test_chunk_pipeline.py
"""Tests for ChunkPipeline: chunking, staged commits, skips, retries and stops.

The control here keeps commits in memory so the tests can look at exactly
what was persisted per chunk. Transactional behaviour against a real
database is covered by the step and integration tests.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from typing import Any

import pytest

from hopper.contracts.context import StepContext
from hopper.contracts.definition import RetryPolicy
from hopper.contracts.enums import BatchStatus, FilterAccounting
from hopper.contracts.errors import ChunkProcessingError, ItemReadError, RecordRejectedError, SkipLimitExceededError
from hopper.contracts.execution import ExecutionContext, StepExecution
from hopper.engine.pipeline import ChunkPipeline
from hopper.engine.pooling import PooledProcessor
from hopper.engine.retry import RetryManager
from hopper.engine.skip import AlwaysSkipPolicy, LimitCheckingSkipPolicy
from hopper.plugins.readers import ListItemReader
from tests.fixtures.jobs import CollectingWriter, DroppingEvens, FailingProcessor, make_step_context

POSITION_KEY = "listItemReader.read.count"


class _FakeConnection:
    def begin_nested(self) -> Any:
        return nullcontext()


class _MemoryControl:
    """ChunkControl that records persisted step executions."""

    def __init__(self, *, stop_after_commits: int | None = None, fail_commit: int | None = None) -> None:
        self.persisted: list[StepExecution] = []
        self.stop_after_commits = stop_after_commits
        self.fail_commit = fail_commit

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        yield _FakeConnection()

    def persist(self, staged: StepExecution, connection: Any) -> None:
        if self.fail_commit == len(self.persisted) + 1:
            raise RuntimeError("commit failed")
        self.persisted.append(dataclasses.replace(staged, execution_context=staged.execution_context.copy()))

    def stop_requested(self) -> bool:
        return self.stop_after_commits is not None and len(self.persisted) >= self.stop_after_commits


class _ScriptedReader:
    """Reader over a script: ItemReadError for "bad" entries, other exceptions raised as-is."""

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self.closed = False

    def open(self, execution_context: ExecutionContext) -> None:
        pass

    def update(self, execution_context: ExecutionContext) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def read(self) -> Any | None:
        if not self._script:
            return None
        entry = self._script.pop(0)
        if entry == "bad":
            raise ItemReadError("malformed line", line_number=3)
        if isinstance(entry, Exception):
            raise entry
        return entry


class _DropEvensRejectSeven:
    def process(self, item: int) -> int | None:
        if item == 7:
            raise RecordRejectedError("couldn't continue: 7")
        return None if item % 2 == 0 else item


def _run(
    items: list[Any],
    *,
    chunk_size: int = 5,
    processor: Any = None,
    writer: CollectingWriter | None = None,
    control: _MemoryControl | None = None,
    context: StepContext | None = None,
    reader: Any = None,
    **pipeline_kwargs: Any,
) -> tuple[Any, StepExecution, CollectingWriter, _MemoryControl]:
    writer = writer if writer is not None else CollectingWriter()
    control = control if control is not None else _MemoryControl()
    context = context if context is not None else make_step_context()
    pipeline = ChunkPipeline(control, **pipeline_kwargs)
    result = pipeline.run(reader if reader is not None else ListItemReader(items), processor, writer, chunk_size, context)
    return result, context.step_execution, writer, control


class TestChunking:
    def test_ten_items_chunk_of_five_commits_twice(self) -> None:
        result, step, writer, control = _run(list(range(1, 11)))

        assert result.status == BatchStatus.COMPLETED
        assert result.chunks == 2
        assert writer.batches == [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10]]
        assert (step.read_count, step.write_count, step.commit_count) == (10, 10, 2)
        assert step.execution_context[POSITION_KEY] == 10

    def test_partial_last_chunk(self) -> None:
        result, step, writer, _ = _run(list(range(1, 13)))

        assert result.chunks == 3
        assert writer.batches[-1] == [11, 12]
        assert step.commit_count == 3

    def test_empty_input_commits_nothing(self) -> None:
        result, step, writer, control = _run([])

        assert result.status == BatchStatus.COMPLETED
        assert result.chunks == 0
        assert step.commit_count == 0
        assert control.persisted == []

    def test_each_commit_persists_position_of_that_chunk(self) -> None:
        _, _, _, control = _run(list(range(1, 11)))

        assert [staged.execution_context[POSITION_KEY] for staged in control.persisted] == [5, 10]
        assert [staged.write_count for staged in control.persisted] == [5, 10]

    def test_invalid_chunk_size(self) -> None:
        with pytest.raises(ValueError):
            _run([1], chunk_size=0)


class TestStop:
    def test_stop_honoured_at_chunk_boundary(self) -> None:
        result, step, writer, _ = _run(list(range(1, 11)), control=_MemoryControl(stop_after_commits=1))

        assert result.status == BatchStatus.STOPPED
        assert result.chunks == 1
        assert writer.items == [1, 2, 3, 4, 5]
        assert step.execution_context[POSITION_KEY] == 5


class TestProcessFailures:
    def test_non_skippable_failure_fails_after_committed_chunks(self) -> None:
        context = make_step_context()
        with pytest.raises(ChunkProcessingError) as exc_info:
            _run(list(range(1, 11)), processor=FailingProcessor({7}), context=context)

        assert exc_info.value.stage == "process"
        assert isinstance(exc_info.value.cause, RecordRejectedError)
        step = context.step_execution
        assert (step.read_count, step.write_count, step.commit_count) == (5, 5, 1)
        assert step.execution_context[POSITION_KEY] == 5

    def test_skippable_failure_skipped_within_limit(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=1, skippable=[RecordRejectedError])
        _, step, writer, _ = _run(list(range(1, 11)), processor=FailingProcessor({7}), skip_policy=policy)

        assert writer.items == [1, 2, 3, 4, 5, 6, 8, 9, 10]
        assert (step.read_count, step.write_count, step.process_skip_count) == (10, 9, 1)

    def test_skip_limit_exceeded_fails_step(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=1, skippable=[RecordRejectedError])
        with pytest.raises(ChunkProcessingError) as exc_info:
            _run(list(range(1, 11)), processor=FailingProcessor({3, 7}), skip_policy=policy)

        assert isinstance(exc_info.value.cause, SkipLimitExceededError)

    def test_transient_failure_retried(self) -> None:
        retry = RetryManager(RetryPolicy(max_attempts=2, retryable=(TimeoutError,)))
        _, step, writer, _ = _run(list(range(1, 11)), processor=FailingProcessor(transient={3}), retry_manager=retry)

        assert writer.items == list(range(1, 11))
        assert step.retry_count == 1
        assert step.skip_count == 0

    def test_retries_exhausted_then_skipped(self) -> None:
        retry = RetryManager(RetryPolicy(max_attempts=2, retryable=(TimeoutError,)))
        processor = FailingProcessor(transient={3}, transient_failures=5)
        _, step, writer, _ = _run([1, 2, 3, 4], processor=processor, retry_manager=retry, skip_policy=AlwaysSkipPolicy())

        assert writer.items == [1, 2, 4]
        assert step.retry_count == 1
        assert step.process_skip_count == 1
        assert processor.calls[3] == 2

    def test_worker_pool_keeps_read_order(self) -> None:
        with PooledProcessor(pool_size=4) as pool:
            _, _, writer, _ = _run(list(range(1, 21)), processor=FailingProcessor(), pool=pool)

        assert writer.items == list(range(1, 21))


class TestFilterAccounting:
    @pytest.mark.parametrize(
        ("accounting", "filter_count", "process_skip_count"),
        [
            (FilterAccounting.INVISIBLE, 0, 0),
            (FilterAccounting.COUNTED, 5, 0),
            (FilterAccounting.SKIPPED, 5, 5),
        ],
    )
    def test_filtered_records(self, accounting: FilterAccounting, filter_count: int, process_skip_count: int) -> None:
        _, step, writer, _ = _run(list(range(1, 11)), processor=DroppingEvens(), filter_accounting=accounting)

        assert writer.items == [1, 3, 5, 7, 9]
        assert step.write_count == 5
        assert step.filter_count == filter_count
        assert step.process_skip_count == process_skip_count

    def test_filtered_records_do_not_use_up_skip_limit(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=1, skippable=[RecordRejectedError])
        _, step, writer, _ = _run(
            list(range(1, 11)),
            processor=_DropEvensRejectSeven(),
            skip_policy=policy,
            filter_accounting=FilterAccounting.SKIPPED,
        )

        assert writer.items == [1, 3, 5, 9]
        assert step.process_skip_count == 6


class TestReadFailures:
    def test_read_errors_skipped(self) -> None:
        reader = _ScriptedReader([1, "bad", 2, 3])
        _, step, writer, _ = _run([], reader=reader, chunk_size=2, skip_policy=AlwaysSkipPolicy())

        assert writer.items == [1, 2, 3]
        assert step.read_skip_count == 1
        assert step.read_count == 3

    def test_read_error_without_policy_fails(self) -> None:
        reader = _ScriptedReader([1, "bad"])
        with pytest.raises(ChunkProcessingError) as exc_info:
            _run([], reader=reader)

        assert exc_info.value.stage == "read"
        assert reader.closed

    def test_unexpected_reader_exception_is_not_skipped(self) -> None:
        reader = _ScriptedReader([1, OSError("disk gone")])
        with pytest.raises(ChunkProcessingError) as exc_info:
            _run([], reader=reader, skip_policy=AlwaysSkipPolicy())

        assert isinstance(exc_info.value.cause, OSError)

    def test_chunk_of_only_bad_records_still_commits_position(self) -> None:
        reader = _ScriptedReader(["bad", "bad"])
        result, step, _, control = _run([], reader=reader, chunk_size=5, skip_policy=AlwaysSkipPolicy())

        assert result.chunks == 1
        assert step.read_skip_count == 2
        assert len(control.persisted) == 1


class TestWriteFailures:
    def test_failed_batch_scanned_item_by_item(self) -> None:
        writer = CollectingWriter(fail_on={7})
        policy = LimitCheckingSkipPolicy(skip_limit=1, skippable=[ValueError])
        _, step, _, _ = _run(list(range(1, 11)), writer=writer, skip_policy=policy)

        assert writer.items == [1, 2, 3, 4, 5, 6, 8, 9, 10]
        assert writer.batches[1:] == [[6], [8], [9], [10]]
        assert (step.write_count, step.write_skip_count, step.rollback_count) == (9, 1, 1)
        assert step.commit_count == 2

    def test_non_skippable_write_failure_rolls_back_chunk(self) -> None:
        context = make_step_context()
        with pytest.raises(ChunkProcessingError) as exc_info:
            _run(list(range(1, 11)), writer=CollectingWriter(fail_on={7}), context=context)

        assert exc_info.value.stage == "write"
        step = context.step_execution
        assert (step.write_count, step.commit_count, step.rollback_count) == (5, 1, 1)

    def test_failed_commit_leaves_step_at_last_commit(self) -> None:
        context = make_step_context()
        with pytest.raises(RuntimeError, match="commit failed"):
            _run(list(range(1, 11)), control=_MemoryControl(fail_commit=2), context=context)

        step = context.step_execution
        assert (step.read_count, step.write_count, step.commit_count, step.rollback_count) == (5, 5, 1, 1)
        assert step.execution_context[POSITION_KEY] == 5

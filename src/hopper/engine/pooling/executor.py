# src/hopper/engine/pooling/executor.py
"""Pooled processor for concurrent record processing within a chunk.

Dispatches the records of one chunk to a bounded thread pool and returns
their outcomes in read order. Only processing is concurrent; the caller
makes skip decisions, writes and commits on its own thread, so the
committed result is identical for every pool size.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from threading import Lock
from typing import Any

from hopper.engine.pooling.reorder_buffer import OrderedResult, ReorderBuffer


class PooledProcessor[T, R]:
    """Bounded worker pool with strict submission-order output.

    The processor is synchronous from the caller's perspective -
    map_ordered() blocks until every item of the batch has a result.

    Usage:
        with PooledProcessor[Record, ItemOutcome](pool_size=4) as pool:
            entries = pool.map_ordered(chunk, process_one)
            outcomes = [entry.result for entry in entries]

    ``fn`` is expected to capture its own errors in its result; an exception
    escaping ``fn`` is re-raised from map_ordered() after the batch drains.
    """

    def __init__(self, pool_size: int, *, thread_name_prefix: str = "hopper-worker") -> None:
        if pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {pool_size}")
        self._pool_size = pool_size
        self._thread_pool = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix=thread_name_prefix)

        # Serializes map_ordered calls; the reorder buffer indices are per batch
        self._batch_lock = Lock()

        self._stats_lock = Lock()
        self._active_workers: int = 0
        self._max_concurrent: int = 0
        self._batches: int = 0

    @property
    def pool_size(self) -> int:
        return self._pool_size

    def __enter__(self) -> PooledProcessor[T, R]:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._thread_pool.shutdown(wait=wait)

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "pool_size": self._pool_size,
                "batches": self._batches,
                "max_concurrent_reached": self._max_concurrent,
            }

    def map_ordered(self, items: Sequence[T], fn: Callable[[T], R]) -> list[OrderedResult[R]]:
        """Apply fn to every item on the pool; return entries in submission order."""
        if not items:
            return []
        with self._batch_lock:
            return self._map_locked(items, fn)

    def _map_locked(self, items: Sequence[T], fn: Callable[[T], R]) -> list[OrderedResult[R]]:
        buffer: ReorderBuffer[R] = ReorderBuffer()
        futures: dict[Future[R], int] = {}
        for item in items:
            futures[self._thread_pool.submit(self._run_one, fn, item)] = buffer.reserve()

        entries: list[OrderedResult[R]] = []
        first_error: BaseException | None = None
        for future in as_completed(futures):
            try:
                result = future.result()
            except Exception as e:
                # Keep draining so no worker is still touching the chunk when we raise
                if first_error is None:
                    first_error = e
                continue
            buffer.complete(futures[future], result)
            entries.extend(buffer.drain())

        if first_error is not None:
            raise first_error

        entries.extend(buffer.drain())
        if len(entries) != len(items):
            raise RuntimeError(f"Pool returned {len(entries)} entries for {len(items)} items")

        with self._stats_lock:
            self._batches += 1
        return entries

    def _run_one(self, fn: Callable[[T], R], item: T) -> R:
        with self._stats_lock:
            self._active_workers += 1
            self._max_concurrent = max(self._max_concurrent, self._active_workers)
        try:
            return fn(item)
        finally:
            with self._stats_lock:
                self._active_workers -= 1

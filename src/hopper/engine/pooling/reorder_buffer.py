# src/hopper/engine/pooling/reorder_buffer.py
"""Reorder buffer: hand back processing results in the order records were read.

Workers finish records of a chunk in whatever order thread timing allows.
The buffer holds early finishers until every record read before them is
done, so skip decisions, writes and checkpoints never depend on timing.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock


@dataclass(frozen=True)
class OrderedResult[T]:
    """One released result.

    Attributes:
        read_index: Position of the record in the chunk (0-indexed)
        completion_order: Position in which its processing finished
        result: Value produced for the record
    """

    read_index: int
    completion_order: int
    result: T


class ReorderBuffer[T]:
    """Thread-safe slot buffer that releases results in reservation order.

    Usage:
        buffer = ReorderBuffer[ItemOutcome]()
        slot = buffer.reserve()
        # ... on a worker ...
        buffer.complete(slot, outcome)

        for entry in buffer.drain():
            handle(entry.result)
    """

    def __init__(self) -> None:
        self._reserved = 0
        self._released = 0
        self._completed = 0
        # slot -> (completion_order, result)
        self._done: dict[int, tuple[int, T]] = {}
        self._lock = Lock()

    @property
    def pending_count(self) -> int:
        """Reserved slots not yet released."""
        with self._lock:
            return self._reserved - self._released

    def reserve(self) -> int:
        with self._lock:
            slot = self._reserved
            self._reserved += 1
            return slot

    def complete(self, slot: int, result: T) -> None:
        """Store the result for a reserved slot.

        Raises:
            KeyError: The slot was never reserved
            ValueError: The slot already has a result
        """
        with self._lock:
            if not self._released <= slot < self._reserved:
                if slot < self._released:
                    raise ValueError(f"Slot {slot} was already completed")
                raise KeyError(f"Slot {slot} was never reserved")
            if slot in self._done:
                raise ValueError(f"Slot {slot} was already completed")
            self._done[slot] = (self._completed, result)
            self._completed += 1

    def drain(self) -> list[OrderedResult[T]]:
        """Release every result whose predecessors have all been released."""
        with self._lock:
            ready: list[OrderedResult[T]] = []
            while self._released in self._done:
                completion_order, result = self._done.pop(self._released)
                ready.append(OrderedResult(self._released, completion_order, result))
                self._released += 1
            return ready

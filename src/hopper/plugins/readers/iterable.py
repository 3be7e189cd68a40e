# src/hopper/plugins/readers/iterable.py
"""In-memory reader over a sequence of records."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from hopper.contracts.execution import ExecutionContext


class ListItemReader:
    """Serve records from a list, remembering the position for restarts.

    The position is stored under ``<name>.read.count`` like the file readers,
    so restart behaviour can be exercised without touching the file system.
    None entries are not allowed: None means end of input.
    """

    def __init__(self, items: Sequence[Any], *, name: str = "listItemReader", save_state: bool = True) -> None:
        if any(item is None for item in items):
            raise ValueError("ListItemReader items must not contain None")
        self._items = list(items)
        self._name = name
        self._save_state = save_state
        self._index = 0

    @property
    def read_count_key(self) -> str:
        return f"{self._name}.read.count"

    def open(self, execution_context: ExecutionContext) -> None:
        self._index = execution_context.get_int(self.read_count_key, 0) if self._save_state else 0

    def update(self, execution_context: ExecutionContext) -> None:
        if self._save_state:
            execution_context[self.read_count_key] = self._index

    def close(self) -> None:
        pass

    def read(self) -> Any | None:
        if self._index >= len(self._items):
            return None
        item = self._items[self._index]
        self._index += 1
        return item

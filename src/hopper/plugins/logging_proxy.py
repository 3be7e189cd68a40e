# src/hopper/plugins/logging_proxy.py
"""Logging decorators for readers, processors and writers.

Wrap a reader, processor or writer to log every call. The logging setup
attaches the emitting thread, which shows which calls run on the step
thread and which on its worker pool.
ItemStream calls are passed through when the delegate implements them.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog

from hopper.contracts.protocols import ItemStream

if TYPE_CHECKING:
    from hopper.contracts.context import StepContext
    from hopper.contracts.execution import ExecutionContext
    from hopper.contracts.protocols import ItemProcessor, ItemReader, ItemWriter

logger = structlog.get_logger(__name__)


class _StreamDelegate:
    _delegate: Any

    def open(self, execution_context: ExecutionContext) -> None:
        if isinstance(self._delegate, ItemStream):
            self._delegate.open(execution_context)

    def update(self, execution_context: ExecutionContext) -> None:
        if isinstance(self._delegate, ItemStream):
            self._delegate.update(execution_context)

    def close(self) -> None:
        if isinstance(self._delegate, ItemStream):
            self._delegate.close()


class LoggingItemReader(_StreamDelegate):
    def __init__(self, delegate: ItemReader, label: str = "read") -> None:
        self._delegate = delegate
        self._label = label

    @property
    def delegate(self) -> ItemReader:
        return self._delegate

    def read(self) -> Any | None:
        logger.debug(self._label)
        return self._delegate.read()


class LoggingItemWriter(_StreamDelegate):
    def __init__(self, delegate: ItemWriter, label: str = "write") -> None:
        self._delegate = delegate
        self._label = label

    @property
    def delegate(self) -> ItemWriter:
        return self._delegate

    def write(self, items: Sequence[Any], ctx: StepContext) -> None:
        logger.debug(self._label, items=len(items))
        self._delegate.write(items, ctx)


class LoggingItemProcessor:
    def __init__(self, delegate: ItemProcessor, label: str = "process") -> None:
        self._delegate = delegate
        self._label = label

    @property
    def delegate(self) -> ItemProcessor:
        return self._delegate

    def process(self, item: Any) -> Any | None:
        logger.debug(self._label)
        return self._delegate.process(item)

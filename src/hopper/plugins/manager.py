# src/hopper/plugins/manager.py
"""Plugin manager for registration and lookup of step components.

Uses pluggy for hook-based plugin registration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pluggy

from hopper.plugins.config_base import PluginConfigError
from hopper.plugins.hookspecs import (
    PROJECT_NAME,
    HopperPluginSpec,
    ProcessorBuilder,
    ReaderBuilder,
    TaskletBuilder,
    WriterBuilder,
)

if TYPE_CHECKING:
    from hopper.contracts.definition import ProcessorFactory, ReaderFactory, WriterFactory
    from hopper.contracts.protocols import Tasklet


def _merge(kind: str, results: list[dict[str, Any]]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for builders in results:
        for name, builder in builders.items():
            if name in merged:
                raise ValueError(f"Duplicate {kind} plugin name: '{name}'")
            merged[name] = builder
    return merged


def _lookup(kind: str, builders: dict[str, Any], name: str) -> Any:
    if name not in builders:
        available = ", ".join(sorted(builders)) or "none"
        raise PluginConfigError(f"Unknown {kind} plugin '{name}'. Available: {available}")
    return builders[name]


class PluginManager:
    """Manages plugin registration and lookup.

    Usage:
        manager = PluginManager()
        manager.register_builtin_plugins()

        reader_factory = manager.reader_factory("delimited", {"names": ["id", "name"]})
        reader = reader_factory(parameters)
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(HopperPluginSpec)

        self._readers: dict[str, ReaderBuilder] = {}
        self._processors: dict[str, ProcessorBuilder] = {}
        self._writers: dict[str, WriterBuilder] = {}
        self._tasklets: dict[str, TaskletBuilder] = {}

    def register_builtin_plugins(self) -> None:
        from hopper.plugins.builtin import BuiltinPlugins

        self.register(BuiltinPlugins())

    def register(self, plugin: Any) -> None:
        """Register an object implementing one or more hopper hooks.

        Raises:
            ValueError: If a plugin name is registered twice for the same kind
        """
        self._pm.register(plugin)
        try:
            self._refresh_caches()
        except ValueError:
            self._pm.unregister(plugin)
            raise

    def _refresh_caches(self) -> None:
        hook = self._pm.hook
        readers = _merge("reader", hook.hopper_get_readers())
        processors = _merge("processor", hook.hopper_get_processors())
        writers = _merge("writer", hook.hopper_get_writers())
        tasklets = _merge("tasklet", hook.hopper_get_tasklets())

        # All validated, update caches
        self._readers = readers
        self._processors = processors
        self._writers = writers
        self._tasklets = tasklets

    # === Names ===

    @property
    def reader_names(self) -> list[str]:
        return sorted(self._readers)

    @property
    def processor_names(self) -> list[str]:
        return sorted(self._processors)

    @property
    def writer_names(self) -> list[str]:
        return sorted(self._writers)

    @property
    def tasklet_names(self) -> list[str]:
        return sorted(self._tasklets)

    # === Construction ===

    def reader_factory(self, name: str, options: dict[str, Any]) -> ReaderFactory:
        """Validate reader options and return its per-execution factory.

        Raises:
            PluginConfigError: Unknown plugin or invalid options
        """
        builder: ReaderBuilder = _lookup("reader", self._readers, name)
        return builder(options)

    def processor_factory(self, name: str, options: dict[str, Any]) -> ProcessorFactory:
        builder: ProcessorBuilder = _lookup("processor", self._processors, name)
        return builder(options)

    def writer_factory(self, name: str, options: dict[str, Any]) -> WriterFactory:
        builder: WriterBuilder = _lookup("writer", self._writers, name)
        return builder(options)

    def create_tasklet(self, name: str, options: dict[str, Any]) -> Tasklet:
        builder: TaskletBuilder = _lookup("tasklet", self._tasklets, name)
        return builder(options)

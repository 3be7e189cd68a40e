# src/hopper/plugins/hookspecs.py
"""pluggy hook specifications for hopper plugins.

Plugins implement these hooks to contribute named builders. A builder takes
the plugin's options dict, validates it, and returns what a step needs: a
factory called with the JobParameters of each step execution (readers,
processors, writers) or a ready tasklet.

Usage (implementing a plugin):
    from hopper.plugins.hookspecs import hookimpl

    class MyPlugins:
        @hookimpl
        def hopper_get_writers(self):
            return {"console": ConsoleWriter.factory}
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pluggy

if TYPE_CHECKING:
    from hopper.contracts.definition import ProcessorFactory, ReaderFactory, WriterFactory
    from hopper.contracts.protocols import Tasklet

PROJECT_NAME = "hopper"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)

ReaderBuilder = Callable[[dict[str, Any]], "ReaderFactory"]
ProcessorBuilder = Callable[[dict[str, Any]], "ProcessorFactory"]
WriterBuilder = Callable[[dict[str, Any]], "WriterFactory"]
TaskletBuilder = Callable[[dict[str, Any]], "Tasklet"]


class HopperPluginSpec:
    """Hook specifications for step components."""

    @hookspec
    def hopper_get_readers(self) -> dict[str, ReaderBuilder]:  # type: ignore[empty-body]
        """Return reader builders by plugin name."""

    @hookspec
    def hopper_get_processors(self) -> dict[str, ProcessorBuilder]:  # type: ignore[empty-body]
        """Return processor builders by plugin name."""

    @hookspec
    def hopper_get_writers(self) -> dict[str, WriterBuilder]:  # type: ignore[empty-body]
        """Return writer builders by plugin name."""

    @hookspec
    def hopper_get_tasklets(self) -> dict[str, TaskletBuilder]:  # type: ignore[empty-body]
        """Return tasklet builders by plugin name."""

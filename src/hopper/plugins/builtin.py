# src/hopper/plugins/builtin.py
"""Hook implementations registering the built-in plugins."""

from hopper.plugins.hookspecs import ProcessorBuilder, ReaderBuilder, TaskletBuilder, WriterBuilder, hookimpl
from hopper.plugins.processors import DroppingProcessor, PassthroughProcessor, RejectingProcessor
from hopper.plugins.readers import DelimitedFileReader
from hopper.plugins.tasklets import LogParametersTasklet
from hopper.plugins.writers import DatabaseBatchWriter


class BuiltinPlugins:
    @hookimpl
    def hopper_get_readers(self) -> dict[str, ReaderBuilder]:
        return {"delimited": DelimitedFileReader.factory}

    @hookimpl
    def hopper_get_processors(self) -> dict[str, ProcessorBuilder]:
        return {
            "passthrough": PassthroughProcessor.factory,
            "reject": RejectingProcessor.factory,
            "drop": DroppingProcessor.factory,
        }

    @hookimpl
    def hopper_get_writers(self) -> dict[str, WriterBuilder]:
        return {"database": DatabaseBatchWriter.factory}

    @hookimpl
    def hopper_get_tasklets(self) -> dict[str, TaskletBuilder]:
        return {"log_parameters": LogParametersTasklet}

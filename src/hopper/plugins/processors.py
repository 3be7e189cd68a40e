# src/hopper/plugins/processors.py
"""Built-in item processors.

- passthrough: returns every record unchanged
- reject: raises RecordRejectedError for records whose field holds one of the
  configured values (the error goes to the step's retry and skip policy)
- drop: filters records whose field holds one of the configured values
  (returns None, so they never reach the writer)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import Field

from hopper.contracts.definition import ProcessorFactory
from hopper.contracts.errors import RecordRejectedError
from hopper.contracts.parameters import JobParameters
from hopper.plugins.config_base import PluginConfig


class FieldMatchConfig(PluginConfig):
    """Field and values that select records."""

    field: str
    values: list[Any] = Field(min_length=1)


def _field_value(item: Any, field: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(field)
    return getattr(item, field, None)


class PassthroughProcessor:
    """Return every record unchanged."""

    def process(self, item: Any) -> Any:
        return item

    @classmethod
    def factory(cls, options: dict[str, Any]) -> ProcessorFactory:
        PluginConfig.from_dict(options)
        return lambda parameters: cls()


class RejectingProcessor:
    """Reject records whose ``field`` equals one of ``values``.

    Example:
        processor = RejectingProcessor({"field": "id", "values": [101]})
        processor.process({"id": 101})   # raises RecordRejectedError
    """

    def __init__(self, config: FieldMatchConfig | dict[str, Any]) -> None:
        self._config = config if isinstance(config, FieldMatchConfig) else FieldMatchConfig.from_dict(config)

    def process(self, item: Any) -> Any:
        value = _field_value(item, self._config.field)
        if value in self._config.values:
            raise RecordRejectedError(f"couldn't continue: {self._config.field}={value!r}", record=item)
        return item

    @classmethod
    def factory(cls, options: dict[str, Any]) -> ProcessorFactory:
        config = FieldMatchConfig.from_dict(options)

        def build(parameters: JobParameters) -> RejectingProcessor:
            return cls(config)

        return build


class DroppingProcessor:
    """Filter out records whose ``field`` equals one of ``values``."""

    def __init__(self, config: FieldMatchConfig | dict[str, Any]) -> None:
        self._config = config if isinstance(config, FieldMatchConfig) else FieldMatchConfig.from_dict(config)

    def process(self, item: Any) -> Any | None:
        if _field_value(item, self._config.field) in self._config.values:
            return None
        return item

    @classmethod
    def factory(cls, options: dict[str, Any]) -> ProcessorFactory:
        config = FieldMatchConfig.from_dict(options)

        def build(parameters: JobParameters) -> DroppingProcessor:
            return cls(config)

        return build

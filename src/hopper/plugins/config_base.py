# src/hopper/plugins/config_base.py
"""Base class for typed plugin options.

Plugins receive their options as plain dicts (from settings YAML or code) and
validate them eagerly, so a misconfigured job fails when it is assembled, not
halfway through its first chunk.

Example usage:
    class DelimitedFileReaderConfig(PluginConfig):
        names: list[str]
        delimiter: str = ","

    cfg = DelimitedFileReaderConfig.from_dict(options)
"""

from typing import Any, Self

from pydantic import BaseModel, ValidationError


class PluginConfigError(Exception):
    """Raised when plugin options are invalid."""


class PluginConfig(BaseModel):
    """Base class for typed plugin options. Unknown keys are rejected."""

    model_config = {"extra": "forbid", "frozen": True}

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> Self:
        """Create config from dict with clear error on validation failure.

        Raises:
            PluginConfigError: If configuration is invalid.
        """
        if not isinstance(config, dict):
            raise PluginConfigError(f"Invalid configuration for {cls.__name__}: config must be a dict, got {type(config).__name__}.")
        try:
            return cls.model_validate(config)
        except ValidationError as e:
            raise PluginConfigError(f"Invalid configuration for {cls.__name__}: {e}") from e
        except ValueError as e:
            raise PluginConfigError(f"Invalid configuration for {cls.__name__}: {e}") from e

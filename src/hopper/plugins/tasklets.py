# src/hopper/plugins/tasklets.py
"""Built-in tasklets for setup and housekeeping steps."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from hopper.contracts.enums import RepeatStatus
from hopper.contracts.errors import JobParametersInvalidError
from hopper.plugins.config_base import PluginConfig

if TYPE_CHECKING:
    from hopper.contracts.context import StepContext

logger = structlog.get_logger(__name__)


class LogParametersConfig(PluginConfig):
    template: str = "setting up the world for {name}"


class LogParametersTasklet:
    """Log a message built from the job parameters, then finish.

    The template is a ``str.format`` string over the parameter values, e.g.
    ``"setting up the world for {name}"``. Idempotent, so steps using it can
    set ``allow_start_if_complete``.
    """

    def __init__(self, config: LogParametersConfig | dict[str, Any] | None = None) -> None:
        if config is None:
            config = LogParametersConfig()
        self._config = config if isinstance(config, LogParametersConfig) else LogParametersConfig.from_dict(config)

    def render(self, ctx: StepContext) -> str:
        try:
            return self._config.template.format_map(ctx.job_parameters.to_values())
        except KeyError as e:
            raise JobParametersInvalidError(f"Template of step '{ctx.step_name}' needs job parameter {e}") from None

    def execute(self, ctx: StepContext) -> RepeatStatus:
        logger.info(self.render(ctx), step_name=ctx.step_name, job_execution_id=ctx.job_execution.job_execution_id)
        return RepeatStatus.FINISHED

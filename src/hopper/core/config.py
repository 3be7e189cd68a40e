# src/hopper/core/config.py
"""
Configuration schema and loading for hopper.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from hopper.contracts.enums import FilterAccounting


class PluginSettings(BaseModel):
    """A named plugin and its options."""

    model_config = {"frozen": True}

    plugin: str = Field(description="Plugin name (delimited, database, reject, ...)")
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Plugin-specific configuration options",
    )


class RetrySettings(BaseModel):
    """Retry behavior of one step."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=1, gt=0, description="Total attempts per record or batch (1 disables retry)")
    initial_delay_seconds: float = Field(default=0.0, ge=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=1.0, ge=0, description="Maximum backoff delay")
    jitter_seconds: float = Field(default=0.0, ge=0, description="Random jitter added to each backoff")
    exponential_base: float = Field(default=2.0, ge=1.0, description="Exponential backoff base")
    retryable: list[str] = Field(
        default_factory=list,
        description="Exception type names worth retrying (e.g. TimeoutError, OperationalError)",
    )


class SkipSettings(BaseModel):
    """Skip policy of one step."""

    model_config = {"frozen": True}

    limit: int = Field(default=0, ge=0, description="Maximum skipped records per step execution")
    skippable: list[str] = Field(
        default_factory=lambda: ["Exception"],
        description="Exception type names that may be skipped",
    )
    non_skippable: list[str] = Field(
        default_factory=list,
        description="Exception type names that are never skipped, even if a base class is skippable",
    )


class StepSettings(BaseModel):
    """One step: either a tasklet or a reader/processor/writer chunk step."""

    model_config = {"frozen": True}

    name: str = Field(min_length=1, description="Step name, unique within the job")
    allow_start_if_complete: bool = Field(default=False, description="Re-run on restart even if it completed")
    start_limit: int | None = Field(default=None, gt=0, description="Maximum starts per job instance")

    tasklet: PluginSettings | None = None

    reader: PluginSettings | None = None
    processor: PluginSettings | None = None
    writer: PluginSettings | None = None
    chunk_size: int = Field(default=10, gt=0, description="Records per committed chunk")
    workers: int = Field(default=1, gt=0, description="Worker threads processing records of a chunk")
    skip: SkipSettings | None = Field(default=None, description="Skip policy (default: never skip)")
    retry: RetrySettings = Field(default_factory=RetrySettings)
    filter_accounting: FilterAccounting = Field(
        default=FilterAccounting.INVISIBLE,
        description="How records filtered by the processor are counted",
    )
    log_calls: bool = Field(default=False, description="Log every read, process and write call")

    @model_validator(mode="after")
    def validate_step_kind(self) -> "StepSettings":
        """A step is a tasklet step or a chunk step, never both."""
        chunk_parts = [self.reader, self.processor, self.writer]
        if self.tasklet is not None:
            if any(part is not None for part in chunk_parts):
                raise ValueError(f"Step '{self.name}' has a tasklet and chunk components; choose one")
            return self
        if self.reader is None or self.writer is None:
            raise ValueError(f"Step '{self.name}' needs a tasklet, or a reader and a writer")
        return self

    @property
    def is_tasklet(self) -> bool:
        return self.tasklet is not None


class JobSettings(BaseModel):
    """A job: ordered steps plus launch rules."""

    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    steps: list[StepSettings] = Field(min_length=1)
    restartable: bool = Field(default=True, description="Allow relaunching a FAILED/STOPPED instance")
    allow_completed_rerun: bool = Field(default=False, description="Allow relaunching a COMPLETED instance")
    required_parameters: list[str] = Field(default_factory=list)
    incrementer: Literal["run_id"] | None = Field(default=None, description="Parameters incrementer for start-next")

    @field_validator("steps")
    @classmethod
    def validate_unique_step_names(cls, v: list[StepSettings]) -> list[StepSettings]:
        names = [step.name for step in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step name(s): {duplicates}")
        return v


class RepositorySettings(BaseModel):
    """Job repository database."""

    model_config = {"frozen": True}

    url: str = Field(
        default="sqlite:///./hopper.db",
        description="Full SQLAlchemy database URL",
    )
    init_scripts: list[Path] = Field(
        default_factory=list,
        description="SQL scripts run at startup (e.g. target tables of database writers)",
    )


class ConcurrencySettings(BaseModel):
    """Parallel execution configuration."""

    model_config = {"frozen": True}

    max_concurrent_jobs: int = Field(default=4, gt=0, description="Job executions running at the same time")


class TriggerSettings(BaseModel):
    """Inbound directory watched by `hopper watch`."""

    model_config = {"frozen": True}

    job: str = Field(description="Job launched for each new file")
    directory: Path = Field(description="Inbound directory")
    pattern: str = Field(default="*", description="Glob of files that count as input")
    file_parameter: str = Field(default="file", description="Identifying parameter holding the absolute path")
    labels: dict[str, str] = Field(default_factory=dict, description="Non-identifying string parameters")
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    auto_create_directory: bool = True
    archive_directory: Path | None = Field(default=None, description="Where inputs of COMPLETED executions are moved")


class HopperSettings(BaseModel):
    """Top-level hopper configuration.

    This is the single source of truth for the application.
    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True}

    jobs: list[JobSettings] = Field(min_length=1, description="Job definitions")
    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)
    trigger: TriggerSettings | None = Field(default=None, description="Directory trigger for `hopper watch`")

    @field_validator("jobs")
    @classmethod
    def validate_unique_job_names(cls, v: list[JobSettings]) -> list[JobSettings]:
        names = [job.name for job in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate job name(s): {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_trigger_job_exists(self) -> "HopperSettings":
        if self.trigger is not None and self.trigger.job not in self.job_names:
            raise ValueError(f"trigger.job '{self.trigger.job}' not found in jobs. Available jobs: {self.job_names}")
        return self

    @property
    def job_names(self) -> list[str]:
        return [job.name for job in self.jobs]


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default = match.group(2)  # None if no default specified
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # No env var and no default - keep original (will likely cause error)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _resolve_script_paths(config: dict[str, Any], base_dir: Path) -> dict[str, Any]:
    """Make relative repository.init_scripts paths relative to the settings file."""
    repository = config.get("repository")
    if not isinstance(repository, dict) or not isinstance(repository.get("init_scripts"), list):
        return config
    scripts = [str(base_dir / script) if not Path(str(script)).is_absolute() else script for script in repository["init_scripts"]]
    return {**config, "repository": {**repository, "init_scripts": scripts}}


def load_settings(config_path: Path) -> HopperSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (HOPPER_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: HOPPER_REPOSITORY__URL for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="HOPPER",
        settings_files=[str(config_path)],
        environments=False,  # No [default]/[production] sections
        load_dotenv=False,  # The CLI loads .env itself
        merge_enabled=True,  # Deep merge nested dicts
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    # Also filter out internal Dynaconf settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    raw_config = _expand_env_vars(raw_config)
    raw_config = _resolve_script_paths(raw_config, config_path.parent)

    return HopperSettings(**raw_config)

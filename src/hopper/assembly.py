# src/hopper/assembly.py
"""Assemble a runnable application from validated settings.

Construction happens explicitly, in dependency order: repository database,
repository, plugin manager, job definitions, operator, trigger. Nothing is
looked up by global state, so tests can assemble as many applications as
they need.
"""

from __future__ import annotations

import builtins
import importlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from hopper.contracts import errors as hopper_errors
from hopper.contracts.definition import (
    ChunkStepDefinition,
    JobDefinition,
    ProcessorFactory,
    ReaderFactory,
    RetryPolicy,
    StepDefinition,
    TaskletStepDefinition,
    WriterFactory,
)
from hopper.contracts.parameters import JobParameters, RunIdIncrementer
from hopper.core.config import HopperSettings, JobSettings, RetrySettings, SkipSettings, StepSettings
from hopper.core.repository import JobRepository, RepositoryDB
from hopper.engine.operator import JobOperator
from hopper.engine.skip import LimitCheckingSkipPolicy
from hopper.plugins.config_base import PluginConfigError
from hopper.plugins.logging_proxy import LoggingItemProcessor, LoggingItemReader, LoggingItemWriter
from hopper.plugins.manager import PluginManager
from hopper.trigger.directory import DirectoryTrigger

logger = structlog.get_logger(__name__)


def resolve_exception(name: str) -> type[BaseException]:
    """Resolve an exception type name from settings.

    Accepts hopper errors (``RecordRejectedError``), builtins (``ValueError``)
    and dotted paths (``sqlalchemy.exc.IntegrityError``).

    Raises:
        PluginConfigError: If the name does not resolve to an exception type
    """
    candidate: Any
    if "." in name:
        module_name, _, attr = name.rpartition(".")
        try:
            candidate = getattr(importlib.import_module(module_name), attr, None)
        except ImportError as e:
            raise PluginConfigError(f"Cannot import exception type '{name}': {e}") from e
    else:
        candidate = getattr(hopper_errors, name, None) or getattr(builtins, name, None)
    if not (isinstance(candidate, type) and issubclass(candidate, BaseException)):
        raise PluginConfigError(f"'{name}' is not an exception type")
    return candidate


def build_retry_policy(settings: RetrySettings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.max_attempts,
        base_delay=settings.initial_delay_seconds,
        max_delay=settings.max_delay_seconds,
        jitter=settings.jitter_seconds,
        exponential_base=settings.exponential_base,
        retryable=tuple(resolve_exception(name) for name in settings.retryable),
    )


def build_skip_policy(settings: SkipSettings) -> LimitCheckingSkipPolicy:
    return LimitCheckingSkipPolicy(
        skip_limit=settings.limit,
        skippable=[resolve_exception(name) for name in settings.skippable],
        non_skippable=[resolve_exception(name) for name in settings.non_skippable],
    )


def _logged[T](factory: Callable[[JobParameters], Any], proxy: Callable[[Any], T]) -> Callable[[JobParameters], T]:
    def build(parameters: JobParameters) -> T:
        return proxy(factory(parameters))

    return build


def build_step(settings: StepSettings, plugins: PluginManager) -> StepDefinition:
    """Turn step settings into a step definition, validating plugin options."""
    if settings.tasklet is not None:
        return TaskletStepDefinition(
            name=settings.name,
            allow_start_if_complete=settings.allow_start_if_complete,
            start_limit=settings.start_limit,
            tasklet=plugins.create_tasklet(settings.tasklet.plugin, dict(settings.tasklet.options)),
        )

    if settings.reader is None or settings.writer is None:
        raise PluginConfigError(f"Step '{settings.name}' needs a reader and a writer")
    reader_factory: ReaderFactory = plugins.reader_factory(settings.reader.plugin, dict(settings.reader.options))
    writer_factory: WriterFactory = plugins.writer_factory(settings.writer.plugin, dict(settings.writer.options))
    processor_factory: ProcessorFactory | None = None
    if settings.processor is not None:
        processor_factory = plugins.processor_factory(settings.processor.plugin, dict(settings.processor.options))

    if settings.log_calls:
        reader_factory = _logged(reader_factory, LoggingItemReader)
        writer_factory = _logged(writer_factory, LoggingItemWriter)
        if processor_factory is not None:
            processor_factory = _logged(processor_factory, LoggingItemProcessor)

    return ChunkStepDefinition(
        name=settings.name,
        allow_start_if_complete=settings.allow_start_if_complete,
        start_limit=settings.start_limit,
        reader_factory=reader_factory,
        processor_factory=processor_factory,
        writer_factory=writer_factory,
        chunk_size=settings.chunk_size,
        skip_policy=build_skip_policy(settings.skip) if settings.skip is not None else None,
        retry=build_retry_policy(settings.retry),
        workers=settings.workers,
        filter_accounting=settings.filter_accounting,
    )


def build_job(settings: JobSettings, plugins: PluginManager) -> JobDefinition:
    return JobDefinition(
        name=settings.name,
        steps=tuple(build_step(step, plugins) for step in settings.steps),
        restartable=settings.restartable,
        allow_completed_rerun=settings.allow_completed_rerun,
        required_parameters=frozenset(settings.required_parameters),
        incrementer=RunIdIncrementer() if settings.incrementer == "run_id" else None,
    )


@dataclass
class Application:
    """Everything a CLI command needs, wired together."""

    settings: HopperSettings
    db: RepositoryDB
    repository: JobRepository
    operator: JobOperator
    trigger: DirectoryTrigger | None

    def close(self) -> None:
        self.operator.shutdown()
        self.db.close()

    def __enter__(self) -> Application:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()


def build_jobs(settings: HopperSettings, plugins: PluginManager | None = None) -> list[JobDefinition]:
    """Build every job definition; fails on unknown plugins or invalid options.

    Raises:
        PluginConfigError: Unknown plugin, invalid options or exception name
    """
    if plugins is None:
        plugins = PluginManager()
        plugins.register_builtin_plugins()
    return [build_job(job, plugins) for job in settings.jobs]


def build_application(settings: HopperSettings, *, plugins: PluginManager | None = None) -> Application:
    """Construct the repository, jobs, operator and trigger.

    Raises:
        PluginConfigError: A job references an unknown plugin or invalid options
        sqlalchemy.exc.SQLAlchemyError: The repository database could not be prepared
    """
    jobs = build_jobs(settings, plugins)

    db = RepositoryDB.from_url(settings.repository.url)
    try:
        if settings.repository.init_scripts:
            db.run_scripts(settings.repository.init_scripts)
        repository = JobRepository(db)
        operator = JobOperator(repository, max_concurrent_jobs=settings.concurrency.max_concurrent_jobs)
        for job in jobs:
            operator.register(job)
    except Exception:
        db.close()
        raise

    trigger = None
    if settings.trigger is not None:
        trigger = DirectoryTrigger(
            operator,
            job_name=settings.trigger.job,
            directory=settings.trigger.directory.expanduser(),
            pattern=settings.trigger.pattern,
            file_parameter=settings.trigger.file_parameter,
            labels=dict(settings.trigger.labels),
            poll_interval=settings.trigger.poll_interval_seconds,
            auto_create_directory=settings.trigger.auto_create_directory,
            archive_directory=settings.trigger.archive_directory.expanduser() if settings.trigger.archive_directory else None,
        )

    logger.debug("Application assembled", jobs=[job.name for job in jobs])
    return Application(settings=settings, db=db, repository=repository, operator=operator, trigger=trigger)

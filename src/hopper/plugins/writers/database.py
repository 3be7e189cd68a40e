# src/hopper/plugins/writers/database.py
"""Database batch writer.

Executes one parameterized statement with named bind parameters
(``insert into dogs (id, name) values (:id, :name)``) for every record of a
chunk, as a single executemany batch through SQLAlchemy Core.

The writer only ever writes through the chunk transaction of the job
repository (``StepContext.connection``), so the rows commit atomically with
the step's counters and checkpoint. Target tables therefore live in the
repository database; ``repository.init_scripts`` creates them.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import field_validator
from sqlalchemy import text

from hopper.contracts.definition import WriterFactory
from hopper.contracts.parameters import JobParameters
from hopper.plugins.config_base import PluginConfig

if TYPE_CHECKING:
    from hopper.contracts.context import StepContext

logger = structlog.get_logger(__name__)


class DatabaseBatchWriterConfig(PluginConfig):
    """Options of the database batch writer.

    Attributes:
        sql: Statement with named bind parameters (``:name``)
    """

    sql: str

    @field_validator("sql")
    @classmethod
    def validate_sql(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("sql must not be empty")
        return v.strip()


def _as_parameters(item: Any) -> dict[str, Any]:
    """Bind parameters of one record: mapping keys, dataclass fields or model fields."""
    if isinstance(item, Mapping):
        return dict(item)
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return dataclasses.asdict(item)
    model_dump = getattr(item, "model_dump", None)
    if callable(model_dump):
        return dict(model_dump())
    raise TypeError(f"Cannot bind {type(item).__name__} to named parameters; expected a mapping, dataclass or pydantic model")


class DatabaseBatchWriter:
    """Write each chunk as one executemany batch.

    Example:
        writer = DatabaseBatchWriter({"sql": "insert into dogs (id, name) values (:id, :name)"})
        writer.write([{"id": 1, "name": "Rex"}], ctx)
    """

    def __init__(self, config: DatabaseBatchWriterConfig | dict[str, Any]) -> None:
        self._config = config if isinstance(config, DatabaseBatchWriterConfig) else DatabaseBatchWriterConfig.from_dict(config)
        self._statement = text(self._config.sql)

    @classmethod
    def factory(cls, options: dict[str, Any]) -> WriterFactory:
        """Validate options now; build a writer per step execution."""
        config = DatabaseBatchWriterConfig.from_dict(options)

        def build(parameters: JobParameters) -> DatabaseBatchWriter:
            return cls(config)

        return build

    @property
    def sql(self) -> str:
        return self._config.sql

    def write(self, items: Sequence[Any], ctx: StepContext) -> None:
        """Write all records of the chunk as one batch.

        Raises:
            RuntimeError: If no transaction is available to write through
            sqlalchemy.exc.SQLAlchemyError: If the batch fails (e.g. constraint violation)
        """
        if not items:
            return
        rows = [_as_parameters(item) for item in items]

        if ctx.connection is None:
            raise RuntimeError("Database batch writer called outside a chunk transaction")
        ctx.connection.execute(self._statement, rows)
        logger.debug("Batch written", step_name=ctx.step_name, rows=len(rows))

# src/hopper/plugins/readers/delimited.py
"""Delimited file reader.

Reads CSV-style files record by record with csv.reader, so quoted fields may
contain delimiters and embedded newlines. Each record becomes a dict of the
configured typed fields.

Restart state: with ``save_state`` the number of data records consumed so far
(good and bad) is stored in the execution context under
``<name>.read.count``. On open() that many records are skipped, so a
restarted step continues right after the last committed chunk.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import IO, Any

import structlog
from pydantic import Field, ValidationError, field_validator, model_validator

from hopper.contracts.definition import ReaderFactory
from hopper.contracts.errors import ItemReadError, JobParametersInvalidError
from hopper.contracts.execution import ExecutionContext
from hopper.contracts.parameters import JobParameters
from hopper.plugins.config_base import PluginConfig
from hopper.plugins.fields import FieldDefinition, RecordSchema, describe_validation_error, parse_fields

logger = structlog.get_logger(__name__)


class DelimitedFileReaderConfig(PluginConfig):
    """Options of the delimited file reader.

    Attributes:
        names: Column names in file order
        fields: Typed subset of the columns that make up a record
            (e.g. ``["id: int", "gender: char"]``). When omitted every column
            is read as str.
        delimiter: Single-character field delimiter
        quotechar: Single-character quote
        lines_to_skip: Header records skipped before the first data record
        encoding: File encoding
        save_state: Store the read position in the execution context
        name: Prefix of the execution context keys
        strict: Reject records whose column count differs from ``names``;
            when False short records are padded and extra columns dropped
        path: Fixed input path; when omitted the path comes from the job
            parameter named by ``path_parameter``
        path_parameter: Job parameter holding the input path
    """

    names: list[str] = Field(min_length=1)
    fields: list[str] | None = None
    delimiter: str = ","
    quotechar: str = '"'
    lines_to_skip: int = Field(default=0, ge=0)
    encoding: str = "utf-8"
    save_state: bool = True
    name: str = "delimitedFileReader"
    strict: bool = True
    path: str | None = None
    path_parameter: str = "file"

    @field_validator("delimiter", "quotechar")
    @classmethod
    def validate_single_character(cls, v: str) -> str:
        if len(v) != 1:
            raise ValueError(f"must be a single character, got {v!r}")
        return v

    @field_validator("names")
    @classmethod
    def validate_unique_names(cls, v: list[str]) -> list[str]:
        duplicates = sorted({name for name in v if v.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate column name(s): {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def validate_fields_are_columns(self) -> DelimitedFileReaderConfig:
        unknown = [f.name for f in self.field_definitions() if f.name not in self.names]
        if unknown:
            raise ValueError(f"Field(s) {', '.join(unknown)} not among column names {self.names}")
        return self

    def field_definitions(self) -> tuple[FieldDefinition, ...]:
        if self.fields is None:
            return tuple(FieldDefinition(name=name, field_type="str") for name in self.names)
        return parse_fields(self.fields)


class DelimitedFileReader:
    """Read typed records from a delimited file.

    Implements ItemReader and ItemStream. Malformed records raise
    ItemReadError after the reader has moved past them, so a skip policy can
    tolerate them without losing its place.

    Example:
        reader = DelimitedFileReader(
            {"names": ["id", "name"], "fields": ["id: int", "name: str"], "lines_to_skip": 1},
            path="dogs.csv",
        )
        reader.open(ExecutionContext())
        record = reader.read()   # {"id": 1, "name": "Rex"}
    """

    def __init__(self, config: DelimitedFileReaderConfig | dict[str, Any], path: str | Path) -> None:
        self._config = config if isinstance(config, DelimitedFileReaderConfig) else DelimitedFileReaderConfig.from_dict(config)
        self._path = Path(path)
        self._schema = RecordSchema(self._config.field_definitions())
        self._positions = {name: index for index, name in enumerate(self._config.names)}
        self._file: IO[str] | None = None
        self._reader: Any = None
        self._read_count = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def read_count_key(self) -> str:
        return f"{self._config.name}.read.count"

    @classmethod
    def factory(cls, options: dict[str, Any]) -> ReaderFactory:
        """Validate options now; build a reader per step execution."""
        config = DelimitedFileReaderConfig.from_dict(options)

        def build(parameters: JobParameters) -> DelimitedFileReader:
            path = config.path or parameters.get_string(config.path_parameter)
            if not path:
                raise JobParametersInvalidError(f"Delimited file reader needs the '{config.path_parameter}' job parameter")
            return cls(config, path)

        return build

    # === ItemStream ===

    def open(self, execution_context: ExecutionContext) -> None:
        """Open the file and restore the saved position.

        Raises:
            FileNotFoundError: If the input file does not exist
        """
        if not self._path.is_file():
            raise FileNotFoundError(f"Input file not found: {self._path}")

        # newline='' is required for embedded newlines in quoted fields
        self._file = open(self._path, encoding=self._config.encoding, newline="")  # noqa: SIM115 - closed in close()
        self._reader = csv.reader(self._file, delimiter=self._config.delimiter, quotechar=self._config.quotechar)
        self._read_count = 0

        for _ in range(self._config.lines_to_skip):
            try:
                next(self._reader, None)
            except csv.Error:
                # Header lines are discarded, parseable or not
                continue

        restart_at = execution_context.get_int(self.read_count_key, 0) if self._config.save_state else 0
        while self._read_count < restart_at:
            try:
                row = self._next_row()
            except csv.Error:
                self._read_count += 1
                continue
            if row is None:
                break
            self._read_count += 1
        if restart_at:
            logger.info("Reader position restored", path=str(self._path), read_count=self._read_count)

    def update(self, execution_context: ExecutionContext) -> None:
        if self._config.save_state:
            execution_context[self.read_count_key] = self._read_count

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
        self._file = None
        self._reader = None

    # === ItemReader ===

    def _next_row(self) -> list[str] | None:
        """Next non-blank row, None at end of file. Propagates csv.Error."""
        while True:
            try:
                values: list[str] = next(self._reader)
            except StopIteration:
                return None
            if values:
                return values

    def read(self) -> dict[str, Any] | None:
        """Return the next record, or None at end of file.

        Raises:
            ItemReadError: The record is malformed; the reader has moved past it
        """
        if self._reader is None:
            raise RuntimeError(f"Reader for {self._path} is not open")

        try:
            values = self._next_row()
        except csv.Error as e:
            self._read_count += 1
            line = self._reader.line_num
            raise ItemReadError(f"Parse error at line {line} of {self._path.name}: {e}", line_number=line) from e
        if values is None:
            return None

        self._read_count += 1
        line = self._reader.line_num
        raw = self._config.delimiter.join(values)
        expected = len(self._config.names)
        if len(values) != expected:
            if self._config.strict:
                raise ItemReadError(
                    f"Line {line} of {self._path.name}: expected {expected} fields, got {len(values)}",
                    line_number=line,
                    raw=raw,
                )
            values = (values + [""] * expected)[:expected]

        columns = {field.name: values[self._positions[field.name]] for field in self._schema.fields}
        try:
            return self._schema.coerce(columns)
        except ValidationError as e:
            raise ItemReadError(f"Line {line} of {self._path.name}: {describe_validation_error(e)}", line_number=line, raw=raw) from e

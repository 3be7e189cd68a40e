# src/hopper/plugins/fields.py
"""Typed field specs for delimited records.

A field spec is ``"name: type"`` or ``"name: type?"``; the trailing ``?``
marks a field whose empty value maps to None instead of failing validation.

Supported types: str, int, float, bool, char.

Records are coerced through a pydantic model built once per field list, so
"42" becomes 42 at the reader and anything that does not fit the declared
type is rejected there, not in the writer.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, create_model

SUPPORTED_TYPES = frozenset({"str", "int", "float", "bool", "char"})

FIELD_PATTERN = re.compile(r"^(\w+):\s*(\w+)(\?)?$")

FieldType = Literal["str", "int", "float", "bool", "char"]

# NaN and Infinity cannot be stored in the execution context or canonical JSON
FiniteFloat = Annotated[float, Field(allow_inf_nan=False)]
Char = Annotated[str, StringConstraints(min_length=1, max_length=1)]

TYPE_MAP: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": FiniteFloat,
    "bool": bool,
    "char": Char,
}


@dataclass(frozen=True)
class FieldDefinition:
    """Definition of a single record field.

    Attributes:
        name: Field name, must also appear in the reader's column names
        field_type: One of: str, int, float, bool, char
        required: If False, an empty value becomes None
    """

    name: str
    field_type: FieldType
    required: bool = True

    @classmethod
    def parse(cls, spec: str) -> FieldDefinition:
        """Parse a field specification string like ``"id: int"``.

        Raises:
            ValueError: If spec is malformed or type is unknown
        """
        spec = spec.strip()
        match = FIELD_PATTERN.match(spec)
        if not match:
            raise ValueError(f"Invalid field spec '{spec}'. Expected format: 'field_name: type' or 'field_name: type?'")

        name, field_type, optional_marker = match.groups()
        if not name.isidentifier():
            raise ValueError(f"Invalid field name '{name}' in field spec '{spec}'. Field names must be valid Python identifiers.")
        if field_type not in SUPPORTED_TYPES:
            raise ValueError(f"Unknown type '{field_type}' in field spec '{spec}'. Supported types: {', '.join(sorted(SUPPORTED_TYPES))}")

        typed_field: FieldType = field_type  # type: ignore[assignment]
        return cls(name=name, field_type=typed_field, required=optional_marker is None)

    def python_type(self) -> Any:
        base_type = TYPE_MAP[self.field_type]
        return base_type if self.required else base_type | None

    def prepare(self, raw: str) -> str | None:
        """Raw column text as handed to validation.

        str values are kept verbatim; other types are stripped. An empty
        value of an optional field becomes None.
        """
        value = raw if self.field_type == "str" else raw.strip()
        if not value and not self.required:
            return None
        return value


def parse_fields(specs: list[str]) -> tuple[FieldDefinition, ...]:
    """Parse field specs, rejecting duplicate names."""
    fields = tuple(FieldDefinition.parse(spec) for spec in specs)
    names = [f.name for f in fields]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValueError(f"Duplicate field name(s): {', '.join(duplicates)}")
    return fields


def create_record_model(fields: tuple[FieldDefinition, ...], name: str = "Record") -> type[BaseModel]:
    """Build a pydantic model validating one record of the given fields.

    Model attributes are positional (``f0``, ``f1``...) with the field name as
    alias, so a column called ``json`` or ``copy`` cannot collide with
    BaseModel's own attributes.
    """
    definitions: dict[str, Any] = {}
    for index, field_def in enumerate(fields):
        default = ... if field_def.required else None
        definitions[f"f{index}"] = (field_def.python_type(), Field(default, alias=field_def.name))
    return create_model(
        name,
        __config__=ConfigDict(extra="forbid", frozen=True),
        **definitions,
    )


def describe_validation_error(error: ValidationError) -> str:
    """One line per failing field: ``name: message (got 'raw')``."""
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        parts.append(f"{location}: {detail['msg']} (got {detail.get('input')!r})")
    return "; ".join(parts)


class RecordSchema:
    """Coerces raw column text into a typed record.

    Example:
        schema = RecordSchema(parse_fields(["id: int", "gender: char"]))
        schema.coerce({"id": "7", "gender": "F"})   # {"id": 7, "gender": "F"}
    """

    def __init__(self, fields: tuple[FieldDefinition, ...]) -> None:
        self._fields = fields
        self._model = create_record_model(fields)

    @property
    def fields(self) -> tuple[FieldDefinition, ...]:
        return self._fields

    def coerce(self, raw: Mapping[str, str]) -> dict[str, Any]:
        """Validate raw values keyed by field name.

        Raises:
            ValidationError: A value does not fit its field's type
        """
        prepared = {field_def.name: field_def.prepare(raw[field_def.name]) for field_def in self._fields}
        return self._model.model_validate(prepared).model_dump(by_alias=True)

# tests/unit/plugins/test_fields.py
"""Tests for typed field specs."""

from typing import Any

import pytest
from pydantic import ValidationError

from hopper.plugins.fields import FieldDefinition, RecordSchema, describe_validation_error, parse_fields


class TestFieldDefinitionParse:
    def test_required_field(self) -> None:
        field = FieldDefinition.parse("id: int")
        assert field == FieldDefinition(name="id", field_type="int", required=True)

    def test_optional_field(self) -> None:
        field = FieldDefinition.parse("image:str?")
        assert field.name == "image"
        assert not field.required

    @pytest.mark.parametrize("spec", ["id", "id: integer", ": int", "id int"])
    def test_malformed_specs_rejected(self, spec: str) -> None:
        with pytest.raises(ValueError):
            FieldDefinition.parse(spec)

    def test_duplicates_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate field name"):
            parse_fields(["id: int", "id: str"])


class TestRecordSchema:
    @staticmethod
    def _coerce(specs: list[str], **raw: str) -> dict[str, Any]:
        return RecordSchema(parse_fields(specs)).coerce(raw)

    def test_int_and_float(self) -> None:
        assert self._coerce(["id: int", "weight: float"], id=" 42 ", weight="3.5") == {"id": 42, "weight": 3.5}

    def test_str_kept_verbatim(self) -> None:
        assert self._coerce(["name: str"], name=" Rex ") == {"name": " Rex "}

    def test_empty_required_str_is_empty_string(self) -> None:
        assert self._coerce(["name: str"], name="") == {"name": ""}

    def test_empty_optional_is_none(self) -> None:
        assert self._coerce(["image: str?", "age: int?"], image="", age="  ") == {"image": None, "age": None}

    def test_empty_required_number_fails(self) -> None:
        with pytest.raises(ValidationError):
            self._coerce(["id: int"], id="")

    @pytest.mark.parametrize(("raw", "expected"), [("true", True), ("Y", True), ("0", False), ("no", False)])
    def test_bool(self, raw: str, expected: bool) -> None:
        assert self._coerce(["active: bool"], active=raw)["active"] is expected

    def test_bool_rejects_other_values(self) -> None:
        with pytest.raises(ValidationError):
            self._coerce(["active: bool"], active="maybe")

    def test_char(self) -> None:
        assert self._coerce(["gender: char"], gender="F") == {"gender": "F"}
        with pytest.raises(ValidationError):
            self._coerce(["gender: char"], gender="FM")

    def test_bad_int(self) -> None:
        with pytest.raises(ValidationError):
            self._coerce(["id: int"], id="x")

    @pytest.mark.parametrize("raw", ["nan", "NaN", "inf", "-Infinity"])
    def test_non_finite_float_rejected(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            self._coerce(["score: float"], score=raw)

    def test_field_named_like_model_attribute(self) -> None:
        assert self._coerce(["json: str", "copy: int"], json="x", copy="1") == {"json": "x", "copy": 1}

    def test_error_description_names_field_and_input(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            self._coerce(["id: int", "score: float"], id="7", score="nan")

        description = describe_validation_error(exc_info.value)
        assert description.startswith("score: ")
        assert "'nan'" in description

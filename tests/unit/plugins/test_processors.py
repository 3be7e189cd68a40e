# tests/unit/plugins/test_processors.py
"""Tests for the built-in processors."""

from dataclasses import dataclass

import pytest

from hopper.contracts.errors import RecordRejectedError
from hopper.plugins.config_base import PluginConfigError
from hopper.plugins.processors import DroppingProcessor, PassthroughProcessor, RejectingProcessor
from tests.fixtures.jobs import make_parameters


@dataclass
class Dog:
    id: int
    name: str


class TestRejectingProcessor:
    def test_rejects_configured_values(self) -> None:
        processor = RejectingProcessor({"field": "id", "values": [101]})
        record = {"id": 101, "name": "Nemo"}

        with pytest.raises(RecordRejectedError, match="couldn't continue: id=101") as exc_info:
            processor.process(record)
        assert exc_info.value.record is record

    def test_passes_other_records(self) -> None:
        processor = RejectingProcessor({"field": "id", "values": [101]})
        assert processor.process({"id": 7, "name": "Rex"}) == {"id": 7, "name": "Rex"}

    def test_reads_attributes_of_objects(self) -> None:
        processor = RejectingProcessor({"field": "name", "values": ["Nemo"]})
        with pytest.raises(RecordRejectedError):
            processor.process(Dog(id=1, name="Nemo"))

    def test_values_required(self) -> None:
        with pytest.raises(PluginConfigError):
            RejectingProcessor.factory({"field": "id", "values": []})


class TestDroppingProcessor:
    def test_drops_configured_values(self) -> None:
        processor = DroppingProcessor.factory({"field": "gender", "values": ["M"]})(make_parameters())
        assert processor.process({"gender": "M"}) is None
        assert processor.process({"gender": "F"}) == {"gender": "F"}

    def test_missing_field_is_kept(self) -> None:
        processor = DroppingProcessor({"field": "gender", "values": ["M"]})
        assert processor.process({"name": "Rex"}) == {"name": "Rex"}


class TestPassthroughProcessor:
    def test_returns_item(self) -> None:
        processor = PassthroughProcessor.factory({})(make_parameters())
        item = {"id": 1}
        assert processor.process(item) is item

    def test_rejects_options(self) -> None:
        with pytest.raises(PluginConfigError):
            PassthroughProcessor.factory({"field": "id"})

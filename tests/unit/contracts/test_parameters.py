# tests/unit/contracts/test_parameters.py
"""Tests for JobParameter, JobParameters, the builder and incrementers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from hopper.contracts.enums import ParameterType
from hopper.contracts.parameters import (
    JobParameter,
    JobParameters,
    JobParametersBuilder,
    RunIdIncrementer,
    parse_parameter,
)


class TestJobParameter:
    def test_rejects_value_of_wrong_type(self) -> None:
        with pytest.raises(TypeError, match="long parameter cannot hold str"):
            JobParameter("1", ParameterType.LONG)

    def test_rejects_bool_as_long(self) -> None:
        with pytest.raises(TypeError):
            JobParameter(True, ParameterType.LONG)

    def test_double_accepts_int_and_stores_float(self) -> None:
        parameter = JobParameter(3, ParameterType.DOUBLE)
        assert parameter.value == 3.0
        assert isinstance(parameter.value, float)

    def test_naive_date_becomes_utc(self) -> None:
        parameter = JobParameter(datetime(2024, 5, 1, 12, 0), ParameterType.DATE)
        assert parameter.value.tzinfo == UTC

    def test_aware_date_normalized_to_utc(self) -> None:
        parameter = JobParameter(datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2))), ParameterType.DATE)
        assert parameter.value.tzinfo == UTC
        assert parameter.encode() == "2024-05-01T12:00:00+00:00"

    def test_negative_zero_double_encodes_as_zero(self) -> None:
        assert JobParameter(-0.0, ParameterType.DOUBLE).encode() == "0.0"

    @pytest.mark.parametrize(
        ("value", "type_"),
        [
            ("/data/inbound/dogs.csv", ParameterType.STRING),
            (42, ParameterType.LONG),
            (0.1, ParameterType.DOUBLE),
            (datetime(2024, 5, 1, 12, 30, tzinfo=UTC), ParameterType.DATE),
        ],
    )
    def test_encode_decode_preserves_value(self, value: object, type_: ParameterType) -> None:
        parameter = JobParameter(value, type_, identifying=False)
        decoded = JobParameter.decode(parameter.encode(), type_, identifying=False)
        assert decoded == parameter


class TestJobParametersEquality:
    """Only identifying parameters take part in equality and hashing."""

    def test_labels_do_not_affect_equality(self) -> None:
        a = JobParametersBuilder().add_string("file", "a.csv").add_string("name", "fans", identifying=False).to_job_parameters()
        b = JobParametersBuilder().add_string("file", "a.csv").add_string("name", "other", identifying=False).to_job_parameters()
        assert a == b
        assert hash(a) == hash(b)

    def test_identifying_values_affect_equality(self) -> None:
        a = JobParametersBuilder().add_string("file", "a.csv").to_job_parameters()
        b = JobParametersBuilder().add_string("file", "b.csv").to_job_parameters()
        assert a != b

    def test_identifying_flag_affects_equality(self) -> None:
        a = JobParametersBuilder().add_string("file", "a.csv").to_job_parameters()
        b = JobParametersBuilder().add_string("file", "a.csv", identifying=False).to_job_parameters()
        assert a != b

    def test_key_material_is_sorted_and_identifying_only(self) -> None:
        parameters = (
            JobParametersBuilder()
            .add_long("run.id", 3)
            .add_string("file", "a.csv")
            .add_string("name", "fans", identifying=False)
            .to_job_parameters()
        )
        assert list(parameters.key_material()) == ["file", "run.id"]
        assert parameters.key_material()["run.id"] == {"type": "long", "value": "3"}


class TestTypedAccessors:
    def test_get_string_default_when_missing(self) -> None:
        assert JobParameters().get_string("file", "fallback") == "fallback"

    def test_get_long_on_string_raises(self) -> None:
        parameters = JobParametersBuilder().add_string("file", "a.csv").to_job_parameters()
        with pytest.raises(TypeError, match="is string, not long"):
            parameters.get_long("file")

    def test_to_values_includes_labels(self) -> None:
        parameters = (
            JobParametersBuilder()
            .add_string("file", "a.csv")
            .add_string("name", "Enterprise Integration fans", identifying=False)
            .to_job_parameters()
        )
        assert parameters.to_values() == {"file": "a.csv", "name": "Enterprise Integration fans"}


class TestRunIdIncrementer:
    def test_first_run_id_is_one(self) -> None:
        assert RunIdIncrementer().get_next(None).get_long("run.id") == 1

    def test_bumps_previous_run_id_and_keeps_other_parameters(self) -> None:
        previous = JobParametersBuilder().add_string("file", "a.csv").add_long("run.id", 7).to_job_parameters()
        following = RunIdIncrementer().get_next(previous)
        assert following.get_long("run.id") == 8
        assert following.get_string("file") == "a.csv"
        assert following != previous


class TestParseParameter:
    def test_plain_string(self) -> None:
        name, parameter = parse_parameter("file=/tmp/dogs.csv")
        assert name == "file"
        assert parameter == JobParameter("/tmp/dogs.csv", ParameterType.STRING)

    def test_typed_long_non_identifying(self) -> None:
        name, parameter = parse_parameter("run.id:long=5", identifying=False)
        assert name == "run.id"
        assert parameter.value == 5
        assert parameter.identifying is False

    def test_value_may_contain_equals(self) -> None:
        _, parameter = parse_parameter("query=a=b")
        assert parameter.value == "a=b"

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown parameter type 'int'"):
            parse_parameter("count:int=5")

    def test_missing_equals_rejected(self) -> None:
        with pytest.raises(ValueError, match="Expected name=value"):
            parse_parameter("file")

    def test_bad_long_value_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_parameter("run.id:long=abc")

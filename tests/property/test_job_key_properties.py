# tests/property/test_job_key_properties.py
"""Property-based tests for job keys and canonical JSON.

The job key decides whether a launch targets an existing JobInstance, so it
must be a pure function of the identifying parameters:
- Insertion order never changes the key
- Non-identifying labels never change the key
- Different identifying values give different keys
- Equal parameters always give the same key
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone

from hypothesis import given
from hypothesis import strategies as st

from hopper.contracts.parameters import JobParameters, JobParametersBuilder
from hopper.core.canonical import canonical_json, stable_hash
from hopper.core.repository import job_key
from tests.property.settings import DETERMINISM_SETTINGS, STANDARD_SETTINGS

parameter_names = st.from_regex(r"[a-z][a-z0-9_.]{0,15}", fullmatch=True)
parameter_values = st.text(max_size=30)
identifying = st.dictionaries(parameter_names, parameter_values, max_size=6)

# RFC 8785 safe integers
json_scalars = st.none() | st.booleans() | st.integers(min_value=-(2**53) + 1, max_value=2**53 - 1) | st.text(max_size=20)
json_values = st.recursive(
    json_scalars,
    lambda children: st.lists(children, max_size=4) | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=20,
)


def _parameters(values: dict[str, str], labels: dict[str, str] | None = None) -> JobParameters:
    builder = JobParametersBuilder()
    for name, value in values.items():
        builder.add_string(name, value)
    for name, value in (labels or {}).items():
        builder.add_string(name, value, identifying=False)
    return builder.to_job_parameters()


class TestJobKeyDeterminism:
    @given(values=identifying)
    @DETERMINISM_SETTINGS
    def test_insertion_order_irrelevant(self, values: dict[str, str]) -> None:
        reversed_values = dict(reversed(list(values.items())))
        assert job_key(_parameters(values)) == job_key(_parameters(reversed_values))

    @given(values=identifying, labels=st.dictionaries(parameter_names, parameter_values, max_size=4))
    @DETERMINISM_SETTINGS
    def test_labels_never_change_the_key(self, values: dict[str, str], labels: dict[str, str]) -> None:
        labels = {name: value for name, value in labels.items() if name not in values}
        assert job_key(_parameters(values, labels)) == job_key(_parameters(values))

    @given(values=identifying, first=parameter_values, second=parameter_values)
    @STANDARD_SETTINGS
    def test_different_file_different_key(self, values: dict[str, str], first: str, second: str) -> None:
        if first == second:
            return
        assert job_key(_parameters({**values, "file": first})) != job_key(_parameters({**values, "file": second}))

instants = st.datetimes(min_value=datetime(1970, 1, 2), max_value=datetime(9999, 12, 30), timezones=st.just(UTC))
offsets = st.integers(min_value=-14 * 60, max_value=14 * 60).map(lambda minutes: timezone(timedelta(minutes=minutes)))


class TestEqualParametersShareAKey:
    @given(instant=instants, offset=offsets)
    @DETERMINISM_SETTINGS
    def test_same_instant_in_any_offset(self, instant: datetime, offset: timezone) -> None:
        utc = JobParametersBuilder().add_date("day", instant).to_job_parameters()
        shifted = JobParametersBuilder().add_date("day", instant.astimezone(offset)).to_job_parameters()

        assert utc == shifted
        assert job_key(utc) == job_key(shifted)

    @given(value=st.floats(allow_nan=False) | st.integers(min_value=-(2**53), max_value=2**53))
    @STANDARD_SETTINGS
    def test_equal_doubles(self, value: float) -> None:
        as_given = JobParametersBuilder().add_double("rate", value).to_job_parameters()
        as_float = JobParametersBuilder().add_double("rate", float(value)).to_job_parameters()
        negated_zero = JobParametersBuilder().add_double("rate", -0.0 if value == 0 else value).to_job_parameters()

        assert as_given == as_float == negated_zero
        assert job_key(as_given) == job_key(as_float) == job_key(negated_zero)


class TestCanonicalJson:
    @given(value=json_values)
    @STANDARD_SETTINGS
    def test_parses_back_to_the_same_value(self, value: object) -> None:
        assert json.loads(canonical_json(value)) == value

    @given(value=st.dictionaries(st.text(max_size=8), json_scalars, max_size=8))
    @DETERMINISM_SETTINGS
    def test_hash_independent_of_key_order(self, value: dict[str, object]) -> None:
        assert stable_hash(value) == stable_hash(dict(reversed(list(value.items()))))

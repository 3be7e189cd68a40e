# src/hopper/contracts/parameters.py
"""Job parameters: typed, immutable launch arguments.

Each parameter carries an ``identifying`` flag. Only identifying parameters
participate in run uniqueness, so two JobParameters compare equal when their
identifying subsets are equal, regardless of informational labels.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from hopper.contracts.enums import ParameterType

_PYTHON_TYPES: dict[ParameterType, tuple[type, ...]] = {
    ParameterType.STRING: (str,),
    ParameterType.LONG: (int,),
    ParameterType.DOUBLE: (float, int),
    ParameterType.DATE: (datetime,),
}


@dataclass(frozen=True)
class JobParameter:
    """A single typed parameter value."""

    value: Any
    type: ParameterType
    identifying: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, _PYTHON_TYPES[self.type]):
            raise TypeError(f"{self.type.value} parameter cannot hold {type(self.value).__name__}: {self.value!r}")
        # Equal values must encode identically, or equal parameters get different job keys
        if self.type == ParameterType.DOUBLE:
            object.__setattr__(self, "value", float(self.value) + 0.0)  # -0.0 -> 0.0
        if self.type == ParameterType.DATE:
            value = self.value if self.value.tzinfo is not None else self.value.replace(tzinfo=UTC)
            object.__setattr__(self, "value", value.astimezone(UTC))

    def encode(self) -> str:
        """String form stored in the repository."""
        if self.type == ParameterType.DATE:
            return str(self.value.isoformat())
        if self.type == ParameterType.DOUBLE:
            return repr(self.value)
        return str(self.value)

    @classmethod
    def decode(cls, raw: str, type_: ParameterType, identifying: bool) -> JobParameter:
        """Inverse of encode()."""
        if type_ == ParameterType.LONG:
            return cls(int(raw), type_, identifying)
        if type_ == ParameterType.DOUBLE:
            return cls(float(raw), type_, identifying)
        if type_ == ParameterType.DATE:
            return cls(datetime.fromisoformat(raw), type_, identifying)
        return cls(raw, type_, identifying)


class JobParameters(Mapping[str, JobParameter]):
    """Immutable mapping of parameter name to JobParameter.

    Equality and hashing use only the identifying parameters.
    """

    __slots__ = ("_parameters",)

    def __init__(self, parameters: Mapping[str, JobParameter] | None = None) -> None:
        self._parameters: dict[str, JobParameter] = dict(parameters or {})

    def __getitem__(self, key: str) -> JobParameter:
        return self._parameters[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JobParameters):
            return NotImplemented
        return self.identifying_parameters() == other.identifying_parameters()

    def __hash__(self) -> int:
        return hash(tuple(sorted(self.identifying_parameters().items())))

    def __repr__(self) -> str:
        rendered = ", ".join(f"{name}={p.value!r}{'' if p.identifying else ' (non-identifying)'}" for name, p in self._parameters.items())
        return f"JobParameters({rendered})"

    def identifying_parameters(self) -> dict[str, JobParameter]:
        return {name: p for name, p in self._parameters.items() if p.identifying}

    def key_material(self) -> dict[str, dict[str, str]]:
        """JSON-safe view of the identifying subset, used to derive the job key."""
        return {name: {"type": p.type.value, "value": p.encode()} for name, p in sorted(self.identifying_parameters().items())}

    def to_values(self) -> dict[str, Any]:
        """Plain name -> value dict (for logging and message templates)."""
        return {name: p.value for name, p in self._parameters.items()}

    def _typed(self, key: str, type_: ParameterType, default: Any) -> Any:
        if key not in self._parameters:
            return default
        parameter = self._parameters[key]
        if parameter.type != type_:
            raise TypeError(f"Parameter '{key}' is {parameter.type.value}, not {type_.value}")
        return parameter.value

    def get_string(self, key: str, default: str | None = None) -> str | None:
        return self._typed(key, ParameterType.STRING, default)  # type: ignore[no-any-return]

    def get_long(self, key: str, default: int | None = None) -> int | None:
        return self._typed(key, ParameterType.LONG, default)  # type: ignore[no-any-return]

    def get_double(self, key: str, default: float | None = None) -> float | None:
        return self._typed(key, ParameterType.DOUBLE, default)  # type: ignore[no-any-return]

    def get_date(self, key: str, default: datetime | None = None) -> datetime | None:
        return self._typed(key, ParameterType.DATE, default)  # type: ignore[no-any-return]


class JobParametersBuilder:
    """Fluent builder for JobParameters.

    Example:
        params = (
            JobParametersBuilder()
            .add_string("file", "/data/inbound/dogs.csv")
            .add_string("name", "Enterprise Integration fans", identifying=False)
            .to_job_parameters()
        )
    """

    def __init__(self, parameters: JobParameters | None = None) -> None:
        self._parameters: dict[str, JobParameter] = dict(parameters or {})

    def add_parameter(self, key: str, parameter: JobParameter) -> JobParametersBuilder:
        self._parameters[key] = parameter
        return self

    def add_string(self, key: str, value: str, identifying: bool = True) -> JobParametersBuilder:
        return self.add_parameter(key, JobParameter(value, ParameterType.STRING, identifying))

    def add_long(self, key: str, value: int, identifying: bool = True) -> JobParametersBuilder:
        return self.add_parameter(key, JobParameter(value, ParameterType.LONG, identifying))

    def add_double(self, key: str, value: float, identifying: bool = True) -> JobParametersBuilder:
        return self.add_parameter(key, JobParameter(value, ParameterType.DOUBLE, identifying))

    def add_date(self, key: str, value: datetime, identifying: bool = True) -> JobParametersBuilder:
        return self.add_parameter(key, JobParameter(value, ParameterType.DATE, identifying))

    def add_job_parameters(self, parameters: JobParameters) -> JobParametersBuilder:
        self._parameters.update(parameters)
        return self

    def to_job_parameters(self) -> JobParameters:
        return JobParameters(self._parameters)


@runtime_checkable
class JobParametersIncrementer(Protocol):
    """Derives the parameters of the next instance from the previous ones."""

    def get_next(self, parameters: JobParameters | None) -> JobParameters: ...


class RunIdIncrementer:
    """Adds or bumps an identifying long ``run.id`` parameter.

    Gives every launch a unique identifying set, which is the explicit
    opt-out of duplicate-run rejection.
    """

    def __init__(self, key: str = "run.id") -> None:
        self.key = key

    def get_next(self, parameters: JobParameters | None) -> JobParameters:
        parameters = parameters if parameters is not None else JobParameters()
        previous = parameters.get_long(self.key, 0)
        next_id = (previous or 0) + 1
        return JobParametersBuilder(parameters).add_long(self.key, next_id).to_job_parameters()


def parse_parameter(text: str, *, identifying: bool = True) -> tuple[str, JobParameter]:
    """Parse ``name=value`` or ``name:type=value`` (CLI syntax).

    Raises:
        ValueError: On malformed input or an unknown type name.
    """
    name, sep, raw = text.partition("=")
    if not sep or not name:
        raise ValueError(f"Expected name=value or name:type=value, got {text!r}")
    name, _, type_name = name.partition(":")
    try:
        type_ = ParameterType(type_name or "string")
    except ValueError:
        valid = ", ".join(t.value for t in ParameterType)
        raise ValueError(f"Unknown parameter type {type_name!r} for '{name}'. Valid types: {valid}") from None
    return name.strip(), JobParameter.decode(raw, type_, identifying)

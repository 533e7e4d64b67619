"""Ordered, typed statement parameters."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Iterable, Iterator, NamedTuple

from sqlalchemy import BigInteger, Boolean, DateTime, Float, String
from sqlalchemy.types import NullType, TypeEngine

from ..errors import BindingError, TimestampCodecError
from .codec import TimestampCodec

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class ParameterKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    NULL = "null"


class Parameter(NamedTuple):
    kind: ParameterKind
    value: Any

    def native(self, codec: TimestampCodec) -> tuple[Any, TypeEngine]:
        """Validate the value against its kind and return the driver value and SQL type."""
        value = self.value

        if self.kind is ParameterKind.NULL:
            if value is not None:
                raise BindingError(f"null parameter carries a value: {value!r}")
            return None, NullType()

        if value is None:
            return None, _SQL_TYPES[self.kind]

        if self.kind is ParameterKind.STRING:
            if not isinstance(value, str):
                raise BindingError(f"Expected str for string parameter, got {type(value).__name__}")
            return value, String()

        if self.kind is ParameterKind.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise BindingError(f"Expected int for integer parameter, got {type(value).__name__}")
            if not _INT64_MIN <= value <= _INT64_MAX:
                raise BindingError(f"Integer parameter {value} is outside the signed 64-bit range")
            return value, BigInteger()

        if self.kind is ParameterKind.FLOAT:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise BindingError(f"Expected float for float parameter, got {type(value).__name__}")
            if not math.isfinite(value):
                raise BindingError(f"Float parameter {value} is not finite")
            return float(value), Float()

        if self.kind is ParameterKind.BOOLEAN:
            if not isinstance(value, bool):
                raise BindingError(f"Expected bool for boolean parameter, got {type(value).__name__}")
            return value, Boolean()

        if not isinstance(value, datetime):
            raise BindingError(f"Expected datetime for timestamp parameter, got {type(value).__name__}")
        try:
            return codec.encode(value), DateTime(timezone=False)
        except TimestampCodecError as exc:
            raise BindingError(str(exc)) from exc


_SQL_TYPES: dict[ParameterKind, TypeEngine] = {
    ParameterKind.STRING: String(),
    ParameterKind.INTEGER: BigInteger(),
    ParameterKind.FLOAT: Float(),
    ParameterKind.TIMESTAMP: DateTime(timezone=False),
    ParameterKind.BOOLEAN: Boolean(),
}


class ParameterList:
    """Builder for positional statement parameters, e.g.
    ``ParameterList().add_string("widget").add_integer(3).add_float(9.5)``.
    """

    def __init__(self, parameters: Iterable[Parameter] = ()):
        self._parameters: list[Parameter] = list(parameters)

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __getitem__(self, index: int) -> Parameter:
        return self._parameters[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParameterList):
            return NotImplemented
        return self._parameters == other._parameters

    def __repr__(self) -> str:
        return f"ParameterList({self._parameters!r})"

    def _append(self, kind: ParameterKind, value: Any) -> ParameterList:
        self._parameters.append(Parameter(kind, value))
        return self

    def add_string(self, value: str | None) -> ParameterList:
        return self._append(ParameterKind.STRING, value)

    def add_integer(self, value: int | None) -> ParameterList:
        return self._append(ParameterKind.INTEGER, value)

    def add_float(self, value: float | None) -> ParameterList:
        return self._append(ParameterKind.FLOAT, value)

    def add_timestamp(self, value: datetime | None) -> ParameterList:
        return self._append(ParameterKind.TIMESTAMP, value)

    def add_boolean(self, value: bool | None) -> ParameterList:
        return self._append(ParameterKind.BOOLEAN, value)

    def add_null(self) -> ParameterList:
        return self._append(ParameterKind.NULL, None)

    def add(self, value: Any) -> ParameterList:
        """Append ``value`` with its kind inferred from the Python type."""
        return self._append(infer_kind(value), value)

    @classmethod
    def of(cls, *values: Any) -> ParameterList:
        parameters = cls()
        for value in values:
            parameters.add(value)
        return parameters

    @classmethod
    def from_settings(
        cls,
        values: Iterable[Any],
        *,
        counter: int = 0,
        now: datetime | None = None,
    ) -> ParameterList:
        """Resolve parameters from a settings payload.

        ``$now`` and ``$counter`` are replaced by the current instant and the
        run counter, ``{"timestamp": "..."}`` is parsed as ISO-8601.
        """
        parameters = cls()
        for value in values:
            if value == "$now":
                parameters.add_timestamp(now or datetime.now(UTC))
            elif value == "$counter":
                parameters.add_integer(counter)
            elif isinstance(value, dict):
                parameters.add_timestamp(_parse_timestamp_setting(value))
            else:
                parameters.add(value)
        return parameters


def infer_kind(value: Any) -> ParameterKind:
    if value is None:
        return ParameterKind.NULL
    if isinstance(value, bool):
        return ParameterKind.BOOLEAN
    if isinstance(value, int):
        return ParameterKind.INTEGER
    if isinstance(value, float):
        return ParameterKind.FLOAT
    if isinstance(value, str):
        return ParameterKind.STRING
    if isinstance(value, datetime):
        return ParameterKind.TIMESTAMP
    raise BindingError(f"Unsupported parameter type {type(value).__name__}")


def _parse_timestamp_setting(value: dict) -> datetime:
    if set(value) != {"timestamp"} or not isinstance(value["timestamp"], str):
        raise BindingError(f"Unsupported parameter object {value!r}; expected {{'timestamp': '<ISO-8601>'}}")
    try:
        parsed = datetime.fromisoformat(value["timestamp"])
    except ValueError as exc:
        raise BindingError(f"Invalid timestamp parameter {value['timestamp']!r}") from exc
    if parsed.tzinfo is None:
        raise BindingError(f"Timestamp parameter {value['timestamp']!r} has no UTC offset")
    return parsed

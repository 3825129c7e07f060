from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from boto3.dynamodb.types import Binary, TypeSerializer

from .errors import TypeMismatchError, ValidationError
from .validation import validate_attribute_name


class AttributeType(StrEnum):
    STRING = "S"
    NUMBER = "N"
    BINARY = "B"
    STRING_SET = "SS"
    NUMBER_SET = "NS"
    BINARY_SET = "BS"
    BOOLEAN = "BOOL"
    NULL = "NULL"
    LIST = "L"
    MAP = "M"


_SERIALIZER = TypeSerializer()


def _number_text(value: Any) -> str:
    if isinstance(value, bool):
        raise ValidationError("bool is not a number")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"number must be finite: {value!r}")
        return repr(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValidationError(f"number must be finite: {value!r}")
        return str(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = Decimal(text)
        except InvalidOperation as err:
            raise ValidationError(f"not a number: {value!r}") from err
        if not parsed.is_finite():
            raise ValidationError(f"number must be finite: {value!r}")
        return text
    raise ValidationError(f"not a number: {type(value).__name__}")


def _binary(value: Any) -> bytes:
    if isinstance(value, Binary):
        return bytes(value.value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise ValidationError(f"not binary: {type(value).__name__}")


def _set_members(values: Iterable[Any], convert: Any, dedupe_key: Any, kind: str) -> tuple[Any, ...]:
    if isinstance(values, (str, bytes, bytearray)) or not isinstance(values, Iterable):
        raise ValidationError(f"{kind} requires an iterable of members")

    seen: set[Any] = set()
    out: list[Any] = []
    for raw in values:
        member = convert(raw)
        key = dedupe_key(member)
        if key in seen:
            continue
        seen.add(key)
        out.append(member)
    if not out:
        raise ValidationError(f"{kind} must be non-empty")
    return tuple(out)


def _string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"not a string: {type(value).__name__}")
    return value


@dataclass(frozen=True, eq=False, slots=True)
class AttributeValue:
    """One DynamoDB attribute value; exactly one variant is populated.

    Instances are built through the typed constructors (``string_value``,
    ``number_value``, ...) or converted with ``from_python``/``from_wire``.
    Numbers keep their decimal text so no precision is lost on the way through.
    """

    type: AttributeType
    value: Any

    @staticmethod
    def string_value(value: str) -> AttributeValue:
        return AttributeValue(AttributeType.STRING, _string(value))

    @staticmethod
    def number_value(value: int | float | Decimal | str) -> AttributeValue:
        return AttributeValue(AttributeType.NUMBER, _number_text(value))

    @staticmethod
    def binary_value(value: bytes | bytearray | memoryview | Binary) -> AttributeValue:
        return AttributeValue(AttributeType.BINARY, _binary(value))

    @staticmethod
    def string_set(values: Iterable[str]) -> AttributeValue:
        return AttributeValue(
            AttributeType.STRING_SET, _set_members(values, _string, lambda v: v, "string set")
        )

    @staticmethod
    def number_set(values: Iterable[int | float | Decimal | str]) -> AttributeValue:
        return AttributeValue(
            AttributeType.NUMBER_SET, _set_members(values, _number_text, Decimal, "number set")
        )

    @staticmethod
    def binary_set(values: Iterable[bytes]) -> AttributeValue:
        return AttributeValue(
            AttributeType.BINARY_SET, _set_members(values, _binary, lambda v: v, "binary set")
        )

    @staticmethod
    def bool_value(value: bool) -> AttributeValue:
        if not isinstance(value, bool):
            raise ValidationError(f"not a bool: {type(value).__name__}")
        return AttributeValue(AttributeType.BOOLEAN, value)

    @staticmethod
    def null_value() -> AttributeValue:
        return AttributeValue(AttributeType.NULL, True)

    @staticmethod
    def list_value(values: Iterable[AttributeValue]) -> AttributeValue:
        members = tuple(values)
        for member in members:
            if not isinstance(member, AttributeValue):
                raise ValidationError("list members must be AttributeValue instances")
        return AttributeValue(AttributeType.LIST, members)

    @staticmethod
    def map_value(values: Mapping[str, AttributeValue]) -> AttributeValue:
        out: dict[str, AttributeValue] = {}
        for name, member in values.items():
            validate_attribute_name(name)
            if not isinstance(member, AttributeValue):
                raise ValidationError(f"map value for {name!r} must be an AttributeValue")
            out[name] = member
        return AttributeValue(AttributeType.MAP, MappingProxyType(out))

    @staticmethod
    def from_python(value: Any) -> AttributeValue:
        if isinstance(value, AttributeValue):
            return value
        if isinstance(value, float):
            return AttributeValue.number_value(value)
        if isinstance(value, (list, tuple)):
            return AttributeValue.list_value(AttributeValue.from_python(v) for v in value)
        if isinstance(value, Mapping):
            return AttributeValue.map_value({k: AttributeValue.from_python(v) for k, v in value.items()})
        if isinstance(value, (set, frozenset)) and any(isinstance(v, float) for v in value):
            return AttributeValue.number_set(value)

        try:
            wire = _SERIALIZER.serialize(value)
        except (TypeError, ArithmeticError) as err:
            raise ValidationError(f"unsupported attribute value: {type(value).__name__}") from err
        return AttributeValue.from_wire(wire)

    @staticmethod
    def from_wire(data: Mapping[str, Any]) -> AttributeValue:
        if not isinstance(data, Mapping):
            raise ValidationError("attribute value must be a map")
        if len(data) != 1:
            raise ValidationError("attribute value must have exactly one type")

        ((tag, raw),) = data.items()
        try:
            kind = AttributeType(tag)
        except ValueError as err:
            raise ValidationError(f"unknown attribute type: {tag}") from err

        if kind is AttributeType.STRING:
            return AttributeValue.string_value(raw)
        if kind is AttributeType.NUMBER:
            if not isinstance(raw, str):
                raise ValidationError("N must be a string")
            return AttributeValue.number_value(raw)
        if kind is AttributeType.BINARY:
            return AttributeValue.binary_value(raw)
        if kind is AttributeType.STRING_SET:
            return AttributeValue.string_set(_wire_list(raw, "SS"))
        if kind is AttributeType.NUMBER_SET:
            members = _wire_list(raw, "NS")
            if any(not isinstance(m, str) for m in members):
                raise ValidationError("NS members must be strings")
            return AttributeValue.number_set(members)
        if kind is AttributeType.BINARY_SET:
            return AttributeValue.binary_set(_wire_list(raw, "BS"))
        if kind is AttributeType.BOOLEAN:
            return AttributeValue.bool_value(raw)
        if kind is AttributeType.NULL:
            if raw is not True:
                raise ValidationError("NULL must be true")
            return AttributeValue.null_value()
        if kind is AttributeType.LIST:
            return AttributeValue.list_value(AttributeValue.from_wire(v) for v in _wire_list(raw, "L"))

        if not isinstance(raw, Mapping):
            raise ValidationError("M must be a map")
        return AttributeValue.map_value({k: AttributeValue.from_wire(v) for k, v in raw.items()})

    def to_wire(self) -> dict[str, Any]:
        kind = self.type
        if kind in (AttributeType.STRING_SET, AttributeType.NUMBER_SET, AttributeType.BINARY_SET):
            return {kind.value: list(self.value)}
        if kind is AttributeType.LIST:
            return {kind.value: [v.to_wire() for v in self.value]}
        if kind is AttributeType.MAP:
            return {kind.value: {k: v.to_wire() for k, v in self.value.items()}}
        return {kind.value: self.value}

    def to_python(self) -> Any:
        kind = self.type
        if kind is AttributeType.NUMBER:
            return Decimal(self.value)
        if kind is AttributeType.STRING_SET or kind is AttributeType.BINARY_SET:
            return set(self.value)
        if kind is AttributeType.NUMBER_SET:
            return {Decimal(v) for v in self.value}
        if kind is AttributeType.NULL:
            return None
        if kind is AttributeType.LIST:
            return [v.to_python() for v in self.value]
        if kind is AttributeType.MAP:
            return {k: v.to_python() for k, v in self.value.items()}
        return self.value

    def _expect(self, kind: AttributeType) -> Any:
        if self.type is not kind:
            raise TypeMismatchError(f"expected {kind.value} attribute, got {self.type.value}")
        return self.value

    def as_string(self) -> str:
        return self._expect(AttributeType.STRING)

    def as_number(self) -> Decimal:
        return Decimal(self._expect(AttributeType.NUMBER))

    def as_binary(self) -> bytes:
        return self._expect(AttributeType.BINARY)

    def as_string_set(self) -> set[str]:
        return set(self._expect(AttributeType.STRING_SET))

    def as_number_set(self) -> set[Decimal]:
        return {Decimal(v) for v in self._expect(AttributeType.NUMBER_SET)}

    def as_binary_set(self) -> set[bytes]:
        return set(self._expect(AttributeType.BINARY_SET))

    def as_bool(self) -> bool:
        return self._expect(AttributeType.BOOLEAN)

    def as_list(self) -> list[AttributeValue]:
        return list(self._expect(AttributeType.LIST))

    def as_map(self) -> dict[str, AttributeValue]:
        return dict(self._expect(AttributeType.MAP))

    def is_null(self) -> bool:
        return self.type is AttributeType.NULL

    def _key(self) -> Any:
        kind = self.type
        if kind is AttributeType.NUMBER:
            return Decimal(self.value)
        if kind is AttributeType.NUMBER_SET:
            return frozenset(Decimal(v) for v in self.value)
        if kind in (AttributeType.STRING_SET, AttributeType.BINARY_SET):
            return frozenset(self.value)
        if kind is AttributeType.MAP:
            return frozenset(self.value.items())
        return self.value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeValue):
            return NotImplemented
        return self.type is other.type and self._key() == other._key()

    def __hash__(self) -> int:
        return hash((self.type, self._key()))

    def __repr__(self) -> str:
        if self.type is AttributeType.MAP:
            return f"AttributeValue(M={dict(self.value)!r})"
        return f"AttributeValue({self.type.value}={self.value!r})"


def _wire_list(raw: Any, tag: str) -> Sequence[Any]:
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"{tag} must be a list")
    return raw


class Item(Mapping[str, AttributeValue]):
    """An ordered record: attribute name to :class:`AttributeValue`."""

    __slots__ = ("_attrs",)

    def __init__(
        self,
        attributes: Mapping[str, AttributeValue] | Iterable[tuple[str, AttributeValue]] = (),
    ) -> None:
        pairs = attributes.items() if isinstance(attributes, Mapping) else attributes
        attrs: dict[str, AttributeValue] = {}
        for name, value in pairs:
            validate_attribute_name(name)
            if name in attrs:
                raise ValidationError(f"duplicate attribute name: {name}")
            if not isinstance(value, AttributeValue):
                raise ValidationError(f"value for {name!r} must be an AttributeValue")
            attrs[name] = value
        self._attrs = attrs

    @classmethod
    def from_python(cls, values: Mapping[str, Any]) -> Item:
        return cls({name: AttributeValue.from_python(value) for name, value in values.items()})

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> Item:
        if not isinstance(data, Mapping):
            raise ValidationError("item must be a map")
        return cls({name: AttributeValue.from_wire(value) for name, value in data.items()})

    def to_wire(self) -> dict[str, dict[str, Any]]:
        return {name: value.to_wire() for name, value in self._attrs.items()}

    def to_python(self) -> dict[str, Any]:
        return {name: value.to_python() for name, value in self._attrs.items()}

    def missing(self, names: Iterable[str]) -> list[str]:
        return [name for name in names if name not in self._attrs]

    def project(self, names: Iterable[str]) -> Item:
        return Item((name, self._attrs[name]) for name in names if name in self._attrs)

    def __getitem__(self, name: str) -> AttributeValue:
        return self._attrs[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._attrs)

    def __len__(self) -> int:
        return len(self._attrs)

    def __repr__(self) -> str:
        return f"Item({self._attrs!r})"

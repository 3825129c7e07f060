from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, get_args, get_origin

from .attribute import AttributeValue, Item
from .errors import MappingError, ValidationError
from .mapper import ObjectMapper, encode_value
from .model import AttributeDefinition, ModelDefinition, unwrap_optional

MaxInOperands = 100


class ScanOperator(StrEnum):
    EQUAL = "EQ"
    NOT_EQUAL = "NE"
    LESS_THAN = "LT"
    LESS_THAN_OR_EQUAL = "LE"
    GREATER_THAN = "GT"
    GREATER_THAN_OR_EQUAL = "GE"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    BEGINS_WITH = "BEGINS_WITH"
    IN = "IN"
    BETWEEN = "BETWEEN"
    IS_NULL = "NULL"
    IS_NOT_NULL = "NOT_NULL"


_COMPARISONS = {
    ScanOperator.EQUAL: "=",
    ScanOperator.NOT_EQUAL: "<>",
    ScanOperator.LESS_THAN: "<",
    ScanOperator.LESS_THAN_OR_EQUAL: "<=",
    ScanOperator.GREATER_THAN: ">",
    ScanOperator.GREATER_THAN_OR_EQUAL: ">=",
}

_ELEMENT_OPERATORS = frozenset({ScanOperator.CONTAINS, ScanOperator.NOT_CONTAINS})


@dataclass(frozen=True, init=False)
class ScanCondition:
    """One ``attribute <operator> operands`` term of a scan filter.

    ``attribute`` is a stored attribute name, or a field name when the filter is
    compiled against a model.
    """

    attribute: str
    operator: ScanOperator
    values: tuple[Any, ...]

    def __init__(self, attribute: str, operator: ScanOperator | str, *values: Any) -> None:
        if not isinstance(attribute, str) or not attribute:
            raise ValidationError("condition attribute is required")
        try:
            op = ScanOperator(operator)
        except ValueError as err:
            raise ValidationError(f"unsupported scan operator: {operator!r}") from err

        object.__setattr__(self, "attribute", attribute)
        object.__setattr__(self, "operator", op)
        object.__setattr__(self, "values", tuple(values))
        self._check_arity()

    def _check_arity(self) -> None:
        count = len(self.values)
        op = self.operator
        if op in (ScanOperator.IS_NULL, ScanOperator.IS_NOT_NULL):
            if count:
                raise ValidationError(f"{op.name} does not take a value")
        elif op is ScanOperator.BETWEEN:
            if count != 2:
                raise ValidationError("BETWEEN requires two values")
        elif op is ScanOperator.IN:
            if count == 0:
                raise ValidationError("IN requires at least one value")
            if count > MaxInOperands:
                raise ValidationError(f"IN supports maximum {MaxInOperands} values")
        elif count != 1:
            raise ValidationError(f"{op.name} requires one value")


@dataclass(frozen=True)
class CompiledExpression:
    expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)

    def wire_values(self) -> dict[str, dict[str, Any]]:
        return {ref: av.to_wire() for ref, av in self.values.items()}


class _Bindings:
    def __init__(self, name_prefix: str, value_prefix: str) -> None:
        self._name_prefix = name_prefix
        self._value_prefix = value_prefix
        self._aliases: dict[str, str] = {}
        self.names: dict[str, str] = {}
        self.values: dict[str, AttributeValue] = {}

    def name(self, attribute_name: str) -> str:
        ref = self._aliases.get(attribute_name)
        if ref is None:
            ref = f"{self._name_prefix}{len(self._aliases)}"
            self._aliases[attribute_name] = ref
            self.names[ref] = attribute_name
        return ref

    def value(self, av: AttributeValue) -> str:
        ref = f"{self._value_prefix}{len(self.values)}"
        self.values[ref] = av
        return ref


def _element_type(tp: Any) -> Any:
    inner = unwrap_optional(tp)
    if inner is not None:
        tp = inner
    if (get_origin(tp) or tp) in (set, frozenset, list, tuple):
        args = get_args(tp)
        return args[0] if args else Any
    return tp


def _render_term(op: ScanOperator, ref: str, refs: Sequence[str]) -> str:
    if op in _COMPARISONS:
        return f"{ref} {_COMPARISONS[op]} {refs[0]}"
    if op is ScanOperator.BETWEEN:
        return f"{ref} BETWEEN {refs[0]} AND {refs[1]}"
    if op is ScanOperator.IN:
        return f"{ref} IN ({', '.join(refs)})"
    if op is ScanOperator.CONTAINS:
        return f"contains({ref}, {refs[0]})"
    if op is ScanOperator.NOT_CONTAINS:
        return f"NOT contains({ref}, {refs[0]})"
    if op is ScanOperator.BEGINS_WITH:
        return f"begins_with({ref}, {refs[0]})"
    if op is ScanOperator.IS_NULL:
        return f"attribute_not_exists({ref})"
    if op is ScanOperator.IS_NOT_NULL:
        return f"attribute_exists({ref})"
    raise ValidationError(f"unsupported scan operator: {op}")


class ScanFilter:
    """An AND-combined sequence of :class:`ScanCondition` compiled to a filter expression."""

    def __init__(self, conditions: Iterable[ScanCondition] = ()) -> None:
        self._conditions = tuple(conditions)
        for cond in self._conditions:
            if not isinstance(cond, ScanCondition):
                raise ValidationError(f"expected ScanCondition, got {type(cond).__name__}")

    @property
    def conditions(self) -> tuple[ScanCondition, ...]:
        return self._conditions

    def __bool__(self) -> bool:
        return bool(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)

    def compile(
        self,
        model: ModelDefinition[Any] | None = None,
        *,
        name_prefix: str = "#a",
        value_prefix: str = ":v",
    ) -> CompiledExpression | None:
        if not self._conditions:
            return None

        mapper = ObjectMapper(model) if model is not None else None
        bindings = _Bindings(name_prefix, value_prefix)

        def resolve(cond: ScanCondition) -> tuple[str, AttributeDefinition | None]:
            if model is None:
                return cond.attribute, None
            definition = model.field_for(cond.attribute)
            if definition is None:
                raise ValidationError(f"unknown field: {cond.attribute}")
            return definition.attribute_name, definition

        def operand(definition: AttributeDefinition | None, op: ScanOperator, value: Any) -> str:
            if isinstance(value, AttributeValue):
                return bindings.value(value)
            try:
                if mapper is None or definition is None:
                    av = AttributeValue.from_python(value)
                elif op in _ELEMENT_OPERATORS and definition.converter is None:
                    av = encode_value(value, _element_type(definition.python_type))
                else:
                    av = mapper.encode_field(definition, value)
            except MappingError as err:
                raise ValidationError(f"invalid operand for {op.name}: {err}") from err
            return bindings.value(av)

        terms: list[str] = []
        for cond in self._conditions:
            attr_name, definition = resolve(cond)
            ref = bindings.name(attr_name)
            refs = [operand(definition, cond.operator, v) for v in cond.values]
            terms.append(_render_term(cond.operator, ref, refs))

        return CompiledExpression(
            expression=" AND ".join(terms),
            names=bindings.names,
            values=bindings.values,
        )


_KEY_OPERATORS = frozenset(
    {
        ScanOperator.EQUAL,
        ScanOperator.LESS_THAN,
        ScanOperator.LESS_THAN_OR_EQUAL,
        ScanOperator.GREATER_THAN,
        ScanOperator.GREATER_THAN_OR_EQUAL,
        ScanOperator.BETWEEN,
        ScanOperator.BEGINS_WITH,
    }
)


@dataclass(frozen=True)
class SortKeyCondition:
    """Restricts a query's sort key; only the operators key conditions allow are accepted."""

    operator: ScanOperator
    values: tuple[Any, ...]

    def __post_init__(self) -> None:
        if self.operator not in _KEY_OPERATORS:
            raise ValidationError(f"unsupported sort key operator: {self.operator}")
        expected = 2 if self.operator is ScanOperator.BETWEEN else 1
        if len(self.values) != expected:
            raise ValidationError(f"{self.operator.name} takes {expected} sort key value(s)")

    @classmethod
    def eq(cls, value: Any) -> SortKeyCondition:
        return cls(ScanOperator.EQUAL, (value,))

    @classmethod
    def lt(cls, value: Any) -> SortKeyCondition:
        return cls(ScanOperator.LESS_THAN, (value,))

    @classmethod
    def lte(cls, value: Any) -> SortKeyCondition:
        return cls(ScanOperator.LESS_THAN_OR_EQUAL, (value,))

    @classmethod
    def gt(cls, value: Any) -> SortKeyCondition:
        return cls(ScanOperator.GREATER_THAN, (value,))

    @classmethod
    def gte(cls, value: Any) -> SortKeyCondition:
        return cls(ScanOperator.GREATER_THAN_OR_EQUAL, (value,))

    @classmethod
    def between(cls, low: Any, high: Any) -> SortKeyCondition:
        return cls(ScanOperator.BETWEEN, (low, high))

    @classmethod
    def begins_with(cls, prefix: Any) -> SortKeyCondition:
        return cls(ScanOperator.BEGINS_WITH, (prefix,))

    def render(self, name_ref: str, value_refs: Sequence[str]) -> str:
        if len(value_refs) != len(self.values):
            raise ValidationError("sort key condition needs one reference per value")
        return _render_term(self.operator, name_ref, value_refs)


@dataclass(frozen=True)
class Page[T]:
    """One page of results; pass ``next_cursor`` back to continue, ``None`` means the last page."""

    items: list[T]
    next_cursor: str | None


@dataclass(frozen=True)
class Cursor:
    last_key: Item
    sort: str | None = None


# LastEvaluatedKey only ever holds key attributes, which are S, N or B.
_KEY_TAGS = frozenset({"S", "N", "B"})


def _key_to_json(last_key: Item) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for name, wire in last_key.to_wire().items():
        ((tag, raw),) = wire.items()
        if tag not in _KEY_TAGS:
            raise ValidationError(f"cursor key attribute must be S, N or B: {name}")
        out[name] = [tag, base64.b64encode(raw).decode("ascii") if tag == "B" else raw]
    return out


def _key_from_json(data: Any) -> Item:
    if not isinstance(data, dict) or not data:
        raise ValidationError("invalid cursor")
    wire: dict[str, dict[str, Any]] = {}
    for name, entry in data.items():
        if not isinstance(entry, list) or len(entry) != 2:
            raise ValidationError("invalid cursor")
        tag, text = entry
        if tag not in _KEY_TAGS or not isinstance(text, str):
            raise ValidationError("invalid cursor")
        wire[name] = {tag: base64.b64decode(text, validate=True) if tag == "B" else text}
    return Item.from_wire(wire)


def encode_cursor(last_key: Item, *, sort: str | None = None) -> str:
    payload: dict[str, Any] = {"k": _key_to_json(last_key)}
    if sort is not None:
        payload["s"] = sort
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    """Parse a cursor produced by :func:`encode_cursor`; raises ``ValidationError`` if malformed."""
    if not isinstance(cursor, str) or not cursor:
        raise ValidationError("invalid cursor")
    padding = "=" * (-len(cursor) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor + padding).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as err:
        raise ValidationError("invalid cursor") from err
    if not isinstance(payload, dict):
        raise ValidationError("invalid cursor")

    sort = payload.get("s")
    if sort is not None and sort not in ("ASC", "DESC"):
        raise ValidationError("invalid cursor")
    try:
        last_key = _key_from_json(payload.get("k"))
    except (binascii.Error, ValidationError) as err:
        raise ValidationError("invalid cursor") from err
    return Cursor(last_key=last_key, sort=sort)

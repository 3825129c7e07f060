from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from .attribute import AttributeType, AttributeValue
from .errors import ValidationError
from .query import CompiledExpression
from .validation import validate_attribute_name

_SET_TYPES = frozenset({AttributeType.STRING_SET, AttributeType.NUMBER_SET, AttributeType.BINARY_SET})


def _value(value: Any) -> AttributeValue:
    return AttributeValue.from_python(value)


class UpdateExpression:
    """Builds an update expression in the store's ADD/SET/REMOVE/DELETE language.

    Names bind as ``#u0, #u1, ...`` (reused for a repeated attribute) and values
    as ``:u0, :u1, ...``. Clauses are emitted in the order each keyword is first
    used; actions inside a clause keep call order.
    """

    def __init__(self) -> None:
        self._names: dict[str, str] = {}
        self._aliases: dict[str, str] = {}
        self._values: dict[str, AttributeValue] = {}
        self._clauses: dict[str, list[str]] = {}

    def __bool__(self) -> bool:
        return bool(self._clauses)

    def _name(self, attribute_name: str) -> str:
        validate_attribute_name(attribute_name)
        ref = self._aliases.get(attribute_name)
        if ref is None:
            ref = f"#u{len(self._aliases)}"
            self._aliases[attribute_name] = ref
            self._names[ref] = attribute_name
        return ref

    def _bind(self, av: AttributeValue) -> str:
        ref = f":u{len(self._values)}"
        self._values[ref] = av
        return ref

    def _action(self, clause: str, text: str) -> UpdateExpression:
        self._clauses.setdefault(clause, []).append(text)
        return self

    def set(self, name: str, value: Any) -> UpdateExpression:
        ref = self._name(name)
        return self._action("SET", f"{ref} = {self._bind(_value(value))}")

    def set_if_not_exists(self, name: str, value: Any) -> UpdateExpression:
        ref = self._name(name)
        return self._action("SET", f"{ref} = if_not_exists({ref}, {self._bind(_value(value))})")

    def increment(self, name: str, by: int | float | Decimal = 1) -> UpdateExpression:
        ref = self._name(name)
        return self._action("SET", f"{ref} = {ref} + {self._bind(AttributeValue.number_value(by))}")

    def decrement(self, name: str, by: int | float | Decimal = 1) -> UpdateExpression:
        ref = self._name(name)
        return self._action("SET", f"{ref} = {ref} - {self._bind(AttributeValue.number_value(by))}")

    def append_to_list(self, name: str, values: Iterable[Any]) -> UpdateExpression:
        ref = self._name(name)
        items = AttributeValue.list_value(_value(v) for v in values)
        return self._action("SET", f"{ref} = list_append({ref}, {self._bind(items)})")

    def remove(self, name: str) -> UpdateExpression:
        return self._action("REMOVE", self._name(name))

    def add(self, name: str, value: Any) -> UpdateExpression:
        av = _value(value)
        if av.type is not AttributeType.NUMBER and av.type not in _SET_TYPES:
            raise ValidationError("ADD requires a number or a set value")
        ref = self._name(name)
        return self._action("ADD", f"{ref} {self._bind(av)}")

    def delete(self, name: str, value: Any) -> UpdateExpression:
        av = _value(value)
        if av.type not in _SET_TYPES:
            raise ValidationError("DELETE requires a set value")
        ref = self._name(name)
        return self._action("DELETE", f"{ref} {self._bind(av)}")

    def build(self) -> CompiledExpression:
        if not self._clauses:
            raise ValidationError("no updates provided")
        expression = " ".join(f"{clause} " + ", ".join(actions) for clause, actions in self._clauses.items())
        return CompiledExpression(expression=expression, names=dict(self._names), values=dict(self._values))

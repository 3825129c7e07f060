from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, get_args, get_origin

from .attribute import AttributeType, AttributeValue, Item
from .errors import (
    MissingKeyAttributeError,
    TypeConversionError,
    TypeMismatchError,
    ValidationError,
)
from .model import AttributeDefinition, ModelDefinition, unwrap_optional

_NUMBER_TYPES = (int, float, Decimal)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray)) and len(value) == 0:
        return True
    if isinstance(value, (list, dict, set, frozenset, tuple)) and len(value) == 0:
        return True
    return False


_NO_EMPTY = object()


def _empty_value(tp: Any, *, omitempty: bool) -> Any:
    """Value for a field whose attribute is absent, or ``_NO_EMPTY`` if the field requires one."""
    if unwrap_optional(tp) is not None or tp is Any or tp is object:
        return None
    origin = get_origin(tp) or tp
    if origin in (set, frozenset):
        return origin()
    if not omitempty:
        return _NO_EMPTY
    if tp is str:
        return ""
    if tp is bytes:
        return b""
    if origin in (list, tuple, dict, Mapping):
        return {} if origin is Mapping else origin()
    return _NO_EMPTY


def _number(value: Decimal, tp: Any) -> Any:
    if tp is int:
        if value != value.to_integral_value():
            raise TypeConversionError(f"number {value} is not an integer")
        return int(value)
    if tp is float:
        return float(value)
    return value


def encode_value(value: Any, tp: Any = Any) -> AttributeValue:
    """Encode ``value`` as the attribute variant implied by the declared type ``tp``."""
    if value is None:
        return AttributeValue.null_value()

    inner = unwrap_optional(tp)
    if inner is not None:
        tp = inner
    if tp is Any or tp is object:
        return AttributeValue.from_python(value)

    origin = get_origin(tp) or tp
    args = get_args(tp)

    if tp is bool:
        return AttributeValue.bool_value(value)
    if tp is str:
        return AttributeValue.string_value(value)
    if tp in _NUMBER_TYPES:
        return AttributeValue.number_value(value)
    if tp is bytes:
        return AttributeValue.binary_value(value)

    if origin in (set, frozenset):
        if not isinstance(value, (set, frozenset)):
            raise ValidationError(f"expected a set, got {type(value).__name__}")
        if not value:
            return AttributeValue.null_value()
        elem = args[0] if args else Any
        if elem is str:
            return AttributeValue.string_set(value)
        if elem in _NUMBER_TYPES:
            return AttributeValue.number_set(value)
        if elem is bytes:
            return AttributeValue.binary_set(value)
        return AttributeValue.from_python(value)

    if origin in (list, tuple):
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"expected a sequence, got {type(value).__name__}")
        if origin is tuple and args and (len(args) != 2 or args[1] is not Ellipsis):
            if len(args) != len(value):
                raise ValidationError(f"expected a tuple of {len(args)} values")
            return AttributeValue.list_value(encode_value(v, t) for v, t in zip(value, args))
        elem = args[0] if args else Any
        return AttributeValue.list_value(encode_value(v, elem) for v in value)

    if origin in (dict, Mapping):
        if not isinstance(value, Mapping):
            raise ValidationError(f"expected a mapping, got {type(value).__name__}")
        value_type = args[1] if len(args) == 2 else Any
        return AttributeValue.map_value({k: encode_value(v, value_type) for k, v in value.items()})

    return AttributeValue.from_python(value)


def decode_value(av: AttributeValue, tp: Any = Any) -> Any:
    """Convert ``av`` to the declared type ``tp``; raises ``TypeMismatchError`` on a variant mismatch."""
    inner = unwrap_optional(tp)
    if av.is_null():
        if inner is not None or tp is Any or tp is object:
            return None
        if (get_origin(tp) or tp) in (set, frozenset):
            return (get_origin(tp) or tp)()
        raise TypeMismatchError(f"NULL cannot be converted to {tp!r}")
    if inner is not None:
        tp = inner
    if tp is Any or tp is object:
        return av.to_python()

    origin = get_origin(tp) or tp
    args = get_args(tp)

    if tp is bool:
        return av.as_bool()
    if tp is str:
        return av.as_string()
    if tp in _NUMBER_TYPES:
        return _number(av.as_number(), tp)
    if tp is bytes:
        return av.as_binary()

    if origin in (set, frozenset):
        elem = args[0] if args else Any
        if elem is str:
            members: set[Any] = av.as_string_set()
        elif elem in _NUMBER_TYPES:
            members = {_number(n, elem) for n in av.as_number_set()}
        elif elem is bytes:
            members = av.as_binary_set()
        else:
            if av.type not in (AttributeType.STRING_SET, AttributeType.NUMBER_SET, AttributeType.BINARY_SET):
                raise TypeMismatchError(f"expected a set attribute, got {av.type.value}")
            members = av.to_python()
        return origin(members)

    if origin in (list, tuple):
        values = av.as_list()
        if origin is tuple and args and (len(args) != 2 or args[1] is not Ellipsis):
            if len(args) != len(values):
                raise TypeMismatchError(f"expected a list of {len(args)} values")
            return tuple(decode_value(v, t) for v, t in zip(values, args))
        elem = args[0] if args else Any
        decoded = [decode_value(v, elem) for v in values]
        return tuple(decoded) if origin is tuple else decoded

    if origin in (dict, Mapping):
        value_type = args[1] if len(args) == 2 else Any
        return {k: decode_value(v, value_type) for k, v in av.as_map().items()}

    return av.to_python()


class ObjectMapper[T]:
    """Translates entities of one registered model to and from :class:`Item`."""

    def __init__(self, model: ModelDefinition[T]) -> None:
        self._model = model

    @property
    def model(self) -> ModelDefinition[T]:
        return self._model

    def encode_field(self, definition: AttributeDefinition, value: Any) -> AttributeValue:
        if definition.converter is not None and value is not None:
            value = definition.converter.to_store(value)
            tp: Any = Any
        else:
            tp = definition.python_type
        try:
            return encode_value(value, tp)
        except (ValidationError, TypeMismatchError) as err:
            raise TypeConversionError(f"cannot encode field {definition.python_name}: {err}") from err

    def decode_field(self, definition: AttributeDefinition, av: AttributeValue) -> Any:
        try:
            if definition.converter is not None:
                raw = av.to_python()
                return None if raw is None else definition.converter.from_store(raw)
            return decode_value(av, definition.python_type)
        except TypeMismatchError as err:
            raise TypeConversionError(
                f"attribute {definition.attribute_name} cannot be converted for field "
                f"{definition.python_name}: {err}"
            ) from err

    def current_version(self, entity: T) -> int | None:
        if self._model.version is None:
            return None
        return getattr(entity, self._model.version.python_name)

    def is_unwritten(self, entity: T) -> bool:
        """Whether the entity's version marks it as never written.

        That is ``None`` for an ``int | None`` version field and ``0`` for a plain ``int`` one.
        """
        version = self._model.version
        if version is None:
            return False
        current = self.current_version(entity)
        if current is None:
            return True
        return current == 0 and unwrap_optional(version.python_type) is None

    def next_version(self, entity: T) -> int | None:
        if self._model.version is None:
            return None
        current = self.current_version(entity)
        return 0 if current is None else current + 1

    def with_version(self, entity: T, version: int) -> T:
        if self._model.version is None:
            return entity
        name = self._model.version.python_name
        params = getattr(type(entity), "__dataclass_params__", None)
        if params is not None and params.frozen:
            return dataclasses.replace(entity, **{name: version})
        setattr(entity, name, version)
        return entity

    def _check_entity(self, entity: T) -> None:
        if not isinstance(entity, self._model.model_type):
            raise ValidationError(
                f"expected {self._model.model_type.__name__}, got {type(entity).__name__}"
            )

    def to_item(self, entity: T) -> Item:
        self._check_entity(entity)

        out: dict[str, AttributeValue] = {}
        for name, definition in self._model.attributes.items():
            if definition is self._model.version:
                value: Any = self.next_version(entity)
            else:
                value = getattr(entity, name)

            if definition.is_key:
                if _is_empty(value):
                    raise ValidationError(f"missing key attribute value: {definition.attribute_name}")
            elif definition.omitempty and _is_empty(value):
                continue
            elif isinstance(value, (set, frozenset)) and not value:
                # empty sets cannot be stored; an absent set field reads back empty
                continue
            out[definition.attribute_name] = self.encode_field(definition, value)

        return Item(out)

    def from_item(self, item: Mapping[str, AttributeValue]) -> T:
        kwargs: dict[str, Any] = {}
        for name, definition in self._model.attributes.items():
            av = item.get(definition.attribute_name)
            if av is None:
                if definition.is_key:
                    raise MissingKeyAttributeError(definition.attribute_name)
                if definition.has_default:
                    continue
                empty = _empty_value(definition.python_type, omitempty=definition.omitempty)
                if empty is _NO_EMPTY:
                    raise TypeConversionError(
                        f"missing attribute {definition.attribute_name} for required field {name}"
                    )
                kwargs[name] = empty
                continue
            kwargs[name] = self.decode_field(definition, av)

        try:
            return self._model.model_type(**kwargs)
        except TypeError as err:
            raise TypeConversionError(str(err)) from err

    def key_for(self, partition: Any, sort: Any | None = None) -> Item:
        if _is_empty(partition):
            raise ValidationError("partition key value is required")
        if self._model.sk is None and sort is not None:
            raise ValidationError("model does not define a sort key")
        if self._model.sk is not None and _is_empty(sort):
            raise ValidationError("sort key value is required")

        key = {self._model.pk.attribute_name: self.encode_field(self._model.pk, partition)}
        if self._model.sk is not None:
            key[self._model.sk.attribute_name] = self.encode_field(self._model.sk, sort)
        return Item(key)

    def extract_key(self, entity: T) -> Item:
        self._check_entity(entity)
        sort = getattr(entity, self._model.sk.python_name) if self._model.sk is not None else None
        return self.key_for(getattr(entity, self._model.pk.python_name), sort)

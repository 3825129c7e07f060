from __future__ import annotations

import dataclasses
import typing
from collections.abc import Iterable, Mapping
from dataclasses import MISSING, dataclass
from decimal import Decimal
from types import NoneType, UnionType
from typing import Any, Protocol, Union, get_args, get_origin

from .errors import ValidationError
from .schema import KeyAttribute, ProvisionedThroughput, ScalarType, TableSchema
from .validation import validate_attribute_name, validate_table_name

_METADATA_KEY = "tablestore"
_ROLES = frozenset({"pk", "sk", "version"})


class ModelDefinitionError(ValueError):
    pass


class AttributeConverter(Protocol):
    def to_store(self, value: Any) -> Any: ...

    def from_store(self, value: Any) -> Any: ...


@dataclass(frozen=True)
class AttributeDefinition:
    python_name: str
    attribute_name: str
    roles: tuple[str, ...] = ()
    omitempty: bool = False
    python_type: Any = Any
    converter: AttributeConverter | None = None
    has_default: bool = False

    @property
    def is_key(self) -> bool:
        return "pk" in self.roles or "sk" in self.roles


def store_field(
    *,
    name: str | None = None,
    roles: Iterable[str] = (),
    omitempty: bool = False,
    ignore: bool = False,
    converter: AttributeConverter | None = None,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    """Declare how a dataclass field maps to a stored attribute."""
    meta = {
        _METADATA_KEY: {
            "name": name,
            "roles": tuple(roles),
            "omitempty": omitempty,
            "ignore": ignore,
            "converter": converter,
        }
    }
    if default is not MISSING and default_factory is not MISSING:
        raise ModelDefinitionError("default and default_factory are mutually exclusive")
    if default is not MISSING:
        return dataclasses.field(default=default, metadata=meta)
    if default_factory is not MISSING:
        return dataclasses.field(default_factory=default_factory, metadata=meta)
    return dataclasses.field(metadata=meta)


def unwrap_optional(tp: Any) -> Any:
    origin = get_origin(tp)
    if origin is Union or origin is UnionType:
        args = [a for a in get_args(tp) if a is not NoneType]
        if len(args) == 1 and len(get_args(tp)) == 2:
            return args[0]
    return None


def _key_scalar_type(definition: AttributeDefinition) -> ScalarType:
    tp = definition.python_type
    if definition.converter is not None:
        tp = Any
    if tp is str:
        return ScalarType.STRING
    if tp in (int, float, Decimal):
        return ScalarType.NUMBER
    if tp is bytes:
        return ScalarType.BINARY
    raise ModelDefinitionError(
        f"cannot derive key type for {definition.python_name}: declare the table schema explicitly"
    )


@dataclass(frozen=True)
class ModelDefinition[T]:
    model_type: type[T]
    table_name: str | None
    pk: AttributeDefinition
    sk: AttributeDefinition | None
    version: AttributeDefinition | None
    attributes: Mapping[str, AttributeDefinition]

    @classmethod
    def from_dataclass(cls, model_type: type[T], *, table_name: str | None = None) -> ModelDefinition[T]:
        if not dataclasses.is_dataclass(model_type) or not isinstance(model_type, type):
            raise ModelDefinitionError("model_type must be a dataclass")
        if table_name is not None:
            validate_table_name(table_name)

        try:
            hints = typing.get_type_hints(model_type)
        except (NameError, TypeError) as err:
            raise ModelDefinitionError(f"cannot resolve field types of {model_type.__name__}: {err}") from err

        attributes: dict[str, AttributeDefinition] = {}
        seen_names: dict[str, str] = {}
        for dc_field in dataclasses.fields(model_type):
            meta = dc_field.metadata.get(_METADATA_KEY, {})
            if meta.get("ignore"):
                continue
            if not dc_field.init:
                continue

            roles = tuple(meta.get("roles", ()))
            unknown = set(roles).difference(_ROLES)
            if unknown:
                raise ModelDefinitionError(f"unknown roles on {dc_field.name}: {sorted(unknown)}")

            attr_name = meta.get("name") or dc_field.name
            try:
                validate_attribute_name(attr_name, key="pk" in roles or "sk" in roles)
            except ValidationError as err:
                raise ModelDefinitionError(str(err)) from err
            if attr_name in seen_names:
                raise ModelDefinitionError(
                    f"attribute name {attr_name!r} used by {seen_names[attr_name]} and {dc_field.name}"
                )
            seen_names[attr_name] = dc_field.name

            attributes[dc_field.name] = AttributeDefinition(
                python_name=dc_field.name,
                attribute_name=attr_name,
                roles=roles,
                omitempty=bool(meta.get("omitempty", False)),
                python_type=hints.get(dc_field.name, Any),
                converter=meta.get("converter"),
                has_default=dc_field.default is not MISSING or dc_field.default_factory is not MISSING,
            )

        return cls._build(model_type, table_name, attributes)

    @classmethod
    def _build(
        cls,
        model_type: type[T],
        table_name: str | None,
        attributes: Mapping[str, AttributeDefinition],
    ) -> ModelDefinition[T]:
        def with_role(role: str) -> list[AttributeDefinition]:
            return [a for a in attributes.values() if role in a.roles]

        pks = with_role("pk")
        if len(pks) != 1:
            raise ModelDefinitionError("model must define exactly one pk field")
        sks = with_role("sk")
        if len(sks) > 1:
            raise ModelDefinitionError("model may define at most one sk field")
        versions = with_role("version")
        if len(versions) > 1:
            raise ModelDefinitionError("model may define at most one version field")

        for definition in pks + sks:
            if len(definition.roles) > 1:
                raise ModelDefinitionError(f"key field cannot carry other roles: {definition.python_name}")
            if definition.omitempty:
                raise ModelDefinitionError(f"key field cannot be omitempty: {definition.python_name}")

        version = versions[0] if versions else None
        if version is not None:
            tp = version.python_type
            if tp is not int and unwrap_optional(tp) is not int:
                raise ModelDefinitionError(f"version field must be int or int | None: {version.python_name}")
            if version.converter is not None:
                raise ModelDefinitionError("version field cannot use a converter")

        return cls(
            model_type=model_type,
            table_name=table_name,
            pk=pks[0],
            sk=sks[0] if sks else None,
            version=version,
            attributes=dict(attributes),
        )

    @property
    def key_attribute_names(self) -> tuple[str, ...]:
        if self.sk is None:
            return (self.pk.attribute_name,)
        return (self.pk.attribute_name, self.sk.attribute_name)

    def require_table_name(self) -> str:
        if not self.table_name:
            raise ModelDefinitionError(f"{self.model_type.__name__} has no table_name")
        return self.table_name

    def field_for(self, name: str) -> AttributeDefinition | None:
        definition = self.attributes.get(name)
        if definition is not None:
            return definition
        for candidate in self.attributes.values():
            if candidate.attribute_name == name:
                return candidate
        return None

    def table_schema(self, *, throughput: ProvisionedThroughput | None = None) -> TableSchema:
        pk = KeyAttribute(self.pk.attribute_name, _key_scalar_type(self.pk))
        sk = KeyAttribute(self.sk.attribute_name, _key_scalar_type(self.sk)) if self.sk else None
        return TableSchema(
            table_name=self.require_table_name(),
            partition_key=pk,
            sort_key=sk,
            throughput=throughput,
        )

from __future__ import annotations

import re
from collections.abc import Mapping

from .errors import ValidationError

MaxTableNameLength = 255
MinTableNameLength = 3
MaxAttributeNameLength = 65535
MaxKeyAttributeNameLength = 255
MaxExpressionLength = 4096

_TABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_NAME_PLACEHOLDER_RE = re.compile(r"#[A-Za-z0-9_]+")
_VALUE_PLACEHOLDER_RE = re.compile(r":[A-Za-z0-9_]+")


def validate_table_name(name: str) -> None:
    if not isinstance(name, str) or not name:
        raise ValidationError("table name is required")
    if not MinTableNameLength <= len(name) <= MaxTableNameLength:
        raise ValidationError(
            f"table name must be {MinTableNameLength}-{MaxTableNameLength} characters: {name!r}"
        )
    if not _TABLE_NAME_RE.match(name):
        raise ValidationError(f"table name contains invalid characters: {name!r}")


def validate_attribute_name(name: str, *, key: bool = False) -> None:
    if not isinstance(name, str) or not name:
        raise ValidationError("attribute name must be a non-empty string")
    limit = MaxKeyAttributeNameLength if key else MaxAttributeNameLength
    if len(name.encode("utf-8")) > limit:
        raise ValidationError(f"attribute name exceeds {limit} bytes: {name[:32]!r}...")


def validate_expression(
    expression: str,
    names: Mapping[str, str] | None = None,
    values: Mapping[str, object] | None = None,
) -> None:
    """Check that every placeholder in ``expression`` is bound and every binding is used.

    The store rejects both unbound and unused placeholders, so catching them here
    reports the problem before a round-trip.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ValidationError("expression is required")
    if len(expression) > MaxExpressionLength:
        raise ValidationError(f"expression exceeds {MaxExpressionLength} characters")

    names = names or {}
    values = values or {}

    used_names = set(_NAME_PLACEHOLDER_RE.findall(expression))
    used_values = set(_VALUE_PLACEHOLDER_RE.findall(expression))

    unbound = sorted(used_names.difference(names)) + sorted(used_values.difference(values))
    if unbound:
        raise ValidationError(f"unbound expression placeholders: {unbound}")

    unused = sorted(set(names).difference(used_names)) + sorted(set(values).difference(used_values))
    if unused:
        raise ValidationError(f"unused expression placeholders: {unused}")

    for ref in names:
        if not ref.startswith("#"):
            raise ValidationError(f"attribute name placeholder must start with '#': {ref}")
    for ref in values:
        if not ref.startswith(":"):
            raise ValidationError(f"attribute value placeholder must start with ':': {ref}")

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .errors import ValidationError
from .validation import validate_attribute_name, validate_table_name


class ScalarType(StrEnum):
    STRING = "S"
    NUMBER = "N"
    BINARY = "B"


class BillingMode(StrEnum):
    PROVISIONED = "PROVISIONED"
    PAY_PER_REQUEST = "PAY_PER_REQUEST"


@dataclass(frozen=True)
class KeyAttribute:
    name: str
    type: ScalarType = ScalarType.STRING

    def __post_init__(self) -> None:
        validate_attribute_name(self.name, key=True)
        try:
            object.__setattr__(self, "type", ScalarType(self.type))
        except ValueError as err:
            raise ValidationError(f"key attribute type must be S, N or B: {self.type!r}") from err


@dataclass(frozen=True)
class ProvisionedThroughput:
    read_capacity_units: int
    write_capacity_units: int

    def __post_init__(self) -> None:
        for value in (self.read_capacity_units, self.write_capacity_units):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError("capacity units must be positive integers")


@dataclass(frozen=True)
class TableSchema:
    """Key schema and capacity mode of one table.

    ``throughput=None`` selects on-demand capacity.
    """

    table_name: str
    partition_key: KeyAttribute
    sort_key: KeyAttribute | None = None
    throughput: ProvisionedThroughput | None = None

    def __post_init__(self) -> None:
        validate_table_name(self.table_name)
        if self.sort_key is not None and self.sort_key.name == self.partition_key.name:
            raise ValidationError("partition key and sort key must be different attributes")

    @property
    def key_names(self) -> tuple[str, ...]:
        if self.sort_key is None:
            return (self.partition_key.name,)
        return (self.partition_key.name, self.sort_key.name)

    @property
    def billing_mode(self) -> BillingMode:
        if self.throughput is None:
            return BillingMode.PAY_PER_REQUEST
        return BillingMode.PROVISIONED

    def key_schema(self) -> list[dict[str, str]]:
        out = [{"AttributeName": self.partition_key.name, "KeyType": "HASH"}]
        if self.sort_key is not None:
            out.append({"AttributeName": self.sort_key.name, "KeyType": "RANGE"})
        return out

    def attribute_definitions(self) -> list[dict[str, str]]:
        keys = [self.partition_key] if self.sort_key is None else [self.partition_key, self.sort_key]
        return [{"AttributeName": k.name, "AttributeType": k.type.value} for k in keys]

    @classmethod
    def from_description(cls, table: Mapping[str, Any]) -> TableSchema:
        name = table.get("TableName")
        if not isinstance(name, str):
            raise ValidationError("table description is missing TableName")

        types = {d["AttributeName"]: d["AttributeType"] for d in table.get("AttributeDefinitions", [])}
        partition: KeyAttribute | None = None
        sort: KeyAttribute | None = None
        for element in table.get("KeySchema", []):
            attr_name = element["AttributeName"]
            key = KeyAttribute(attr_name, types.get(attr_name, ScalarType.STRING))
            if element["KeyType"] == "HASH":
                partition = key
            elif element["KeyType"] == "RANGE":
                sort = key
        if partition is None:
            raise ValidationError(f"table description has no partition key: {name}")

        throughput: ProvisionedThroughput | None = None
        billing = (table.get("BillingModeSummary") or {}).get("BillingMode")
        provisioned = table.get("ProvisionedThroughput") or {}
        read = provisioned.get("ReadCapacityUnits") or 0
        write = provisioned.get("WriteCapacityUnits") or 0
        if billing != BillingMode.PAY_PER_REQUEST.value and read > 0 and write > 0:
            throughput = ProvisionedThroughput(int(read), int(write))

        return cls(table_name=name, partition_key=partition, sort_key=sort, throughput=throughput)


@dataclass(frozen=True)
class TableDescription:
    schema: TableSchema
    status: str
    item_count: int | None = None


def build_create_table_request(schema: TableSchema) -> dict[str, Any]:
    req: dict[str, Any] = {
        "TableName": schema.table_name,
        "AttributeDefinitions": schema.attribute_definitions(),
        "KeySchema": schema.key_schema(),
        "BillingMode": schema.billing_mode.value,
    }
    if schema.throughput is not None:
        req["ProvisionedThroughput"] = {
            "ReadCapacityUnits": schema.throughput.read_capacity_units,
            "WriteCapacityUnits": schema.throughput.write_capacity_units,
        }
    return req

from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .attribute import AttributeType, AttributeValue, Item
from .errors import (
    AlreadyExistsError,
    ConditionFailedError,
    MappingError,
    MissingKeyAttributeError,
    NotFoundError,
    OptimisticLockError,
    StoreError,
    TableAlreadyExistsError,
    TableNotFoundError,
    TableStoreError,
    TransientServiceError,
    TypeConversionError,
    TypeMismatchError,
    ValidationError,
)
from .mapper import ObjectMapper
from .model import AttributeConverter, AttributeDefinition, ModelDefinition, ModelDefinitionError, store_field
from .query import CompiledExpression, Page, ScanCondition, ScanFilter, ScanOperator, SortKeyCondition
from .schema import (
    BillingMode,
    KeyAttribute,
    ProvisionedThroughput,
    ScalarType,
    TableDescription,
    TableSchema,
)
from .update import UpdateExpression

if TYPE_CHECKING:
    from .client import TableStoreClient
    from .config import ClientConfig, create_client, create_dynamodb_client
    from .store import Boto3RemoteStore, RemoteStore
    from .validation import (
        MaxAttributeNameLength,
        MaxExpressionLength,
        MaxKeyAttributeNameLength,
        MaxTableNameLength,
        MinTableNameLength,
        validate_attribute_name,
        validate_expression,
        validate_table_name,
    )


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name == "TableStoreClient":
        from .client import TableStoreClient

        return TableStoreClient
    if name in {"ClientConfig", "create_client", "create_dynamodb_client"}:
        from . import config

        return getattr(config, name)
    if name in {"Boto3RemoteStore", "RemoteStore"}:
        from . import store

        return getattr(store, name)
    if name in {
        "MaxAttributeNameLength",
        "MaxExpressionLength",
        "MaxKeyAttributeNameLength",
        "MaxTableNameLength",
        "MinTableNameLength",
        "validate_attribute_name",
        "validate_expression",
        "validate_table_name",
    }:
        from . import validation

        return getattr(validation, name)
    raise AttributeError(name)


__all__ = [
    "AlreadyExistsError",
    "AttributeConverter",
    "AttributeDefinition",
    "AttributeType",
    "AttributeValue",
    "BillingMode",
    "Boto3RemoteStore",
    "ClientConfig",
    "CompiledExpression",
    "ConditionFailedError",
    "create_client",
    "create_dynamodb_client",
    "Item",
    "KeyAttribute",
    "MappingError",
    "MaxAttributeNameLength",
    "MaxExpressionLength",
    "MaxKeyAttributeNameLength",
    "MaxTableNameLength",
    "MinTableNameLength",
    "MissingKeyAttributeError",
    "ModelDefinition",
    "ModelDefinitionError",
    "NotFoundError",
    "ObjectMapper",
    "OptimisticLockError",
    "Page",
    "ProvisionedThroughput",
    "RemoteStore",
    "ScalarType",
    "ScanCondition",
    "ScanFilter",
    "ScanOperator",
    "SortKeyCondition",
    "StoreError",
    "TableAlreadyExistsError",
    "TableDescription",
    "TableNotFoundError",
    "TableSchema",
    "TableStoreClient",
    "TableStoreError",
    "TransientServiceError",
    "TypeConversionError",
    "TypeMismatchError",
    "UpdateExpression",
    "ValidationError",
    "__repo_version__",
    "__version__",
    "store_field",
    "validate_attribute_name",
    "validate_expression",
    "validate_table_name",
]

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

from .attribute import AttributeValue, Item
from .errors import (
    ConditionFailedError,
    OptimisticLockError,
    StoreError,
    TableAlreadyExistsError,
    TableNotFoundError,
    TransientServiceError,
    ValidationError,
)
from .mapper import ObjectMapper
from .model import ModelDefinition
from .query import (
    CompiledExpression,
    Page,
    ScanCondition,
    ScanFilter,
    SortKeyCondition,
    decode_cursor,
    encode_cursor,
)
from .schema import TableDescription, TableSchema, build_create_table_request
from .store import RemoteStore
from .update import UpdateExpression
from .validation import validate_expression, validate_table_name

logger = logging.getLogger(__name__)

_TRANSIENT_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
        "LimitExceededException",
        "ConnectionError",
    }
)
_RETURN_VALUES = frozenset({"NONE", "ALL_OLD", "UPDATED_OLD", "ALL_NEW", "UPDATED_NEW"})

type Conditions = ScanFilter | Iterable[ScanCondition]


def _map_store_error(err: StoreError, table_name: str | None, *, creating: bool = False) -> Exception:
    code = err.code
    message = err.message

    if code == "ValidationException":
        return ValidationError(message)
    if code == "ResourceNotFoundException":
        return TableNotFoundError(table_name or "", message)
    if code == "ResourceInUseException" and creating:
        return TableAlreadyExistsError(table_name or "", message)
    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(message or "condition check failed")
    if code in _TRANSIENT_CODES:
        return TransientServiceError(code=code, message=message)

    return StoreError(code=code, message=message)


def _as_filter(conditions: Conditions) -> ScanFilter:
    if isinstance(conditions, ScanFilter):
        return conditions
    return ScanFilter(conditions)


def _as_item(value: Item | Mapping[str, AttributeValue], what: str) -> Item:
    if isinstance(value, Item):
        return value
    if isinstance(value, Mapping):
        return Item(value)
    raise ValidationError(f"{what} must be an Item")


def _check_page_size(page_size: int | None) -> None:
    if page_size is not None and (isinstance(page_size, bool) or page_size <= 0):
        raise ValidationError("page_size must be > 0")


def _merge_names(target: dict[str, str], extra: Mapping[str, str] | None) -> None:
    for ref, name in (extra or {}).items():
        existing = target.get(ref)
        if existing is not None and existing != name:
            raise ValidationError(f"expression attribute name collision: {ref}")
        target[ref] = name


def _merge_values(target: dict[str, AttributeValue], extra: Mapping[str, Any] | None) -> None:
    for ref, value in (extra or {}).items():
        if ref in target:
            raise ValidationError(f"expression attribute value collision: {ref}")
        target[ref] = AttributeValue.from_python(value)


def _apply_expression(
    req: dict[str, Any],
    key: str,
    expression: str,
    names: Mapping[str, str],
    values: Mapping[str, AttributeValue],
) -> None:
    req[key] = expression
    if names:
        req.setdefault("ExpressionAttributeNames", {}).update(names)
    if values:
        req.setdefault("ExpressionAttributeValues", {}).update({r: v.to_wire() for r, v in values.items()})


class TableStoreClient:
    """Asynchronous table and item operations over a :class:`RemoteStore`.

    Entity operations require the entity's model to be registered first. A
    registered :class:`TableSchema` lets ``put_item`` check key attributes locally.
    """

    def __init__(
        self,
        store: RemoteStore,
        *,
        models: Iterable[ModelDefinition[Any]] = (),
        schemas: Iterable[TableSchema] = (),
    ) -> None:
        self._store = store
        self._mappers: dict[type, ObjectMapper[Any]] = {}
        self._key_names: dict[str, tuple[str, ...]] = {}
        for model in models:
            self.register(model)
        for schema in schemas:
            self.register_schema(schema)

    @property
    def store(self) -> RemoteStore:
        return self._store

    def register[T](
        self,
        model: ModelDefinition[T] | type[T],
        *,
        table_name: str | None = None,
    ) -> ModelDefinition[T]:
        if not isinstance(model, ModelDefinition):
            model = ModelDefinition.from_dataclass(model, table_name=table_name)
        elif table_name is not None:
            raise ValidationError("table_name applies only when registering a dataclass")
        self._mappers[model.model_type] = ObjectMapper(model)
        return model

    def register_schema(self, schema: TableSchema) -> None:
        self._key_names[schema.table_name] = schema.key_names

    def mapper_for[T](self, model_type: type[T]) -> ObjectMapper[T]:
        mapper = self._mappers.get(model_type)
        if mapper is None:
            raise ValidationError(f"model is not registered: {model_type.__name__}")
        return mapper

    async def _request(
        self,
        operation: str,
        request: dict[str, Any],
        *,
        creating: bool = False,
    ) -> dict[str, Any]:
        table_name = request.get("TableName")
        logger.debug("%s %s", operation, table_name or "")
        try:
            return await getattr(self._store, operation)(**request)
        except StoreError as err:
            raise _map_store_error(err, table_name, creating=creating) from err

    # Tables

    async def list_tables(self) -> list[str]:
        names: list[str] = []
        req: dict[str, Any] = {}
        while True:
            resp = await self._request("list_tables", req)
            names.extend(resp.get("TableNames", []))
            last = resp.get("LastEvaluatedTableName")
            if not last:
                return names
            req = {"ExclusiveStartTableName": last}

    async def create_table(self, schema: TableSchema) -> None:
        await self._request("create_table", build_create_table_request(schema), creating=True)
        logger.info("created table %s (%s)", schema.table_name, schema.billing_mode.value)

    async def delete_table(self, table_name: str) -> None:
        validate_table_name(table_name)
        await self._request("delete_table", {"TableName": table_name})
        logger.info("deleted table %s", table_name)

    async def describe_table(self, table_name: str) -> TableDescription:
        validate_table_name(table_name)
        resp = await self._request("describe_table", {"TableName": table_name})
        table = resp.get("Table") or {}
        count = table.get("ItemCount")
        return TableDescription(
            schema=TableSchema.from_description(table),
            status=str(table.get("TableStatus", "")),
            item_count=int(count) if count is not None else None,
        )

    # Items

    async def get_item(
        self,
        table_name: str,
        key: Item | Mapping[str, AttributeValue],
        *,
        consistent_read: bool = False,
    ) -> Item | None:
        validate_table_name(table_name)
        key = _as_item(key, "key")
        resp = await self._request(
            "get_item",
            {"TableName": table_name, "Key": key.to_wire(), "ConsistentRead": consistent_read},
        )
        raw = resp.get("Item")
        if not raw:
            return None
        return Item.from_wire(raw)

    async def put_item(
        self,
        table_name: str,
        item: Item | Mapping[str, AttributeValue],
        *,
        condition: CompiledExpression | ScanFilter | None = None,
    ) -> None:
        validate_table_name(table_name)
        item = _as_item(item, "item")
        key_names = self._key_names.get(table_name)
        if key_names is not None:
            missing = item.missing(key_names)
            if missing:
                raise ValidationError(f"item is missing key attributes: {missing}")

        req: dict[str, Any] = {"TableName": table_name, "Item": item.to_wire()}
        self._apply_condition(req, condition)
        await self._request("put_item", req)

    async def update_item(
        self,
        table_name: str,
        key: Item | Mapping[str, AttributeValue],
        update: str | UpdateExpression,
        attribute_names: Mapping[str, str] | None = None,
        attribute_values: Mapping[str, Any] | None = None,
        *,
        condition_expression: str | None = None,
        return_values: str = "ALL_NEW",
    ) -> Item | None:
        """Apply ``update`` to the item at ``key``.

        ``update`` is either raw update-expression text, sent unchanged, or an
        :class:`UpdateExpression`. ``attribute_names`` and ``attribute_values``
        bind the placeholders of the raw text and of ``condition_expression``.
        Returns the attributes selected by ``return_values``, if any.
        """
        validate_table_name(table_name)
        key = _as_item(key, "key")
        if return_values not in _RETURN_VALUES:
            raise ValidationError(f"unsupported return_values: {return_values}")

        names: dict[str, str] = {}
        values: dict[str, AttributeValue] = {}
        if isinstance(update, UpdateExpression):
            compiled = update.build()
            expression = compiled.expression
            names.update(compiled.names)
            values.update(compiled.values)
        elif isinstance(update, str):
            expression = update
        else:
            raise ValidationError("update must be an expression string or UpdateExpression")
        _merge_names(names, attribute_names)
        _merge_values(values, attribute_values)

        checked = expression if condition_expression is None else f"{expression} {condition_expression}"
        validate_expression(checked, names, values)

        req: dict[str, Any] = {
            "TableName": table_name,
            "Key": key.to_wire(),
            "ReturnValues": return_values,
        }
        _apply_expression(req, "UpdateExpression", expression, names, values)
        if condition_expression is not None:
            req["ConditionExpression"] = condition_expression

        resp = await self._request("update_item", req)
        attrs = resp.get("Attributes")
        if not attrs:
            return None
        return Item.from_wire(attrs)

    async def delete_item(
        self,
        table_name: str,
        key: Item | Mapping[str, AttributeValue],
        *,
        condition: CompiledExpression | ScanFilter | None = None,
    ) -> None:
        validate_table_name(table_name)
        key = _as_item(key, "key")
        req: dict[str, Any] = {"TableName": table_name, "Key": key.to_wire()}
        self._apply_condition(req, condition)
        await self._request("delete_item", req)

    def _apply_condition(
        self,
        req: dict[str, Any],
        condition: CompiledExpression | ScanFilter | None,
    ) -> None:
        if condition is None:
            return
        if isinstance(condition, ScanFilter):
            compiled = condition.compile(name_prefix="#c", value_prefix=":c")
            if compiled is None:
                return
            condition = compiled
        validate_expression(condition.expression, condition.names, condition.values)
        _apply_expression(req, "ConditionExpression", condition.expression, condition.names, condition.values)

    # Entities

    async def put_entity[T](self, entity: T, *, skip_version_check: bool = False) -> T:
        """Write ``entity`` and return it carrying its new version.

        With version checking, the write only succeeds while the stored version
        still equals the entity's version (or no item exists, for an entity
        that has never been written).
        """
        mapper = self.mapper_for(type(entity))
        model = mapper.model
        table_name = model.require_table_name()
        item = mapper.to_item(entity)

        req: dict[str, Any] = {"TableName": table_name, "Item": item.to_wire()}
        expected = None if mapper.is_unwritten(entity) else mapper.current_version(entity)
        checked = model.version is not None and not skip_version_check
        if checked and model.version is not None:
            req["ExpressionAttributeNames"] = {"#v": model.version.attribute_name}
            if expected is None:
                req["ConditionExpression"] = "attribute_not_exists(#v)"
            else:
                req["ConditionExpression"] = "#v = :v"
                req["ExpressionAttributeValues"] = {":v": AttributeValue.number_value(expected).to_wire()}

        try:
            await self._request("put_item", req)
        except ConditionFailedError as err:
            if not checked:
                raise
            logger.warning(
                "version conflict writing %s to %s (expected %s)",
                model.model_type.__name__,
                table_name,
                expected,
            )
            raise OptimisticLockError(table_name, expected) from err

        new_version = mapper.next_version(entity)
        if new_version is None:
            return entity
        return mapper.with_version(entity, new_version)

    async def get_entity[T](
        self,
        model_type: type[T],
        partition: Any,
        sort: Any | None = None,
        *,
        consistent_read: bool = False,
    ) -> T | None:
        mapper = self.mapper_for(model_type)
        key = mapper.key_for(partition, sort)
        item = await self.get_item(mapper.model.require_table_name(), key, consistent_read=consistent_read)
        if item is None:
            return None
        return mapper.from_item(item)

    async def delete_entity[T](self, entity: T, *, skip_version_check: bool = False) -> None:
        mapper = self.mapper_for(type(entity))
        model = mapper.model
        table_name = model.require_table_name()
        req: dict[str, Any] = {"TableName": table_name, "Key": mapper.extract_key(entity).to_wire()}

        expected = None if mapper.is_unwritten(entity) else mapper.current_version(entity)
        checked = model.version is not None and expected is not None and not skip_version_check
        if checked and model.version is not None and expected is not None:
            req["ConditionExpression"] = "#v = :v"
            req["ExpressionAttributeNames"] = {"#v": model.version.attribute_name}
            req["ExpressionAttributeValues"] = {":v": AttributeValue.number_value(expected).to_wire()}

        try:
            await self._request("delete_item", req)
        except ConditionFailedError as err:
            if not checked:
                raise
            logger.warning(
                "version conflict deleting %s from %s (expected %s)",
                model.model_type.__name__,
                table_name,
                expected,
            )
            raise OptimisticLockError(table_name, expected) from err

    # Scans and queries

    def _scan_request(
        self,
        table_name: str,
        conditions: Conditions,
        model: ModelDefinition[Any] | None,
        page_size: int | None,
        consistent_read: bool,
    ) -> dict[str, Any]:
        validate_table_name(table_name)
        _check_page_size(page_size)
        req: dict[str, Any] = {"TableName": table_name, "ConsistentRead": consistent_read}
        if page_size is not None:
            req["Limit"] = page_size
        compiled = _as_filter(conditions).compile(model)
        if compiled is not None:
            _apply_expression(req, "FilterExpression", compiled.expression, compiled.names, compiled.values)
        return req

    def _query_request(
        self,
        mapper: ObjectMapper[Any],
        partition: Any,
        sort: SortKeyCondition | None,
        conditions: Conditions,
        page_size: int | None,
        scan_forward: bool,
        consistent_read: bool,
    ) -> dict[str, Any]:
        model = mapper.model
        _check_page_size(page_size)
        if partition is None:
            raise ValidationError("partition is required")

        names = {"#pk": model.pk.attribute_name}
        values = {":pk": mapper.encode_field(model.pk, partition)}
        key_expr = "#pk = :pk"
        if sort is not None:
            if model.sk is None:
                raise ValidationError("model does not define a sort key")
            names["#sk"] = model.sk.attribute_name
            refs = []
            for i, value in enumerate(sort.values):
                ref = f":sk{i}"
                values[ref] = mapper.encode_field(model.sk, value)
                refs.append(ref)
            key_expr = f"{key_expr} AND {sort.render('#sk', refs)}"

        req: dict[str, Any] = {
            "TableName": model.require_table_name(),
            "ScanIndexForward": scan_forward,
            "ConsistentRead": consistent_read,
        }
        if page_size is not None:
            req["Limit"] = page_size
        _apply_expression(req, "KeyConditionExpression", key_expr, names, values)
        compiled = _as_filter(conditions).compile(model)
        if compiled is not None:
            _apply_expression(req, "FilterExpression", compiled.expression, compiled.names, compiled.values)
        return req

    async def _pages(self, operation: str, req: dict[str, Any]) -> AsyncIterator[list[Item]]:
        while True:
            resp = await self._request(operation, req)
            yield [Item.from_wire(raw) for raw in resp.get("Items", [])]
            last = resp.get("LastEvaluatedKey")
            if not last:
                return
            req = {**req, "ExclusiveStartKey": last}

    async def scan_items(
        self,
        table_name: str,
        conditions: Conditions = (),
        *,
        page_size: int | None = None,
        consistent_read: bool = False,
    ) -> AsyncIterator[Item]:
        req = self._scan_request(table_name, conditions, None, page_size, consistent_read)
        async for page in self._pages("scan", req):
            for item in page:
                yield item

    async def scan_entities[T](
        self,
        model_type: type[T],
        conditions: Conditions = (),
        *,
        page_size: int | None = None,
        consistent_read: bool = False,
    ) -> AsyncIterator[T]:
        """Yield every entity matching ``conditions``, following continuation pages.

        Pages are fetched on demand. The iterator makes a single forward pass.
        """
        mapper = self.mapper_for(model_type)
        model = mapper.model
        req = self._scan_request(model.require_table_name(), conditions, model, page_size, consistent_read)
        async for page in self._pages("scan", req):
            for item in page:
                yield mapper.from_item(item)

    async def query_entities[T](
        self,
        model_type: type[T],
        partition: Any,
        *,
        sort: SortKeyCondition | None = None,
        conditions: Conditions = (),
        page_size: int | None = None,
        scan_forward: bool = True,
        consistent_read: bool = False,
    ) -> AsyncIterator[T]:
        mapper = self.mapper_for(model_type)
        req = self._query_request(
            mapper, partition, sort, conditions, page_size, scan_forward, consistent_read
        )
        async for page in self._pages("query", req):
            for item in page:
                yield mapper.from_item(item)

    async def scan_page[T](
        self,
        model_type: type[T],
        conditions: Conditions = (),
        *,
        page_size: int | None = None,
        cursor: str | None = None,
        consistent_read: bool = False,
    ) -> Page[T]:
        mapper = self.mapper_for(model_type)
        model = mapper.model
        req = self._scan_request(model.require_table_name(), conditions, model, page_size, consistent_read)
        if cursor is not None:
            decoded = decode_cursor(cursor)
            if decoded.sort is not None:
                raise ValidationError("cursor does not belong to a scan")
            req["ExclusiveStartKey"] = decoded.last_key.to_wire()

        resp = await self._request("scan", req)
        items = [mapper.from_item(Item.from_wire(raw)) for raw in resp.get("Items", [])]
        last = resp.get("LastEvaluatedKey")
        return Page(items=items, next_cursor=encode_cursor(Item.from_wire(last)) if last else None)

    async def query_page[T](
        self,
        model_type: type[T],
        partition: Any,
        *,
        sort: SortKeyCondition | None = None,
        conditions: Conditions = (),
        page_size: int | None = None,
        cursor: str | None = None,
        scan_forward: bool = True,
        consistent_read: bool = False,
    ) -> Page[T]:
        mapper = self.mapper_for(model_type)
        req = self._query_request(
            mapper, partition, sort, conditions, page_size, scan_forward, consistent_read
        )
        direction = "ASC" if scan_forward else "DESC"
        if cursor is not None:
            decoded = decode_cursor(cursor)
            if decoded.sort != direction:
                raise ValidationError("cursor sort does not match query")
            req["ExclusiveStartKey"] = decoded.last_key.to_wire()

        resp = await self._request("query", req)
        items = [mapper.from_item(Item.from_wire(raw)) for raw in resp.get("Items", [])]
        last = resp.get("LastEvaluatedKey")
        return Page(
            items=items,
            next_cursor=encode_cursor(Item.from_wire(last), sort=direction) if last else None,
        )

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import pytest

from tablestore_py import (
    ConditionFailedError,
    Item,
    KeyAttribute,
    ModelDefinition,
    OptimisticLockError,
    ScalarType,
    ScanCondition,
    ScanFilter,
    ScanOperator,
    SortKeyCondition,
    StoreError,
    TableAlreadyExistsError,
    TableNotFoundError,
    TableSchema,
    TableStoreClient,
    TransientServiceError,
    UpdateExpression,
    ValidationError,
    store_field,
)
from tablestore_py.mocks import ANY, FakeDynamoDBClient
from tablestore_py.store import Boto3RemoteStore


@dataclass
class Book:
    id: int = store_field(name="Id", roles=["pk"])
    title: str = store_field(name="Title")
    price: int = store_field(name="Price")
    version: int | None = store_field(name="VersionNumber", roles=["version"], default=None)


@dataclass(frozen=True)
class Reading:
    sensor: str = store_field(roles=["pk"])
    at: int = store_field(roles=["sk"])
    value: int = store_field()


def _client(fake: FakeDynamoDBClient, **kwargs: Any) -> TableStoreClient:
    client = TableStoreClient(Boto3RemoteStore(fake), **kwargs)
    client.register(Book, table_name="ProductCatalog")
    client.register(Reading, table_name="readings")
    return client


def _book_wire(id: int, price: int, version: int) -> dict[str, Any]:
    return {
        "Id": {"N": str(id)},
        "Title": {"S": f"Book {id} Title"},
        "Price": {"N": str(price)},
        "VersionNumber": {"N": str(version)},
    }


def test_list_tables_follows_pagination() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("list_tables", {}, response={"TableNames": ["a", "b"], "LastEvaluatedTableName": "b"})
    fake.expect("list_tables", {"ExclusiveStartTableName": "b"}, response={"TableNames": ["c"]})

    assert asyncio.run(_client(fake).list_tables()) == ["a", "b", "c"]
    fake.assert_no_pending()


def test_create_table_maps_name_collision() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("create_table", {"TableName": "ProductCatalog", "BillingMode": "PAY_PER_REQUEST"})
    fake.expect("create_table", error=("ResourceInUseException", "Table already exists: ProductCatalog"))
    schema = TableSchema("ProductCatalog", KeyAttribute("Id", ScalarType.NUMBER))
    client = _client(fake)

    asyncio.run(client.create_table(schema))
    with pytest.raises(TableAlreadyExistsError) as exc:
        asyncio.run(client.create_table(schema))

    assert exc.value.table_name == "ProductCatalog"
    fake.assert_no_pending()


def test_delete_table_maps_missing_table() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("delete_table", {"TableName": "missing"}, error=("ResourceNotFoundException", "not found"))

    with pytest.raises(TableNotFoundError):
        asyncio.run(_client(fake).delete_table("missing"))


def test_describe_table_parses_schema_and_status() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "describe_table",
        {"TableName": "ProductCatalog"},
        response={
            "Table": {
                "TableName": "ProductCatalog",
                "TableStatus": "ACTIVE",
                "ItemCount": 3,
                "AttributeDefinitions": [{"AttributeName": "Id", "AttributeType": "N"}],
                "KeySchema": [{"AttributeName": "Id", "KeyType": "HASH"}],
                "ProvisionedThroughput": {"ReadCapacityUnits": 5, "WriteCapacityUnits": 6},
            }
        },
    )

    description = asyncio.run(_client(fake).describe_table("ProductCatalog"))

    assert description.status == "ACTIVE"
    assert description.item_count == 3
    assert description.schema.partition_key.type is ScalarType.NUMBER
    assert description.schema.throughput is not None
    assert description.schema.throughput.write_capacity_units == 6


def test_get_item_returns_none_when_absent() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("get_item", {"Key": {"Id": {"N": "1"}}, "ConsistentRead": True}, response={})

    key = Item.from_python({"Id": 1})
    assert asyncio.run(_client(fake).get_item("ProductCatalog", key, consistent_read=True)) is None


def test_put_item_checks_registered_schema_locally() -> None:
    fake = FakeDynamoDBClient()
    schema = TableSchema("ProductCatalog", KeyAttribute("Id", ScalarType.NUMBER))
    client = _client(fake, schemas=[schema])

    with pytest.raises(ValidationError, match="missing key attributes"):
        asyncio.run(client.put_item("ProductCatalog", Item.from_python({"Title": "t"})))

    assert fake.calls == []


def test_put_item_maps_store_validation_error() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("put_item", error=("ValidationException", "Missing the key Id in the item"))

    with pytest.raises(ValidationError, match="Missing the key"):
        asyncio.run(_client(fake).put_item("ProductCatalog", Item.from_python({"Title": "t"})))


def test_put_item_with_filter_condition() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "put_item",
        {
            "ConditionExpression": "attribute_not_exists(#c0)",
            "ExpressionAttributeNames": {"#c0": "Id"},
        },
    )
    condition = ScanFilter([ScanCondition("Id", ScanOperator.IS_NULL)])

    asyncio.run(_client(fake).put_item("ProductCatalog", Item.from_python({"Id": 1}), condition=condition))
    fake.assert_no_pending()


def test_update_item_passes_raw_expression_unchanged() -> None:
    fake = FakeDynamoDBClient()
    expression = "ADD Authors :auth SET Price = Price - :p REMOVE ISBN"
    fake.expect(
        "update_item",
        {
            "TableName": "ProductCatalog",
            "Key": {"Id": {"N": "201"}},
            "UpdateExpression": expression,
            "ExpressionAttributeValues": {":auth": {"SS": ANY}, ":p": {"N": "1"}},
            "ReturnValues": "ALL_NEW",
        },
        response={"Attributes": {"Id": {"N": "201"}, "Price": {"N": "99"}}},
    )

    result = asyncio.run(
        _client(fake).update_item(
            "ProductCatalog",
            Item.from_python({"Id": 201}),
            expression,
            attribute_values={":auth": {"Author YY", "Author ZZ"}, ":p": 1},
        )
    )

    assert result is not None
    assert result["Price"].as_number() == 99
    assert "ExpressionAttributeNames" not in fake.calls[0][1]


def test_update_item_with_builder_and_condition() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "update_item",
        {
            "UpdateExpression": "SET #u0 = #u0 - :u0",
            "ConditionExpression": "#u0 > :min",
            "ExpressionAttributeNames": {"#u0": "Price"},
            "ExpressionAttributeValues": {":u0": {"N": "1"}, ":min": {"N": "0"}},
            "ReturnValues": "NONE",
        },
        error=("ConditionalCheckFailedException", "The conditional request failed"),
    )

    with pytest.raises(ConditionFailedError):
        asyncio.run(
            _client(fake).update_item(
                "ProductCatalog",
                Item.from_python({"Id": 1}),
                UpdateExpression().decrement("Price"),
                attribute_values={":min": 0},
                condition_expression="#u0 > :min",
                return_values="NONE",
            )
        )


def test_update_item_rejects_unbound_placeholders_before_calling_store() -> None:
    fake = FakeDynamoDBClient()

    with pytest.raises(ValidationError, match="unbound"):
        asyncio.run(_client(fake).update_item("ProductCatalog", Item.from_python({"Id": 1}), "SET Price = :p"))
    with pytest.raises(ValidationError, match="return_values"):
        asyncio.run(
            _client(fake).update_item(
                "ProductCatalog", Item.from_python({"Id": 1}), "REMOVE ISBN", return_values="ALL"
            )
        )
    assert fake.calls == []


def test_put_entity_requires_absent_item_for_unversioned_entity() -> None:
    fake = FakeDynamoDBClient()

    def check(req: Mapping[str, Any]) -> None:
        assert req["Item"]["VersionNumber"] == {"N": "0"}
        assert req["ConditionExpression"] == "attribute_not_exists(#v)"
        assert req["ExpressionAttributeNames"] == {"#v": "VersionNumber"}
        assert "ExpressionAttributeValues" not in req

    fake.expect("put_item", check)
    book = Book(id=1, title="Book 1 Title", price=10)

    saved = asyncio.run(_client(fake).put_entity(book))

    assert saved is book
    assert book.version == 0


@dataclass
class Tally:
    name: str = store_field(roles=["pk"])
    hits: int = store_field(default=0)
    version: int = store_field(roles=["version"], default=0)


def test_plain_int_version_zero_is_a_first_write() -> None:
    fake = FakeDynamoDBClient()

    def check(req: Mapping[str, Any]) -> None:
        assert req["Item"]["version"] == {"N": "1"}
        assert req["ConditionExpression"] == "attribute_not_exists(#v)"
        assert "ExpressionAttributeValues" not in req

    fake.expect("put_item", check)
    fake.expect("delete_item", {"TableName": "tallies", "ConditionExpression": None})
    client = _client(fake)
    client.register(Tally, table_name="tallies")

    tally = asyncio.run(client.put_entity(Tally(name="a")))
    asyncio.run(client.delete_entity(Tally(name="b")))

    assert tally.version == 1
    fake.assert_no_pending()


def test_put_entity_conditions_on_current_version() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "put_item",
        {
            "Item": _book_wire(1, 10, 3),
            "ConditionExpression": "#v = :v",
            "ExpressionAttributeValues": {":v": {"N": "2"}},
        },
    )
    book = Book(id=1, title="Book 1 Title", price=10, version=2)

    asyncio.run(_client(fake).put_entity(book))

    assert book.version == 3


def test_put_entity_conflict_raises_optimistic_lock_error_and_keeps_version() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("put_item", error=("ConditionalCheckFailedException", "The conditional request failed"))
    book = Book(id=1, title="Book 1 Title", price=10, version=2)

    with pytest.raises(OptimisticLockError) as exc:
        asyncio.run(_client(fake).put_entity(book))

    assert exc.value.expected_version == 2
    assert exc.value.table_name == "ProductCatalog"
    assert book.version == 2


def test_put_entity_skip_version_check_sends_no_condition() -> None:
    fake = FakeDynamoDBClient()

    def check(req: Mapping[str, Any]) -> None:
        assert "ConditionExpression" not in req
        assert req["Item"]["VersionNumber"] == {"N": "6"}

    fake.expect("put_item", check)
    book = Book(id=1, title="t", price=1, version=5)

    asyncio.run(_client(fake).put_entity(book, skip_version_check=True))

    assert book.version == 6


def test_put_entity_requires_registered_model() -> None:
    @dataclass
    class Unregistered:
        pk: str = store_field(roles=["pk"])

    with pytest.raises(ValidationError, match="not registered"):
        asyncio.run(_client(FakeDynamoDBClient()).put_entity(Unregistered(pk="a")))


def test_get_entity_builds_key_and_maps_item() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "get_item",
        {"TableName": "readings", "Key": {"sensor": {"S": "s1"}, "at": {"N": "5"}}},
        response={"Item": {"sensor": {"S": "s1"}, "at": {"N": "5"}, "value": {"N": "42"}}},
    )

    reading = asyncio.run(_client(fake).get_entity(Reading, "s1", 5))

    assert reading == Reading(sensor="s1", at=5, value=42)


def test_delete_entity_conditions_on_version() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "delete_item",
        {
            "Key": {"Id": {"N": "1"}},
            "ConditionExpression": "#v = :v",
            "ExpressionAttributeNames": {"#v": "VersionNumber"},
            "ExpressionAttributeValues": {":v": {"N": "4"}},
        },
        error=("ConditionalCheckFailedException", "The conditional request failed"),
    )

    with pytest.raises(OptimisticLockError):
        asyncio.run(_client(fake).delete_entity(Book(id=1, title="t", price=1, version=4)))


def test_delete_entity_without_version_is_unconditional() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("delete_item", {"TableName": "readings", "ConditionExpression": None})

    asyncio.run(_client(fake).delete_entity(Reading(sensor="s", at=1, value=0)))
    fake.assert_no_pending()


async def _collect(iterator: Any) -> list[Any]:
    return [item async for item in iterator]


def test_scan_entities_follows_continuation_and_filters() -> None:
    fake = FakeDynamoDBClient()
    last = {"Id": {"N": "2"}}

    def first(req: Mapping[str, Any]) -> None:
        assert req["FilterExpression"] == "#a0 = :v0"
        assert req["ExpressionAttributeNames"] == {"#a0": "Price"}
        assert req["ExpressionAttributeValues"] == {":v0": {"N": "400"}}
        assert req["Limit"] == 2
        assert "ExclusiveStartKey" not in req

    def second(req: Mapping[str, Any]) -> None:
        assert req["ExclusiveStartKey"] == last

    fake.expect("scan", first, response={"Items": [_book_wire(1, 400, 0)], "LastEvaluatedKey": last})
    fake.expect("scan", second, response={"Items": [_book_wire(3, 400, 1)]})

    books = asyncio.run(
        _collect(
            _client(fake).scan_entities(Book, [ScanCondition("price", ScanOperator.EQUAL, 400)], page_size=2)
        )
    )

    assert [b.id for b in books] == [1, 3]
    assert all(b.price == 400 for b in books)
    fake.assert_no_pending()


def test_scan_entities_is_lazy() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("scan", response={"Items": [_book_wire(1, 1, 0)], "LastEvaluatedKey": {"Id": {"N": "1"}}})

    async def first_only() -> Book:
        iterator = _client(fake).scan_entities(Book)
        book = await anext(iterator)
        await iterator.aclose()
        return book

    assert asyncio.run(first_only()).id == 1
    assert len(fake.calls) == 1


def test_scan_items_without_model() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("scan", {"TableName": "raw_table", "ConsistentRead": False}, response={"Items": [{"k": {"S": "v"}}]})

    items = asyncio.run(_collect(_client(fake).scan_items("raw_table")))

    assert items == [Item.from_python({"k": "v"})]


def test_scan_page_returns_cursor_that_resumes() -> None:
    fake = FakeDynamoDBClient()
    last = {"Id": {"N": "1"}}
    fake.expect("scan", response={"Items": [_book_wire(1, 1, 0)], "LastEvaluatedKey": last})
    fake.expect("scan", {"ExclusiveStartKey": last}, response={"Items": []})
    client = _client(fake)

    page = asyncio.run(client.scan_page(Book, page_size=1))
    assert page.next_cursor is not None
    final = asyncio.run(client.scan_page(Book, page_size=1, cursor=page.next_cursor))

    assert [b.id for b in page.items] == [1]
    assert final.items == [] and final.next_cursor is None


def test_query_page_builds_key_condition() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "query",
        {
            "TableName": "readings",
            "KeyConditionExpression": "#pk = :pk AND #sk BETWEEN :sk0 AND :sk1",
            "ExpressionAttributeNames": {"#pk": "sensor", "#sk": "at", "#a0": "value"},
            "ExpressionAttributeValues": {
                ":pk": {"S": "s1"},
                ":sk0": {"N": "1"},
                ":sk1": {"N": "9"},
                ":v0": {"N": "10"},
            },
            "FilterExpression": "#a0 > :v0",
            "ScanIndexForward": False,
        },
        response={"Items": [{"sensor": {"S": "s1"}, "at": {"N": "3"}, "value": {"N": "11"}}]},
    )

    page = asyncio.run(
        _client(fake).query_page(
            Reading,
            "s1",
            sort=SortKeyCondition.between(1, 9),
            conditions=[ScanCondition("value", ScanOperator.GREATER_THAN, 10)],
            scan_forward=False,
        )
    )

    assert page.items == [Reading(sensor="s1", at=3, value=11)]


def test_query_page_rejects_cursor_from_other_direction() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("query", response={"Items": [], "LastEvaluatedKey": {"sensor": {"S": "s1"}, "at": {"N": "1"}}})
    client = _client(fake)

    page = asyncio.run(client.query_page(Reading, "s1"))
    assert page.next_cursor is not None

    with pytest.raises(ValidationError, match="cursor sort"):
        asyncio.run(client.query_page(Reading, "s1", cursor=page.next_cursor, scan_forward=False))


def test_query_entities_yields_across_pages() -> None:
    fake = FakeDynamoDBClient()
    last = {"sensor": {"S": "s1"}, "at": {"N": "1"}}
    fake.expect(
        "query",
        response={"Items": [{"sensor": {"S": "s1"}, "at": {"N": "1"}, "value": {"N": "1"}}], "LastEvaluatedKey": last},
    )
    fake.expect(
        "query",
        {"ExclusiveStartKey": last},
        response={"Items": [{"sensor": {"S": "s1"}, "at": {"N": "2"}, "value": {"N": "2"}}]},
    )

    readings = asyncio.run(_collect(_client(fake).query_entities(Reading, "s1")))

    assert [r.at for r in readings] == [1, 2]


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("ProvisionedThroughputExceededException", TransientServiceError),
        ("ThrottlingException", TransientServiceError),
        ("InternalServerError", TransientServiceError),
        ("AccessDeniedException", StoreError),
    ],
)
def test_store_error_codes_are_classified(code: str, expected: type[Exception]) -> None:
    fake = FakeDynamoDBClient()
    fake.expect("get_item", error=(code, "boom"))

    with pytest.raises(expected) as exc:
        asyncio.run(_client(fake).get_item("ProductCatalog", Item.from_python({"Id": 1})))

    assert getattr(exc.value, "code") == code


def test_register_model_definition_instance() -> None:
    model = ModelDefinition.from_dataclass(Book, table_name="Books2")
    client = TableStoreClient(Boto3RemoteStore(FakeDynamoDBClient()), models=[model])

    assert client.mapper_for(Book).model is model
    with pytest.raises(ValidationError, match="only when registering a dataclass"):
        client.register(model, table_name="other")

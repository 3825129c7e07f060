"""Walk through the book catalog flow against the configured endpoint.

Set ``TABLESTORE_LOCAL_MODE=true`` to run against DynamoDB Local.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from tablestore_py import (
    ClientConfig,
    Item,
    KeyAttribute,
    ProvisionedThroughput,
    ScalarType,
    ScanCondition,
    ScanOperator,
    TableSchema,
    UpdateExpression,
    create_client,
    store_field,
)

TABLE = "ProductCatalog"


@dataclass
class Book:
    id: int = store_field(name="Id", roles=["pk"])
    title: str = store_field(name="Title")
    isbn: str = store_field(name="ISBN", omitempty=True, default="")
    authors: set[str] = store_field(name="Authors", default_factory=set)
    price: Decimal = store_field(name="Price", default=Decimal(0))
    page_count: int = store_field(name="PageCount", default=0)
    product_category: str = store_field(name="ProductCategory", default="Book")
    in_publication: bool = store_field(name="InPublication", default=True)
    version: int | None = store_field(name="VersionNumber", roles=["version"], default=None)
    notes: list[str] = store_field(ignore=True, default_factory=list)


def show(label: str, value: object) -> None:
    print(f"{label}: {value}")


async def main() -> None:
    client = create_client(ClientConfig.from_env())
    client.register(Book, table_name=TABLE)
    schema = TableSchema(TABLE, KeyAttribute("Id", ScalarType.NUMBER), throughput=ProvisionedThroughput(5, 6))

    show("tables", await client.list_tables())
    if TABLE not in await client.list_tables():
        await client.create_table(schema)
    show("table", await client.describe_table(TABLE))

    key = Item.from_python({"Id": 201})
    await client.put_item(
        TABLE,
        Item.from_python({"Id": 201, "Title": "Book 201 Title", "Price": 100, "ISBN": "111-1111111111"}),
    )
    show("after put", await client.get_item(TABLE, key, consistent_read=True))

    update = (
        UpdateExpression()
        .add("Authors", {"Author YY", "Author ZZ"})
        .decrement("Price", 1)
        .remove("ISBN")
    )
    show("after update", await client.update_item(TABLE, key, update))

    await client.delete_item(TABLE, key)
    show("after delete", await client.get_item(TABLE, key))

    book = await client.put_entity(
        Book(id=1, title="Book 1 Title", isbn="111-1111111111", authors={"Author 1"}, price=Decimal(20))
    )
    for id in (2, 3):
        await client.put_entity(Book(id=id, title=f"Book {id} Title", price=Decimal(400)))
    show("entity", await client.get_entity(Book, 1))

    async for found in client.scan_entities(Book, [ScanCondition("price", ScanOperator.EQUAL, 400)]):
        show("price 400", found)

    book.price = Decimal(18)
    await client.put_entity(book)
    await client.delete_entity(book)

    await client.delete_table(TABLE)
    show("tables", await client.list_tables())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .errors import StoreError

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


class RemoteStore(Protocol):
    """Asynchronous low-level table-store capabilities.

    Each call takes DynamoDB request keywords, returns the response mapping and
    raises :class:`StoreError` carrying the service error code on failure.
    """

    async def list_tables(self, **request: Any) -> dict[str, Any]: ...

    async def create_table(self, **request: Any) -> dict[str, Any]: ...

    async def delete_table(self, **request: Any) -> dict[str, Any]: ...

    async def describe_table(self, **request: Any) -> dict[str, Any]: ...

    async def get_item(self, **request: Any) -> dict[str, Any]: ...

    async def put_item(self, **request: Any) -> dict[str, Any]: ...

    async def update_item(self, **request: Any) -> dict[str, Any]: ...

    async def delete_item(self, **request: Any) -> dict[str, Any]: ...

    async def scan(self, **request: Any) -> dict[str, Any]: ...

    async def query(self, **request: Any) -> dict[str, Any]: ...


def _map_botocore_error(err: Exception) -> StoreError:
    if isinstance(err, ClientError):
        error = err.response.get("Error", {})
        code = str(error.get("Code", "")) or "UnknownError"
        message = str(error.get("Message", "")) or str(err)
        return StoreError(code=code, message=message)
    return StoreError(code="ConnectionError", message=str(err))


class Boto3RemoteStore:
    """:class:`RemoteStore` over a boto3 DynamoDB low-level client.

    boto3 is blocking, so each call runs in a worker thread. Cancelling the
    awaiting task does not stop a request that has already been sent.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    async def _call(self, operation: str, request: dict[str, Any]) -> dict[str, Any]:
        method: Callable[..., dict[str, Any]] = getattr(self._client, operation)
        logger.debug("dynamodb %s table=%s", operation, request.get("TableName", "-"))
        try:
            return await asyncio.to_thread(method, **request)
        except ClientError as err:
            mapped = _map_botocore_error(err)
            logger.debug("dynamodb %s failed: %s", operation, mapped.code)
            raise mapped from err
        except _CONNECTION_ERRORS as err:
            logger.debug("dynamodb %s connection failure: %s", operation, err)
            raise _map_botocore_error(err) from err

    async def list_tables(self, **request: Any) -> dict[str, Any]:
        return await self._call("list_tables", request)

    async def create_table(self, **request: Any) -> dict[str, Any]:
        return await self._call("create_table", request)

    async def delete_table(self, **request: Any) -> dict[str, Any]:
        return await self._call("delete_table", request)

    async def describe_table(self, **request: Any) -> dict[str, Any]:
        return await self._call("describe_table", request)

    async def get_item(self, **request: Any) -> dict[str, Any]:
        return await self._call("get_item", request)

    async def put_item(self, **request: Any) -> dict[str, Any]:
        return await self._call("put_item", request)

    async def update_item(self, **request: Any) -> dict[str, Any]:
        return await self._call("update_item", request)

    async def delete_item(self, **request: Any) -> dict[str, Any]:
        return await self._call("delete_item", request)

    async def scan(self, **request: Any) -> dict[str, Any]:
        return await self._call("scan", request)

    async def query(self, **request: Any) -> dict[str, Any]:
        return await self._call("query", request)

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError


class _AnyValue:
    def __eq__(self, other: object) -> bool:
        return True

    def __ne__(self, other: object) -> bool:
        return False

    def __hash__(self) -> int:
        return 0

    def __repr__(self) -> str:
        return "ANY"


ANY: Any = _AnyValue()

type RequestCheck = Mapping[str, Any] | Callable[[dict[str, Any]], None] | None


@dataclass
class _Expectation:
    operation: str
    expected: RequestCheck
    response: dict[str, Any] | None
    error: tuple[str, str] | None


class FakeDynamoDBClient:
    """A boto3 DynamoDB client double driven by ordered expectations.

    Each call must match the next expectation's operation. ``expected`` is either a
    mapping of request keys to required values (``ANY`` matches anything) or a
    callable that asserts on the request. ``error`` makes the call raise a
    ``ClientError`` with that ``(code, message)``.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._pending: deque[_Expectation] = deque()
        self._lock = threading.Lock()

    def expect(
        self,
        operation: str,
        expected: RequestCheck = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: tuple[str, str] | None = None,
    ) -> None:
        if response is not None and error is not None:
            raise ValueError("response and error are mutually exclusive")
        self._pending.append(
            _Expectation(
                operation=operation,
                expected=expected,
                response=dict(response) if response is not None else None,
                error=error,
            )
        )

    def assert_no_pending(self) -> None:
        if self._pending:
            remaining = [e.operation for e in self._pending]
            raise AssertionError(f"unmet expectations: {remaining}")

    def _handle(self, operation: str, request: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append((operation, request))
            if not self._pending:
                raise AssertionError(f"unexpected call: {operation}")
            expectation = self._pending.popleft()

        if expectation.operation != operation:
            raise AssertionError(f"expected {expectation.operation}, got {operation}")

        check = expectation.expected
        if callable(check):
            check(request)
        elif check is not None:
            for key, value in check.items():
                if value != request.get(key):
                    raise AssertionError(f"{operation} {key}: expected {value!r}, got {request.get(key)!r}")

        if expectation.error is not None:
            code, message = expectation.error
            raise ClientError({"Error": {"Code": code, "Message": message}}, operation)
        return dict(expectation.response or {})

    def list_tables(self, **request: Any) -> dict[str, Any]:
        return self._handle("list_tables", request)

    def create_table(self, **request: Any) -> dict[str, Any]:
        return self._handle("create_table", request)

    def delete_table(self, **request: Any) -> dict[str, Any]:
        return self._handle("delete_table", request)

    def describe_table(self, **request: Any) -> dict[str, Any]:
        return self._handle("describe_table", request)

    def get_item(self, **request: Any) -> dict[str, Any]:
        return self._handle("get_item", request)

    def put_item(self, **request: Any) -> dict[str, Any]:
        return self._handle("put_item", request)

    def update_item(self, **request: Any) -> dict[str, Any]:
        return self._handle("update_item", request)

    def delete_item(self, **request: Any) -> dict[str, Any]:
        return self._handle("delete_item", request)

    def scan(self, **request: Any) -> dict[str, Any]:
        return self._handle("scan", request)

    def query(self, **request: Any) -> dict[str, Any]:
        return self._handle("query", request)

from __future__ import annotations


class TableStoreError(Exception):
    pass


class ValidationError(TableStoreError):
    pass


class NotFoundError(TableStoreError):
    pass


class TableNotFoundError(NotFoundError):
    def __init__(self, table_name: str, message: str = "") -> None:
        super().__init__(message or f"table not found: {table_name}")
        self.table_name = table_name


class AlreadyExistsError(TableStoreError):
    pass


class TableAlreadyExistsError(AlreadyExistsError):
    def __init__(self, table_name: str, message: str = "") -> None:
        super().__init__(message or f"table already exists: {table_name}")
        self.table_name = table_name


class ConditionFailedError(TableStoreError):
    pass


class OptimisticLockError(ConditionFailedError):
    """Raised when the stored version no longer matches the entity being written."""

    def __init__(self, table_name: str, expected_version: int | None) -> None:
        if expected_version is None:
            detail = "item already exists"
        else:
            detail = f"stored version is not {expected_version}"
        super().__init__(f"optimistic lock conflict on {table_name}: {detail}")
        self.table_name = table_name
        self.expected_version = expected_version


class TransientServiceError(TableStoreError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class StoreError(TableStoreError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class MappingError(TableStoreError):
    pass


class TypeMismatchError(MappingError, TypeError):
    pass


class TypeConversionError(MappingError):
    pass


class MissingKeyAttributeError(MappingError):
    def __init__(self, attribute_name: str) -> None:
        super().__init__(f"missing key attribute: {attribute_name}")
        self.attribute_name = attribute_name

"""Error types raised by the docsource data-access layer.

Every error carries the collection and operation it was raised for, so a
caller sharing a failed batch with other callers can still tell which
lookup it belonged to.
"""

from typing import Any


class DataSourceError(Exception):
    """Base exception for data source errors."""

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.collection = collection
        self.operation = operation


class StoreUnavailableError(DataSourceError):
    """Raised when a store round-trip fails.

    The same instance is delivered to every waiter of the failed batch.
    """

    def __init__(
        self,
        collection: str | None = None,
        operation: str | None = None,
        message: str | None = None,
    ) -> None:
        error_msg = message or f"Store round-trip failed for '{collection}'"
        if operation and not message:
            error_msg = f"{error_msg} during {operation}"
        super().__init__(error_msg, collection=collection, operation=operation)


class CacheUnavailableError(DataSourceError):
    """Raised when the external cache cannot complete an invalidation."""

    def __init__(
        self,
        key: str,
        collection: str | None = None,
        message: str | None = None,
    ) -> None:
        self.key = key
        error_msg = message or f"Cache unavailable while deleting key '{key}'"
        super().__init__(error_msg, collection=collection, operation="invalidate")


class MalformedFilterError(DataSourceError):
    """Raised when a filter or id cannot be canonicalized."""

    def __init__(self, value: Any, message: str | None = None) -> None:
        self.value = value
        error_msg = message or f"Malformed filter: {value!r}"
        super().__init__(error_msg)


class UnsupportedOperatorError(MalformedFilterError):
    """Raised when a filter uses an operator the in-memory matcher lacks."""

    def __init__(self, operator: str, value: Any = None) -> None:
        self.operator = operator
        super().__init__(
            value,
            f"Operator '{operator}' is not supported for coalesced lookups",
        )


class BatchSizeMismatchError(DataSourceError):
    """Raised when a batch function returns the wrong number of results."""

    def __init__(self, expected: int, actual: int, name: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Batch function returned {actual} results for {expected} keys",
            operation=name,
        )


def raise_malformed_filter(value: Any, reason: str | None = None) -> None:
    """Raise a standardized malformed filter error."""
    kind = type(value).__name__ if value is not None else "None"
    message = f"Cannot canonicalize {kind} value"
    if reason:
        message = f"{message}: {reason}"
    raise MalformedFilterError(value, message)

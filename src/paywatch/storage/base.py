"""
Abstract Storage Backend for PayWatch.

Provides the pluggable persistence layer for payment intents, address usage
records, organization settings and circuit breaker state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Provides simple CRUD operations plus the two atomic primitives the payment
    state machine relies on (compare-and-update and conditional upsert).
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """
        Save data to storage.

        Args:
            collection: Collection/table name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)
        """
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get data from storage.

        Args:
            collection: Collection/table name
            key: Record key

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """
        Delete data from storage.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query data with optional filters.

        Args:
            collection: Collection/table name
            filters: Key-value pairs to filter by (exact match)
            limit: Maximum records to return
            offset: Number of records to skip

        Returns:
            List of matching records (each with its key under ``_key``)
        """
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        """
        Update existing data.

        Returns:
            True if updated, False if not found
        """
        ...

    @abstractmethod
    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count records in collection."""
        ...

    @abstractmethod
    async def clear(self, collection: str) -> int:
        """
        Clear all records from a collection.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        """
        Atomically add amount to a numeric value stored at key.

        Returns:
            New total value as string
        """
        ...

    @abstractmethod
    async def compare_and_update(
        self,
        collection: str,
        key: str,
        field: str,
        expected: list[Any],
        data: dict[str, Any],
    ) -> bool:
        """
        Merge ``data`` into a record only if ``record[field]`` is in ``expected``.

        The check and the write happen as one atomic step.

        Returns:
            True if the record was updated, False if it is missing or the
            field held another value at write time
        """
        ...

    @abstractmethod
    async def conditional_upsert(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        field: str,
        stale_before: float | None = None,
    ) -> bool:
        """
        Write a record if it does not exist, or if it is stale.

        A record is stale when ``record[field] < stale_before``. With
        ``stale_before=None`` only missing records are written. The check and
        the write happen as one atomic step.

        Returns:
            True if this call wrote the record
        """
        ...

    async def health_check(self) -> bool:
        """
        Check if storage is healthy and connected.

        Returns:
            True if healthy
        """
        return True

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())

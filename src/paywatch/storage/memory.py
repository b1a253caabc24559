"""
In-Memory Storage Backend.

Default storage backend that keeps all data in memory.
Suitable for development, tests and single-process deployments.
"""

from __future__ import annotations

from copy import deepcopy
from decimal import Decimal, InvalidOperation
from typing import Any

from paywatch.storage.base import StorageBackend, register_storage_backend


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Stores all data in Python dicts. Data is lost when process ends.
    Methods never await between reading and writing a record, so each call is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def _ensure_collection(self, collection: str) -> dict[str, Any]:
        """Ensure collection exists and return it."""
        if collection not in self._data:
            self._data[collection] = {}
        return self._data[collection]

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        coll = self._ensure_collection(collection)
        coll[key] = deepcopy(data)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        coll = self._ensure_collection(collection)
        data = coll.get(key)
        if data is None:
            return None
        if not isinstance(data, dict):
            # Counters written by atomic_add
            return {"value": data}
        return deepcopy(data)

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        coll = self._ensure_collection(collection)
        if key in coll:
            del coll[key]
            return True
        return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        coll = self._ensure_collection(collection)

        results = []
        for key, data in coll.items():
            if not isinstance(data, dict):
                continue
            if filters and any(data.get(k) != v for k, v in filters.items()):
                continue

            result = deepcopy(data)
            result["_key"] = key
            results.append(result)

        results = results[offset:]
        if limit is not None:
            results = results[:limit]

        return results

    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        coll = self._ensure_collection(collection)
        if key not in coll:
            return False

        coll[key].update(deepcopy(data))
        return True

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        if filters:
            results = await self.query(collection, filters)
            return len(results)

        coll = self._ensure_collection(collection)
        return len(coll)

    async def clear(self, collection: str) -> int:
        coll = self._ensure_collection(collection)
        count = len(coll)
        coll.clear()
        return count

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        coll = self._ensure_collection(collection)

        current_val = coll.get(key)
        try:
            current = Decimal(str(current_val)) if current_val is not None else Decimal("0")
        except InvalidOperation:
            current = Decimal("0")

        new_val = current + Decimal(amount)

        # Stored as string to match Redis behavior
        coll[key] = str(new_val)
        return str(new_val)

    async def compare_and_update(
        self,
        collection: str,
        key: str,
        field: str,
        expected: list[Any],
        data: dict[str, Any],
    ) -> bool:
        coll = self._ensure_collection(collection)
        record = coll.get(key)
        if not isinstance(record, dict) or record.get(field) not in expected:
            return False

        record.update(deepcopy(data))
        return True

    async def conditional_upsert(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        field: str,
        stale_before: float | None = None,
    ) -> bool:
        coll = self._ensure_collection(collection)
        record = coll.get(key)
        if record is not None:
            if stale_before is None:
                return False
            current = record.get(field)
            if current is not None and float(current) >= stale_before:
                return False

        coll[key] = deepcopy(data)
        return True

    async def health_check(self) -> bool:
        """Always healthy for in-memory."""
        return True


# Register as default backend
register_storage_backend("memory", InMemoryStorage)

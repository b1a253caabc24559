"""
Redis Storage Backend.

Production storage backend using Redis for persistence. Atomic primitives run
as Lua scripts so concurrent processes serialize on the Redis server.
"""

from __future__ import annotations

import json
import os
from typing import Any

import redis.asyncio as redis

from paywatch.storage.base import StorageBackend, register_storage_backend

# KEYS[1] record, ARGV[1] field, ARGV[2] JSON list of accepted values, ARGV[3] JSON patch
_COMPARE_AND_UPDATE_SCRIPT = """
local raw = redis.call("get", KEYS[1])
if not raw then
    return 0
end
local doc = cjson.decode(raw)
local current = doc[ARGV[1]]
local accepted = cjson.decode(ARGV[2])
local matched = false
for _, value in ipairs(accepted) do
    if current == value then
        matched = true
        break
    end
end
if not matched then
    return 0
end
for k, v in pairs(cjson.decode(ARGV[3])) do
    doc[k] = v
end
redis.call("set", KEYS[1], cjson.encode(doc))
return 1
"""

# KEYS[1] record, KEYS[2] collection index, ARGV[1] JSON doc, ARGV[2] field,
# ARGV[3] stale_before ("" = only when missing), ARGV[4] record key
_CONDITIONAL_UPSERT_SCRIPT = """
local raw = redis.call("get", KEYS[1])
if raw then
    if ARGV[3] == "" then
        return 0
    end
    local current = cjson.decode(raw)[ARGV[2]]
    if current ~= nil and current ~= cjson.null and tonumber(current) >= tonumber(ARGV[3]) then
        return 0
    end
end
redis.call("set", KEYS[1], ARGV[1])
redis.call("sadd", KEYS[2], ARGV[4])
return 1
"""


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    Uses Redis for persistent storage. Suitable for production and for
    deployments where several processes watch the same intents.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "paywatch",
        client: redis.Redis | None = None,
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from PAYWATCH_REDIS_URL env)
            prefix: Key prefix for all storage keys
            client: Existing client to use instead of connecting to redis_url
        """
        self._redis_url = redis_url or os.environ.get(
            "PAYWATCH_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client: redis.Redis | None = client

    def _get_client(self) -> redis.Redis:
        """Lazy-create the Redis client."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        client = self._get_client()
        await client.set(self._make_key(collection, key), json.dumps(data))
        await client.sadd(self._index_key(collection), key)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        client = self._get_client()
        data = await client.get(self._make_key(collection, key))

        if data is None:
            return None

        try:
            record = json.loads(data)
        except json.JSONDecodeError:
            record = None
        # Keys written by atomic_add hold bare numbers
        if not isinstance(record, dict):
            return {"value": data}
        return record

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        client = self._get_client()
        result = await client.delete(self._make_key(collection, key))
        await client.srem(self._index_key(collection), key)
        return result > 0

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        client = self._get_client()
        # INCRBYFLOAT is atomic; the value is stored as a string
        new_val = await client.incrbyfloat(self._make_key(collection, key), float(amount))
        return str(new_val)

    async def compare_and_update(
        self,
        collection: str,
        key: str,
        field: str,
        expected: list[Any],
        data: dict[str, Any],
    ) -> bool:
        client = self._get_client()
        result = await client.eval(
            _COMPARE_AND_UPDATE_SCRIPT,
            1,
            self._make_key(collection, key),
            field,
            json.dumps(expected),
            json.dumps(data),
        )
        return int(result) == 1

    async def conditional_upsert(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        field: str,
        stale_before: float | None = None,
    ) -> bool:
        client = self._get_client()
        result = await client.eval(
            _CONDITIONAL_UPSERT_SCRIPT,
            2,
            self._make_key(collection, key),
            self._index_key(collection),
            json.dumps(data),
            field,
            "" if stale_before is None else repr(stale_before),
            key,
        )
        return int(result) == 1

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))

        results = []
        for key in sorted(keys):
            data = await self.get(collection, key)
            if data is None:
                continue
            if filters and any(data.get(k) != v for k, v in filters.items()):
                continue

            data["_key"] = key
            results.append(data)

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
        existing = await self.get(collection, key)
        if existing is None:
            return False

        existing.update(data)
        await self.save(collection, key, existing)
        return True

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        if filters:
            results = await self.query(collection, filters)
            return len(results)

        client = self._get_client()
        return await client.scard(self._index_key(collection))

    async def clear(self, collection: str) -> int:
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))

        for key in keys:
            await self.delete(collection, key)

        return len(keys)

    async def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            await self._get_client().ping()
            return True
        except redis.RedisError:
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Register backend
register_storage_backend("redis", RedisStorage)

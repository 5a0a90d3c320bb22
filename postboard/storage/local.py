"""
Local storage implementations for development and tests.

These are in-memory implementations that work without any external
services. A single asyncio lock serialises writes so that read-modify-write
calls are atomic per document, as a real document store would guarantee.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any

from postboard.storage.base import (
    CacheStorage,
    DuplicateKeyError,
    MetadataStorage,
    StorageProvider,
    matches_filter,
)


# =============================================================================
# In-Memory Metadata Storage
# =============================================================================


class InMemoryMetadataStorage(MetadataStorage):
    """In-memory document storage for development."""

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._data.setdefault(collection, {})

    @staticmethod
    def _stamp(doc: dict[str, Any]) -> None:
        doc["_updated_at"] = datetime.now(timezone.utc).isoformat()

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            doc = {**copy.deepcopy(data), "_id": id}
            self._stamp(doc)
            self._collection(collection)[id] = doc

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        doc = self._data.get(collection, {}).get(id)
        return copy.deepcopy(doc) if doc is not None else None

    async def delete(self, collection: str, id: str) -> bool:
        async with self._lock:
            return self._collection(collection).pop(id, None) is not None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
        sort_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        results = [
            doc for doc in self._data.get(collection, {}).values()
            if matches_filter(doc, filters)
        ]

        if sort_by:
            results.sort(key=lambda d: str(d.get(sort_by, "")), reverse=descending)

        return [copy.deepcopy(d) for d in results[offset:offset + limit]]

    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        return sum(
            1 for doc in self._data.get(collection, {}).values()
            if matches_filter(doc, filters)
        )

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        async with self._lock:
            doc = self._collection(collection).get(id)
            if doc is None:
                return False
            doc.update(copy.deepcopy(updates))
            self._stamp(doc)
            return True

    async def increment(self, collection: str, id: str, field: str, amount: int = 1) -> bool:
        async with self._lock:
            doc = self._collection(collection).get(id)
            if doc is None:
                return False
            doc[field] = max(0, int(doc.get(field, 0)) + amount)
            self._stamp(doc)
            return True

    async def update_many(
        self,
        collection: str,
        filters: dict[str, Any],
        updates: dict[str, Any],
    ) -> int:
        async with self._lock:
            changed = 0
            for doc in self._collection(collection).values():
                if matches_filter(doc, filters):
                    doc.update(copy.deepcopy(updates))
                    self._stamp(doc)
                    changed += 1
            return changed

    async def delete_many(self, collection: str, filters: dict[str, Any]) -> int:
        async with self._lock:
            docs = self._collection(collection)
            doomed = [id for id, doc in docs.items() if matches_filter(doc, filters)]
            for id in doomed:
                del docs[id]
            return len(doomed)

    async def insert_unique(
        self,
        collection: str,
        id: str,
        data: dict[str, Any],
        unique_on: tuple[str, ...],
        where: dict[str, Any] | None = None,
    ) -> None:
        key = {f: data.get(f) for f in unique_on}
        async with self._lock:
            docs = self._collection(collection)
            for doc in docs.values():
                if matches_filter(doc, where) and matches_filter(doc, key):
                    raise DuplicateKeyError(collection, key)
            doc = {**copy.deepcopy(data), "_id": id}
            self._stamp(doc)
            docs[id] = doc


# =============================================================================
# In-Memory Cache Storage
# =============================================================================


class InMemoryCacheStorage(CacheStorage):
    """In-memory cache for development."""

    def __init__(self):
        self._cache: dict[str, tuple[Any, float | None]] = {}

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expires_at = None
        if ttl:
            expires_at = datetime.now(timezone.utc).timestamp() + ttl
        self._cache[key] = (value, expires_at)

    async def get(self, key: str) -> Any | None:
        if key not in self._cache:
            return None

        value, expires_at = self._cache[key]
        if expires_at and datetime.now(timezone.utc).timestamp() > expires_at:
            del self._cache[key]
            return None

        return value

    async def delete(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            return True
        return False

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None


# =============================================================================
# Factory
# =============================================================================


def create_local_storage() -> StorageProvider:
    """Create a StorageProvider with in-memory implementations."""
    return StorageProvider(
        metadata=InMemoryMetadataStorage(),
        cache=InMemoryCacheStorage(),
    )

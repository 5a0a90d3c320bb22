"""
Storage abstraction layer.

All persistence goes through these interfaces. This allows swapping
implementations (in-memory → MongoDB/PostgreSQL, dict cache → Redis)
without changing application code.

Filters are plain dicts in a small Mongo-like dialect:
    {"field": value}                   equality
    {"field": {"$in": [a, b]}}         membership
    {"field": {"$contains": a}}        list field holds a
    {"$or": [{...}, {...}]}            any clause matches
    {"$and": [{...}, {...}]}           every clause matches
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel


# =============================================================================
# Errors
# =============================================================================


class ResourceNotFound(Exception):
    """A document that was asked for does not exist."""

    def __init__(self, collection: str, id: str):
        self.collection = collection
        self.id = id
        super().__init__(f"{collection} '{id}' not found")


class DuplicateKeyError(Exception):
    """An insert would violate a uniqueness constraint."""

    def __init__(self, collection: str, key: dict[str, Any]):
        self.collection = collection
        self.key = key
        super().__init__(f"Duplicate key in {collection}: {key}")


# =============================================================================
# Query Filters
# =============================================================================


@dataclass(frozen=True)
class QueryFilter:
    """
    A row filter compiled by the authorization engine for collection reads.

    ``any_of`` is a disjunction of equality clauses. When ``through`` is set
    the clauses describe the *parent post* and the filtered collection is
    restricted to rows whose ``through`` field points at a matching post.
    """

    any_of: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    through: str | None = None

    @classmethod
    def where(cls, **clause: Any) -> QueryFilter:
        return cls(any_of=(clause,))

    def to_query(self) -> dict[str, Any]:
        """Render as a storage filter dict."""
        if len(self.any_of) == 1:
            return dict(self.any_of[0])
        return {"$or": [dict(c) for c in self.any_of]}

    def matches(self, doc: dict[str, Any]) -> bool:
        """Check a single document against the clauses."""
        return matches_filter(doc, self.to_query())


def matches_filter(doc: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Evaluate a filter dict against a document."""
    if not filters:
        return True
    for key, value in filters.items():
        if key == "$or":
            if not any(matches_filter(doc, clause) for clause in value):
                return False
        elif key == "$and":
            if not all(matches_filter(doc, clause) for clause in value):
                return False
        elif isinstance(value, dict) and "$in" in value:
            if doc.get(key) not in value["$in"]:
                return False
        elif isinstance(value, dict) and "$contains" in value:
            if value["$contains"] not in (doc.get(key) or ()):
                return False
        elif doc.get(key) != value:
            return False
    return True


# =============================================================================
# Storage Interfaces
# =============================================================================


class MetadataStorage(ABC):
    """
    Storage for structured documents (users, posts, interactions).

    Implementations must make each single-document call atomic and
    ``insert_unique`` atomic with respect to other inserts.
    """

    @abstractmethod
    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Save a document to a collection."""
        pass

    @abstractmethod
    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        """Get a document by ID."""
        pass

    @abstractmethod
    async def delete(self, collection: str, id: str) -> bool:
        """Delete a document."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
        sort_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Query documents with optional filters."""
        pass

    @abstractmethod
    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        """Count documents matching the filters."""
        pass

    @abstractmethod
    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        """Partial update of a document."""
        pass

    @abstractmethod
    async def increment(self, collection: str, id: str, field: str, amount: int = 1) -> bool:
        """Atomically add ``amount`` to a numeric field."""
        pass

    @abstractmethod
    async def update_many(
        self,
        collection: str,
        filters: dict[str, Any],
        updates: dict[str, Any],
    ) -> int:
        """Apply the same partial update to every match; return the count."""
        pass

    @abstractmethod
    async def delete_many(self, collection: str, filters: dict[str, Any]) -> int:
        """Delete every match; return the count."""
        pass

    @abstractmethod
    async def insert_unique(
        self,
        collection: str,
        id: str,
        data: dict[str, Any],
        unique_on: tuple[str, ...],
        where: dict[str, Any] | None = None,
    ) -> None:
        """
        Insert unless another document shares the ``unique_on`` fields.

        ``where`` narrows the constraint to documents matching it (a partial
        index); raises DuplicateKeyError on conflict.
        """
        pass


class CacheStorage(ABC):
    """
    Fast key-value cache for revoked tokens and short-lived data.

    Production implementation: Redis
    Local implementation: In-memory dict
    """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a value with optional TTL in seconds."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists."""
        pass


# =============================================================================
# Storage Provider (dependency injection container)
# =============================================================================


class StorageProvider(BaseModel):
    """
    Container for all storage backends.

    Initialize once at app startup with appropriate implementations.
    Services receive this and use the interfaces without knowing
    the underlying implementation.
    """

    model_config = {"arbitrary_types_allowed": True}

    metadata: MetadataStorage
    cache: CacheStorage


# =============================================================================
# Collection Names (for MetadataStorage)
# =============================================================================


class Collections:
    """Standard collection/table names."""

    USERS = "users"
    POSTS = "posts"  # posts and reposts
    INTERACTIONS = "interactions"

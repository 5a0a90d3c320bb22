"""
Storage abstractions.

Production integration points:
- MetadataStorage → MongoDB or PostgreSQL
- CacheStorage → Redis
"""

from postboard.storage.base import (
    MetadataStorage,
    CacheStorage,
    StorageProvider,
    Collections,
    QueryFilter,
    ResourceNotFound,
    DuplicateKeyError,
)
from postboard.storage.local import create_local_storage

__all__ = [
    "MetadataStorage",
    "CacheStorage",
    "StorageProvider",
    "Collections",
    "QueryFilter",
    "ResourceNotFound",
    "DuplicateKeyError",
    "create_local_storage",
]

"""Local persistence for cached registry tags."""

from agent_nightlies.persistence.tag_cache import (
    CachedTags,
    SqliteTagCache,
    TagCache,
    TagCacheCorruptionError,
    TagCacheError,
    TagCacheMigrationError,
)

__all__ = [
    "CachedTags",
    "SqliteTagCache",
    "TagCache",
    "TagCacheCorruptionError",
    "TagCacheError",
    "TagCacheMigrationError",
]

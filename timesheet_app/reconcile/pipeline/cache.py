"""
Read-through cache for natural-key lookups (status names, special shift
types, branch names).

Values are primary keys, never ORM instances, so a cache can outlive the
session that filled it. Writers call ``invalidate`` for the entity type they
touched; a rolled-back row transaction calls ``clear``.
"""

from __future__ import annotations

from typing import Callable, Dict, Hashable, Optional, Tuple

CacheKey = Tuple[str, Hashable]


class LookupCache:
    def __init__(self) -> None:
        self._entries: Dict[CacheKey, int] = {}
        self.hits = 0
        self.misses = 0

    def get(self, entity_type: str, key: Hashable) -> Optional[int]:
        return self._entries.get((entity_type, key))

    def get_or_load(self, entity_type: str, key: Hashable, loader: Callable[[], Optional[int]]) -> Optional[int]:
        """Return the cached id or call ``loader``; a None result is not cached."""
        cache_key = (entity_type, key)
        if cache_key in self._entries:
            self.hits += 1
            return self._entries[cache_key]
        self.misses += 1
        value = loader()
        if value is not None:
            self._entries[cache_key] = value
        return value

    def set(self, entity_type: str, key: Hashable, value: int) -> None:
        self._entries[(entity_type, key)] = value

    def invalidate(self, entity_type: str) -> None:
        for cache_key in [k for k in self._entries if k[0] == entity_type]:
            del self._entries[cache_key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

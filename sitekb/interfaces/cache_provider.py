"""Abstract base class for cache service providers.

Used by the retriever as a read-through cache of query results.  The
in-memory implementation is :class:`~sitekb.providers.cache.memory_cache.MemoryCacheProvider`;
a network-backed store (e.g. Redis) can be swapped in behind the same
interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    All operations are async to allow for network-backed stores without
    blocking the event loop.  Concurrent writers to the same key are
    last-writer-wins.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve the value stored under *key*.

        Returns
        -------
        Any or None
            The cached value if present and not expired; ``None`` otherwise.
        """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key* with an optional time-to-live.

        Parameters
        ----------
        key:
            The cache key.
        value:
            The value to store.
        ttl:
            Time-to-live in seconds.  ``None`` uses the provider default.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the entry stored under *key* (no-op if absent)."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with *prefix*.

        Returns
        -------
        int
            Number of entries removed.
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present in the cache and not expired."""

"""Cache provider implementations."""

from sitekb.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]

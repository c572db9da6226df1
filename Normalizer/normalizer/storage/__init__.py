"""Normalizer storage clients."""

from .redis_cache import ReadThroughCache, RedisCache

__all__ = ["ReadThroughCache", "RedisCache"]

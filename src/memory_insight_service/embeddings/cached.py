"""Embedding generator decorator that consults a Redis cache first."""

import logging

from ..cache.redis_cache import RedisEmbeddingCache, embedding_cache_key
from .base import EmbeddingGenerator

logger = logging.getLogger(__name__)


class CachedEmbeddingGenerator:
    """Wraps an :class:`EmbeddingGenerator`; cache misses and errors fall through to it."""

    def __init__(self, inner: EmbeddingGenerator, cache: RedisEmbeddingCache):
        self._inner = inner
        self._cache = cache

    @property
    def model_name(self) -> str:
        return self._inner.model_name

    async def embed(self, text: str) -> list[float]:
        key = embedding_cache_key(self.model_name, text)
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("Embedding cache hit")
            return cached

        vector = await self._inner.embed(text)
        await self._cache.set(key, vector)
        return vector

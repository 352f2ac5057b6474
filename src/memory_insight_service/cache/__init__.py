"""Redis cache for query embeddings."""

from .redis_cache import RedisEmbeddingCache, embedding_cache_key

__all__ = ["RedisEmbeddingCache", "embedding_cache_key"]

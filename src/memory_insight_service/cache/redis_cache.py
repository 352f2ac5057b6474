"""
Redis cache for query embeddings.

Repeated queries skip the embedding provider entirely. Keys are derived from
the model name and a hash of the text, so switching models never serves a
vector from the wrong space. Every cache failure is non-fatal: a miss.
"""

import hashlib
import json
import logging

from redis.asyncio import ConnectionPool, Redis

logger = logging.getLogger(__name__)


def embedding_cache_key(model_name: str, text: str) -> str:
    """Build ``<model>:<sha256(text)[:32]>``; whitespace is normalised first."""
    normalized = " ".join(text.split())
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]
    return f"{model_name}:{digest}"


class RedisEmbeddingCache:
    """
    Redis-backed embedding cache with TTL.

    Vectors are stored as compact JSON arrays.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        ttl_seconds: int = 3600,
        key_prefix: str = "mcp:embeddings:",
        max_connections: int = 10,
    ):
        self.url = url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.max_connections = max_connections

        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = None
        self._initialized = False
        self._stats = {"hits": 0, "misses": 0, "errors": 0}

    async def initialize(self) -> None:
        """Open the connection pool and verify connectivity."""
        if self._initialized:
            return

        self._pool = ConnectionPool.from_url(
            self.url,
            max_connections=self.max_connections,
            decode_responses=True,
        )
        self._redis = Redis(connection_pool=self._pool)

        try:
            await self._redis.ping()
            self._initialized = True
            logger.info(f"Embedding cache initialized: {self.url} (TTL={self.ttl_seconds}s)")
        except Exception as e:
            logger.error(f"Embedding cache initialization failed: {e}")
            await self.close()
            raise

    async def close(self) -> None:
        """Close the connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

        if self._pool:
            await self._pool.aclose()
            self._pool = None

        self._initialized = False

    @property
    def available(self) -> bool:
        return self._initialized and self._redis is not None

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> list[float] | None:
        """Return the cached vector, or None on miss or error."""
        if not self.available:
            return None

        try:
            raw = await self._redis.get(self._make_key(key))
        except Exception as e:
            self._stats["errors"] += 1
            logger.warning(f"Embedding cache get failed for key {key}: {e}")
            return None

        if raw is None:
            self._stats["misses"] += 1
            return None

        self._stats["hits"] += 1
        return [float(x) for x in json.loads(raw)]

    async def set(self, key: str, vector: list[float]) -> bool:
        """Store a vector with the configured TTL."""
        if not self.available:
            return False

        try:
            await self._redis.setex(self._make_key(key), self.ttl_seconds, json.dumps(vector, separators=(",", ":")))
            return True
        except Exception as e:
            self._stats["errors"] += 1
            logger.warning(f"Embedding cache set failed for key {key}: {e}")
            return False

    async def invalidate_model(self, model_name: str) -> int:
        """Drop every cached vector for one model (after a model upgrade)."""
        if not self.available:
            return 0

        try:
            keys = [key async for key in self._redis.scan_iter(match=self._make_key(f"{model_name}:*"))]
            if not keys:
                return 0
            deleted = await self._redis.delete(*keys)
            logger.info(f"Embedding cache invalidated {deleted} keys for model {model_name}")
            return deleted
        except Exception as e:
            logger.warning(f"Embedding cache invalidation failed for model {model_name}: {e}")
            return 0

    def get_stats(self) -> dict[str, int | str | bool]:
        return {"url": self.url, "available": self.available, **self._stats}

"""
Shared service manager.

Builds storage, the analytics database, the embedding generator (wrapped in
the Redis cache when ``MCP_REDIS_URL`` is set), and the search engine once,
and hands the same instances to every caller in the process.
"""

import asyncio
import logging
from threading import Lock
from typing import Optional

from .cache.redis_cache import RedisEmbeddingCache
from .config import Settings
from .embeddings.base import EmbeddingGenerator
from .embeddings.cached import CachedEmbeddingGenerator
from .embeddings.factory import create_embedding_generator
from .insights.clustering import MemoryClusterer
from .insights.generators import ClusterInsightGenerator, InsightGenerator
from .insights.processor import AsyncInsightProcessor
from .search.engine import HybridSearchEngine
from .storage.base import MemoryStorage
from .storage.factory import create_analytics_db, create_storage_instance
from .storage.search_analytics_db import SearchAnalyticsDB

logger = logging.getLogger(__name__)


class ServiceManager:
    """Owns the process-wide storage, embedder, and search engine."""

    _instance: Optional["ServiceManager"] = None
    _lock: Lock = Lock()

    def __init__(self, config: Settings | None = None):
        self._config = config
        self._storage: MemoryStorage | None = None
        self._analytics_db: SearchAnalyticsDB | None = None
        self._embedding_cache: RedisEmbeddingCache | None = None
        self._embedder: EmbeddingGenerator | None = None
        self._engine: HybridSearchEngine | None = None
        self._initialization_lock: asyncio.Lock = asyncio.Lock()
        self._initialized: bool = False

    @classmethod
    def get_instance(cls) -> "ServiceManager":
        """Get the process-wide ServiceManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
                    logger.info("Created new ServiceManager singleton instance")
        return cls._instance

    @property
    def config(self) -> Settings:
        if self._config is None:
            from .config import settings

            self._config = settings
        return self._config

    async def initialize(self) -> None:
        """Build every shared service. Idempotent and safe under concurrent calls."""
        if self._initialized:
            return

        async with self._initialization_lock:
            if self._initialized:
                return

            config = self.config
            logger.info("Initializing shared services...")

            self._storage = await create_storage_instance(config.storage, recent_days=config.hybrid_search.recent_days)

            try:
                self._analytics_db = await create_analytics_db(config.storage)
            except Exception as e:
                logger.warning(f"Search analytics DB initialization failed (non-fatal): {e}")
                self._analytics_db = None

            self._embedder = create_embedding_generator(config.embedding)
            if config.redis.url:
                cache = RedisEmbeddingCache(
                    url=config.redis.url,
                    ttl_seconds=config.redis.ttl_seconds,
                    key_prefix=config.redis.key_prefix,
                    max_connections=config.redis.max_connections,
                )
                try:
                    await cache.initialize()
                    self._embedding_cache = cache
                    self._embedder = CachedEmbeddingGenerator(self._embedder, cache)
                except Exception as e:
                    logger.warning(f"Embedding cache initialization failed (non-fatal): {e}")

            self._engine = HybridSearchEngine(
                self._storage,
                self._embedder,
                analytics=self._analytics_db,
                config=config.hybrid_search,
            )
            self._initialized = True
            logger.info(f"Shared services initialized: {type(self._storage).__name__}")

    async def get_storage(self) -> MemoryStorage:
        await self.initialize()
        return self._storage

    async def get_search_engine(self) -> HybridSearchEngine:
        await self.initialize()
        return self._engine

    async def create_insight_processor(
        self,
        memory_generator: InsightGenerator,
        cluster_generator: ClusterInsightGenerator | None = None,
    ) -> AsyncInsightProcessor:
        """Build a processor over the shared storage with the given generators."""
        await self.initialize()
        return AsyncInsightProcessor(
            self._storage,
            memory_generator,
            cluster_generator=cluster_generator,
            clusterer=MemoryClusterer(self.config.clustering),
            config=self.config.insights,
        )

    @property
    def analytics_db(self) -> SearchAnalyticsDB | None:
        return self._analytics_db

    async def close(self) -> None:
        """Close all managed instances. Safe to call even if never initialized."""
        if self._embedding_cache is not None:
            try:
                await self._embedding_cache.close()
            except Exception as e:
                logger.warning(f"Error closing embedding cache: {e}")
            self._embedding_cache = None

        if self._analytics_db is not None:
            try:
                await self._analytics_db.close()
            except Exception as e:
                logger.warning(f"Error closing search analytics DB: {e}")
            self._analytics_db = None

        if self._storage is not None:
            try:
                logger.info("Closing shared storage instance...")
                await self._storage.close()
            except Exception as e:
                logger.error(f"Error closing shared storage: {e}")
            self._storage = None

        self._embedder = None
        self._engine = None
        self._initialized = False

    def is_initialized(self) -> bool:
        return self._initialized


async def get_search_engine() -> HybridSearchEngine:
    """Get the shared search engine."""
    return await ServiceManager.get_instance().get_search_engine()


async def close_shared_services() -> None:
    """Close the shared services."""
    await ServiceManager.get_instance().close()

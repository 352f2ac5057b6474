"""
Hybrid search engine.

Orchestrates the content and tag strategies for one query: embeds the query
once, runs the strategies for the requested mode (both concurrently in
hybrid mode), combines the rankings, and records an analytics entry for
every completed search.
"""

import asyncio
import logging
import math
import time
from typing import Any

from ..config import HybridSearchSettings
from ..embeddings.base import EmbeddingGenerator
from ..errors import SearchError
from ..models.search import SearchFilters, SearchOptions, SearchResult, WeightDistribution
from ..models.search_log import SearchLog
from ..models.validators import SearchMode
from ..storage.base import MemoryStorage
from ..storage.search_analytics_db import AnalyticsSink
from .combiner import ResultCombiner, validate_weights
from .strategies import ContentSearchStrategy, TagSearchStrategy

logger = logging.getLogger(__name__)

# Content is slightly favoured when comparing a memory against its neighbours
FIND_SIMILAR_WEIGHTS = WeightDistribution(content_weight=0.6, tag_weight=0.4)
FIND_SIMILAR_TEXT_CHARS = 200

FALLBACK_ORDER: tuple[SearchMode, ...] = ("hybrid", "content_only", "tags_only")

_EMPTY_CAPABILITIES: dict[str, Any] = {
    "total_memories": 0,
    "content_searchable": 0,
    "tag_searchable": 0,
    "hybrid_searchable": 0,
    "capabilities": {"content_only": False, "tags_only": False, "hybrid": False},
}


class HybridSearchEngine:
    """Ranks memories against a query using content and tag embeddings."""

    def __init__(
        self,
        storage: MemoryStorage,
        embedder: EmbeddingGenerator,
        analytics: AnalyticsSink | None = None,
        config: HybridSearchSettings | None = None,
        combiner: ResultCombiner | None = None,
    ):
        if config is None:
            from ..config import settings

            config = settings.hybrid_search

        self.storage = storage
        self.embedder = embedder
        self.analytics = analytics
        self.config = config
        self.content_search = ContentSearchStrategy(storage, embedder)
        self.tag_search = TagSearchStrategy(storage, embedder)
        self.combiner = combiner or ResultCombiner(overlap_boost=config.overlap_boost, max_boost=config.max_boost)

    # ── Query search ────────────────────────────────────────────────────

    def _resolve_options(self, options: SearchOptions | None) -> SearchOptions:
        options = options or SearchOptions()
        updates: dict[str, Any] = {}
        if "threshold" not in options.model_fields_set:
            updates["threshold"] = self.config.threshold
        if "limit" not in options.model_fields_set:
            updates["limit"] = self.config.default_limit
        if options.content_weight is None:
            updates["content_weight"] = self.config.content_weight
        if options.tag_weight is None:
            updates["tag_weight"] = self.config.tag_weight
        return options.model_copy(update=updates) if updates else options

    async def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """
        Search memories for *query*.

        Args:
            query: Free-text query
            options: Mode, weights, threshold, limit, and filters

        Returns:
            Ranked results, at most ``options.limit``

        Raises:
            ValueError: Blank query or invalid weights (``InvalidWeightsError``)
            SearchError: Query embedding failed, or the single strategy of a
                non-hybrid mode failed
        """
        if not query or not query.strip():
            raise ValueError("Search query must not be empty")

        options = self._resolve_options(options)
        weights = validate_weights(options.content_weight, options.tag_weight)
        start_time = time.perf_counter()

        try:
            query_embedding = await self.embedder.embed(query)
        except Exception as e:
            logger.error(f"Query embedding failed: {e}")
            raise SearchError(f"Query embedding failed: {e}", strategy="embedding") from e

        mode = options.search_mode
        try:
            if mode == "content_only":
                results = await self.content_search.search_by_embedding(query_embedding, options.filters())
            elif mode == "tags_only":
                results = await self.tag_search.search_by_embedding(query_embedding, options.filters())
            else:
                results = await self._execute_hybrid_search(query_embedding, options, weights)
        except SearchError:
            raise
        except Exception as e:
            logger.error(f"Hybrid search failed: {e}")
            raise SearchError(f"Hybrid search failed: {e}", strategy=mode) from e

        if options.enable_diversity and results:
            results = self.combiner.diversify_results(
                results,
                max_per_type=math.ceil(options.limit / 3),
                max_per_project=math.ceil(options.limit / 2),
            )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        await self._record_analytics(query, options, weights, results, elapsed_ms)

        logger.debug(f"{mode} search completed: {len(results)} results in {elapsed_ms:.1f}ms")
        return results

    async def _execute_hybrid_search(
        self,
        query_embedding: list[float],
        options: SearchOptions,
        weights: WeightDistribution,
    ) -> list[SearchResult]:
        candidate_limit = min(math.ceil(options.limit * self.config.overfetch_factor), 1000)
        filters = options.filters(limit=candidate_limit)

        content_outcome, tag_outcome = await asyncio.gather(
            self.content_search.search_by_embedding(query_embedding, filters),
            self.tag_search.search_by_embedding(query_embedding, filters),
            return_exceptions=True,
        )
        content_results = self._side_or_empty(content_outcome, "Content")
        tag_results = self._side_or_empty(tag_outcome, "Tag")

        if options.enable_overlap_boost:
            combined = self.combiner.merge_with_boost(content_results, tag_results, weights)
        else:
            combined = self.combiner.combine(content_results, tag_results, weights)

        stats = self.combiner.get_combination_stats(content_results, tag_results, combined)
        logger.debug(f"Hybrid search combination stats: {stats}")

        return combined[: options.limit]

    @staticmethod
    def _side_or_empty(outcome: list[SearchResult] | BaseException, name: str) -> list[SearchResult]:
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning(f"{name} search failed in hybrid mode (non-fatal): {outcome}")
            return []
        return outcome

    async def _record_analytics(
        self,
        query: str,
        options: SearchOptions,
        weights: WeightDistribution,
        results: list[SearchResult],
        elapsed_ms: float,
    ) -> None:
        if self.analytics is None or not self.config.analytics_enabled:
            return

        entry = SearchLog(
            query=query,
            search_mode=options.search_mode,
            timestamp=time.time(),
            response_time_ms=elapsed_ms,
            result_count=len(results),
            content_weight=weights.content_weight,
            tag_weight=weights.tag_weight,
            avg_similarity=sum(r.similarity for r in results) / len(results) if results else 0.0,
            project_name=options.project_name,
            memory_type=options.memory_type,
        )
        try:
            await self.analytics.record(entry)
        except Exception as e:
            logger.warning(f"Failed to store search analytics (non-fatal): {e}")

    async def search_with_fallback(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Try hybrid, then content-only, then tags-only; return the first non-empty result."""
        options = options or SearchOptions()
        results: list[SearchResult] = []
        for mode in FALLBACK_ORDER:
            results = await self.search(query, options.model_copy(update={"search_mode": mode}))
            if results:
                return results
            logger.debug(f"{mode} search returned no results, falling back")
        return results

    # ── Memory-to-memory similarity ─────────────────────────────────────

    async def find_similar(
        self,
        memory_id: int,
        limit: int = 5,
        exclude_self: bool = True,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """
        Memories similar to *memory_id*, using its own stored embeddings.

        Both embeddings present: both strategies combined with 0.6/0.4
        weights. One present: that strategy alone. None: text search on the
        first 200 characters of the content. Unknown id: ``[]``.
        """
        memory = await self.storage.get_memory(memory_id)
        if memory is None:
            return []

        base = filters or SearchFilters()
        exclude_ids = list(base.exclude_ids)
        if exclude_self and memory_id not in exclude_ids:
            exclude_ids.append(memory_id)
        search_filters = base.model_copy(update={"limit": limit, "exclude_ids": exclude_ids})

        if memory.content_embedding is not None and memory.tag_embedding is not None:
            content_results, tag_results = await asyncio.gather(
                self.content_search.search_by_embedding(memory.content_embedding, search_filters),
                self.tag_search.search_by_embedding(memory.tag_embedding, search_filters),
            )
            return self.combiner.combine(content_results, tag_results, FIND_SIMILAR_WEIGHTS)[:limit]

        if memory.content_embedding is not None:
            return await self.content_search.search_by_embedding(memory.content_embedding, search_filters)

        if memory.tag_embedding is not None:
            return await self.tag_search.search_by_embedding(memory.tag_embedding, search_filters)

        options = SearchOptions(**search_filters.model_dump())
        return await self.search(memory.content[:FIND_SIMILAR_TEXT_CHARS], options)

    # ── Introspection ───────────────────────────────────────────────────

    async def get_search_capabilities(self, project_id: int | None = None) -> dict[str, Any]:
        """Searchable-memory counts and which modes can currently return results."""
        try:
            counts = await self.storage.count_searchable(project_id)
        except Exception as e:
            logger.error(f"Failed to get search capabilities: {e}")
            return {**_EMPTY_CAPABILITIES, "capabilities": dict(_EMPTY_CAPABILITIES["capabilities"])}

        return {
            **counts,
            "capabilities": {
                "content_only": counts["content_searchable"] > 0,
                "tags_only": counts["tag_searchable"] > 0,
                "hybrid": counts["hybrid_searchable"] > 0,
            },
        }

    async def get_search_analytics(self, days: int = 7, search_mode: str | None = None) -> list[dict[str, Any]]:
        """Per-mode, per-day search aggregates; ``[]`` when unavailable."""
        reader = getattr(self.analytics, "get_search_analytics", None)
        if reader is None:
            return []
        try:
            return await reader(days=days, search_mode=search_mode)
        except Exception as e:
            logger.error(f"Failed to get search analytics: {e}")
            return []

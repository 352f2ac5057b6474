"""
Single-dimension vector search strategies.

Each strategy ranks memories against a query vector using exactly one
embedding column: ``ContentSearchStrategy`` the content embedding and
``TagSearchStrategy`` the smart-tag embedding. Memories lacking that
embedding never match. Any storage or embedding failure surfaces as a
:class:`SearchError` naming the strategy.
"""

import logging
import re
from typing import Any

from ..embeddings.base import EmbeddingGenerator
from ..errors import SearchError
from ..models.memory import Memory
from ..models.search import SearchFilters, SearchResult, SearchScores
from ..models.validators import SearchMode
from ..storage.base import EmbeddingColumn, MemoryStorage

logger = logging.getLogger(__name__)

# Dropped from free-text queries before embedding them into tag space
TAG_QUERY_STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "how", "what", "when", "where", "why",
    }
)
_MIN_TAG_TERM_LENGTH = 3


def preprocess_tag_query(query: str) -> str:
    """Reduce a free-text query to tag-like terms.

    Lowercases, splits on whitespace, and drops words shorter than three
    characters and common stop words. Falls back to the lowercased query
    when nothing survives.
    """
    words = re.split(r"\s+", query.lower().strip())
    terms = [w for w in words if len(w) >= _MIN_TAG_TERM_LENGTH and w not in TAG_QUERY_STOP_WORDS]
    return " ".join(terms) if terms else query.lower().strip()


class VectorSearchStrategy:
    """Shared ranking logic; subclasses choose the embedding column."""

    column: EmbeddingColumn
    capability: SearchMode
    name: str

    def __init__(self, storage: MemoryStorage, embedder: EmbeddingGenerator):
        self.storage = storage
        self.embedder = embedder

    def _score(self, similarity: float) -> SearchScores:
        raise NotImplementedError

    def _to_result(self, memory: Memory, similarity: float) -> SearchResult:
        return SearchResult(
            memory=memory,
            similarity=similarity,
            search_scores=self._score(similarity),
            search_mode=self.capability,
        )

    async def search_by_embedding(
        self, query_vector: list[float], filters: SearchFilters | None = None
    ) -> list[SearchResult]:
        """Rank memories by similarity of this strategy's embedding to *query_vector*.

        Args:
            query_vector: Query embedding
            filters: Predicates, threshold, and limit (defaults apply when None)

        Returns:
            Results at or above ``filters.threshold``, best first

        Raises:
            SearchError: If the storage query fails
        """
        filters = filters or SearchFilters()
        try:
            rows = await self.storage.search_by_vector(query_vector, self.column, filters)
        except Exception as e:
            logger.error(f"{self.name} search failed: {e}")
            raise SearchError(f"{self.name} search failed: {e}", strategy=self.capability) from e

        logger.debug(f"{self.name} search found {len(rows)} results")
        return [self._to_result(memory, similarity) for memory, similarity in rows]

    async def _embed(self, text: str) -> list[float]:
        try:
            return await self.embedder.embed(text)
        except Exception as e:
            raise SearchError(f"{self.name} query embedding failed: {e}", strategy=self.capability) from e

    async def search(self, query: str, filters: SearchFilters | None = None) -> list[SearchResult]:
        """Embed *query* and search with it."""
        return await self.search_by_embedding(await self._embed(query), filters)

    def is_memory_compatible(self, memory: Memory) -> bool:
        raise NotImplementedError


class ContentSearchStrategy(VectorSearchStrategy):
    """Ranks memories by content-embedding similarity."""

    column = "content"
    capability = "content_only"
    name = "Content"

    def _score(self, similarity: float) -> SearchScores:
        return SearchScores(content=similarity, tags=None, combined=similarity)

    def is_memory_compatible(self, memory: Memory) -> bool:
        return memory.has_content_embedding


class TagSearchStrategy(VectorSearchStrategy):
    """Ranks memories by smart-tag-embedding similarity."""

    column = "tags"
    capability = "tags_only"
    name = "Tag"

    def _score(self, similarity: float) -> SearchScores:
        return SearchScores(content=None, tags=similarity, combined=similarity)

    def is_memory_compatible(self, memory: Memory) -> bool:
        return memory.has_tag_embedding

    async def search(self, query: str, filters: SearchFilters | None = None) -> list[SearchResult]:
        """Embed the tag-like terms of *query* and search tag space."""
        return await self.search_by_embedding(await self._embed(preprocess_tag_query(query)), filters)

    async def search_by_tags(self, tags: list[str] | str, filters: SearchFilters | None = None) -> list[SearchResult]:
        """Search tag space with an explicit tag list."""
        tag_query = " ".join(tags) if isinstance(tags, (list, tuple)) else tags
        return await self.search_by_embedding(await self._embed(tag_query), filters)

    async def find_similar_by_tags(self, memory_id: int, filters: SearchFilters | None = None) -> list[SearchResult]:
        """Memories whose tags resemble those of *memory_id*, excluding it.

        Returns an empty list when the memory does not exist or has no tag
        embedding.
        """
        memory = await self.storage.get_memory(memory_id)
        if memory is None or memory.tag_embedding is None:
            return []

        filters = filters or SearchFilters()
        excluded = list(dict.fromkeys([*filters.exclude_ids, memory_id]))
        filters = filters.model_copy(update={"exclude_ids": excluded})
        return await self.search_by_embedding(memory.tag_embedding, filters)

    async def get_tag_statistics(self, project_id: int | None = None) -> list[dict[str, Any]]:
        """Top 50 tags by frequency (then mean importance); ``[]`` if the query fails."""
        try:
            return await self.storage.get_tag_statistics(project_id=project_id, limit=50)
        except Exception as e:
            logger.warning(f"Tag statistics query failed (non-fatal): {e}")
            return []

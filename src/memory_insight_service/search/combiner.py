"""
Result combination for hybrid search.

Merges the ranked lists produced by the content and tag strategies into one
ranking. A memory found by only one strategy keeps that strategy's score as
its combined score (effective weight 1.0 on the present dimension); a memory
found by both gets the weighted sum, optionally boosted for convergent
evidence.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Any

from ..config import WEIGHT_SUM_TOLERANCE
from ..errors import InvalidWeightsError
from ..models.memory import Memory
from ..models.search import SearchResult, SearchScores, WeightDistribution
from ..models.validators import ResultSearchMode

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = WeightDistribution(content_weight=0.7, tag_weight=0.3)


def validate_weights(content_weight: float, tag_weight: float) -> WeightDistribution:
    """Check that both weights lie in [0, 1] and sum to 1.0 within tolerance.

    Raises:
        InvalidWeightsError: A weight is out of range or the sum is off by more than the tolerance
    """
    for label, value in (("content_weight", content_weight), ("tag_weight", tag_weight)):
        if value is None or not math.isfinite(value) or not 0.0 <= value <= 1.0:
            raise InvalidWeightsError(f"{label} must be between 0 and 1, got {value}")

    if abs(content_weight + tag_weight - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise InvalidWeightsError(
            f"content_weight + tag_weight must equal 1.0, got {content_weight} + {tag_weight}"
        )
    return WeightDistribution(content_weight=content_weight, tag_weight=tag_weight)


def _rank_key(result: SearchResult) -> tuple[float, float, float]:
    return (-result.similarity, -result.memory.importance_score, -result.memory.created_at.timestamp())


@dataclass
class _Entry:
    memory: Memory
    content: float | None = None
    tags: float | None = None


class ResultCombiner:
    """Combines, boosts, normalises, and diversifies hybrid search results."""

    def __init__(self, overlap_boost: float = 0.1, max_boost: float = 0.95):
        self.overlap_boost = overlap_boost
        self.max_boost = max_boost

    @staticmethod
    def _collect(content_results: list[SearchResult], tag_results: list[SearchResult]) -> dict[int, _Entry]:
        entries: dict[int, _Entry] = {}
        for result in content_results:
            score = result.search_scores.content if result.search_scores.content is not None else result.similarity
            entries.setdefault(result.memory_id, _Entry(result.memory)).content = score
        for result in tag_results:
            score = result.search_scores.tags if result.search_scores.tags is not None else result.similarity
            entries.setdefault(result.memory_id, _Entry(result.memory)).tags = score
        return entries

    @staticmethod
    def _score_entry(entry: _Entry, weights: WeightDistribution) -> SearchResult:
        mode: ResultSearchMode
        if entry.content is not None and entry.tags is not None:
            combined = weights.content_weight * entry.content + weights.tag_weight * entry.tags
            effective = weights
            mode = "hybrid"
        elif entry.content is not None:
            combined = entry.content
            effective = WeightDistribution(content_weight=1.0, tag_weight=0.0)
            mode = "content_only"
        else:
            combined = entry.tags or 0.0
            effective = WeightDistribution(content_weight=0.0, tag_weight=1.0)
            mode = "tags_only" if entry.tags is not None else "unknown"

        return SearchResult(
            memory=entry.memory,
            similarity=combined,
            search_scores=SearchScores(content=entry.content, tags=entry.tags, combined=combined),
            search_mode=mode,
            appears_in_both=mode == "hybrid",
            weight_distribution=effective,
        )

    def combine(
        self,
        content_results: list[SearchResult],
        tag_results: list[SearchResult],
        weights: WeightDistribution | None = None,
    ) -> list[SearchResult]:
        """Merge two ranked lists by memory id and rank by combined score.

        Args:
            content_results: Results from the content strategy
            tag_results: Results from the tag strategy
            weights: Weights applied when a memory has both scores

        Returns:
            Unique results ordered by combined score, importance, recency
        """
        weights = weights or DEFAULT_WEIGHTS
        entries = self._collect(content_results, tag_results)
        results = sorted((self._score_entry(e, weights) for e in entries.values()), key=_rank_key)

        logger.debug(
            f"Combined {len(content_results)} content + {len(tag_results)} tag results "
            f"into {len(results)} unique results"
        )
        return results

    def merge_with_boost(
        self,
        content_results: list[SearchResult],
        tag_results: list[SearchResult],
        weights: WeightDistribution | None = None,
        overlap_boost: float | None = None,
        max_boost: float | None = None,
    ) -> list[SearchResult]:
        """Like :meth:`combine`, adding ``overlap_boost`` (capped at ``max_boost``) to memories found by both."""
        boost = self.overlap_boost if overlap_boost is None else overlap_boost
        cap = self.max_boost if max_boost is None else max_boost

        results = []
        for result in self.combine(content_results, tag_results, weights):
            if result.appears_in_both:
                # The cap also applies to combined scores already above it
                boosted = min(result.similarity + boost, cap)
                result = result.model_copy(
                    update={
                        "similarity": boosted,
                        "search_scores": result.search_scores.model_copy(update={"combined": boosted}),
                        "overlap_boosted": True,
                    }
                )
            results.append(result)

        results.sort(key=_rank_key)
        logger.debug(f"Merged results with {sum(r.overlap_boosted for r in results)} overlap-boosted entries")
        return results

    @staticmethod
    def diversify_results(
        results: list[SearchResult],
        max_per_type: int = 3,
        max_per_project: int = 5,
    ) -> list[SearchResult]:
        """Drop results once their memory type or project bucket is full; order is kept."""
        type_counts: Counter = Counter()
        project_counts: Counter = Counter()
        kept = []

        for result in results:
            memory = result.memory
            project_key = memory.project_name if memory.project_name is not None else memory.project_id
            if type_counts[memory.memory_type] >= max_per_type or project_counts[project_key] >= max_per_project:
                continue
            type_counts[memory.memory_type] += 1
            project_counts[project_key] += 1
            kept.append(result)

        return kept

    @staticmethod
    def normalize_scores(results: list[SearchResult]) -> list[SearchResult]:
        """Min-max normalise each present dimension into ``*_normalized``.

        A dimension whose scores are all equal normalises to 1.0; an absent
        score stays ``None``.
        """
        if not results:
            return results

        def bounds(values: list[float]) -> tuple[float, float] | None:
            return (min(values), max(values)) if values else None

        content_bounds = bounds([r.search_scores.content for r in results if r.search_scores.content is not None])
        tag_bounds = bounds([r.search_scores.tags for r in results if r.search_scores.tags is not None])

        def scale(value: float | None, span: tuple[float, float] | None) -> float | None:
            if value is None or span is None:
                return None
            low, high = span
            return 1.0 if high == low else (value - low) / (high - low)

        return [
            r.model_copy(
                update={
                    "search_scores": r.search_scores.model_copy(
                        update={
                            "content_normalized": scale(r.search_scores.content, content_bounds),
                            "tags_normalized": scale(r.search_scores.tags, tag_bounds),
                        }
                    )
                }
            )
            for r in results
        ]

    @staticmethod
    def get_combination_stats(
        content_results: list[SearchResult],
        tag_results: list[SearchResult],
        combined_results: list[SearchResult],
    ) -> dict[str, Any]:
        """Counts describing how the two inputs overlapped."""
        has_content = [r.search_scores.content is not None for r in combined_results]
        has_tags = [r.search_scores.tags is not None for r in combined_results]
        return {
            "content_results": len(content_results),
            "tag_results": len(tag_results),
            "total_unique_results": len(combined_results),
            "overlapping_results": sum(c and t for c, t in zip(has_content, has_tags)),
            "content_only_unique": sum(c and not t for c, t in zip(has_content, has_tags)),
            "tag_only_unique": sum(t and not c for c, t in zip(has_content, has_tags)),
        }

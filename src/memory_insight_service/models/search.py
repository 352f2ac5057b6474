"""Search request and result models.

``SearchFilters`` are the storage-level predicates shared by both search
strategies; ``SearchOptions`` adds the hybrid-engine knobs on top.
``SearchResult`` is ephemeral: built per query and discarded after response.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .memory import Memory
from .validators import ProcessingStatus, ResultSearchMode, SearchMode


class SearchFilters(BaseModel):
    """Predicates and limits applied by a single search strategy."""

    model_config = ConfigDict(extra="forbid")

    project_id: int | None = None
    project_name: str | None = None
    session_id: int | None = None
    # "any" or None disables type filtering
    memory_type: str | None = None
    processing_status: ProcessingStatus | None = None
    importance_min: float | None = Field(default=None, ge=0.0, le=1.0)
    date_from: datetime | None = None
    recent_only: bool = False
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    limit: int = Field(default=10, ge=1, le=1000)
    exclude_ids: list[int] = Field(default_factory=list)
    exclude_failed: bool = True


class SearchOptions(SearchFilters):
    """Options for :meth:`HybridSearchEngine.search`.

    Weights default to the configured values when ``None``; the engine
    validates them and raises ``InvalidWeightsError``.
    """

    search_mode: SearchMode = "hybrid"
    content_weight: float | None = None
    tag_weight: float | None = None
    enable_overlap_boost: bool = True
    enable_diversity: bool = False

    def filters(self, **overrides: Any) -> SearchFilters:
        """Project these options down to strategy-level filters."""
        data = self.model_dump(include=set(SearchFilters.model_fields))
        data.update(overrides)
        return SearchFilters(**data)


class SearchScores(BaseModel):
    """Per-dimension scores; ``None`` means the strategy did not find the memory."""

    content: float | None = None
    tags: float | None = None
    combined: float = 0.0
    content_normalized: float | None = None
    tags_normalized: float | None = None


class WeightDistribution(BaseModel):
    """Weights actually applied to a result (1.0 on the only present dimension)."""

    content_weight: float
    tag_weight: float


class SearchResult(BaseModel):
    """A memory annotated with similarity scores for one query."""

    memory: Memory
    similarity: float
    search_scores: SearchScores
    search_mode: ResultSearchMode = "unknown"
    appears_in_both: bool = False
    overlap_boosted: bool = False
    weight_distribution: WeightDistribution | None = None

    @property
    def memory_id(self) -> int:
        return self.memory.id

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the shape returned to the routing layer."""
        return {
            **self.memory.to_dict(),
            "similarity": self.similarity,
            "search_scores": self.search_scores.model_dump(exclude_none=False),
            "search_mode": self.search_mode,
            "appears_in_both": self.appears_in_both,
            "overlap_boosted": self.overlap_boosted,
            "weight_distribution": self.weight_distribution.model_dump() if self.weight_distribution else None,
        }

"""Memory data model.

Pydantic v2 model for a stored memory: content, its two embeddings (content
and smart-tag), classification, importance, and processing lifecycle.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .validators import ProcessingStatus, Tags, UnitFloat

logger = logging.getLogger(__name__)


def _safe_float(v: Any, default: float = 0.0) -> float:
    """Convert *v* to float, returning *default* on failure or non-finite values."""
    try:
        result = float(v)
        return result if math.isfinite(result) else default
    except (TypeError, ValueError):
        return default


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so recency comparisons never mix offsets."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Memory(BaseModel):
    """Represents a single memory entry with validated fields."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    content: str = Field(min_length=1)
    content_embedding: list[float] | None = None
    tag_embedding: list[float] | None = None
    smart_tags: Tags = []
    # str, not Literal: storage may contain legacy values
    memory_type: str = "general"
    importance_score: UnitFloat = 0.5
    processing_status: ProcessingStatus = "pending"
    project_id: int | None = None
    project_name: str | None = None
    session_id: int | None = None
    summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("importance_score", mode="before")
    @classmethod
    def coerce_importance(cls, v: Any) -> float:
        return max(0.0, min(_safe_float(v, 0.5), 1.0))

    @field_validator("created_at", mode="after")
    @classmethod
    def created_at_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def ready_requires_embedding(self) -> Self:
        """A memory is only ``ready`` once its content embedding exists."""
        if self.processing_status == "ready" and self.content_embedding is None:
            raise ValueError(f"memory {self.id} is 'ready' but has no content embedding")
        return self

    @property
    def has_content_embedding(self) -> bool:
        return self.content_embedding is not None

    @property
    def has_tag_embedding(self) -> bool:
        return self.tag_embedding is not None

    def to_dict(self, include_embeddings: bool = False) -> dict[str, Any]:
        """Convert to a JSON-friendly dict for the routing layer."""
        data = self.model_dump(mode="json", exclude={"content_embedding", "tag_embedding"})
        if include_embeddings:
            data["content_embedding"] = self.content_embedding
            data["tag_embedding"] = self.tag_embedding
        return data

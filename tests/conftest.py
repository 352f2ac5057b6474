import math
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Keep developer .env / shell settings out of the test run
for _key in [k for k in os.environ if k.startswith("MCP_")]:
    del os.environ[_key]

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from memory_insight_service.models.memory import Memory  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def vector_with_similarity(similarity: float) -> list[float]:
    """3-d unit vector whose cosine similarity to ``[1, 0, 0]`` is *similarity*."""
    return [similarity, math.sqrt(max(0.0, 1.0 - similarity * similarity)), 0.0]


QUERY_VECTOR = [1.0, 0.0, 0.0]


@pytest.fixture
def make_memory():
    """Factory for Memory objects with sensible defaults."""

    def _make(
        memory_id: int,
        content: str | None = None,
        content_embedding: list[float] | None = None,
        tag_embedding: list[float] | None = None,
        memory_type: str = "note",
        smart_tags: list[str] | None = None,
        importance_score: float = 0.5,
        processing_status: str | None = None,
        project_id: int | None = 1,
        project_name: str | None = "alpha",
        days_ago: float = 0.0,
        **extra,
    ) -> Memory:
        if processing_status is None:
            processing_status = "ready" if content_embedding is not None else "pending"
        return Memory(
            id=memory_id,
            content=content or f"Memory number {memory_id} with enough content to process",
            content_embedding=content_embedding,
            tag_embedding=tag_embedding,
            memory_type=memory_type,
            smart_tags=smart_tags or [],
            importance_score=importance_score,
            processing_status=processing_status,
            project_id=project_id,
            project_name=project_name,
            created_at=NOW - timedelta(days=days_ago),
            **extra,
        )

    return _make

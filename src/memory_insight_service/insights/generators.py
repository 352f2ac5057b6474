"""
Insight generator protocols and candidate validation.

Generators are external collaborators (typically LLM-backed). The processor
only relies on the call shapes below and validates whatever they return
before anything is persisted.
"""

import logging
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from ..models.jobs import Insight
from ..models.memory import Memory

logger = logging.getLogger(__name__)


@runtime_checkable
class InsightGenerator(Protocol):
    """Produces insight candidates for a single memory."""

    async def generate(self, memory: Memory, context: dict[str, Any]) -> list[Insight]: ...


@runtime_checkable
class ClusterInsightGenerator(Protocol):
    """Produces insight candidates for a cluster of related memories.

    ``context["cluster"]`` carries the cluster metadata (id, type, size,
    member ids, time span, common tags).
    """

    async def generate(self, members: Sequence[Memory], context: dict[str, Any]) -> list[Insight]: ...


class InsightValidator:
    """Filters insight candidates before they are stored."""

    def __init__(self, min_confidence: float = 0.3, min_summary_length: int = 10):
        self.min_confidence = min_confidence
        self.min_summary_length = min_summary_length

    def rejection_reason(self, insight: Insight, seen: set[str]) -> str | None:
        if insight.confidence_score < self.min_confidence:
            return f"confidence {insight.confidence_score:.2f} below {self.min_confidence}"
        for field_name in ("title", "summary", "insight_type", "insight_category"):
            if not getattr(insight, field_name).strip():
                return f"missing {field_name}"
        if len(insight.summary.strip()) < self.min_summary_length:
            return "summary too short"
        if insight.signature() in seen:
            return "duplicate"
        return None

    def validate(self, insights: Sequence[Insight] | None) -> list[Insight]:
        """Accepted candidates, marked ``validated``, in input order."""
        accepted: list[Insight] = []
        seen: set[str] = set()
        for insight in insights or []:
            reason = self.rejection_reason(insight, seen)
            if reason:
                logger.debug(f"Rejected insight '{insight.title}': {reason}")
                continue
            seen.add(insight.signature())
            accepted.append(insight.model_copy(update={"validation_status": "validated"}))
        return accepted

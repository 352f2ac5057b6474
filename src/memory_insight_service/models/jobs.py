"""Job-queue and insight models.

``ProcessingJob`` rows live in the processing queue table. ``Insight`` rows
live in the insight table; a *processing marker* is an insight row that only
records "memory N was mined successfully" and is unique per source id.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal, TypedDict

from pydantic import BaseModel, Field

from .validators import JobStatus, Tags, TaskType, UnitFloat

MARKER_INSIGHT_TYPE = "processing_marker"
MARKER_INSIGHT_CATEGORY = "system"

ValidationStatus = Literal["pending", "validated", "rejected"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingJob(BaseModel):
    """A persisted processing-queue record."""

    id: int | None = None
    task_type: TaskType
    task_priority: int = 5
    source_type: str = "memory"
    source_ids: list[int] = Field(default_factory=list)
    status: JobStatus = "pending"
    payload: dict[str, Any] = Field(default_factory=dict)
    result_summary: dict[str, Any] | None = None
    insights_generated: int = 0
    processor_id: str | None = None
    retry_count: int = 0
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class Insight(BaseModel):
    """An insight candidate returned by a generator, or a stored insight row."""

    id: int | None = None
    insight_type: str = ""
    insight_category: str = ""
    title: str = ""
    summary: str = ""
    source_type: str = "memory"
    source_ids: list[int] = Field(default_factory=list)
    detection_method: str | None = None
    confidence_score: UnitFloat = 0.5
    project_id: int | None = None
    tags: Tags = []
    metadata: dict[str, Any] = Field(default_factory=dict)
    validation_status: ValidationStatus = "pending"
    validation_reason: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_marker(self) -> bool:
        return self.insight_type == MARKER_INSIGHT_TYPE

    def signature(self) -> str:
        """Normalised type/category/title key used to detect duplicates within a batch."""
        key = f"{self.insight_type}_{self.insight_category}_{self.title}".lower()
        return re.sub(r"[^a-z0-9]", "_", key)

    @classmethod
    def processing_marker(cls, memory_id: int, job_id: int | None) -> Insight:
        """Build the marker row recording that *memory_id* was mined successfully."""
        return cls(
            insight_type=MARKER_INSIGHT_TYPE,
            insight_category=MARKER_INSIGHT_CATEGORY,
            title="Memory Processed",
            summary="Memory processed by batch insight job",
            source_type="memory",
            source_ids=[memory_id],
            detection_method="batch_processing",
            confidence_score=1.0,
            metadata={"processing_job_id": job_id, "is_marker": True},
            validation_status="validated",
        )


class ProcessingRunResult(TypedDict, total=False):
    """Return value of one insight processing run."""

    jobId: int | None
    processed: int
    errors: int
    insights: int
    duration_ms: float
    message: str
    skipped: bool
    reason: str

"""
Abstract storage interface consumed by the search engine and insight processor.

A backend must support:

- similarity queries against one embedding column at a time ("order rows by
  vector distance to this vector, filtered by equality/range predicates,
  limited to N rows");
- inserts/updates for processing-queue jobs and insight rows;
- an atomic insert-if-not-exists for the per-memory processing marker.
"""

from abc import ABC, abstractmethod
from typing import Any, Literal

from ..models.jobs import Insight, ProcessingJob
from ..models.memory import Memory
from ..models.search import SearchFilters
from ..models.validators import JobStatus, TaskType

EmbeddingColumn = Literal["content", "tags"]


class MemoryStorage(ABC):
    """Abstract base class for memory, job, and insight storage backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create schema and open connections."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections. Safe to call more than once."""

    # ── Memories ────────────────────────────────────────────────────────

    @abstractmethod
    async def store_memory(self, memory: Memory) -> int:
        """Insert or replace a memory; returns its id."""

    @abstractmethod
    async def get_memory(self, memory_id: int) -> Memory | None:
        """Fetch a memory including its embeddings, or None."""

    @abstractmethod
    async def search_by_vector(
        self,
        embedding: list[float],
        column: EmbeddingColumn,
        filters: SearchFilters,
    ) -> list[tuple[Memory, float]]:
        """Rank memories by ``1 - cosine distance`` on one embedding column.

        Rows lacking that embedding never match. Only rows with similarity
        ``>= filters.threshold`` are returned, ordered by similarity desc,
        importance desc, created_at desc, at most ``filters.limit`` rows.
        """

    @abstractmethod
    async def count_searchable(self, project_id: int | None = None) -> dict[str, int]:
        """Counts of total / content / tag / hybrid searchable non-failed memories."""

    @abstractmethod
    async def get_tag_statistics(self, project_id: int | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Tag frequency and mean importance over tag-searchable memories."""

    @abstractmethod
    async def get_unprocessed_memories(self, limit: int = 1000, min_content_length: int = 10) -> list[Memory]:
        """Ready memories with no insight referencing them and no in-flight job.

        Ordered by importance desc then created_at desc.
        """

    # ── Processing queue ────────────────────────────────────────────────

    @abstractmethod
    async def create_job(self, job: ProcessingJob) -> int:
        """Insert a job row and return its id."""

    @abstractmethod
    async def get_job(self, job_id: int) -> ProcessingJob | None:
        """Fetch a job row."""

    @abstractmethod
    async def list_jobs(
        self,
        task_type: TaskType | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[ProcessingJob]:
        """Most recent jobs first."""

    @abstractmethod
    async def update_job_progress(self, job_id: int, progress: dict[str, Any]) -> None:
        """Store progress counters under ``payload["progress"]``."""

    @abstractmethod
    async def complete_job(
        self,
        job_id: int,
        status: JobStatus,
        result_summary: dict[str, Any] | None = None,
        insights_generated: int = 0,
        error_message: str | None = None,
    ) -> None:
        """Write final status, summary, and completion time."""

    @abstractmethod
    async def get_retryable_jobs(self, max_retries: int, limit: int = 100) -> list[ProcessingJob]:
        """Failed ``memory_retry`` jobs whose retry count is below *max_retries*."""

    @abstractmethod
    async def mark_retry_attempt(self, job_id: int, succeeded: bool, error_message: str | None = None) -> None:
        """Record one retry attempt: completed on success, retry_count + 1 otherwise."""

    @abstractmethod
    async def get_queue_stats(self, hours: int = 24) -> dict[str, Any]:
        """Job counts per status (and mean completed duration) over the window."""

    # ── Insights ────────────────────────────────────────────────────────

    @abstractmethod
    async def store_insight(self, insight: Insight) -> Insight:
        """Persist an insight and return it with its id."""

    @abstractmethod
    async def insert_processing_marker(self, memory_id: int, job_id: int | None) -> bool:
        """Insert the marker for *memory_id* unless one exists. True if inserted."""

    @abstractmethod
    async def is_memory_processed(self, memory_id: int) -> bool:
        """True when an insight (marker or otherwise) references the memory."""

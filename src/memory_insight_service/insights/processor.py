"""
Batch insight processor.

One run pulls the unprocessed memories, clusters them, sends each cluster to
the cluster insight generator and every leftover memory to the per-memory
generator, persists validated insights, and writes a processing marker for
each memory that produced at least one insight. Progress and the final
outcome are recorded on a ``batch_memory_processing`` job row.

Only one run executes at a time per processor instance; a concurrent trigger
returns ``{"skipped": True, "reason": "already_processing"}``.
"""

import asyncio
import logging
import os
import time
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..config import InsightProcessingSettings
from ..models.cluster import Cluster, ClusteringResult
from ..models.jobs import Insight, ProcessingJob, ProcessingRunResult
from ..models.memory import Memory
from ..storage.base import MemoryStorage
from .clustering import MemoryClusterer
from .generators import ClusterInsightGenerator, InsightGenerator, InsightValidator

logger = logging.getLogger(__name__)


@dataclass
class ProcessingStats:
    processed: int = 0
    errors: int = 0
    insights: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ProcessorState:
    """Run state owned by one processor instance."""

    running: bool = False
    job_id: int | None = None
    started_at: float | None = None
    stats: ProcessingStats = field(default_factory=ProcessingStats)

    @property
    def duration_ms(self) -> float:
        return (time.time() - self.started_at) * 1000 if self.started_at is not None else 0.0


def create_batches(items: Sequence[Memory], batch_size: int) -> list[list[Memory]]:
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


class AsyncInsightProcessor:
    """Job-queue driven insight mining over unprocessed memories."""

    def __init__(
        self,
        storage: MemoryStorage,
        memory_generator: InsightGenerator,
        cluster_generator: ClusterInsightGenerator | None = None,
        clusterer: MemoryClusterer | None = None,
        config: InsightProcessingSettings | None = None,
        validator: InsightValidator | None = None,
        processor_id: str | None = None,
    ):
        if config is None:
            from ..config import settings

            config = settings.insights

        self.storage = storage
        self.memory_generator = memory_generator
        self.cluster_generator = cluster_generator
        self.clusterer = clusterer or MemoryClusterer()
        self.config = config
        self.validator = validator or InsightValidator(
            min_confidence=config.min_confidence, min_summary_length=config.min_summary_length
        )
        self.processor_id = processor_id or f"insight_processor_{os.getpid()}"
        self.state = ProcessorState()
        self._state_lock = asyncio.Lock()

    # ── State ───────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self.state.running

    def get_current_job_status(self) -> dict[str, Any] | None:
        """Snapshot of the active job, or None when idle."""
        if self.state.job_id is None:
            return None
        return {
            "job_id": self.state.job_id,
            "is_processing": self.state.running,
            "stats": self.state.stats.to_dict(),
            "started_at": self.state.started_at,
            "duration_ms": self.state.duration_ms,
        }

    async def _try_start(self) -> bool:
        async with self._state_lock:
            if self.state.running:
                return False
            self.state = ProcessorState(running=True, started_at=time.time())
            return True

    async def _finish(self) -> None:
        async with self._state_lock:
            self.state.running = False
            self.state.job_id = None

    # ── Main run ────────────────────────────────────────────────────────

    async def process_unprocessed_memories(self) -> ProcessingRunResult:
        """
        Run one processing pass.

        Returns:
            ``{jobId, processed, errors, insights, duration_ms}``, plus
            ``message`` when nothing was pending, or the skipped sentinel
            when a run is already active

        Raises:
            Exception: Any job-level failure, after the job row is marked failed
        """
        if not await self._try_start():
            logger.info("Insight processor already running, skipping run")
            return {"skipped": True, "reason": "already_processing"}

        try:
            self.state.job_id = await self._create_job_record()
            job_id = self.state.job_id
            logger.info(f"Starting insight job {job_id}")

            memories = await self.storage.get_unprocessed_memories(
                limit=self.config.max_memories_per_run,
                min_content_length=self.config.min_content_length,
            )
            if not memories:
                logger.info("No unprocessed memories found")
                await self._complete_job("completed")
                return {
                    "jobId": job_id,
                    "processed": 0,
                    "errors": 0,
                    "insights": 0,
                    "message": "No memories to process",
                }

            logger.info(f"Found {len(memories)} memories to process")

            clustering = self._cluster(memories)
            if clustering.clusters:
                logger.info(f"Processing {len(clustering.clusters)} memory clusters")
                await self._process_clusters(clustering.clusters, job_id)

            if clustering.unclustered:
                batches = create_batches(clustering.unclustered, self.config.batch_size)
                logger.info(f"Processing {len(clustering.unclustered)} individual memories in {len(batches)} batches")
                for index, batch in enumerate(batches, start=1):
                    succeeded = await self._process_batch(batch, job_id)
                    logger.info(
                        f"Batch {index}/{len(batches)} results: {succeeded} successful, {len(batch) - succeeded} failed"
                    )
                    await self.storage.update_job_progress(job_id, self.state.stats.to_dict())

            await self._complete_job("completed")

            result: ProcessingRunResult = {
                "jobId": job_id,
                **self.state.stats.to_dict(),
                "duration_ms": self.state.duration_ms,
            }
            logger.info(f"Insight job {job_id} completed: {result}")
            return result

        except asyncio.CancelledError:
            logger.warning(f"Insight job {self.state.job_id} cancelled")
            await self._fail_job("cancelled")
            raise
        except Exception as e:
            logger.error(f"Insight job {self.state.job_id} failed: {e}")
            await self._fail_job(str(e))
            raise
        finally:
            await self._finish()

    async def _fail_job(self, error_message: str) -> None:
        if self.state.job_id is None:
            return
        try:
            await self._complete_job("failed", error_message)
        except Exception as complete_error:
            logger.error(f"Failed to record failure of job {self.state.job_id}: {complete_error}")

    def _cluster(self, memories: Sequence[Memory]) -> ClusteringResult:
        if self.cluster_generator is None:
            return ClusteringResult(unclustered=list(memories))
        try:
            result = self.clusterer.cluster(memories)
        except Exception as e:
            logger.error(f"Clustering failed, processing all memories individually: {e}")
            return ClusteringResult(unclustered=list(memories))

        logger.info(f"Created {len(result.clusters)} clusters, {len(result.unclustered)} unclustered memories")
        return result

    # ── Clusters ────────────────────────────────────────────────────────

    async def _process_clusters(self, clusters: Sequence[Cluster], job_id: int | None) -> None:
        stats = self.state.stats
        for cluster in clusters:
            try:
                context = {"processing_job_id": job_id, "cluster": cluster.metadata()}
                candidates = await self.cluster_generator.generate(cluster.memories, context)
                stored = await self._persist(
                    self.validator.validate(candidates),
                    default_source_ids=cluster.member_ids,
                    project_id=cluster.memories[0].project_id,
                    extra_metadata={"cluster_id": cluster.cluster_id, "processing_job_id": job_id},
                )
                if stored:
                    for memory in cluster.memories:
                        await self.storage.insert_processing_marker(memory.id, job_id)

                stats.processed += cluster.size
                stats.insights += stored
                logger.info(f"Cluster {cluster.cluster_id} ({cluster.size} memories) produced {stored} insights")
            except Exception as e:
                logger.error(f"Failed to process cluster {cluster.cluster_id}: {e}")
                stats.errors += cluster.size

    # ── Single memories ─────────────────────────────────────────────────

    async def _process_batch(self, batch: Sequence[Memory], job_id: int | None) -> int:
        """Process *batch* concurrently; every item resolves before this returns."""
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(self._process_memory(memory, job_id)) for memory in batch]
        return sum(1 for task in tasks if task.result())

    async def _generate_for_memory(self, memory: Memory, job_id: int | None) -> int:
        """Generate, validate, and persist insights for one memory; marker only when some were stored."""
        candidates = await self.memory_generator.generate(memory, {"processing_job_id": job_id})
        stored = await self._persist(
            self.validator.validate(candidates),
            default_source_ids=[memory.id],
            project_id=memory.project_id,
            extra_metadata={"processing_job_id": job_id},
        )
        if stored:
            await self.storage.insert_processing_marker(memory.id, job_id)
            logger.info(f"Memory {memory.id} marked as processed with {stored} insights")
        else:
            logger.warning(f"Memory {memory.id} NOT marked as processed - no insights generated")
        return stored

    async def _process_memory(self, memory: Memory, job_id: int | None) -> bool:
        stats = self.state.stats
        try:
            stored = await self._generate_for_memory(memory, job_id)
        except Exception as e:
            logger.error(f"Failed to process memory {memory.id}: {e}")
            stats.errors += 1
            await self._record_processing_error(memory.id, str(e), job_id)
            return False

        stats.processed += 1
        stats.insights += stored
        return True

    async def _persist(
        self,
        insights: Sequence[Insight],
        default_source_ids: list[int],
        project_id: int | None,
        extra_metadata: dict[str, Any],
    ) -> int:
        for insight in insights:
            prepared = insight.model_copy(
                update={
                    "source_type": "memory",
                    "source_ids": insight.source_ids or default_source_ids,
                    "project_id": insight.project_id if insight.project_id is not None else project_id,
                    "metadata": {**insight.metadata, **extra_metadata},
                }
            )
            await self.storage.store_insight(prepared)
        return len(insights)

    # ── Queue bookkeeping ───────────────────────────────────────────────

    async def _create_job_record(self) -> int:
        job = ProcessingJob(
            task_type="batch_memory_processing",
            task_priority=1,
            source_type="batch",
            source_ids=[],
            status="processing",
            payload={"batch_type": "full_memory_scan"},
            processor_id=self.processor_id,
            started_at=datetime.now(timezone.utc),
        )
        return await self.storage.create_job(job)

    async def _complete_job(self, status: str, error_message: str | None = None) -> None:
        stats = self.state.stats
        await self.storage.complete_job(
            self.state.job_id,
            status,
            result_summary={
                "processed": stats.processed,
                "errors": stats.errors,
                "duration_ms": self.state.duration_ms,
            },
            insights_generated=stats.insights,
            error_message=error_message,
        )

    async def _record_processing_error(self, memory_id: int, error_message: str, job_id: int | None) -> None:
        retry = ProcessingJob(
            task_type="memory_retry",
            task_priority=5,
            source_type="memory",
            source_ids=[memory_id],
            status="failed",
            payload={"original_job_id": job_id},
            error_message=error_message,
        )
        try:
            await self.storage.create_job(retry)
        except Exception as e:
            logger.error(f"Failed to record retry row for memory {memory_id}: {e}")

    # ── Retry pass ──────────────────────────────────────────────────────

    async def retry_failed_memories(self, max_retries: int | None = None) -> dict[str, Any]:
        """
        Re-process memories recorded in failed ``memory_retry`` rows.

        Each row under the retry limit is attempted once: success marks it
        ``completed``; failure bumps its retry count and error message.
        Shares the single-run guard with :meth:`process_unprocessed_memories`.
        """
        if not await self._try_start():
            logger.info("Insight processor already running, skipping retry pass")
            return {"skipped": True, "reason": "already_processing"}

        limit = self.config.max_retries if max_retries is None else max_retries
        summary = {"retried": 0, "succeeded": 0, "failed": 0}
        try:
            for job in await self.storage.get_retryable_jobs(limit):
                summary["retried"] += 1
                try:
                    for memory_id in job.source_ids:
                        memory = await self.storage.get_memory(memory_id)
                        if memory is None or await self.storage.is_memory_processed(memory_id):
                            continue
                        await self._generate_for_memory(memory, job.id)
                except Exception as e:
                    logger.warning(f"Retry of job {job.id} failed: {e}")
                    summary["failed"] += 1
                    await self.storage.mark_retry_attempt(job.id, succeeded=False, error_message=str(e))
                    continue

                summary["succeeded"] += 1
                await self.storage.mark_retry_attempt(job.id, succeeded=True)
        finally:
            await self._finish()

        logger.info(f"Retry pass finished: {summary}")
        return summary

    async def get_queue_stats(self, hours: int = 24) -> dict[str, Any]:
        """Job counts per status over the last *hours*."""
        return await self.storage.get_queue_stats(hours)

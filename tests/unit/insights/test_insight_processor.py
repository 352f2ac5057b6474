"""
Tests for AsyncInsightProcessor.

Tests cover:
- Single-run guard and skipped sentinel
- Marker only when insights were produced
- Per-item failure isolation and retry rows
- Cluster processing and clustering failure fallback
- Final job status on unexpected exceptions
- Retry pass and status helpers
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from memory_insight_service.config import InsightProcessingSettings
from memory_insight_service.insights.processor import AsyncInsightProcessor, create_batches
from memory_insight_service.models.cluster import Cluster, ClusteringResult, TimeSpan
from memory_insight_service.models.jobs import Insight, ProcessingJob


def make_insight(title: str = "Connection pool exhaustion", **overrides) -> Insight:
    data = {
        "insight_type": "pattern",
        "insight_category": "technical",
        "title": title,
        "summary": "Requests time out when the pool is saturated under load.",
        "confidence_score": 0.8,
    }
    data.update(overrides)
    return Insight(**data)


@pytest.fixture
def storage():
    mock = MagicMock()
    mock.create_job = AsyncMock(side_effect=[100 + i for i in range(50)])
    mock.get_unprocessed_memories = AsyncMock(return_value=[])
    mock.update_job_progress = AsyncMock()
    mock.complete_job = AsyncMock()
    mock.store_insight = AsyncMock(side_effect=lambda insight: insight)
    mock.insert_processing_marker = AsyncMock(return_value=True)
    mock.get_retryable_jobs = AsyncMock(return_value=[])
    mock.mark_retry_attempt = AsyncMock()
    mock.get_memory = AsyncMock(return_value=None)
    mock.is_memory_processed = AsyncMock(return_value=False)
    mock.get_queue_stats = AsyncMock(return_value={"pending": 0})
    return mock


@pytest.fixture
def memory_generator():
    mock = MagicMock()
    mock.generate = AsyncMock(return_value=[make_insight()])
    return mock


def make_processor(storage, memory_generator, cluster_generator=None, clusterer=None, **config):
    return AsyncInsightProcessor(
        storage,
        memory_generator,
        cluster_generator=cluster_generator,
        clusterer=clusterer,
        config=InsightProcessingSettings(**config),
        processor_id="test-processor",
    )


def batch_job(storage) -> ProcessingJob:
    return storage.create_job.call_args_list[0].args[0]


def retry_jobs(storage) -> list[ProcessingJob]:
    jobs = [call.args[0] for call in storage.create_job.call_args_list]
    return [job for job in jobs if job.task_type == "memory_retry"]


# =============================================================================
# Run lifecycle
# =============================================================================


class TestRunLifecycle:
    """Job creation, completion, and the single-run guard."""

    @pytest.mark.asyncio
    async def test_no_memories_completes_job(self, storage, memory_generator):
        processor = make_processor(storage, memory_generator)

        result = await processor.process_unprocessed_memories()

        assert result["processed"] == 0
        assert result["message"] == "No memories to process"
        assert result["jobId"] == 100
        storage.complete_job.assert_awaited_once()
        assert storage.complete_job.call_args.args[:2] == (100, "completed")
        assert not processor.is_running

    @pytest.mark.asyncio
    async def test_job_record_shape(self, storage, memory_generator):
        await make_processor(storage, memory_generator).process_unprocessed_memories()

        job = batch_job(storage)
        assert job.task_type == "batch_memory_processing"
        assert job.task_priority == 1
        assert job.status == "processing"
        assert job.payload == {"batch_type": "full_memory_scan"}
        assert job.processor_id == "test-processor"
        assert job.started_at is not None

    @pytest.mark.asyncio
    async def test_fetch_uses_configured_limits(self, storage, memory_generator):
        await make_processor(storage, memory_generator, max_memories_per_run=250).process_unprocessed_memories()

        storage.get_unprocessed_memories.assert_awaited_once_with(limit=250, min_content_length=10)

    @pytest.mark.asyncio
    async def test_concurrent_run_is_skipped(self, storage, memory_generator, make_memory):
        release = asyncio.Event()
        storage.get_unprocessed_memories.return_value = [make_memory(1, content_embedding=[1.0, 0.0, 0.0])]

        async def slow_generate(memory, context):
            await release.wait()
            return [make_insight()]

        memory_generator.generate = AsyncMock(side_effect=slow_generate)
        processor = make_processor(storage, memory_generator)

        first = asyncio.create_task(processor.process_unprocessed_memories())
        while not memory_generator.generate.await_count:
            await asyncio.sleep(0)

        second = await processor.process_unprocessed_memories()
        assert second == {"skipped": True, "reason": "already_processing"}
        assert storage.create_job.await_count == 1
        assert processor.get_current_job_status()["job_id"] == 100

        release.set()
        result = await first
        assert result["processed"] == 1
        assert processor.get_current_job_status() is None

    @pytest.mark.asyncio
    async def test_unexpected_exception_marks_job_failed(self, storage, memory_generator):
        storage.get_unprocessed_memories.side_effect = RuntimeError("database is locked")
        processor = make_processor(storage, memory_generator)

        with pytest.raises(RuntimeError, match="database is locked"):
            await processor.process_unprocessed_memories()

        job_id, status = storage.complete_job.call_args.args[:2]
        assert (job_id, status) == (100, "failed")
        assert storage.complete_job.call_args.kwargs["error_message"] == "database is locked"
        assert not processor.is_running

    @pytest.mark.asyncio
    async def test_cancelled_run_marks_job_failed(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [make_memory(1, content_embedding=[1.0, 0.0, 0.0])]

        async def hanging_generate(memory, context):
            await asyncio.sleep(3600)

        memory_generator.generate = AsyncMock(side_effect=hanging_generate)
        processor = make_processor(storage, memory_generator)

        run = asyncio.create_task(processor.process_unprocessed_memories())
        while not memory_generator.generate.await_count:
            await asyncio.sleep(0)
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run

        job_id, status = storage.complete_job.call_args.args[:2]
        assert (job_id, status) == (100, "failed")
        assert storage.complete_job.call_args.kwargs["error_message"] == "cancelled"
        assert not processor.is_running

    @pytest.mark.asyncio
    async def test_can_run_again_after_failure(self, storage, memory_generator):
        storage.get_unprocessed_memories.side_effect = [RuntimeError("boom"), []]
        processor = make_processor(storage, memory_generator)

        with pytest.raises(RuntimeError):
            await processor.process_unprocessed_memories()
        result = await processor.process_unprocessed_memories()

        assert result["processed"] == 0


# =============================================================================
# Per-memory processing
# =============================================================================


class TestMemoryProcessing:
    """Singles: markers, zero-insight handling, failure isolation."""

    @pytest.mark.asyncio
    async def test_marker_written_when_insights_produced(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [make_memory(1, content_embedding=[1.0, 0.0, 0.0])]

        result = await make_processor(storage, memory_generator).process_unprocessed_memories()

        assert result["processed"] == 1
        assert result["insights"] == 1
        assert result["errors"] == 0
        storage.insert_processing_marker.assert_awaited_once_with(1, 100)
        stored = storage.store_insight.call_args.args[0]
        assert stored.source_ids == [1]
        assert stored.project_id == 1
        assert stored.validation_status == "validated"

    @pytest.mark.asyncio
    async def test_zero_insights_not_marked(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [make_memory(1, content_embedding=[1.0, 0.0, 0.0])]
        memory_generator.generate.return_value = []

        result = await make_processor(storage, memory_generator).process_unprocessed_memories()

        assert result["processed"] == 1
        assert result["insights"] == 0
        storage.insert_processing_marker.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_insights_not_marked(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [make_memory(1, content_embedding=[1.0, 0.0, 0.0])]
        memory_generator.generate.return_value = [make_insight(confidence_score=0.1)]

        result = await make_processor(storage, memory_generator).process_unprocessed_memories()

        assert result["insights"] == 0
        storage.store_insight.assert_not_awaited()
        storage.insert_processing_marker.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_isolated_and_recorded(self, storage, memory_generator, make_memory):
        memories = [make_memory(i, content_embedding=[1.0, 0.0, 0.0]) for i in range(1, 4)]
        storage.get_unprocessed_memories.return_value = memories

        async def generate(memory, context):
            if memory.id == 2:
                raise RuntimeError("LLM timeout")
            return [make_insight()]

        memory_generator.generate = AsyncMock(side_effect=generate)

        result = await make_processor(storage, memory_generator).process_unprocessed_memories()

        assert result["processed"] == 2
        assert result["errors"] == 1
        assert storage.complete_job.call_args.args[1] == "completed"

        [retry] = retry_jobs(storage)
        assert retry.source_ids == [2]
        assert retry.status == "failed"
        assert retry.task_priority == 5
        assert retry.error_message == "LLM timeout"
        assert retry.payload == {"original_job_id": 100}

    @pytest.mark.asyncio
    async def test_retry_row_failure_does_not_abort_batch(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [
            make_memory(1, content_embedding=[1.0, 0.0, 0.0]),
            make_memory(2, content_embedding=[1.0, 0.0, 0.0]),
        ]
        storage.create_job = AsyncMock(side_effect=[100, RuntimeError("queue table missing")])
        memory_generator.generate = AsyncMock(side_effect=[RuntimeError("bad"), [make_insight()]])

        result = await make_processor(storage, memory_generator).process_unprocessed_memories()

        assert result["processed"] == 1
        assert result["errors"] == 1

    @pytest.mark.asyncio
    async def test_progress_written_per_batch(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [
            make_memory(i, content_embedding=[1.0, 0.0, 0.0]) for i in range(1, 6)
        ]

        await make_processor(storage, memory_generator, batch_size=2).process_unprocessed_memories()

        assert storage.update_job_progress.await_count == 3
        assert storage.update_job_progress.call_args.args == (100, {"processed": 5, "errors": 0, "insights": 5})

    def test_create_batches(self, make_memory):
        memories = [make_memory(i) for i in range(5)]
        assert [len(b) for b in create_batches(memories, 2)] == [2, 2, 1]


# =============================================================================
# Cluster processing
# =============================================================================


def make_cluster(memories) -> Cluster:
    return Cluster(
        cluster_id="cluster_note_1_0",
        memory_type="note",
        memories=memories,
        time_span=TimeSpan(start=memories[0].created_at, end=memories[-1].created_at, days=0),
    )


class TestClusterProcessing:
    """Clusters are processed first through the cluster generator."""

    @pytest.mark.asyncio
    async def test_cluster_counts_full_size(self, storage, memory_generator, make_memory):
        members = [make_memory(i, content_embedding=[1.0, 0.0, 0.0]) for i in (1, 2, 3)]
        single = make_memory(4, content_embedding=[0.0, 1.0, 0.0])
        storage.get_unprocessed_memories.return_value = [*members, single]

        clusterer = MagicMock()
        clusterer.cluster.return_value = ClusteringResult(clusters=[make_cluster(members)], unclustered=[single])
        cluster_generator = MagicMock()
        cluster_generator.generate = AsyncMock(return_value=[make_insight("Recurring pool issue")])

        result = await make_processor(
            storage, memory_generator, cluster_generator=cluster_generator, clusterer=clusterer
        ).process_unprocessed_memories()

        assert result["processed"] == 4
        assert result["insights"] == 2
        context = cluster_generator.generate.call_args.args[1]
        assert context["cluster"]["member_ids"] == [1, 2, 3]
        cluster_insight = storage.store_insight.call_args_list[0].args[0]
        assert cluster_insight.source_ids == [1, 2, 3]
        assert cluster_insight.metadata["cluster_id"] == "cluster_note_1_0"
        marked = sorted(call.args[0] for call in storage.insert_processing_marker.call_args_list)
        assert marked == [1, 2, 3, 4]
        memory_generator.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cluster_failure_counts_errors(self, storage, memory_generator, make_memory):
        members = [make_memory(i, content_embedding=[1.0, 0.0, 0.0]) for i in (1, 2)]
        storage.get_unprocessed_memories.return_value = members
        clusterer = MagicMock()
        clusterer.cluster.return_value = ClusteringResult(clusters=[make_cluster(members)])
        cluster_generator = MagicMock()
        cluster_generator.generate = AsyncMock(side_effect=RuntimeError("LLM down"))

        result = await make_processor(
            storage, memory_generator, cluster_generator=cluster_generator, clusterer=clusterer
        ).process_unprocessed_memories()

        assert result["errors"] == 2
        assert result["processed"] == 0
        storage.insert_processing_marker.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clustering_failure_processes_individually(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [
            make_memory(i, content_embedding=[1.0, 0.0, 0.0]) for i in (1, 2)
        ]
        clusterer = MagicMock()
        clusterer.cluster.side_effect = RuntimeError("bad vectors")
        cluster_generator = MagicMock()
        cluster_generator.generate = AsyncMock()

        result = await make_processor(
            storage, memory_generator, cluster_generator=cluster_generator, clusterer=clusterer
        ).process_unprocessed_memories()

        assert result["processed"] == 2
        assert memory_generator.generate.await_count == 2
        cluster_generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_cluster_generator_skips_clustering(self, storage, memory_generator, make_memory):
        storage.get_unprocessed_memories.return_value = [make_memory(1, content_embedding=[1.0, 0.0, 0.0])]
        clusterer = MagicMock()

        await make_processor(storage, memory_generator, clusterer=clusterer).process_unprocessed_memories()

        clusterer.cluster.assert_not_called()


# =============================================================================
# Retry pass and helpers
# =============================================================================


class TestRetryPass:
    """retry_failed_memories and queue stats."""

    @pytest.mark.asyncio
    async def test_retry_success_and_failure(self, storage, memory_generator, make_memory):
        storage.get_retryable_jobs.return_value = [
            ProcessingJob(id=7, task_type="memory_retry", source_ids=[1], status="failed"),
            ProcessingJob(id=8, task_type="memory_retry", source_ids=[2], status="failed"),
        ]
        storage.get_memory.side_effect = lambda memory_id: make_memory(memory_id, content_embedding=[1.0, 0.0, 0.0])
        memory_generator.generate = AsyncMock(side_effect=[[make_insight()], RuntimeError("still failing")])

        summary = await make_processor(storage, memory_generator).retry_failed_memories(max_retries=3)

        assert summary == {"retried": 2, "succeeded": 1, "failed": 1}
        storage.get_retryable_jobs.assert_awaited_once_with(3)
        storage.mark_retry_attempt.assert_any_await(7, succeeded=True)
        storage.mark_retry_attempt.assert_any_await(8, succeeded=False, error_message="still failing")
        storage.insert_processing_marker.assert_awaited_once_with(1, 7)

    @pytest.mark.asyncio
    async def test_retry_skips_already_processed(self, storage, memory_generator, make_memory):
        storage.get_retryable_jobs.return_value = [
            ProcessingJob(id=7, task_type="memory_retry", source_ids=[1], status="failed")
        ]
        storage.get_memory.return_value = make_memory(1, content_embedding=[1.0, 0.0, 0.0])
        storage.is_memory_processed.return_value = True

        summary = await make_processor(storage, memory_generator).retry_failed_memories()

        assert summary["succeeded"] == 1
        memory_generator.generate.assert_not_awaited()
        storage.get_retryable_jobs.assert_awaited_once_with(3)

    @pytest.mark.asyncio
    async def test_queue_stats_delegates(self, storage, memory_generator):
        assert await make_processor(storage, memory_generator).get_queue_stats() == {"pending": 0}
        storage.get_queue_stats.assert_awaited_once_with(24)

    def test_idle_status(self, storage, memory_generator):
        processor = make_processor(storage, memory_generator)
        assert processor.is_running is False
        assert processor.get_current_job_status() is None

"""
SQLite storage backend.

Memories, processing-queue jobs, and insights live in one SQLite database
accessed through a single aiosqlite connection. Embeddings are stored as JSON
arrays; similarity is computed with numpy over the rows that pass the SQL
predicates, which is adequate for per-project memory volumes.

Source-id lists are mirrored into ``job_sources`` / ``insight_sources`` join
tables so "has this memory been processed / is it in flight" stays a plain
indexed lookup. Processing markers carry ``marker_source_id`` under a UNIQUE
index, which makes ``INSERT OR IGNORE`` the atomic insert-if-not-exists.

All tasks share the one connection and therefore its open transaction, so
every write runs its statements and its commit or rollback under
``_write_lock``.
"""

import asyncio
import json
import logging
import os
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import aiosqlite
import numpy as np

from ..errors import StorageError
from ..models.jobs import Insight, ProcessingJob
from ..models.memory import Memory
from ..models.search import SearchFilters
from ..models.validators import FAILED_STATUSES, JobStatus, TaskType
from ..utils.similarity import SECONDS_PER_DAY, cosine_similarities
from .base import EmbeddingColumn, MemoryStorage

logger = logging.getLogger(__name__)

_EMBEDDING_COLUMNS: dict[str, str] = {"content": "content_embedding", "tags": "tag_embedding"}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id INTEGER PRIMARY KEY,
    project_id INTEGER,
    project_name TEXT,
    session_id INTEGER,
    content TEXT NOT NULL,
    memory_type TEXT NOT NULL DEFAULT 'general',
    summary TEXT,
    processing_status TEXT NOT NULL DEFAULT 'pending',
    importance_score REAL NOT NULL DEFAULT 0.5,
    smart_tags TEXT NOT NULL DEFAULT '[]',
    metadata TEXT NOT NULL DEFAULT '{}',
    content_embedding TEXT,
    tag_embedding TEXT,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memories_status ON memories(processing_status);
CREATE INDEX IF NOT EXISTS idx_memories_project ON memories(project_id);
CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type);

CREATE TABLE IF NOT EXISTS processing_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_type TEXT NOT NULL,
    task_priority INTEGER NOT NULL DEFAULT 5,
    source_type TEXT NOT NULL DEFAULT 'memory',
    source_ids TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'pending',
    payload TEXT NOT NULL DEFAULT '{}',
    result_summary TEXT,
    insights_generated INTEGER NOT NULL DEFAULT 0,
    processor_id TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    created_at REAL NOT NULL,
    started_at REAL,
    completed_at REAL
);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON processing_jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created ON processing_jobs(created_at);

CREATE TABLE IF NOT EXISTS job_sources (
    job_id INTEGER NOT NULL,
    memory_id INTEGER NOT NULL,
    PRIMARY KEY (job_id, memory_id)
);
CREATE INDEX IF NOT EXISTS idx_job_sources_memory ON job_sources(memory_id);

CREATE TABLE IF NOT EXISTS insights (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    insight_type TEXT NOT NULL,
    insight_category TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT NOT NULL,
    source_type TEXT NOT NULL DEFAULT 'memory',
    source_ids TEXT NOT NULL DEFAULT '[]',
    detection_method TEXT,
    confidence_score REAL NOT NULL DEFAULT 0.5,
    project_id INTEGER,
    tags TEXT NOT NULL DEFAULT '[]',
    metadata TEXT NOT NULL DEFAULT '{}',
    validation_status TEXT NOT NULL DEFAULT 'pending',
    validation_reason TEXT,
    marker_source_id INTEGER,
    created_at REAL NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_insights_marker ON insights(marker_source_id);

CREATE TABLE IF NOT EXISTS insight_sources (
    insight_id INTEGER NOT NULL,
    memory_id INTEGER NOT NULL,
    PRIMARY KEY (insight_id, memory_id)
);
CREATE INDEX IF NOT EXISTS idx_insight_sources_memory ON insight_sources(memory_id);
"""

_INSIGHT_COLUMNS = (
    "insight_type, insight_category, title, summary, source_type, source_ids, detection_method, "
    "confidence_score, project_id, tags, metadata, validation_status, validation_reason, "
    "marker_source_id, created_at"
)


def _to_ts(value: datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


def _from_ts(value: float | None) -> datetime | None:
    return datetime.fromtimestamp(value, timezone.utc) if value is not None else None


def _loads(raw: str | None, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    return json.loads(raw)


class SQLiteStorage(MemoryStorage):
    """aiosqlite-backed implementation of :class:`MemoryStorage`."""

    def __init__(self, db_path: str, recent_days: int = 30):
        """
        Args:
            db_path: Path to the SQLite database file (``":memory:"`` for tests)
            recent_days: Window used by the ``recent_only`` search filter
        """
        self.db_path = db_path
        self.recent_days = recent_days
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._conn is not None:
            return

        if self.db_path != ":memory:":
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to initialize SQLite storage at {self.db_path}: {e}") from e

        logger.info(f"SQLite storage initialized at {self.db_path}")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Storage not initialized; call initialize() first")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock for one unit of work; commit on success, roll back otherwise."""
        async with self._write_lock:
            conn = self.conn
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    # ── Row mapping ─────────────────────────────────────────────────────

    @staticmethod
    def _row_to_memory(row: aiosqlite.Row) -> Memory:
        return Memory(
            id=row["id"],
            project_id=row["project_id"],
            project_name=row["project_name"],
            session_id=row["session_id"],
            content=row["content"],
            memory_type=row["memory_type"],
            summary=row["summary"],
            processing_status=row["processing_status"],
            importance_score=row["importance_score"],
            smart_tags=_loads(row["smart_tags"], []),
            metadata=_loads(row["metadata"], {}),
            content_embedding=_loads(row["content_embedding"], None),
            tag_embedding=_loads(row["tag_embedding"], None),
            created_at=_from_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> ProcessingJob:
        return ProcessingJob(
            id=row["id"],
            task_type=row["task_type"],
            task_priority=row["task_priority"],
            source_type=row["source_type"],
            source_ids=_loads(row["source_ids"], []),
            status=row["status"],
            payload=_loads(row["payload"], {}),
            result_summary=_loads(row["result_summary"], None),
            insights_generated=row["insights_generated"],
            processor_id=row["processor_id"],
            retry_count=row["retry_count"],
            error_message=row["error_message"],
            created_at=_from_ts(row["created_at"]),
            started_at=_from_ts(row["started_at"]),
            completed_at=_from_ts(row["completed_at"]),
        )

    # ── Memories ────────────────────────────────────────────────────────

    async def store_memory(self, memory: Memory) -> int:
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO memories (
                    id, project_id, project_name, session_id, content, memory_type, summary,
                    processing_status, importance_score, smart_tags, metadata,
                    content_embedding, tag_embedding, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.id,
                    memory.project_id,
                    memory.project_name,
                    memory.session_id,
                    memory.content,
                    memory.memory_type,
                    memory.summary,
                    memory.processing_status,
                    memory.importance_score,
                    json.dumps(memory.smart_tags),
                    json.dumps(memory.metadata),
                    json.dumps(memory.content_embedding) if memory.content_embedding is not None else None,
                    json.dumps(memory.tag_embedding) if memory.tag_embedding is not None else None,
                    _to_ts(memory.created_at),
                ),
            )
        return memory.id

    async def get_memory(self, memory_id: int) -> Memory | None:
        cursor = await self.conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,))
        row = await cursor.fetchone()
        return self._row_to_memory(row) if row else None

    def _build_filter_clause(self, column_name: str, filters: SearchFilters) -> tuple[str, list[Any]]:
        clauses = [f"{column_name} IS NOT NULL"]
        params: list[Any] = []

        if filters.exclude_failed:
            placeholders = ", ".join("?" for _ in FAILED_STATUSES)
            clauses.append(f"processing_status NOT IN ({placeholders})")
            params.extend(sorted(FAILED_STATUSES))

        if filters.project_id is not None:
            clauses.append("project_id = ?")
            params.append(filters.project_id)
        elif filters.project_name:
            clauses.append("project_name = ?")
            params.append(filters.project_name)

        if filters.session_id is not None:
            clauses.append("session_id = ?")
            params.append(filters.session_id)

        if filters.memory_type and filters.memory_type != "any":
            clauses.append("memory_type = ?")
            params.append(filters.memory_type)

        if filters.processing_status:
            clauses.append("processing_status = ?")
            params.append(filters.processing_status)

        if filters.importance_min is not None:
            clauses.append("importance_score >= ?")
            params.append(filters.importance_min)

        if filters.date_from is not None:
            clauses.append("created_at >= ?")
            params.append(_to_ts(filters.date_from))

        if filters.recent_only:
            clauses.append("created_at > ?")
            params.append(time.time() - self.recent_days * SECONDS_PER_DAY)

        if filters.exclude_ids:
            placeholders = ", ".join("?" for _ in filters.exclude_ids)
            clauses.append(f"id NOT IN ({placeholders})")
            params.extend(filters.exclude_ids)

        return " AND ".join(clauses), params

    async def search_by_vector(
        self,
        embedding: list[float],
        column: EmbeddingColumn,
        filters: SearchFilters,
    ) -> list[tuple[Memory, float]]:
        column_name = _EMBEDDING_COLUMNS[column]
        where, params = self._build_filter_clause(column_name, filters)

        try:
            cursor = await self.conn.execute(f"SELECT * FROM memories WHERE {where}", params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Vector search on {column_name} failed: {e}") from e

        if not rows:
            return []

        dim = len(embedding)
        memories: list[Memory] = []
        vectors: list[list[float]] = []
        skipped = 0
        for row in rows:
            vector = json.loads(row[column_name])
            if len(vector) != dim:
                skipped += 1
                continue
            memories.append(self._row_to_memory(row))
            vectors.append(vector)

        if skipped:
            logger.warning(f"Skipped {skipped} memories with {column_name} dimension != {dim}")
        if not memories:
            return []

        similarities = cosine_similarities(embedding, np.array(vectors, dtype=np.float32))

        scored = [
            (memory, float(sim)) for memory, sim in zip(memories, similarities) if float(sim) >= filters.threshold
        ]
        scored.sort(key=lambda pair: (-pair[1], -pair[0].importance_score, -pair[0].created_at.timestamp()))
        return scored[: filters.limit]

    async def count_searchable(self, project_id: int | None = None) -> dict[str, int]:
        placeholders = ", ".join("?" for _ in FAILED_STATUSES)
        sql = f"""
            SELECT
                COUNT(*) AS total_memories,
                COALESCE(SUM(CASE WHEN content_embedding IS NOT NULL THEN 1 ELSE 0 END), 0) AS content_searchable,
                COALESCE(SUM(CASE WHEN tag_embedding IS NOT NULL THEN 1 ELSE 0 END), 0) AS tag_searchable,
                COALESCE(SUM(CASE WHEN content_embedding IS NOT NULL AND tag_embedding IS NOT NULL
                    THEN 1 ELSE 0 END), 0) AS hybrid_searchable
            FROM memories
            WHERE processing_status NOT IN ({placeholders})
        """
        params: list[Any] = sorted(FAILED_STATUSES)
        if project_id is not None:
            sql += " AND project_id = ?"
            params.append(project_id)

        cursor = await self.conn.execute(sql, params)
        row = await cursor.fetchone()
        return {key: int(row[key]) for key in row.keys()}

    async def get_tag_statistics(self, project_id: int | None = None, limit: int = 50) -> list[dict[str, Any]]:
        sql = """
            SELECT je.value AS tag, COUNT(*) AS frequency, AVG(m.importance_score) AS avg_importance
            FROM memories m, json_each(m.smart_tags) je
            WHERE m.tag_embedding IS NOT NULL
        """
        params: list[Any] = []
        if project_id is not None:
            sql += " AND m.project_id = ?"
            params.append(project_id)
        sql += " GROUP BY je.value ORDER BY frequency DESC, avg_importance DESC LIMIT ?"
        params.append(limit)

        cursor = await self.conn.execute(sql, params)
        return [
            {"tag": row["tag"], "frequency": row["frequency"], "avg_importance": row["avg_importance"]}
            for row in await cursor.fetchall()
        ]

    async def get_unprocessed_memories(self, limit: int = 1000, min_content_length: int = 10) -> list[Memory]:
        cursor = await self.conn.execute(
            """
            SELECT m.*
            FROM memories m
            WHERE m.processing_status = 'ready'
                AND LENGTH(m.content) > ?
                AND m.id NOT IN (
                    SELECT s.memory_id
                    FROM insight_sources s
                    JOIN insights i ON i.id = s.insight_id
                    WHERE i.source_type = 'memory'
                )
                AND m.id NOT IN (
                    SELECT js.memory_id
                    FROM job_sources js
                    JOIN processing_jobs j ON j.id = js.job_id
                    WHERE j.status IN ('pending', 'processing') AND j.source_type = 'memory'
                )
            ORDER BY m.importance_score DESC, m.created_at DESC
            LIMIT ?
            """,
            (min_content_length, limit),
        )
        return [self._row_to_memory(row) for row in await cursor.fetchall()]

    # ── Processing queue ────────────────────────────────────────────────

    async def create_job(self, job: ProcessingJob) -> int:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO processing_jobs (
                    task_type, task_priority, source_type, source_ids, status, payload,
                    processor_id, retry_count, error_message, created_at, started_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.task_type,
                    job.task_priority,
                    job.source_type,
                    json.dumps(job.source_ids),
                    job.status,
                    json.dumps(job.payload),
                    job.processor_id,
                    job.retry_count,
                    job.error_message,
                    _to_ts(job.created_at),
                    _to_ts(job.started_at),
                ),
            )
            job_id = cursor.lastrowid
            if job.source_ids:
                await conn.executemany(
                    "INSERT OR IGNORE INTO job_sources (job_id, memory_id) VALUES (?, ?)",
                    [(job_id, memory_id) for memory_id in job.source_ids],
                )
        return job_id

    async def get_job(self, job_id: int) -> ProcessingJob | None:
        cursor = await self.conn.execute("SELECT * FROM processing_jobs WHERE id = ?", (job_id,))
        row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def list_jobs(
        self,
        task_type: TaskType | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[ProcessingJob]:
        clauses: list[str] = []
        params: list[Any] = []
        if task_type:
            clauses.append("task_type = ?")
            params.append(task_type)
        if status:
            clauses.append("status = ?")
            params.append(status)

        sql = "SELECT * FROM processing_jobs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = await self.conn.execute(sql, params)
        return [self._row_to_job(row) for row in await cursor.fetchall()]

    async def update_job_progress(self, job_id: int, progress: dict[str, Any]) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                "UPDATE processing_jobs SET payload = json_set(payload, '$.progress', json(?)) WHERE id = ?",
                (json.dumps(progress), job_id),
            )

    async def complete_job(
        self,
        job_id: int,
        status: JobStatus,
        result_summary: dict[str, Any] | None = None,
        insights_generated: int = 0,
        error_message: str | None = None,
    ) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                """
                UPDATE processing_jobs
                SET status = ?, completed_at = ?, result_summary = ?, insights_generated = ?, error_message = ?
                WHERE id = ?
                """,
                (
                    status,
                    time.time(),
                    json.dumps(result_summary) if result_summary is not None else None,
                    insights_generated,
                    error_message,
                    job_id,
                ),
            )

    async def get_retryable_jobs(self, max_retries: int, limit: int = 100) -> list[ProcessingJob]:
        cursor = await self.conn.execute(
            """
            SELECT * FROM processing_jobs
            WHERE task_type = 'memory_retry' AND status = 'failed' AND retry_count < ?
            ORDER BY task_priority DESC, created_at ASC
            LIMIT ?
            """,
            (max_retries, limit),
        )
        return [self._row_to_job(row) for row in await cursor.fetchall()]

    async def mark_retry_attempt(self, job_id: int, succeeded: bool, error_message: str | None = None) -> None:
        async with self._transaction() as conn:
            if succeeded:
                await conn.execute(
                    """
                    UPDATE processing_jobs
                    SET status = 'completed', completed_at = ?, retry_count = retry_count + 1, error_message = NULL
                    WHERE id = ?
                    """,
                    (time.time(), job_id),
                )
            else:
                await conn.execute(
                    "UPDATE processing_jobs SET retry_count = retry_count + 1, error_message = ? WHERE id = ?",
                    (error_message, job_id),
                )

    async def get_queue_stats(self, hours: int = 24) -> dict[str, Any]:
        cutoff = time.time() - hours * 3600
        cursor = await self.conn.execute(
            """
            SELECT status, COUNT(*) AS count, AVG(completed_at - started_at) AS avg_duration_seconds
            FROM processing_jobs
            WHERE created_at > ?
            GROUP BY status
            """,
            (cutoff,),
        )

        stats: dict[str, Any] = {"pending": 0, "processing": 0, "completed": 0, "failed": 0, "avg_duration_seconds": 0}
        for row in await cursor.fetchall():
            stats[row["status"]] = row["count"]
            if row["status"] == "completed" and row["avg_duration_seconds"] is not None:
                stats["avg_duration_seconds"] = round(row["avg_duration_seconds"])
        return stats

    # ── Insights ────────────────────────────────────────────────────────

    def _insight_values(self, insight: Insight, marker_source_id: int | None) -> tuple[Any, ...]:
        return (
            insight.insight_type,
            insight.insight_category,
            insight.title,
            insight.summary,
            insight.source_type,
            json.dumps(insight.source_ids),
            insight.detection_method,
            insight.confidence_score,
            insight.project_id,
            json.dumps(insight.tags),
            json.dumps(insight.metadata),
            insight.validation_status,
            insight.validation_reason,
            marker_source_id,
            _to_ts(insight.created_at),
        )

    async def _link_insight_sources(self, insight_id: int, source_ids: list[int]) -> None:
        if source_ids:
            await self.conn.executemany(
                "INSERT OR IGNORE INTO insight_sources (insight_id, memory_id) VALUES (?, ?)",
                [(insight_id, memory_id) for memory_id in source_ids],
            )

    async def store_insight(self, insight: Insight) -> Insight:
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    f"INSERT INTO insights ({_INSIGHT_COLUMNS}) VALUES ({', '.join('?' * 15)})",
                    self._insight_values(insight, None),
                )
                insight_id = cursor.lastrowid
                await self._link_insight_sources(insight_id, insight.source_ids)
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to store insight '{insight.title}': {e}") from e

        return insight.model_copy(update={"id": insight_id})

    async def insert_processing_marker(self, memory_id: int, job_id: int | None) -> bool:
        marker = Insight.processing_marker(memory_id, job_id)
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    f"INSERT OR IGNORE INTO insights ({_INSIGHT_COLUMNS}) VALUES ({', '.join('?' * 15)})",
                    self._insight_values(marker, memory_id),
                )
                inserted = cursor.rowcount == 1
                if inserted:
                    await self._link_insight_sources(cursor.lastrowid, [memory_id])
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to write processing marker for memory {memory_id}: {e}") from e
        return inserted

    async def is_memory_processed(self, memory_id: int) -> bool:
        cursor = await self.conn.execute(
            """
            SELECT 1 FROM insight_sources s
            JOIN insights i ON i.id = s.insight_id
            WHERE s.memory_id = ? AND i.source_type = 'memory'
            LIMIT 1
            """,
            (memory_id,),
        )
        return await cursor.fetchone() is not None

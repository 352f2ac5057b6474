# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Search analytics database.

Stores one row per completed hybrid search (mode, weights, latency, result
count, mean similarity) and aggregates them per mode per day.
Async operations using aiosqlite; each call opens its own connection.
"""

import json
import logging
import os
import time
from typing import Any, Protocol, runtime_checkable

import aiosqlite

from ..models.search_log import SearchLog
from ..utils.similarity import SECONDS_PER_DAY

logger = logging.getLogger(__name__)


@runtime_checkable
class AnalyticsSink(Protocol):
    """Destination for search analytics records."""

    async def record(self, entry: SearchLog) -> int | None: ...


class SearchAnalyticsDB:
    """Async SQLite manager for hybrid search analytics."""

    def __init__(self, db_path: str):
        """
        Initialize search analytics database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize database schema if not exists."""
        if self._initialized:
            return

        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS search_analytics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    query TEXT NOT NULL,
                    search_mode TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    response_time_ms REAL DEFAULT 0.0,
                    result_count INTEGER DEFAULT 0,
                    content_weight REAL,
                    tag_weight REAL,
                    avg_similarity REAL DEFAULT 0.0,
                    project_name TEXT,
                    memory_type TEXT,
                    error TEXT,
                    metadata TEXT
                )
            """
            )

            await db.execute("CREATE INDEX IF NOT EXISTS idx_analytics_timestamp ON search_analytics(timestamp)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_analytics_mode ON search_analytics(search_mode)")

            await db.commit()

        self._initialized = True
        logger.info(f"Search analytics database initialized at {self.db_path}")

    async def record(self, entry: SearchLog) -> int | None:
        """
        Record one search execution.

        Args:
            entry: Analytics record to store

        Returns:
            ID of the inserted row
        """
        if not self._initialized:
            await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO search_analytics
                (query, search_mode, timestamp, response_time_ms, result_count, content_weight, tag_weight,
                 avg_similarity, project_name, memory_type, error, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    entry.query,
                    entry.search_mode,
                    entry.timestamp,
                    entry.response_time_ms,
                    entry.result_count,
                    entry.content_weight,
                    entry.tag_weight,
                    entry.avg_similarity,
                    entry.project_name,
                    entry.memory_type,
                    entry.error,
                    json.dumps(entry.metadata) if entry.metadata else None,
                ),
            )
            await db.commit()
            return cursor.lastrowid

    async def get_search_analytics(self, days: int = 7, search_mode: str | None = None) -> list[dict[str, Any]]:
        """
        Aggregate searches per mode per day, newest day first.

        Args:
            days: Number of days to include
            search_mode: Restrict to one mode when given

        Returns:
            Rows with search_mode, day, search_count, avg_response_time_ms,
            avg_result_count, avg_similarity
        """
        if not self._initialized:
            await self.initialize()

        cutoff_time = time.time() - days * SECONDS_PER_DAY
        sql = """
            SELECT
                search_mode,
                date(timestamp, 'unixepoch') AS day,
                COUNT(*) AS search_count,
                AVG(response_time_ms) AS avg_response_time_ms,
                AVG(result_count) AS avg_result_count,
                AVG(avg_similarity) AS avg_similarity
            FROM search_analytics
            WHERE timestamp >= ? AND error IS NULL
        """
        params: list[Any] = [cutoff_time]
        if search_mode:
            sql += " AND search_mode = ?"
            params.append(search_mode)
        sql += " GROUP BY search_mode, day ORDER BY day DESC, search_mode"

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            return [dict(row) for row in await cursor.fetchall()]

    async def get_popular_queries(self, days: int = 7, limit: int = 10) -> list[dict[str, Any]]:
        """
        Most frequent queries that returned at least one result.

        Args:
            days: Number of days to include
            limit: Maximum number of queries

        Returns:
            List of {query, frequency, avg_results}
        """
        if not self._initialized:
            await self.initialize()

        cutoff_time = time.time() - days * SECONDS_PER_DAY

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT query, COUNT(*) as frequency, AVG(result_count) as avg_results
                FROM search_analytics
                WHERE timestamp >= ? AND result_count > 0
                GROUP BY query
                ORDER BY frequency DESC, avg_results DESC
                LIMIT ?
            """,
                (cutoff_time, limit),
            )
            return [
                {"query": row[0], "frequency": row[1], "avg_results": row[2]} for row in await cursor.fetchall()
            ]

    async def get_recent_searches(self, limit: int = 100) -> list[SearchLog]:
        """
        Get recent analytics records.

        Args:
            limit: Maximum number of entries to return
        """
        if not self._initialized:
            await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT query, search_mode, timestamp, response_time_ms, result_count, content_weight,
                       tag_weight, avg_similarity, project_name, memory_type, error, metadata
                FROM search_analytics
                ORDER BY timestamp DESC
                LIMIT ?
            """,
                (limit,),
            )

            entries = []
            for row in await cursor.fetchall():
                entries.append(
                    SearchLog(
                        query=row[0],
                        search_mode=row[1],
                        timestamp=row[2],
                        response_time_ms=row[3],
                        result_count=row[4],
                        content_weight=row[5],
                        tag_weight=row[6],
                        avg_similarity=row[7],
                        project_name=row[8],
                        memory_type=row[9],
                        error=row[10],
                        metadata=json.loads(row[11]) if row[11] else {},
                    )
                )
            return entries

    async def close(self) -> None:
        """No persistent connection is held."""

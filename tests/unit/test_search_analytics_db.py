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

"""Tests for hybrid search analytics storage."""

import os
import tempfile
import time
from pathlib import Path

import pytest

from memory_insight_service.models.search_log import SearchLog
from memory_insight_service.storage.search_analytics_db import AnalyticsSink, SearchAnalyticsDB


@pytest.fixture
async def temp_db():
    """Create a temporary analytics database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "analytics" / "search_analytics.db"
        db = SearchAnalyticsDB(str(db_path))
        await db.initialize()
        yield db
        await db.close()


def make_entry(query="redis pool", search_mode="hybrid", timestamp=None, **overrides) -> SearchLog:
    data = {
        "query": query,
        "search_mode": search_mode,
        "timestamp": timestamp if timestamp is not None else time.time(),
        "response_time_ms": 40.0,
        "result_count": 4,
        "content_weight": 0.7,
        "tag_weight": 0.3,
        "avg_similarity": 0.8,
    }
    data.update(overrides)
    return SearchLog(**data)


@pytest.mark.asyncio
async def test_database_initialization(temp_db):
    """Schema creation also creates the parent directory."""
    assert os.path.exists(temp_db.db_path)

    import aiosqlite

    async with aiosqlite.connect(temp_db.db_path) as db:
        cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='search_analytics'")
        assert await cursor.fetchone() is not None


@pytest.mark.asyncio
async def test_implements_sink_protocol(temp_db):
    assert isinstance(temp_db, AnalyticsSink)


@pytest.mark.asyncio
async def test_record_and_read_back(temp_db):
    """Recorded entries come back newest first with metadata intact."""
    await temp_db.record(make_entry(query="older", timestamp=time.time() - 60))
    entry_id = await temp_db.record(make_entry(query="newer", project_name="alpha", metadata={"limit": 5}))

    assert entry_id is not None
    recent = await temp_db.get_recent_searches(limit=10)

    assert [e.query for e in recent] == ["newer", "older"]
    assert recent[0].project_name == "alpha"
    assert recent[0].metadata == {"limit": 5}
    assert recent[1].metadata == {}


@pytest.mark.asyncio
async def test_analytics_grouped_by_mode(temp_db):
    """Successful searches aggregate per mode per day."""
    await temp_db.record(make_entry(search_mode="hybrid", response_time_ms=20.0, result_count=2, avg_similarity=0.9))
    await temp_db.record(make_entry(search_mode="hybrid", response_time_ms=40.0, result_count=4, avg_similarity=0.7))
    await temp_db.record(make_entry(search_mode="content_only", response_time_ms=10.0))
    await temp_db.record(make_entry(search_mode="hybrid", error="boom"))

    rows = await temp_db.get_search_analytics(days=7)
    by_mode = {row["search_mode"]: row for row in rows}

    assert set(by_mode) == {"hybrid", "content_only"}
    assert by_mode["hybrid"]["search_count"] == 2
    assert by_mode["hybrid"]["avg_response_time_ms"] == pytest.approx(30.0)
    assert by_mode["hybrid"]["avg_result_count"] == pytest.approx(3.0)
    assert by_mode["hybrid"]["avg_similarity"] == pytest.approx(0.8)
    assert by_mode["hybrid"]["day"] == time.strftime("%Y-%m-%d", time.gmtime())


@pytest.mark.asyncio
async def test_analytics_mode_filter_and_window(temp_db):
    await temp_db.record(make_entry(search_mode="tags_only"))
    await temp_db.record(make_entry(search_mode="hybrid"))
    await temp_db.record(make_entry(search_mode="tags_only", timestamp=time.time() - 10 * 86400))

    rows = await temp_db.get_search_analytics(days=7, search_mode="tags_only")

    assert len(rows) == 1
    assert rows[0]["search_count"] == 1


@pytest.mark.asyncio
async def test_popular_queries(temp_db):
    """Queries with zero results are excluded from popularity."""
    for _ in range(3):
        await temp_db.record(make_entry(query="jwt refresh"))
    await temp_db.record(make_entry(query="redis pool"))
    await temp_db.record(make_entry(query="nothing here", result_count=0))

    popular = await temp_db.get_popular_queries(days=7, limit=5)

    assert [p["query"] for p in popular] == ["jwt refresh", "redis pool"]
    assert popular[0]["frequency"] == 3


@pytest.mark.asyncio
async def test_lazy_initialization():
    """Calls before initialize() create the schema on demand."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = SearchAnalyticsDB(str(Path(tmpdir) / "lazy.db"))
        await db.record(make_entry())
        assert len(await db.get_recent_searches()) == 1

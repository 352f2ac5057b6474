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
Storage backend factory.

Creates and initializes the SQLite storage backend and the search analytics
database from :mod:`memory_insight_service.config`.
"""

import logging

from ..config import StorageSettings
from .base import MemoryStorage
from .search_analytics_db import SearchAnalyticsDB
from .sqlite_storage import SQLiteStorage

logger = logging.getLogger(__name__)


async def create_storage_instance(config: StorageSettings | None = None, recent_days: int = 30) -> MemoryStorage:
    """
    Create and initialize the SQLite storage backend instance.

    Returns:
        Initialized SQLiteStorage instance
    """
    if config is None:
        from ..config import settings

        config = settings.storage
        recent_days = settings.hybrid_search.recent_days

    logger.info("Creating SQLite storage backend instance...")
    storage = SQLiteStorage(str(config.database_path), recent_days=recent_days)
    await storage.initialize()
    logger.info(f"SQLiteStorage initialized successfully at {config.database_path}")
    return storage


async def create_analytics_db(config: StorageSettings | None = None) -> SearchAnalyticsDB:
    """Create and initialize the search analytics database."""
    if config is None:
        from ..config import settings

        config = settings.storage

    analytics = SearchAnalyticsDB(str(config.analytics_path))
    await analytics.initialize()
    return analytics

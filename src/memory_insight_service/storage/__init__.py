from .base import EmbeddingColumn, MemoryStorage
from .factory import create_analytics_db, create_storage_instance
from .search_analytics_db import AnalyticsSink, SearchAnalyticsDB
from .sqlite_storage import SQLiteStorage

__all__ = [
    "AnalyticsSink",
    "EmbeddingColumn",
    "MemoryStorage",
    "SQLiteStorage",
    "SearchAnalyticsDB",
    "create_analytics_db",
    "create_storage_instance",
]

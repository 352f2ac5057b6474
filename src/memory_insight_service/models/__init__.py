"""Pydantic models and dataclasses shared across the service."""

from .cluster import Cluster, ClusteringResult, TimeSpan
from .jobs import Insight, ProcessingJob, ProcessingRunResult
from .memory import Memory
from .search import SearchFilters, SearchOptions, SearchResult, SearchScores, WeightDistribution
from .search_log import SearchLog

__all__ = [
    "Cluster",
    "ClusteringResult",
    "Insight",
    "Memory",
    "ProcessingJob",
    "ProcessingRunResult",
    "SearchFilters",
    "SearchLog",
    "SearchOptions",
    "SearchResult",
    "SearchScores",
    "TimeSpan",
    "WeightDistribution",
]

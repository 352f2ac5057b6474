"""Clustering and batch insight processing over unprocessed memories."""

from .clustering import MemoryClusterer, calculate_time_span, common_tags
from .generators import ClusterInsightGenerator, InsightGenerator, InsightValidator
from .processor import AsyncInsightProcessor, ProcessingStats, ProcessorState
from .scheduler import InsightJobScheduler

__all__ = [
    "AsyncInsightProcessor",
    "ClusterInsightGenerator",
    "InsightGenerator",
    "InsightJobScheduler",
    "InsightValidator",
    "MemoryClusterer",
    "ProcessingStats",
    "ProcessorState",
    "calculate_time_span",
    "common_tags",
]

"""Hybrid content + tag embedding search."""

from .combiner import ResultCombiner, validate_weights
from .engine import HybridSearchEngine
from .strategies import ContentSearchStrategy, TagSearchStrategy, VectorSearchStrategy, preprocess_tag_query

__all__ = [
    "ContentSearchStrategy",
    "HybridSearchEngine",
    "ResultCombiner",
    "TagSearchStrategy",
    "VectorSearchStrategy",
    "preprocess_tag_query",
    "validate_weights",
]

"""Exception hierarchy shared across search, storage, and insight processing."""


class MemoryInsightError(Exception):
    """Base class for all service errors."""


class SearchError(MemoryInsightError):
    """A search could not be completed.

    Carries the strategy (or search mode) that failed so callers can decide
    whether to degrade to another strategy.
    """

    def __init__(self, message: str, strategy: str | None = None):
        super().__init__(message)
        self.strategy = strategy


class InvalidWeightsError(MemoryInsightError, ValueError):
    """Content/tag weights are out of range or do not sum to 1.0."""


class EmbeddingError(MemoryInsightError):
    """The embedding provider failed to produce a vector."""


class StorageError(MemoryInsightError):
    """Storage-related errors."""


class ClusteringError(MemoryInsightError):
    """Memory clustering failed for a batch."""

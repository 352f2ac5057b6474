"""Embedding generator protocol.

The engine only needs ``embed(text) -> vector``; providers handle their own
timeouts and retries.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Protocol for pluggable embedding providers."""

    @property
    def model_name(self) -> str:
        """Identifier of the embedding model (used in cache keys)."""

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for *text*."""

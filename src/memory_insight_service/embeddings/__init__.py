"""Embedding generator collaborators."""

from .base import EmbeddingGenerator
from .cached import CachedEmbeddingGenerator
from .factory import create_embedding_generator

__all__ = ["CachedEmbeddingGenerator", "EmbeddingGenerator", "create_embedding_generator"]

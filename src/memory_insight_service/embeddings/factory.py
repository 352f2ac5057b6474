"""Build the configured embedding generator."""

import logging

from ..config import EmbeddingSettings
from .base import EmbeddingGenerator
from .ollama import OllamaEmbeddingGenerator
from .sentence_transformer import SentenceTransformerEmbeddingGenerator

logger = logging.getLogger(__name__)


def create_embedding_generator(config: EmbeddingSettings) -> EmbeddingGenerator:
    """Instantiate the provider selected by ``MCP_EMBEDDING_PROVIDER``."""
    if config.provider == "sentence_transformers":
        logger.info(f"Using local sentence-transformers embeddings: {config.model}")
        return SentenceTransformerEmbeddingGenerator(model=config.model)

    logger.info(f"Using Ollama embeddings: {config.model} at {config.ollama_url}")
    return OllamaEmbeddingGenerator(
        base_url=config.ollama_url,
        model=config.model,
        timeout_seconds=config.timeout_seconds,
        max_attempts=config.max_attempts,
    )

"""Local embedding provider using sentence-transformers.

The model is loaded lazily on first use; encoding runs in a worker thread so
the event loop is never blocked by inference.
"""

import asyncio
import logging
from threading import Lock

from ..errors import EmbeddingError

# Import sentence transformers with fallback
try:
    from sentence_transformers import SentenceTransformer

    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False

logger = logging.getLogger(__name__)

if not SENTENCE_TRANSFORMERS_AVAILABLE:
    logger.warning("sentence_transformers not available. Install for local embedding support.")


class SentenceTransformerEmbeddingGenerator:
    """Embedding generator running a sentence-transformers model in-process."""

    def __init__(self, model: str = "all-MiniLM-L6-v2", device: str | None = None):
        self._model_name = model
        self._device = device
        self._model = None
        self._model_lock = Lock()

    @property
    def model_name(self) -> str:
        return self._model_name

    def _load_model(self):
        if self._model is None:
            with self._model_lock:
                # Double-check after acquiring lock (another thread may have loaded it)
                if self._model is None:
                    logger.info(f"Loading embedding model: {self._model_name}")
                    self._model = SentenceTransformer(self._model_name, device=self._device)
        return self._model

    def _encode(self, text: str) -> list[float]:
        model = self._load_model()
        vector = model.encode(text, convert_to_tensor=False)
        return [float(x) for x in vector]

    async def embed(self, text: str) -> list[float]:
        if not SENTENCE_TRANSFORMERS_AVAILABLE:
            raise EmbeddingError("sentence_transformers not installed. Install with: pip install sentence-transformers")
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            return await asyncio.to_thread(self._encode, text)
        except Exception as e:
            logger.error(f"Local embedding failed ({self._model_name}): {e}")
            raise EmbeddingError(f"Embedding generation failed: {e}") from e

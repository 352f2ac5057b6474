"""
Ollama embedding provider.

Calls ``POST {base_url}/api/embeddings`` with ``{"model", "prompt"}`` and reads
the ``embedding`` field. Transport errors and 5xx responses are retried with
exponential backoff; 4xx responses fail immediately.
"""

import logging

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import EmbeddingError

logger = logging.getLogger(__name__)


def is_retryable_error(exception: BaseException) -> bool:
    """Retry timeouts, connection errors, and 5xx server errors only."""
    if isinstance(exception, httpx.HTTPStatusError):
        return 500 <= exception.response.status_code < 600
    return isinstance(exception, httpx.TransportError)


class OllamaEmbeddingGenerator:
    """Embedding generator backed by an Ollama server."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout_seconds: float = 60.0,
        max_attempts: int = 3,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts
        self._client = client

    @property
    def model_name(self) -> str:
        return self._model

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            return await self._embed_with_retry(text)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Ollama embedding failed ({self._model}): {e}")
            raise EmbeddingError(f"Ollama embeddings failed: {e}") from e

    async def _embed_with_retry(self, text: str) -> list[float]:
        retrying = retry(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=5),
            reraise=True,
        )
        return await retrying(self._request)(text)

    async def _request(self, text: str) -> list[float]:
        payload = {"model": self._model, "prompt": text}
        url = f"{self._base_url}/api/embeddings"

        if self._client is not None:
            response = await self._client.post(url, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload)
        response.raise_for_status()

        embedding = response.json()["embedding"]
        if not embedding:
            raise ValueError("empty embedding in Ollama response")
        return [float(x) for x in embedding]

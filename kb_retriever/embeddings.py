"""
Embedding provider with fixed output dimensionality.

Wraps a LangChain ``Embeddings`` client so every vector that enters the
knowledge base is validated against one dimension, and exposes the cosine
math the store and tests rely on.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import TYPE_CHECKING, List, Optional, Sequence

import numpy as np
from langchain_core.embeddings import Embeddings

from .errors import DimensionMismatchError, EmptyInputError, ProviderError
from .ratelimit import RateLimiter
from .utils import call_with_timeout, shorten

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 768


class EmbeddingProvider:
    """
    Turn text into fixed-length dense vectors.

    Args:
        client: LangChain embeddings instance (e.g., OllamaEmbeddings)
        dimension: Expected vector length; anything else is rejected
        timeout: Seconds allowed per embedding call (None = no limit)
        max_retries: Retries with exponential backoff before giving up
        rate_limiter: Spacing applied between calls in ``embed_batch``
        model_name: Label recorded in knowledge base manifests
    """

    def __init__(
        self,
        client: Embeddings,
        dimension: int = DEFAULT_DIMENSION,
        timeout: Optional[float] = None,
        max_retries: int = 0,
        rate_limiter: Optional[RateLimiter] = None,
        model_name: str = "unknown",
    ) -> None:
        self.client = client
        self.dimension = dimension
        self.timeout = timeout
        self.max_retries = max_retries
        self.rate_limiter = rate_limiter or RateLimiter(0.1)
        self.model_name = model_name
        self._executor: Optional[ThreadPoolExecutor] = None
        if timeout is not None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="embed")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EmbeddingProvider":
        """Build a provider backed by a local Ollama server."""
        from langchain_community.embeddings import OllamaEmbeddings

        client = OllamaEmbeddings(
            model=settings.embed_model,
            base_url=settings.ollama_base_url,
        )
        return cls(
            client,
            dimension=settings.embedding_dimension,
            timeout=settings.embed_timeout,
            max_retries=settings.embed_max_retries,
            rate_limiter=RateLimiter(settings.embed_batch_interval),
            model_name=settings.embed_model,
        )

    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            EmptyInputError: If text is empty or whitespace-only
            ProviderError: If the backend call fails or times out
            DimensionMismatchError: If the vector has the wrong length
        """
        if not text or not text.strip():
            raise EmptyInputError("Text cannot be empty", field="text")

        vector = self._embed_with_retry(text)
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), {"text": shorten(text)})
        return [float(value) for value in vector]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed several texts one after another, respecting the rate limiter.

        Empty entries are dropped first. Any failure fails the whole batch.
        """
        valid = [text for text in texts or [] if text and text.strip()]
        if not valid:
            raise EmptyInputError("No valid texts provided", field="texts")

        vectors: List[List[float]] = []
        for text in valid:
            self.rate_limiter.acquire()
            vectors.append(self.embed(text))
        return vectors

    def _embed_with_retry(self, text: str) -> List[float]:
        delay = 0.5
        last_exc: Optional[BaseException] = None

        for attempt in range(self.max_retries + 1):
            try:
                return call_with_timeout(
                    self._executor, self.client.embed_query, text, timeout=self.timeout
                )
            except FutureTimeout as exc:
                last_exc = exc
                logger.warning("Embedding call timed out after %ss (attempt %d)", self.timeout, attempt + 1)
            except Exception as exc:
                last_exc = exc
                logger.warning("Embedding call failed (attempt %d): %s", attempt + 1, exc)
            if attempt >= self.max_retries:
                break
            time.sleep(delay)
            delay *= 2

        raise ProviderError(
            f"Failed to generate embedding: {last_exc or 'timeout'}",
            {"attempts": self.max_retries + 1, "text": shorten(text)},
        ) from last_exc

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        """Cosine similarity in [-1, 1]; 0.0 when either vector is empty or zero."""
        if len(a) != len(b):
            raise DimensionMismatchError(len(a), len(b))
        if len(a) == 0:
            return 0.0
        va = np.asarray(a, dtype="float64")
        vb = np.asarray(b, dtype="float64")
        norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if norm == 0.0:
            return 0.0
        return max(-1.0, min(1.0, float(np.dot(va, vb) / norm)))

    @staticmethod
    def normalize(vector: Sequence[float]) -> List[float]:
        """Scale to unit length; the zero vector is returned unchanged."""
        arr = np.asarray(vector, dtype="float64")
        norm = float(np.linalg.norm(arr))
        if norm == 0.0:
            return [float(value) for value in vector]
        return (arr / norm).tolist()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def __enter__(self) -> "EmbeddingProvider":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

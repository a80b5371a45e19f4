"""
Intent-aware retrieval over a knowledge store.

``Retriever.retrieve`` runs the full pipeline: intent detection, query
embedding, filtered similarity search with a lowered threshold, category
lookup when vector search finds nothing, reranking and truncation.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from .config import RerankWeights, RetrievalSettings
from .embeddings import EmbeddingProvider
from .errors import EmptyInputError, InvalidInputError
from .intent import DEFAULT_INTENT_TABLE, IntentTable, detect_intent
from .rerank import rerank
from .schemas import Category, QueryIntent, RetrievalOptions, RetrievedChunk, SearchOptions, utcnow
from .store import KnowledgeStore
from .utils import shorten

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


class Retriever:
    """Retrieval business logic: classify, search, rerank."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Optional[EmbeddingProvider] = None,
        intent_table: IntentTable = DEFAULT_INTENT_TABLE,
        weights: Optional[RerankWeights] = None,
        retrieval: Optional[RetrievalSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.embedder = embedder or store.embedder
        self.intent_table = intent_table
        self.weights = weights or RerankWeights()
        self.retrieval = retrieval or RetrievalSettings()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        store: KnowledgeStore,
        intent_table: IntentTable = DEFAULT_INTENT_TABLE,
    ) -> "Retriever":
        return cls(
            store,
            intent_table=intent_table,
            weights=settings.rerank,
            retrieval=settings.retrieval,
        )

    def detect_intent(self, query: str) -> QueryIntent:
        return detect_intent(query, self.intent_table)

    def retrieve(
        self,
        query: str,
        options: Optional[RetrievalOptions] = None,
        **overrides: Any,
    ) -> List[RetrievedChunk]:
        """
        Retrieve the most relevant chunks for a query.

        Args:
            query: User query string
            options: Retrieval options; keyword overrides (``k=5``) are merged in

        Returns:
            At most ``k`` chunks, best first; empty when nothing matches

        Raises:
            EmptyInputError: If query is empty
            InvalidInputError: If options are invalid
            ProviderError: If the query cannot be embedded
        """
        _require_query(query)
        options = _retrieval_options(options, overrides)
        logger.info("Retrieving knowledge for query: %r", shorten(query, 100))

        intent = self.detect_intent(query) if options.use_intent else None
        if intent is not None:
            logger.debug("Query intent: %s", intent.model_dump())

        query_vector = self.embedder.embed(query)

        search = SearchOptions(
            k=options.k * self.retrieval.candidate_multiplier,
            threshold=options.threshold * self.retrieval.threshold_discount,
            query_text=query,
        )
        if intent is not None and intent.category is not None and intent.confidence > self.retrieval.filter_confidence:
            search.filter = {"category": intent.category.value}
            logger.info("Filtering by category: %s", intent.category.value)

        chunks = self.store.similarity_search(query_vector, search)

        if not chunks and intent is not None and intent.category is not None:
            logger.info("No vector results, falling back to category search")
            chunks = self.store.get_by_category(intent.category, options.k)

        if options.rerank_results and chunks:
            chunks = rerank(chunks, query, intent, self.weights, now=self._clock())

        results = chunks[: options.k]
        self.store.record_queries(chunk.id for chunk in results)
        logger.info("Retrieved %d chunk(s) for query", len(results))
        return results

    def get_context_by_category(self, category: Union[Category, str], limit: int = 5) -> List[RetrievedChunk]:
        """Chunks of one category sorted by priority; empty on any store error."""
        try:
            chunks = self.store.get_by_category(category, limit)
        except Exception:
            logger.exception("Error getting context for category %s", category)
            return []
        return sorted(chunks, key=lambda chunk: chunk.metadata.priority)

    def hybrid_search(
        self,
        query: str,
        options: Optional[RetrievalOptions] = None,
        **overrides: Any,
    ) -> List[RetrievedChunk]:
        """
        Combine vector retrieval with direct category lookup.

        Roughly 70% of ``k`` comes from ``retrieve`` and 30% from the
        query's intent category; results are deduplicated by id, sorted by
        score and truncated to ``k``. Internal failures fall back to plain
        ``retrieve``.
        """
        _require_query(query)
        options = _retrieval_options(options, overrides)
        k = options.k

        try:
            vector_k = math.ceil(k * self.retrieval.hybrid_vector_share)
            vector_results = self.retrieve(query, options.model_copy(update={"k": vector_k}))

            intent = self.detect_intent(query)
            category_results: List[RetrievedChunk] = []
            category_k = math.ceil(k * self.retrieval.hybrid_category_share)
            if intent.category is not None and category_k > 0:
                category_results = self.get_context_by_category(intent.category, category_k)

            combined = _dedupe([*vector_results, *category_results])
            combined.sort(key=lambda chunk: chunk.score, reverse=True)
            return combined[:k]
        except InvalidInputError:
            raise
        except Exception as exc:
            logger.warning("Error in hybrid search, falling back to retrieve: %s", exc)
            return self.retrieve(query, options)


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Numbered context block for a generation prompt."""
    return "\n".join(f"[{position}] {chunk.content}" for position, chunk in enumerate(chunks, start=1))


def to_sources(chunks: Sequence[RetrievedChunk], preview: int = 200) -> List[Dict[str, Any]]:
    """Citation entries (content preview, category, rounded score) for a response."""
    return [
        {
            "content": shorten(chunk.content, preview),
            "category": chunk.metadata.category.value,
            "score": round(chunk.score, 2),
        }
        for chunk in chunks
    ]


def _dedupe(chunks: Sequence[RetrievedChunk]) -> List[RetrievedChunk]:
    seen = set()
    unique: List[RetrievedChunk] = []
    for chunk in chunks:
        key = chunk.id or chunk.content
        if key in seen:
            continue
        seen.add(key)
        unique.append(chunk)
    return unique


def _require_query(query: str) -> None:
    if not isinstance(query, str) or not query.strip():
        raise EmptyInputError("Query cannot be empty", field="query")


def _retrieval_options(options: Optional[RetrievalOptions], overrides: Dict[str, Any]) -> RetrievalOptions:
    try:
        if options is None:
            return RetrievalOptions(**overrides)
        if overrides:
            return RetrievalOptions.model_validate({**options.model_dump(), **overrides})
        return options
    except ValidationError as exc:
        raise InvalidInputError(
            "Invalid retrieval options", field="options", details={"errors": exc.errors(include_url=False)}
        ) from exc

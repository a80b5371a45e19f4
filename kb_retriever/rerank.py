"""Heuristic multi-signal reranking of retrieved chunks."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .config import RerankWeights
from .schemas import QueryIntent, RetrievedChunk, utcnow
from .utils import query_terms

DEFAULT_WEIGHTS = RerankWeights()


def boost(
    chunk: RetrievedChunk,
    query: str,
    intent: Optional[QueryIntent],
    weights: RerankWeights = DEFAULT_WEIGHTS,
    now: Optional[datetime] = None,
) -> float:
    """Total additive boost for one chunk (before capping)."""
    query_lower = query.lower()
    content_lower = chunk.content.lower()
    metadata = chunk.metadata
    total = weights.priority_step * (4 - metadata.priority)

    if intent is not None:
        if intent.category is not None and metadata.category == intent.category:
            total += weights.category_match
        total += weights.keyword_match * sum(1 for keyword in intent.keywords if keyword in content_lower)

    total += weights.term_match * sum(1 for term in query_terms(query) if term in content_lower)
    total += weights.tag_match * sum(1 for tag in metadata.tags if tag.lower() in query_lower)

    if metadata.category.value in weights.recency_categories:
        now = now or utcnow()
        if now - metadata.last_updated < timedelta(days=weights.recency_days):
            total += weights.recency

    return total


def rerank(
    chunks: Sequence[RetrievedChunk],
    query: str,
    intent: Optional[QueryIntent],
    weights: RerankWeights = DEFAULT_WEIGHTS,
    now: Optional[datetime] = None,
) -> List[RetrievedChunk]:
    """
    Rescore chunks with priority, category, keyword, term, tag and recency
    boosts; cap at ``weights.max_score`` and sort best first.

    Pure: the input chunks are not modified. Ties keep their input order.
    """
    now = now or utcnow()
    rescored = [
        chunk.model_copy(
            update={"score": min(chunk.score + boost(chunk, query, intent, weights, now), weights.max_score)}
        )
        for chunk in chunks
    ]
    return sorted(rescored, key=lambda chunk: chunk.score, reverse=True)

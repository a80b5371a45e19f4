"""Data schemas for the knowledge base retriever."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Category(str, Enum):
    """Closed set of knowledge categories shared by ingestion, storage and intent detection."""
    PERSONAL = "personal"
    SKILLS = "skills"
    EXPERIENCE = "experience"
    PROJECTS = "projects"
    EDUCATION = "education"
    CONTACT = "contact"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    tags: List[str] = []
    for tag in value:
        tag = str(tag).strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class KnowledgeChunkData(BaseModel):
    """A single fact to be ingested, before it has been embedded."""
    content: str = Field(min_length=1)
    category: Category
    priority: Literal[1, 2, 3] = 2
    tags: List[str] = Field(default_factory=list)
    source: str = Field(min_length=1)

    @field_validator("content", "source", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> List[str]:
        return _clean_tags(value)


class ChunkMetadata(BaseModel):
    """Categorical metadata stored alongside each chunk."""
    category: Category
    priority: Literal[1, 2, 3] = 2
    tags: List[str] = Field(default_factory=list)
    source: str
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> List[str]:
        return _clean_tags(value)

    @field_validator("last_updated")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        # naive timestamps are treated as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class KnowledgeChunk(BaseModel):
    """A persisted chunk: content, its embedding and metadata."""
    chunk_id: str
    vector_id: int
    content: str = Field(min_length=1)
    embedding: List[float] = Field(min_length=1)
    metadata: ChunkMetadata
    version: int = 1
    query_count: int = 0
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class RetrievedChunk(BaseModel):
    """A chunk returned for one query, with its relevance score."""
    model_config = ConfigDict(frozen=True)

    content: str
    metadata: ChunkMetadata
    score: float
    id: Optional[str] = None

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return min(max(float(value), 0.0), 1.0)


class QueryIntent(BaseModel):
    """Heuristic classification of what a query is asking about."""
    category: Optional[Category] = None
    keywords: List[str] = Field(default_factory=list)
    priority: Literal["high", "medium", "low"] = "medium"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class SearchOptions(BaseModel):
    """Options for ``KnowledgeStore.similarity_search``."""
    k: int = Field(default=3, ge=1)
    threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    filter: Dict[str, Any] = Field(default_factory=dict)
    query_text: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class RetrievalOptions(BaseModel):
    """Options for ``Retriever.retrieve`` and ``Retriever.hybrid_search``."""
    model_config = ConfigDict(extra="forbid")

    k: int = Field(default=3, ge=1)
    threshold: float = Field(default=0.65, ge=0.0, le=1.0)
    use_intent: bool = True
    rerank_results: bool = True


class Manifest(BaseModel):
    """Knowledge base snapshot manifest with metadata."""
    kb_version: str
    build_time: str
    embedding_model: str
    embedding_dimension: int
    faiss_metric: str = "cosine"
    chunk_count: int
    category_counts: Dict[str, int] = Field(default_factory=dict)
    intent_table_version: Optional[str] = None

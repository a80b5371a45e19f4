"""
Configuration settings.

All tunable constants of the retrieval pipeline live here, including the
empirical reranking weights and candidate-retrieval discounts, so they can be
overridden from the environment (``KB_`` prefix, ``__`` for nested fields)
or a ``.env`` file without code changes.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RerankWeights(BaseModel):
    """Additive boosts applied by the reranker."""
    priority_step: float = Field(default=0.1, description="Multiplied by (4 - chunk priority)")
    category_match: float = Field(default=0.15, description="Chunk category equals intent category")
    keyword_match: float = Field(default=0.1, description="Per intent keyword found in content")
    term_match: float = Field(default=0.05, description="Per query term (> 2 chars) found in content")
    tag_match: float = Field(default=0.08, description="Per chunk tag found in the query")
    recency: float = Field(default=0.05, description="Recently updated projects/experience")
    recency_days: int = Field(default=30, description="Window for the recency boost")
    recency_categories: List[str] = Field(default_factory=lambda: ["projects", "experience"])
    max_score: float = Field(default=1.0, gt=0, le=1, description="Cap on reranked scores")


class RetrievalSettings(BaseModel):
    """Candidate-retrieval knobs used by ``Retriever``."""
    candidate_multiplier: int = Field(default=2, ge=1, description="Candidates requested = k * multiplier")
    threshold_discount: float = Field(default=0.8, gt=0, le=1, description="Search threshold = threshold * discount")
    filter_confidence: float = Field(default=0.6, ge=0, le=1, description="Intent confidence needed to filter by category")
    hybrid_vector_share: float = Field(default=0.7, gt=0, le=1)
    hybrid_category_share: float = Field(default=0.3, ge=0, le=1)


class Settings(BaseSettings):
    """Top-level settings for building and querying a knowledge base."""

    model_config = SettingsConfigDict(
        env_prefix="KB_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    kb_path: str = Field(default="./kb", description="Knowledge base output / load directory")
    log_level: str = Field(default="INFO", description="Logging level")

    embed_model: str = Field(default="nomic-embed-text", description="Ollama embedding model")
    ollama_base_url: str = Field(default="http://localhost:11434")
    embedding_dimension: int = Field(default=768, ge=1)
    embed_timeout: Optional[float] = Field(default=30.0, description="Seconds per embedding call")
    embed_max_retries: int = Field(default=2, ge=0)
    embed_batch_interval: float = Field(default=0.1, ge=0, description="Seconds between batch embedding calls")
    ingest_interval: float = Field(default=0.2, ge=0, description="Seconds between ingested chunks")

    overfetch_multiplier: int = Field(default=10, ge=1, description="ANN candidates = k * multiplier")
    fallback_score: float = Field(default=0.5, ge=0, le=1, description="Score assigned to lexical fallback hits")
    search_timeout: Optional[float] = Field(default=10.0, description="Seconds per vector index query")

    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    rerank: RerankWeights = Field(default_factory=RerankWeights)


def get_settings(**overrides) -> Settings:
    """Build settings from the environment, applying keyword overrides."""
    return Settings(**overrides)

"""KB Retriever - intent-aware retrieval over a curated personal knowledge base."""

from .builder import build_kb, load_chunk_data
from .config import RerankWeights, RetrievalSettings, Settings, get_settings
from .embeddings import EmbeddingProvider
from .errors import (
    DimensionMismatchError,
    EmptyInputError,
    InvalidInputError,
    KnowledgeBaseError,
    ProviderError,
    VectorIndexError,
)
from .intent import DEFAULT_INTENT_TABLE, IntentTable, detect_intent
from .loader import load_kb
from .ratelimit import RateLimiter
from .rerank import rerank
from .retriever import Retriever, build_context, to_sources
from .schemas import (
    Category,
    ChunkMetadata,
    KnowledgeChunk,
    KnowledgeChunkData,
    Manifest,
    QueryIntent,
    RetrievalOptions,
    RetrievedChunk,
    SearchOptions,
)
from .store import KnowledgeStore
from .vector_index import FaissVectorIndex, VectorIndex

__version__ = "0.1.0"

__all__ = [
    "build_kb",
    "load_chunk_data",
    "load_kb",
    "Settings",
    "get_settings",
    "RerankWeights",
    "RetrievalSettings",
    "EmbeddingProvider",
    "RateLimiter",
    "KnowledgeStore",
    "VectorIndex",
    "FaissVectorIndex",
    "Retriever",
    "IntentTable",
    "DEFAULT_INTENT_TABLE",
    "detect_intent",
    "rerank",
    "build_context",
    "to_sources",
    "Category",
    "ChunkMetadata",
    "KnowledgeChunk",
    "KnowledgeChunkData",
    "Manifest",
    "QueryIntent",
    "RetrievalOptions",
    "RetrievedChunk",
    "SearchOptions",
    "KnowledgeBaseError",
    "InvalidInputError",
    "EmptyInputError",
    "ProviderError",
    "DimensionMismatchError",
    "VectorIndexError",
]

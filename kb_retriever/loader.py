"""Load knowledge bases from disk."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

from .embeddings import EmbeddingProvider
from .errors import DimensionMismatchError
from .schemas import KnowledgeChunk, Manifest
from .store import KnowledgeStore
from .vector_index import FaissVectorIndex


def read_manifest(kb_path: str) -> Manifest:
    """Read ``manifest.json`` from a snapshot directory."""
    manifest_file = Path(kb_path) / "manifest.json"
    if not manifest_file.exists():
        raise FileNotFoundError(f"Manifest file not found: {manifest_file}")
    with open(manifest_file, "r", encoding="utf-8") as f:
        return Manifest(**json.load(f))


def load_kb(kb_path: str, embedder: EmbeddingProvider, **store_kwargs: Any) -> KnowledgeStore:
    """
    Load a knowledge base from disk into a ``KnowledgeStore``.

    Args:
        kb_path: Snapshot directory (e.g., "kb/current" or "kb/versions/20240101-120000")
        embedder: Provider used for later queries; its dimension must match the snapshot
        **store_kwargs: Extra ``KnowledgeStore`` arguments (timeouts, fallback score, ...)

    Returns:
        KnowledgeStore populated with the snapshot's chunks and index

    Raises:
        FileNotFoundError: If required files are missing
        DimensionMismatchError: If the snapshot was built with another dimension
        ValueError: If data format is invalid
    """
    kb_dir = Path(kb_path)

    index_file = kb_dir / "index.faiss"
    chunks_file = kb_dir / "chunks.jsonl"

    if not index_file.exists():
        raise FileNotFoundError(f"Index file not found: {index_file}")
    if not chunks_file.exists():
        raise FileNotFoundError(f"Chunks file not found: {chunks_file}")
    manifest = read_manifest(kb_path)

    if manifest.embedding_dimension != embedder.dimension:
        raise DimensionMismatchError(
            manifest.embedding_dimension,
            embedder.dimension,
            {"kb_path": str(kb_dir), "embedding_model": manifest.embedding_model},
        )

    records: List[KnowledgeChunk] = []
    with open(chunks_file, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                records.append(KnowledgeChunk.model_validate_json(line))

    metadata_by_id = {
        record.vector_id: {
            "category": record.metadata.category,
            "priority": record.metadata.priority,
            "source": record.metadata.source,
        }
        for record in records
    }
    index = FaissVectorIndex.load(str(index_file), metadata_by_id)

    store = KnowledgeStore(embedder, index=index, **store_kwargs)
    store.restore(records, index_populated=len(index) == len(records))
    return store

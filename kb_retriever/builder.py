"""Build (seed) a knowledge base from structured fact files."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError

from .embeddings import EmbeddingProvider
from .errors import InvalidInputError
from .intent import DEFAULT_INTENT_TABLE
from .schemas import KnowledgeChunkData, Manifest
from .store import KnowledgeStore
from .utils import build_chunk_id

logger = logging.getLogger(__name__)

DATA_EXTENSIONS = {".json", ".jsonl"}


def load_chunk_data(path: str) -> List[KnowledgeChunkData]:
    """
    Read ingestion records from a JSON array or a JSONL file.

    Raises:
        FileNotFoundError: If the file does not exist
        InvalidInputError: If the extension is unsupported or a record is invalid
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Knowledge data file not found: {source}")
    ext = source.suffix.lower()
    if ext not in DATA_EXTENSIONS:
        raise InvalidInputError(f"Unsupported knowledge data file: {source}", field="path")

    with open(source, "r", encoding="utf-8") as f:
        if ext == ".json":
            raw = json.load(f)
            if not isinstance(raw, list):
                raise InvalidInputError("Knowledge data JSON must be an array", field="path")
        else:
            raw = [json.loads(line) for line in f if line.strip()]

    records: List[KnowledgeChunkData] = []
    for position, item in enumerate(raw):
        try:
            records.append(KnowledgeChunkData.model_validate(item))
        except ValidationError as exc:
            raise InvalidInputError(
                f"Invalid knowledge record #{position} in {source.name}",
                details={"position": position, "errors": exc.errors(include_url=False)},
            ) from exc
    return records


def build_kb(
    chunks: Sequence[KnowledgeChunkData],
    out_dir: str,
    embedder: EmbeddingProvider,
    clear_existing: bool = False,
    store: Optional[KnowledgeStore] = None,
    show_progress: bool = True,
) -> Manifest:
    """
    Seed a knowledge store and write a versioned snapshot.

    Chunks already in the store are skipped, so an interrupted build can
    simply be re-run.

    Args:
        chunks: Facts to ingest
        out_dir: Output directory (creates versions/ and a current link)
        embedder: Embedding provider used for ingestion
        clear_existing: Delete everything in the store first
        store: Store to seed; a fresh one is created when omitted
        show_progress: Show a progress bar while embedding

    Returns:
        Manifest of the written snapshot

    Raises:
        InvalidInputError: If no chunks were given
        ProviderError: If embedding fails (already-ingested chunks are kept in the store)
        RuntimeError: If the store count does not match after ingestion
    """
    if not chunks:
        raise InvalidInputError("No knowledge chunks to ingest", field="chunks")

    start_time = time.perf_counter()
    store = store or KnowledgeStore(embedder)

    if clear_existing:
        deleted = store.clear_all()
        logger.info("Cleared %d existing document(s)", deleted)
    elif store.count():
        logger.info("Found %d existing document(s); adding new ones only", store.count())

    expected_ids = {build_chunk_id(c.category.value, c.source, c.content) for c in chunks}
    written = store.add_documents(chunks, skip_existing=True, show_progress=show_progress)

    missing = [chunk_id for chunk_id in expected_ids if store.get(chunk_id) is None]
    if missing:
        raise RuntimeError(f"Verification failed: {len(missing)} chunk(s) missing after ingestion")

    manifest = store.save(out_dir, intent_table_version=DEFAULT_INTENT_TABLE.version)

    elapsed = time.perf_counter() - start_time
    logger.info(
        "Build summary: added=%d, total=%d, duration=%.1fs, kb_version=%s",
        len(written), manifest.chunk_count, elapsed, manifest.kb_version,
    )
    for category, count in manifest.category_counts.items():
        logger.info("  %s: %d", category, count)
    return manifest

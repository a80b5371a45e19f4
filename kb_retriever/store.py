"""
Knowledge store: persisted chunks, their vectors and metadata.

Similarity search goes through a ``VectorIndex``. When the index is
unavailable or a query against it fails, the store answers from a lexical
scan of chunk content instead, at a fixed lower confidence.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError
from tqdm import tqdm

from .embeddings import EmbeddingProvider
from .errors import DimensionMismatchError, InvalidInputError, KnowledgeBaseError
from .ratelimit import RateLimiter
from .schemas import (
    Category,
    ChunkMetadata,
    KnowledgeChunk,
    KnowledgeChunkData,
    Manifest,
    RetrievedChunk,
    SearchOptions,
    utcnow,
)
from .utils import build_chunk_id, call_with_timeout, lexical_terms, shorten
from .vector_index import FaissVectorIndex, VectorIndex, matches_filter

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

ChunkInput = Union[KnowledgeChunkData, Mapping[str, Any]]


def _metadata_fields(chunk: KnowledgeChunk) -> Dict[str, Any]:
    return {
        "category": chunk.metadata.category.value,
        "priority": chunk.metadata.priority,
        "source": chunk.metadata.source,
    }


def _to_retrieved(chunk: KnowledgeChunk, score: float) -> RetrievedChunk:
    return RetrievedChunk(
        content=chunk.content,
        metadata=chunk.metadata.model_copy(deep=True),
        score=score,
        id=chunk.chunk_id,
    )


def _recency_key(chunk: KnowledgeChunk) -> float:
    return -chunk.metadata.last_updated.timestamp()


class KnowledgeStore:
    """
    Thread-safe in-process store of knowledge chunks.

    A chunk becomes visible to readers only once both its record and its
    vector have been written.

    Args:
        embedder: Provider used to embed content at ingestion time
        index: Vector index; defaults to a FAISS index of the embedder's dimension
        overfetch_multiplier: Index candidates requested per returned result
        fallback_score: Score given to every lexical fallback result
        rate_limiter: Spacing between ingested chunks
        search_timeout: Seconds allowed per index query before falling back
        clock: Source of ``last_updated`` timestamps
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: Optional[VectorIndex] = None,
        overfetch_multiplier: int = 10,
        fallback_score: float = 0.5,
        rate_limiter: Optional[RateLimiter] = None,
        search_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.embedder = embedder
        self.index = index if index is not None else FaissVectorIndex(embedder.dimension)
        if self.index.dimension != embedder.dimension:
            raise DimensionMismatchError(
                self.index.dimension, embedder.dimension, {"source": "embedder vs index"}
            )
        self.overfetch_multiplier = overfetch_multiplier
        self.fallback_score = fallback_score
        self.rate_limiter = rate_limiter or RateLimiter(0.2)
        self.search_timeout = search_timeout
        self._clock = clock

        self._lock = threading.RLock()
        # guards the index alone; never acquired while holding _lock
        self._index_lock = threading.Lock()
        self._records: Dict[str, KnowledgeChunk] = {}
        self._by_vector_id: Dict[int, str] = {}
        self._next_vector_id = 0
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        embedder: EmbeddingProvider,
        index: Optional[VectorIndex] = None,
    ) -> "KnowledgeStore":
        return cls(
            embedder,
            index=index,
            overfetch_multiplier=settings.overfetch_multiplier,
            fallback_score=settings.fallback_score,
            rate_limiter=RateLimiter(settings.ingest_interval),
            search_timeout=settings.search_timeout,
        )

    @property
    def dimension(self) -> int:
        return self.index.dimension

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_documents(
        self,
        chunks: Sequence[ChunkInput],
        skip_existing: bool = False,
        show_progress: bool = False,
    ) -> List[str]:
        """
        Embed and persist chunks one at a time.

        Chunks written before a failure stay written; the error is re-raised
        with ``details["persisted"]`` set to how many made it in.

        Args:
            chunks: Ingestion records (models or plain dicts)
            skip_existing: Skip chunks whose id is already stored
            show_progress: Display a progress bar

        Returns:
            Ids of the chunks written by this call

        Raises:
            InvalidInputError: If a record fails validation
            ProviderError: If embedding fails (earlier chunks remain stored)
        """
        items = [self._coerce(position, chunk) for position, chunk in enumerate(chunks)]
        logger.info("Processing %d document(s) for embedding", len(items))

        written: List[str] = []
        with tqdm(total=len(items), desc="Embedding chunks", disable=not show_progress) as progress:
            for data in items:
                chunk_id = build_chunk_id(data.category.value, data.source, data.content)
                if skip_existing and self.get(chunk_id) is not None:
                    tqdm.write(f"[SKIP] already stored: {shorten(data.content)}")
                    progress.update(1)
                    continue

                self.rate_limiter.acquire()
                try:
                    vector = self.embedder.embed(data.content)
                except KnowledgeBaseError as exc:
                    exc.details["persisted"] = len(written)
                    exc.details["chunk"] = shorten(data.content)
                    logger.error(
                        "Error processing chunk %r after %d persisted: %s",
                        shorten(data.content), len(written), exc,
                    )
                    raise

                self._write(chunk_id, data, EmbeddingProvider.normalize(vector))
                written.append(chunk_id)
                logger.debug("Added document: %s", shorten(data.content))
                progress.update(1)

        logger.info("Successfully added %d document(s) to the knowledge store", len(written))
        return written

    @staticmethod
    def _coerce(position: int, chunk: ChunkInput) -> KnowledgeChunkData:
        if isinstance(chunk, KnowledgeChunkData):
            return chunk
        try:
            return KnowledgeChunkData.model_validate(chunk)
        except ValidationError as exc:
            raise InvalidInputError(
                f"Invalid knowledge chunk at position {position}",
                field="chunks",
                details={"position": position, "errors": exc.errors(include_url=False)},
            ) from exc

    def _write(self, chunk_id: str, data: KnowledgeChunkData, embedding: List[float]) -> None:
        if len(embedding) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(embedding), {"chunk_id": chunk_id})

        with self._lock:
            previous = self._records.get(chunk_id)
            if previous is not None:
                vector_id = previous.vector_id
            else:
                vector_id = self._next_vector_id
                self._next_vector_id += 1
            record = KnowledgeChunk(
                chunk_id=chunk_id,
                vector_id=vector_id,
                content=data.content,
                embedding=embedding,
                metadata=ChunkMetadata(
                    category=data.category,
                    priority=data.priority,
                    tags=list(data.tags),
                    source=data.source,
                    last_updated=self._clock(),
                ),
                version=previous.version + 1 if previous else 1,
                query_count=previous.query_count if previous else 0,
            )

        # the vector lands before the record is published; searches skip
        # vector ids that have no record yet
        with self._index_lock:
            self.index.add(vector_id, embedding, _metadata_fields(record))

        with self._lock:
            current = self._records.get(chunk_id)
            stale = current.vector_id if current is not None and current.vector_id != vector_id else None
            if stale is not None:
                self._by_vector_id.pop(stale, None)
            self._records[chunk_id] = record
            self._by_vector_id[vector_id] = chunk_id

        if stale is not None:
            with self._index_lock:
                self.index.remove([stale])

    def restore(self, records: Iterable[KnowledgeChunk], index_populated: bool = False) -> int:
        """
        Load already-embedded records, e.g. from a saved snapshot.

        With ``index_populated`` the vectors are assumed to be in the index
        already and only the records are attached.
        """
        records = list(records)
        for record in records:
            if len(record.embedding) != self.dimension:
                raise DimensionMismatchError(
                    self.dimension, len(record.embedding), {"chunk_id": record.chunk_id}
                )

        if not index_populated:
            with self._index_lock:
                for record in records:
                    self.index.add(record.vector_id, record.embedding, _metadata_fields(record))

        with self._lock:
            for record in records:
                self._records[record.chunk_id] = record
                self._by_vector_id[record.vector_id] = record.chunk_id
                self._next_vector_id = max(self._next_vector_id, record.vector_id + 1)
        return len(records)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def similarity_search(
        self,
        query_vector: Sequence[float],
        options: Optional[SearchOptions] = None,
        **kwargs: Any,
    ) -> List[RetrievedChunk]:
        """
        Find the chunks closest to ``query_vector``.

        The index is asked for ``k * overfetch_multiplier`` candidates; hits
        under ``threshold`` are dropped. If the index fails or times out the
        lexical fallback answers instead.

        Raises:
            DimensionMismatchError: If the query vector has the wrong length
        """
        options = _search_options(options, kwargs)
        if len(query_vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(query_vector), {"source": "query vector"})

        timeout = options.timeout if options.timeout is not None else self.search_timeout
        candidates = options.k * self.overfetch_multiplier
        try:
            hits = call_with_timeout(
                self._get_executor() if timeout is not None else None,
                self._search_index,
                query_vector,
                options.k,
                candidates,
                options.filter,
                timeout=timeout,
            )
        except DimensionMismatchError:
            raise
        except Exception as exc:
            logger.warning(
                "Vector search failed (%s: %s); falling back to text search",
                type(exc).__name__, exc,
            )
            return self._fallback_text_search(options)

        results: List[RetrievedChunk] = []
        with self._lock:
            for vector_id, score in hits:
                chunk_id = self._by_vector_id.get(vector_id)
                record = self._records.get(chunk_id) if chunk_id else None
                if record is None or not record.active:
                    continue
                if score < options.threshold:
                    continue
                results.append(_to_retrieved(record, score))

        logger.info(
            "Vector search returned %d result(s) above threshold %.2f", len(results), options.threshold
        )
        return results

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="vector-search")
            return self._executor

    def _search_index(self, vector, k, candidates, filter):
        with self._index_lock:
            return self.index.search(vector, k=k, candidates=candidates, filter=filter)

    def _fallback_text_search(self, options: SearchOptions) -> List[RetrievedChunk]:
        try:
            terms = lexical_terms(options.query_text or "")
            with self._lock:
                pool = [
                    record for record in self._records.values()
                    if record.active and matches_filter(_metadata_fields(record), options.filter)
                ]

            if terms:
                scored = []
                for record in pool:
                    haystack = record.content.lower()
                    tags = set(record.metadata.tags)
                    hits = sum(1 for term in terms if term in haystack or term in tags)
                    if hits:
                        scored.append((hits, record))
                scored.sort(key=lambda item: (-item[0], item[1].metadata.priority, _recency_key(item[1])))
                ranked = [record for _, record in scored]
            else:
                ranked = sorted(pool, key=lambda record: (record.metadata.priority, _recency_key(record)))

            results = [_to_retrieved(record, self.fallback_score) for record in ranked[: options.k]]
            logger.info("Fallback text search returned %d result(s)", len(results))
            return results
        except Exception:
            logger.exception("Error in fallback text search")
            return []

    def get_by_category(self, category: Union[Category, str], limit: int = 10) -> List[RetrievedChunk]:
        """
        All chunks of one category, priority 1 first, then most recently updated.

        Every result gets score 1.0: the category is known, not inferred.
        """
        try:
            category = Category(category)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown category: {category!r}", field="category") from exc
        if limit <= 0:
            return []

        with self._lock:
            records = [
                record for record in self._records.values()
                if record.active and record.metadata.category == category
            ]
        records.sort(key=lambda record: (record.metadata.priority, _recency_key(record)))
        return [_to_retrieved(record, 1.0) for record in records[:limit]]

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def get(self, chunk_id: str) -> Optional[KnowledgeChunk]:
        with self._lock:
            return self._records.get(chunk_id)

    def records(self) -> List[KnowledgeChunk]:
        """Snapshot of every stored record, in insertion order."""
        with self._lock:
            return list(self._records.values())

    def record_queries(self, chunk_ids: Iterable[Optional[str]]) -> None:
        """Increment the query counter of each returned chunk."""
        with self._lock:
            for chunk_id in chunk_ids:
                record = self._records.get(chunk_id) if chunk_id else None
                if record is not None:
                    record.query_count += 1

    def category_counts(self) -> Dict[str, int]:
        counts = {category.value: 0 for category in Category}
        with self._lock:
            for record in self._records.values():
                counts[record.metadata.category.value] += 1
        return counts

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def clear_all(self) -> int:
        """Delete every chunk. Returns the number deleted."""
        with self._lock:
            deleted = len(self._records)
            self._records.clear()
            self._by_vector_id.clear()
        with self._index_lock:
            self.index.reset()
        logger.info("Cleared %d document(s) from the knowledge store", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, out_dir: str, intent_table_version: Optional[str] = None) -> Manifest:
        """
        Write a versioned snapshot under ``out_dir/versions`` and point
        ``out_dir/current`` at it.
        """
        os.makedirs(out_dir, exist_ok=True)
        versions_dir = os.path.join(out_dir, "versions")
        os.makedirs(versions_dir, exist_ok=True)

        now = self._clock()
        kb_version = now.strftime("%Y%m%d-%H%M%S")
        version_dir = os.path.join(versions_dir, kb_version)
        suffix = 1
        while os.path.exists(version_dir):
            version_dir = os.path.join(versions_dir, f"{kb_version}-{suffix}")
            suffix += 1
        os.makedirs(version_dir)

        with self._lock:
            records = list(self._records.values())
            category_counts = self.category_counts()

        with self._index_lock:
            self.index.save(os.path.join(version_dir, "index.faiss"))
        with open(os.path.join(version_dir, "chunks.jsonl"), "w", encoding="utf-8") as handle:
            for record in records:
                handle.write(record.model_dump_json())
                handle.write("\n")
        manifest = Manifest(
            kb_version=os.path.basename(version_dir),
            build_time=now.isoformat(),
            embedding_model=self.embedder.model_name,
            embedding_dimension=self.dimension,
            chunk_count=len(records),
            category_counts=category_counts,
            intent_table_version=intent_table_version,
        )

        with open(os.path.join(version_dir, "manifest.json"), "w", encoding="utf-8") as handle:
            json.dump(manifest.model_dump(), handle, ensure_ascii=False, indent=2)

        _activate_version(out_dir, version_dir)
        logger.info("Saved %d chunk(s) to %s", manifest.chunk_count, version_dir)
        return manifest

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None

    def __enter__(self) -> "KnowledgeStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _search_options(options: Optional[SearchOptions], overrides: Mapping[str, Any]) -> SearchOptions:
    try:
        if options is None:
            return SearchOptions(**overrides)
        if overrides:
            return SearchOptions.model_validate({**options.model_dump(), **overrides})
        return options
    except ValidationError as exc:
        raise InvalidInputError(
            "Invalid search options", field="options", details={"errors": exc.errors(include_url=False)}
        ) from exc


def _activate_version(out_dir: str, version_dir: str) -> None:
    """
    Atomically switch the 'current' symlink to a new version.

    Falls back to copying on systems that don't support atomic symlink replacement.
    """
    current_path = os.path.join(out_dir, "current")
    tmp_link = os.path.join(out_dir, "current_tmp")
    relative_target = os.path.relpath(version_dir, out_dir)

    if os.path.islink(tmp_link) or os.path.exists(tmp_link):
        if os.path.isdir(tmp_link) and not os.path.islink(tmp_link):
            shutil.rmtree(tmp_link)
        else:
            os.unlink(tmp_link)

    try:
        os.symlink(relative_target, tmp_link)
        os.replace(tmp_link, current_path)
    except OSError:
        if os.path.lexists(tmp_link):
            os.unlink(tmp_link)
        if os.path.islink(current_path):
            os.unlink(current_path)
        elif os.path.exists(current_path):
            shutil.rmtree(current_path)
        shutil.copytree(version_dir, current_path)

"""
Approximate-nearest-neighbour index abstraction.

``KnowledgeStore`` only talks to ``VectorIndex``; ``FaissVectorIndex`` is the
local implementation, and a managed vector database can be plugged in by
implementing the same interface.
"""

from __future__ import annotations

import abc
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import faiss
import numpy as np

from .errors import DimensionMismatchError, VectorIndexError

logger = logging.getLogger(__name__)

# (vector_id, score in [0, 1])
SearchHit = Tuple[int, float]

FILTERABLE_FIELDS = ("category", "priority", "source")


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def matches_filter(metadata: Mapping[str, Any], filter: Optional[Mapping[str, Any]]) -> bool:
    """Exact-match every filter key against metadata."""
    if not filter:
        return True
    for key, expected in filter.items():
        if _plain(metadata.get(key)) != _plain(expected):
            return False
    return True


class VectorIndex(abc.ABC):
    """Cosine-similarity index over integer vector ids with metadata filters."""

    dimension: int

    @abc.abstractmethod
    def add(self, vector_id: int, vector: Sequence[float], metadata: Mapping[str, Any]) -> None:
        """Insert one vector with its filterable metadata."""

    @abc.abstractmethod
    def remove(self, vector_ids: Iterable[int]) -> int:
        """Remove vectors; returns the number removed."""

    @abc.abstractmethod
    def reset(self) -> None:
        """Remove every vector."""

    @abc.abstractmethod
    def search(
        self,
        vector: Sequence[float],
        k: int,
        candidates: int,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> List[SearchHit]:
        """
        Return up to ``k`` hits, best first.

        ``candidates`` is how many neighbours to consider before filtering
        and truncating; it is at least ``k``.
        """

    @abc.abstractmethod
    def __len__(self) -> int:
        ...

    @abc.abstractmethod
    def save(self, path: str) -> None:
        """Persist the vectors to ``path``."""


class FaissVectorIndex(VectorIndex):
    """
    In-process FAISS index.

    Vectors are L2-normalised and stored in an ``IndexFlatIP`` wrapped in an
    ``IndexIDMap2``, so inner product equals cosine similarity. Scores are
    reported on the [0, 1] scale used by managed vector indexes:
    ``(1 + cosine) / 2``.
    """

    def __init__(self, dimension: int, index: Optional[faiss.Index] = None) -> None:
        self.dimension = dimension
        if index is None:
            index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        elif index.d != dimension:
            raise DimensionMismatchError(dimension, index.d, {"source": "faiss index"})
        self._index = index
        self._metadata: Dict[int, Dict[str, Any]] = {}

    @classmethod
    def load(cls, path: str, metadata_by_id: Mapping[int, Mapping[str, Any]]) -> "FaissVectorIndex":
        """Read an index written by ``save`` and attach the metadata used for filtering."""
        index = faiss.read_index(path)
        instance = cls(index.d, index=index)
        for vector_id, metadata in metadata_by_id.items():
            instance._metadata[int(vector_id)] = _filterable(metadata)
        if len(instance._metadata) != index.ntotal:
            logger.warning(
                "Index %s holds %d vectors but %d metadata records were supplied",
                path, index.ntotal, len(instance._metadata),
            )
        return instance

    def _as_matrix(self, vector: Sequence[float]) -> np.ndarray:
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector))
        matrix = np.array([vector], dtype="float32")
        faiss.normalize_L2(matrix)
        return matrix

    def add(self, vector_id: int, vector: Sequence[float], metadata: Mapping[str, Any]) -> None:
        matrix = self._as_matrix(vector)
        if vector_id in self._metadata:
            self.remove([vector_id])
        self._index.add_with_ids(matrix, np.array([vector_id], dtype="int64"))
        self._metadata[vector_id] = _filterable(metadata)

    def remove(self, vector_ids: Iterable[int]) -> int:
        ids = [int(vector_id) for vector_id in vector_ids if int(vector_id) in self._metadata]
        if not ids:
            return 0
        removed = int(self._index.remove_ids(np.array(ids, dtype="int64")))
        for vector_id in ids:
            self._metadata.pop(vector_id, None)
        return removed

    def reset(self) -> None:
        self._index.reset()
        self._metadata.clear()

    def search(
        self,
        vector: Sequence[float],
        k: int,
        candidates: int,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> List[SearchHit]:
        query = self._as_matrix(vector)
        total = self._index.ntotal
        if total == 0:
            return []

        try:
            scores, ids = self._index.search(query, min(max(candidates, k), total))
        except RuntimeError as exc:
            raise VectorIndexError(f"FAISS search failed: {exc}", operation="search") from exc

        hits: List[SearchHit] = []
        for vector_id, inner in zip(ids[0], scores[0]):
            if vector_id == -1:
                continue
            if not matches_filter(self._metadata.get(int(vector_id), {}), filter):
                continue
            score = min(max((1.0 + float(inner)) / 2.0, 0.0), 1.0)
            hits.append((int(vector_id), score))
            if len(hits) >= k:
                break
        logger.debug("FAISS returned %d hit(s) from %d candidate(s)", len(hits), len(ids[0]))
        return hits

    def __len__(self) -> int:
        return int(self._index.ntotal)

    def save(self, path: str) -> None:
        faiss.write_index(self._index, path)


def _filterable(metadata: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: _plain(metadata[key]) for key in FILTERABLE_FIELDS if key in metadata}

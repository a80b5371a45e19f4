"""Shared fixtures: a deterministic offline embeddings client and store doubles."""

import hashlib
import re
from typing import List

import pytest
from langchain_core.embeddings import Embeddings

from kb_retriever import (
    EmbeddingProvider,
    FaissVectorIndex,
    KnowledgeChunkData,
    KnowledgeStore,
    RateLimiter,
    Retriever,
    VectorIndexError,
)

DIMENSION = 64

_WORD_RE = re.compile(r"[a-z0-9]+")


class FakeEmbeddings(Embeddings):
    """Bag-of-words hashing embeddings: texts sharing words get similar vectors."""

    def __init__(self, dimension: int = DIMENSION, fail: bool = False, fail_times: int = 0):
        self.dimension = dimension
        self.fail = fail
        self.fail_times = fail_times
        self.calls: List[str] = []

    def embed_query(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise ConnectionError("embedding backend unreachable")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("temporary failure")
        vector = [0.0] * self.dimension
        vector[0] = 0.1
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % (self.dimension - 1)
            vector[bucket + 1] += 1.0
        return vector

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_query(text) for text in texts]


class BrokenIndex(FaissVectorIndex):
    """Accepts writes but every search fails, like an unreachable vector index."""

    def search(self, vector, k, candidates, filter=None):
        raise VectorIndexError("vector index unavailable", operation="search")


class RecordingIndex(FaissVectorIndex):
    """Remembers the arguments of each search."""

    def __init__(self, dimension):
        super().__init__(dimension)
        self.searches = []

    def search(self, vector, k, candidates, filter=None):
        self.searches.append({"k": k, "candidates": candidates, "filter": filter})
        return super().search(vector, k, candidates, filter)


SAMPLE_CHUNKS = [
    KnowledgeChunkData(
        content="Alex is a full-stack developer based in Vietnam who builds accessible web products.",
        category="personal",
        priority=1,
        tags=["name", "location", "developer"],
        source="personal_profile",
    ),
    KnowledgeChunkData(
        content="Alex knows the programming languages TypeScript, Python and Go.",
        category="skills",
        priority=1,
        tags=["typescript", "python", "go"],
        source="technical_skills",
    ),
    KnowledgeChunkData(
        content="Alex uses Docker and Git as everyday development tools.",
        category="skills",
        priority=3,
        tags=["docker", "git", "tools"],
        source="technical_skills",
    ),
    KnowledgeChunkData(
        content="Alex writes React frontends with modern hooks and state management.",
        category="skills",
        priority=2,
        tags=["react", "frontend", "hooks"],
        source="technical_skills",
    ),
    KnowledgeChunkData(
        content="Alex worked as a senior engineer at a fintech company since 2022.",
        category="experience",
        priority=1,
        tags=["senior", "fintech"],
        source="work_history",
    ),
    KnowledgeChunkData(
        content="Alex built an AI portfolio assistant with retrieval-augmented generation.",
        category="projects",
        priority=1,
        tags=["ai", "rag", "portfolio"],
        source="projects",
    ),
    KnowledgeChunkData(
        content="Alex studied software engineering at university.",
        category="education",
        priority=2,
        tags=["degree", "university"],
        source="education",
    ),
    KnowledgeChunkData(
        content="Alex can be reached by email and is available for hire.",
        category="contact",
        priority=1,
        tags=["email", "hire"],
        source="contact_info",
    ),
]


@pytest.fixture
def fake_client():
    return FakeEmbeddings()


@pytest.fixture
def embedder(fake_client):
    return EmbeddingProvider(fake_client, dimension=DIMENSION, rate_limiter=RateLimiter(0))


@pytest.fixture
def store(embedder):
    return KnowledgeStore(embedder, rate_limiter=RateLimiter(0))


@pytest.fixture
def populated_store(store):
    store.add_documents(SAMPLE_CHUNKS)
    return store


@pytest.fixture
def broken_store(embedder):
    store = KnowledgeStore(embedder, index=BrokenIndex(DIMENSION), rate_limiter=RateLimiter(0))
    store.add_documents(SAMPLE_CHUNKS)
    return store


@pytest.fixture
def retriever(populated_store):
    return Retriever(populated_store)

"""Tests for the retrieval pipeline."""

import pytest
from conftest import DIMENSION, SAMPLE_CHUNKS, FakeEmbeddings

from kb_retriever import (
    Category,
    EmbeddingProvider,
    EmptyInputError,
    InvalidInputError,
    ProviderError,
    RateLimiter,
    RerankWeights,
    RetrievalOptions,
    RetrievedChunk,
    Retriever,
    Settings,
    build_context,
    to_sources,
)

QUERIES = [
    "What programming languages do you know?",
    "Tell me about your work experience",
    "Which projects have you built?",
    "How can I contact you?",
    "Interesting",
]


def spy_on_search(monkeypatch, store):
    calls = []
    original = store.similarity_search

    def spy(query_vector, options=None, **kwargs):
        calls.append(options)
        return original(query_vector, options, **kwargs)

    monkeypatch.setattr(store, "similarity_search", spy)
    return calls


def test_empty_store_returns_nothing(store):
    """Test retrieval over an empty knowledge base."""
    assert Retriever(store).retrieve("Tell me anything") == []


@pytest.mark.parametrize("k", [1, 2, 3, 5])
@pytest.mark.parametrize("query", QUERIES)
def test_results_bounded_and_scored(retriever, query, k):
    """Test at most k results, each scored within [0, 1]."""
    results = retriever.retrieve(query, k=k)
    assert len(results) <= k
    assert all(0.0 <= chunk.score <= 1.0 for chunk in results)
    assert [chunk.score for chunk in results] == sorted((chunk.score for chunk in results), reverse=True)


def test_exact_content_ranks_first(retriever):
    """Test a query equal to a stored fact finds that fact first."""
    target = SAMPLE_CHUNKS[4]
    results = retriever.retrieve(target.content)
    assert results[0].content == target.content


def test_empty_query_rejected(retriever):
    """Test empty and blank queries raise before any work is done."""
    for query in ("", "   "):
        with pytest.raises(EmptyInputError):
            retriever.retrieve(query)
    with pytest.raises(EmptyInputError):
        retriever.hybrid_search("")


def test_invalid_options_rejected(retriever):
    """Test bad option values and unknown options."""
    with pytest.raises(InvalidInputError):
        retriever.retrieve("skills", k=0)
    with pytest.raises(InvalidInputError):
        retriever.retrieve("skills", threshold=1.5)
    with pytest.raises(InvalidInputError):
        retriever.retrieve("skills", colour="blue")
    with pytest.raises(InvalidInputError):
        retriever.hybrid_search("skills", k=-1)


def test_options_object_and_overrides_merge(retriever, monkeypatch):
    """Test keyword overrides are merged into an options object."""
    calls = spy_on_search(monkeypatch, retriever.store)
    retriever.retrieve("Interesting", RetrievalOptions(k=4, threshold=0.5), k=2)
    assert calls[0].k == 4
    assert calls[0].threshold == pytest.approx(0.4)


def test_confident_intent_filters_by_category(retriever, monkeypatch):
    """Test the category filter and widened search parameters."""
    calls = spy_on_search(monkeypatch, retriever.store)
    query = "What programming languages do you know?"
    results = retriever.retrieve(query)

    search = calls[0]
    assert search.filter == {"category": "skills"}
    assert search.k == 6
    assert search.threshold == pytest.approx(0.52)
    assert search.query_text == query
    assert results and all(chunk.metadata.category is Category.SKILLS for chunk in results)


def test_weak_intent_does_not_filter(retriever, monkeypatch):
    """Test confidence at 0.5 is not enough to filter."""
    calls = spy_on_search(monkeypatch, retriever.store)
    retriever.retrieve("Tell me your skills")
    assert calls[0].filter == {}


def test_category_fallback_when_vector_search_is_empty(retriever, monkeypatch):
    """Test category lookup answers when similarity search finds nothing."""
    monkeypatch.setattr(retriever.store, "similarity_search", lambda *args, **kwargs: [])
    results = retriever.retrieve("What programming languages do you know?")

    assert 0 < len(results) <= 3
    assert all(chunk.metadata.category is Category.SKILLS for chunk in results)


def test_no_category_fallback_without_intent(retriever, monkeypatch):
    """Test use_intent=False skips both filtering and category fallback."""
    monkeypatch.setattr(retriever.store, "similarity_search", lambda *args, **kwargs: [])
    assert retriever.retrieve("What programming languages do you know?", use_intent=False) == []


def test_without_rerank_keeps_search_order(retriever):
    """Test rerank_results=False returns raw similarity results."""
    query = "Alex knows Python"
    vector = retriever.embedder.embed(query)
    expected = retriever.store.similarity_search(vector, k=6, threshold=0.65 * 0.8, query_text=query)[:3]

    results = retriever.retrieve(query, rerank_results=False, use_intent=False)
    assert [chunk.id for chunk in results] == [chunk.id for chunk in expected]
    assert [chunk.score for chunk in results] == [chunk.score for chunk in expected]


def test_broken_index_still_answers(broken_store):
    """Test index failures degrade to lexical search instead of raising."""
    results = Retriever(broken_store).retrieve("Which programming languages?")
    assert results
    assert all(0.0 <= chunk.score <= 1.0 for chunk in results)


def test_embedding_failure_propagates(populated_store):
    """Test provider errors surface to the caller."""
    failing = EmbeddingProvider(FakeEmbeddings(fail=True), dimension=DIMENSION, rate_limiter=RateLimiter(0))
    with pytest.raises(ProviderError):
        Retriever(populated_store, embedder=failing).retrieve("What are your skills?")


def test_query_counts_recorded(retriever):
    """Test returned chunks have their query counter bumped."""
    results = retriever.retrieve("What programming languages do you know?")
    for chunk in results:
        assert retriever.store.get(chunk.id).query_count == 1


def test_get_context_by_category(retriever):
    """Test category context is sorted by priority."""
    chunks = retriever.get_context_by_category("skills")
    assert [chunk.metadata.priority for chunk in chunks] == [1, 2, 3]
    assert len(retriever.get_context_by_category(Category.SKILLS, limit=1)) == 1


def test_get_context_by_category_swallows_store_errors(retriever, monkeypatch):
    """Test store failures give an empty context."""
    def explode(*args, **kwargs):
        raise RuntimeError("store offline")

    monkeypatch.setattr(retriever.store, "get_by_category", explode)
    assert retriever.get_context_by_category("skills") == []
    assert retriever.get_context_by_category("hobbies") == []


@pytest.mark.parametrize("k", [1, 2, 3, 6])
@pytest.mark.parametrize("query", QUERIES)
def test_hybrid_search_unique_and_bounded(retriever, query, k):
    """Test hybrid results have no duplicates and at most k entries."""
    results = retriever.hybrid_search(query, k=k)
    ids = [chunk.id for chunk in results]
    assert len(results) <= k
    assert len(ids) == len(set(ids))


def test_hybrid_search_falls_back_to_retrieve(retriever, monkeypatch):
    """Test internal hybrid failures fall back to plain retrieval."""
    query = "What programming languages do you know?"
    expected = [chunk.id for chunk in retriever.retrieve(query, k=5)]

    def explode(*args, **kwargs):
        raise RuntimeError("category lookup broke")

    monkeypatch.setattr(retriever, "get_context_by_category", explode)
    assert [chunk.id for chunk in retriever.hybrid_search(query, k=5)] == expected


def test_from_settings_uses_configured_weights(populated_store):
    """Test rerank weights and retrieval tuning come from settings."""
    settings = Settings(rerank=RerankWeights(category_match=0.3), retrieval={"candidate_multiplier": 3})
    retriever = Retriever.from_settings(settings, populated_store)
    assert retriever.weights.category_match == 0.3
    assert retriever.retrieval.candidate_multiplier == 3


def test_build_context_and_sources():
    """Test prompt context numbering and citation previews."""
    chunks = [
        RetrievedChunk(
            content="First fact " * 30,
            metadata={"category": "skills", "priority": 1, "source": "a"},
            score=0.876,
        ),
        RetrievedChunk(content="Second fact", metadata={"category": "contact", "source": "b"}, score=0.5),
    ]
    context = build_context(chunks)
    assert context.splitlines()[1] == "[2] Second fact"
    assert context.startswith("[1] First fact")

    sources = to_sources(chunks)
    assert sources[0]["category"] == "skills"
    assert sources[0]["score"] == 0.88
    assert len(sources[0]["content"]) <= 203
    assert sources[1] == {"content": "Second fact", "category": "contact", "score": 0.5}
    assert build_context([]) == ""

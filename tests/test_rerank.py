"""Tests for heuristic reranking."""

from datetime import datetime, timedelta, timezone

import pytest

from kb_retriever import ChunkMetadata, QueryIntent, RerankWeights, RetrievedChunk, rerank

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_chunk(content="Plain fact", category="personal", priority=2, tags=(), score=0.5,
               updated=NOW - timedelta(days=365), id=None):
    return RetrievedChunk(
        content=content,
        metadata=ChunkMetadata(
            category=category, priority=priority, tags=list(tags), source="test", last_updated=updated
        ),
        score=score,
        id=id,
    )


def test_priority_one_beats_priority_three():
    """Test equal raw scores are separated by priority."""
    low = make_chunk(priority=3, id="low")
    high = make_chunk(priority=1, id="high")
    ranked = rerank([low, high], "zzz", None, now=NOW)

    assert [chunk.id for chunk in ranked] == ["high", "low"]
    assert ranked[0].score == pytest.approx(0.8)
    assert ranked[1].score == pytest.approx(0.6)


def test_category_match_boost():
    """Test chunks in the intent category gain 0.15."""
    intent = QueryIntent(category="skills", confidence=0.5)
    [chunk] = rerank([make_chunk(category="skills")], "zzz", intent, now=NOW)
    assert chunk.score == pytest.approx(0.5 + 0.2 + 0.15)


def test_keyword_boost_counts_each_keyword():
    """Test each intent keyword in the content adds 0.1."""
    intent = QueryIntent(category=None, keywords=["framework", "tool"], confidence=0.2)
    [chunk] = rerank([make_chunk(content="A framework and a tool")], "zzz", intent, now=NOW)
    assert chunk.score == pytest.approx(0.5 + 0.2 + 0.2)


def test_query_term_boost():
    """Test each query term longer than two characters adds 0.05."""
    [chunk] = rerank([make_chunk(content="React hooks")], "use react hooks", None, now=NOW)
    # "use" is not in the content; "react" and "hooks" are
    assert chunk.score == pytest.approx(0.5 + 0.2 + 0.1)


def test_tag_boost():
    """Test each chunk tag found in the query adds 0.08."""
    [chunk] = rerank([make_chunk(tags=["docker", "kubernetes"])], "do you know docker", None, now=NOW)
    assert chunk.score == pytest.approx(0.5 + 0.2 + 0.08)


def test_recency_boost_only_for_recent_projects_and_experience():
    """Test the recency boost window and categories."""
    recent = make_chunk(category="projects", updated=NOW - timedelta(days=5), id="recent")
    old = make_chunk(category="projects", updated=NOW - timedelta(days=40), id="old")
    personal = make_chunk(category="personal", updated=NOW - timedelta(days=5), id="personal")
    scores = {chunk.id: chunk.score for chunk in rerank([old, personal, recent], "zzz", None, now=NOW)}

    assert scores["recent"] == pytest.approx(0.75)
    assert scores["old"] == pytest.approx(0.7)
    assert scores["personal"] == pytest.approx(0.7)


def test_scores_capped_and_sorted():
    """Test final scores never exceed 1.0 and come out descending."""
    chunks = [make_chunk(score=0.3, id="a"), make_chunk(score=0.95, priority=1, id="b"), make_chunk(score=0.6, id="c")]
    ranked = rerank(chunks, "zzz", None, now=NOW)
    assert [chunk.id for chunk in ranked] == ["b", "c", "a"]
    assert ranked[0].score == 1.0


def test_rerank_is_pure():
    """Test input chunks keep their scores."""
    chunk = make_chunk()
    rerank([chunk], "zzz", None, now=NOW)
    assert chunk.score == 0.5


def test_ties_keep_input_order():
    """Test equal final scores keep their original order."""
    chunks = [make_chunk(id=str(position)) for position in range(4)]
    assert [chunk.id for chunk in rerank(chunks, "zzz", None, now=NOW)] == ["0", "1", "2", "3"]


def test_custom_weights():
    """Test weights are swappable."""
    weights = RerankWeights(priority_step=0.0, tag_match=0.3)
    [chunk] = rerank([make_chunk(tags=["go"])], "do you write go", None, weights=weights, now=NOW)
    assert chunk.score == pytest.approx(0.8)


def test_score_cap_cannot_exceed_one():
    """Test the configured cap is bounded to the [0, 1] score range."""
    with pytest.raises(ValueError):
        RerankWeights(max_score=5.0)
    [chunk] = rerank([make_chunk(score=0.9, priority=1)], "zzz", None, weights=RerankWeights(max_score=1.0), now=NOW)
    assert chunk.score == 1.0

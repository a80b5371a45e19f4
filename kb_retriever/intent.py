"""
Keyword-table query intent detection.

The classifier is pure data plus one deterministic function: an
``IntentTable`` maps each category to weighted keywords, and
``detect_intent`` scores a query against it by substring matching. Tables
are versioned and can be loaded from JSON to retune without code changes.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator

from .errors import EmptyInputError
from .schemas import Category, QueryIntent


class IntentTable(BaseModel):
    """Weighted keyword table used to classify queries."""
    version: str
    categories: Dict[Category, Dict[str, float]]
    exact_match_bonus: float = 2.0
    min_score: float = 0.5
    confidence_divisor: float = Field(default=2.0, gt=0)
    urgency_words: List[str] = Field(default_factory=lambda: ["urgent", "asap", "immediately"])
    interrogative_words: List[str] = Field(default_factory=lambda: ["when", "how", "what"])
    hedging_words: List[str] = Field(default_factory=lambda: ["maybe", "perhaps", "might"])

    @field_validator("categories")
    @classmethod
    def _lowercase_keywords(cls, value: Dict[Category, Dict[str, float]]) -> Dict[Category, Dict[str, float]]:
        cleaned: Dict[Category, Dict[str, float]] = {}
        for category, keywords in value.items():
            for keyword, weight in keywords.items():
                if weight < 0:
                    raise ValueError(f"negative weight for {category.value}/{keyword}")
            cleaned[category] = {keyword.strip().lower(): weight for keyword, weight in keywords.items()}
        return cleaned

    @classmethod
    def from_file(cls, path: str) -> "IntentTable":
        with open(Path(path), "r", encoding="utf-8") as f:
            return cls.model_validate(json.load(f))


def _weighted(keywords: List[str], weight: float) -> Dict[str, float]:
    return {keyword: weight for keyword in keywords}


DEFAULT_INTENT_TABLE = IntentTable(
    version="2024-01",
    categories={
        Category.SKILLS: _weighted(
            ["skill", "technology", "tech stack", "framework", "programming", "language",
             "tool", "development", "coding", "frontend", "backend", "database"],
            1.0,
        ),
        Category.EXPERIENCE: _weighted(
            ["experience", "work", "job", "career", "position", "role", "employment",
             "professional", "background", "history"],
            1.0,
        ),
        Category.PROJECTS: _weighted(
            ["project", "built", "created", "developed", "portfolio", "app",
             "application", "website", "build", "made"],
            1.0,
        ),
        Category.EDUCATION: _weighted(
            ["education", "degree", "university", "study", "learn", "course",
             "training", "school", "academic"],
            0.8,
        ),
        Category.CONTACT: _weighted(
            ["contact", "reach", "email", "phone", "hire", "available", "linkedin",
             "github", "social"],
            1.0,
        ),
        Category.PERSONAL: _weighted(
            ["who", "about", "name", "bio", "introduction", "personal", "background",
             "interests", "passion"],
            0.9,
        ),
    },
)


def detect_intent(query: str, table: IntentTable = DEFAULT_INTENT_TABLE) -> QueryIntent:
    """
    Classify which category a query is probably asking about.

    Each keyword found as a substring of the lower-cased query adds its
    weight to its category; a query equal to the category name or containing
    ``"about <category>"`` adds ``exact_match_bonus``. The highest score wins
    (earlier categories win ties). ``category`` stays ``None`` unless the
    winning score exceeds ``min_score``.
    """
    if not query or not query.strip():
        raise EmptyInputError("Query cannot be empty", field="query")

    query_lower = query.lower()
    best_category = None
    best_score = 0.0
    best_keywords: List[str] = []

    for category, keywords in table.categories.items():
        score = 0.0
        matched: List[str] = []
        for keyword, weight in keywords.items():
            if keyword in query_lower:
                score += weight
                matched.append(keyword)

        if query_lower == category.value or f"about {category.value}" in query_lower:
            score += table.exact_match_bonus

        if score > best_score:
            best_category, best_score, best_keywords = category, score, matched

    if any(word in query_lower for word in table.urgency_words):
        priority = "high"
    elif any(word in query_lower for word in table.interrogative_words):
        priority = "high"
    elif any(word in query_lower for word in table.hedging_words):
        priority = "low"
    else:
        priority = "medium"

    return QueryIntent(
        category=best_category if best_score > table.min_score else None,
        keywords=best_keywords,
        priority=priority,
        confidence=min(best_score / table.confidence_divisor, 1.0),
    )

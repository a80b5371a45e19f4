"""Utility functions shared by ingestion and retrieval."""

from __future__ import annotations

import hashlib
import re
from concurrent.futures import Executor, TimeoutError as FutureTimeout
from typing import Any, Callable, List, Optional, TypeVar

T = TypeVar("T")


def sha1_text(text: str) -> str:
    """Calculate SHA1 hash of a text string."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def normalize_text(text: str) -> str:
    """Normalize whitespace in text."""
    return " ".join(text.replace("\u00a0", " ").split())


def build_chunk_id(category: str, source: str, content: str) -> str:
    """Generate a stable chunk ID from its identifying fields."""
    return sha1_text(f"{category}:{source}:{normalize_text(content)}")


_PUNCT_RE = re.compile(r"^[^\w]+|[^\w]+$")


def query_terms(query: str, min_len: int = 3) -> List[str]:
    """Split a query on whitespace into lower-cased terms of at least ``min_len`` chars."""
    return [term for term in query.lower().split() if len(term) >= min_len]


def lexical_terms(query: str, min_len: int = 3) -> List[str]:
    """Like ``query_terms`` but with surrounding punctuation stripped, deduplicated."""
    terms: List[str] = []
    for term in query_terms(query, min_len=1):
        term = _PUNCT_RE.sub("", term)
        if len(term) >= min_len and term not in terms:
            terms.append(term)
    return terms


def shorten(text: str, limit: int = 50) -> str:
    """Truncate text to limit with ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def call_with_timeout(
    executor: Optional[Executor],
    fn: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
) -> T:
    """
    Run ``fn(*args)``, giving up after ``timeout`` seconds.

    Without a timeout or executor the call runs inline. On timeout the worker
    keeps running in the background; ``concurrent.futures.TimeoutError`` is
    raised to the caller.
    """
    if timeout is None or executor is None:
        return fn(*args)
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise

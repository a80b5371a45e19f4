"""Exception hierarchy for the knowledge base retriever.

Every error carries a human-readable message plus a ``details`` dict with
the context operators need (dimensions, chunk previews, counts).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class KnowledgeBaseError(Exception):
    """Base exception for all retriever errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidInputError(KnowledgeBaseError):
    """Raised when a query, option or ingestion record is malformed."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class EmptyInputError(InvalidInputError):
    """Raised for empty or whitespace-only text."""


class ProviderError(KnowledgeBaseError):
    """Raised when the embedding backend fails or times out."""


class DimensionMismatchError(ProviderError):
    """Raised when a vector does not have the expected dimensionality."""

    def __init__(
        self,
        expected: int,
        actual: int,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details.update({"expected": expected, "actual": actual})
        super().__init__(
            f"Invalid embedding dimensions: expected {expected}, got {actual}",
            details,
        )
        self.expected = expected
        self.actual = actual


class VectorIndexError(KnowledgeBaseError):
    """Raised when the vector index is unavailable or a query against it fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details)

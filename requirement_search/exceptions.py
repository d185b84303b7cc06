"""Custom exception hierarchy for the requirement search engine."""

from __future__ import annotations

from typing import Optional


class RequirementSearchError(Exception):
    """Base exception for requirement search errors."""


class ConfigError(RequirementSearchError):
    """Raised when configuration is invalid or incomplete."""


class DimensionMismatchError(RequirementSearchError):
    """Raised when an embedding does not match the corpus dimension."""

    def __init__(
        self, expected: int, actual: int, *, document_id: Optional[str] = None
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.document_id = document_id
        message = f"Embedding dimension mismatch: expected {expected}, got {actual}"
        if document_id is not None:
            message = f"{message} (document {document_id!r})"
        super().__init__(message)


class CountMismatchError(RequirementSearchError):
    """Raised when documents and embeddings are not aligned one to one."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Embedding count mismatch: expected {expected}, got {actual}")


class InvalidDocumentError(RequirementSearchError):
    """Raised when a document has a missing or duplicate identifier."""


class PersistenceError(RequirementSearchError):
    """Raised when reading or writing an index snapshot fails."""


class RequirementLoadError(RequirementSearchError):
    """Raised when a requirement export cannot be read or parsed."""


class EmbeddingError(RequirementSearchError):
    """Raised when the embedding provider cannot embed a query."""


__all__ = [
    "ConfigError",
    "CountMismatchError",
    "DimensionMismatchError",
    "EmbeddingError",
    "InvalidDocumentError",
    "PersistenceError",
    "RequirementLoadError",
    "RequirementSearchError",
]

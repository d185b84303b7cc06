from __future__ import annotations

from typing import Protocol, Sequence


class Embedder(Protocol):
    """Embedding provider interface used by ingestion and query embedding."""

    def embed_batch(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        """Return one vector per text, in input order.

        Items of a batch the provider failed to embed come back as zero vectors
        of the corpus dimension.
        """

    def embed(self, text: str) -> Sequence[float]:
        """Return the vector for a single query text."""


__all__ = ["Embedder"]

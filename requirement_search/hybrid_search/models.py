from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence


@dataclass
class IndexedDocument:
    """A document as handed to the vector index: id, embedding and opaque metadata."""

    doc_id: str
    embedding: Sequence[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorHit:
    doc_id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class KeywordHit:
    doc_id: str
    score: float


@dataclass
class RetrievedRequirement:
    """Fused retrieval output including per-modality scores and 0-based ranks."""

    doc_id: str
    fused_score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    vector_score: Optional[float] = None
    keyword_score: Optional[float] = None
    vector_rank: Optional[int] = None
    keyword_rank: Optional[int] = None
    source: str = "HYBRID"


__all__ = ["IndexedDocument", "KeywordHit", "RetrievedRequirement", "VectorHit"]

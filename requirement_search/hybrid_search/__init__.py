"""Hybrid lexical + vector retrieval components."""

from .bm25_index import BM25Index, KeywordSnapshot
from .embeddings import Embedder
from .hybrid_index import HybridRetrievalConfig, HybridRetriever, reciprocal_rank_fusion
from .models import IndexedDocument, KeywordHit, RetrievedRequirement, VectorHit
from .tokenizer import tokenize
from .vector_index import VectorIndex, VectorSnapshot, l2_normalize

__all__ = [
    "BM25Index",
    "Embedder",
    "HybridRetrievalConfig",
    "HybridRetriever",
    "IndexedDocument",
    "KeywordHit",
    "KeywordSnapshot",
    "RetrievedRequirement",
    "VectorHit",
    "VectorIndex",
    "VectorSnapshot",
    "l2_normalize",
    "reciprocal_rank_fusion",
    "tokenize",
]

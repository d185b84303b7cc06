from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .bm25_index import BM25Index
from .models import KeywordHit, RetrievedRequirement, VectorHit
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class HybridRetrievalConfig:
    rrf_k: int = 60
    candidate_multiplier: int = 2
    vector_score_threshold: float = 0.3


def reciprocal_rank_fusion(
    ranked_lists: Sequence[Sequence[str]], *, k: int = 60
) -> Dict[str, float]:
    """Fuse ranked id lists by summing ``1 / (k + rank + 1)`` per id.

    Ranks are 0-based. The returned dict preserves first-seen order, which the
    caller relies on to break ties deterministically.
    """

    fused: Dict[str, float] = {}
    for ranked_ids in ranked_lists:
        for rank, doc_id in enumerate(ranked_ids):
            fused[doc_id] = fused.get(doc_id, 0.0) + 1.0 / (k + rank + 1)
    return fused


class HybridRetriever:
    """Combine BM25 keyword search with exact vector search via Reciprocal Rank Fusion."""

    def __init__(
        self,
        vector_index: VectorIndex,
        bm25_index: BM25Index,
        *,
        config: Optional[HybridRetrievalConfig] = None,
    ) -> None:
        self.vector = vector_index
        self.bm25 = bm25_index
        self.config = config or HybridRetrievalConfig()

    def search(
        self, query_text: str, query_embedding: Sequence[float], top_k: int = 10
    ) -> List[RetrievedRequirement]:
        if top_k <= 0:
            return []

        candidates = top_k * self.config.candidate_multiplier
        vector_hits = self.vector.search(
            query_embedding,
            top_k=candidates,
            score_threshold=self.config.vector_score_threshold,
        )
        keyword_hits = self.bm25.search(query_text, top_k=candidates)
        logger.debug(
            "Hybrid search candidates: %s vector, %s keyword",
            len(vector_hits),
            len(keyword_hits),
        )

        fused = reciprocal_rank_fusion(
            [[hit.doc_id for hit in vector_hits], [hit.doc_id for hit in keyword_hits]],
            k=self.config.rrf_k,
        )

        vector_by_id = {hit.doc_id: (rank, hit) for rank, hit in enumerate(vector_hits)}
        keyword_by_id = {hit.doc_id: (rank, hit) for rank, hit in enumerate(keyword_hits)}

        results: List[RetrievedRequirement] = []
        for doc_id, fused_score in fused.items():
            result = RetrievedRequirement(
                doc_id=doc_id,
                fused_score=fused_score,
                metadata=self._metadata_for(doc_id, vector_by_id.get(doc_id)),
            )
            if doc_id in vector_by_id:
                rank, hit = vector_by_id[doc_id]
                result.vector_rank = rank
                result.vector_score = hit.score
            if doc_id in keyword_by_id:
                rank, keyword_hit = keyword_by_id[doc_id]
                result.keyword_rank = rank
                result.keyword_score = keyword_hit.score
            results.append(result)

        results.sort(key=lambda item: item.fused_score, reverse=True)
        logger.info("RRF fusion returned %s final results", min(len(results), top_k))
        return results[:top_k]

    def search_vector_only(
        self,
        query_embedding: Sequence[float],
        top_k: int = 10,
        score_threshold: Optional[float] = None,
    ) -> List[RetrievedRequirement]:
        threshold = (
            self.config.vector_score_threshold if score_threshold is None else score_threshold
        )
        hits = self.vector.search(query_embedding, top_k=top_k, score_threshold=threshold)
        return [self._from_vector_hit(rank, hit) for rank, hit in enumerate(hits)]

    def search_keyword_only(self, query_text: str, top_k: int = 10) -> List[RetrievedRequirement]:
        hits = self.bm25.search(query_text, top_k=top_k)
        return [self._from_keyword_hit(rank, hit) for rank, hit in enumerate(hits)]

    def _metadata_for(self, doc_id: str, vector_entry: Optional[tuple[int, VectorHit]]) -> dict:
        if vector_entry is not None:
            return dict(vector_entry[1].metadata)
        metadata = self.vector.get_metadata(doc_id)
        if metadata is not None:
            return metadata
        text = self.bm25.get_text(doc_id)
        return {"searchable_text": text} if text is not None else {}

    @staticmethod
    def _from_vector_hit(rank: int, hit: VectorHit) -> RetrievedRequirement:
        return RetrievedRequirement(
            doc_id=hit.doc_id,
            fused_score=hit.score,
            metadata=dict(hit.metadata),
            vector_score=hit.score,
            vector_rank=rank,
            source="VECTOR",
        )

    def _from_keyword_hit(self, rank: int, hit: KeywordHit) -> RetrievedRequirement:
        return RetrievedRequirement(
            doc_id=hit.doc_id,
            fused_score=hit.score,
            metadata=self._metadata_for(hit.doc_id, None),
            keyword_score=hit.score,
            keyword_rank=rank,
            source="KEYWORD",
        )


__all__ = ["HybridRetrievalConfig", "HybridRetriever", "reciprocal_rank_fusion"]

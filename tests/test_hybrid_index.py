from __future__ import annotations

from typing import Sequence

import pytest

from requirement_search.hybrid_search import (
    BM25Index,
    HybridRetrievalConfig,
    HybridRetriever,
    IndexedDocument,
    KeywordHit,
    VectorHit,
    VectorIndex,
    reciprocal_rank_fusion,
)


class StaticVectorIndex:
    def __init__(self, hits: list[VectorHit], metadata: dict[str, dict] | None = None):
        self.hits = hits
        self.metadata = metadata or {}
        self.calls: list[tuple[int, float]] = []

    def search(self, query_embedding: Sequence[float], top_k: int = 10, score_threshold: float = 0.3):
        self.calls.append((top_k, score_threshold))
        return self.hits[:top_k]

    def get_metadata(self, doc_id: str):
        return self.metadata.get(doc_id)


class StaticKeywordIndex:
    def __init__(self, hits: list[KeywordHit], texts: dict[str, str] | None = None):
        self.hits = hits
        self.texts = texts or {}
        self.calls: list[int] = []

    def search(self, query: str, top_k: int = 100):
        self.calls.append(top_k)
        return self.hits[:top_k]

    def get_text(self, doc_id: str):
        return self.texts.get(doc_id)


def test_rrf_sums_contributions_by_zero_based_rank():
    fused = reciprocal_rank_fusion([["a", "b", "c"], ["c", "a"]], k=60)

    assert fused["a"] == pytest.approx(1 / 61 + 1 / 62)
    assert fused["b"] == pytest.approx(1 / 62)
    assert fused["c"] == pytest.approx(1 / 63 + 1 / 61)


def test_rrf_keeps_first_seen_order_and_handles_empty_lists():
    fused = reciprocal_rank_fusion([[], ["x", "y"], ["y", "z"]], k=60)

    assert list(fused) == ["x", "y", "z"]
    assert fused["y"] == pytest.approx(1 / 62 + 1 / 61)
    assert reciprocal_rank_fusion([[], []]) == {}


def test_hybrid_requests_double_candidates_with_similarity_floor():
    vector = StaticVectorIndex([])
    keyword = StaticKeywordIndex([])
    retriever = HybridRetriever(vector, keyword)

    assert retriever.search("query", [1.0], top_k=5) == []
    assert vector.calls == [(10, 0.3)]
    assert keyword.calls == [10]


def test_hybrid_fuses_on_rank_not_magnitude():
    vector = StaticVectorIndex(
        [
            VectorHit("b", 0.31, {"raw_text": "B"}),
            VectorHit("a", 0.30, {"raw_text": "A"}),
        ]
    )
    keyword = StaticKeywordIndex([KeywordHit("a", 1000.0), KeywordHit("c", 0.01)])
    retriever = HybridRetriever(vector, keyword)

    results = retriever.search("query", [1.0], top_k=3)

    assert [result.doc_id for result in results] == ["a", "b", "c"]
    assert results[0].fused_score == pytest.approx(1 / 62 + 1 / 61)
    assert results[1].fused_score == pytest.approx(1 / 61)
    assert results[2].fused_score == pytest.approx(1 / 62)
    assert results[0].vector_rank == 1
    assert results[0].keyword_rank == 0
    assert results[0].vector_score == 0.30
    assert results[0].keyword_score == 1000.0
    assert results[2].vector_rank is None


def test_hybrid_prefers_vector_metadata_and_falls_back_for_keyword_only_hits():
    vector = StaticVectorIndex(
        [VectorHit("a", 0.9, {"raw_text": "from vector"})],
        metadata={"b": {"raw_text": "from snapshot"}},
    )
    keyword = StaticKeywordIndex(
        [KeywordHit("a", 3.0), KeywordHit("b", 2.0), KeywordHit("c", 1.0)],
        texts={"c": "keyword only text"},
    )
    retriever = HybridRetriever(vector, keyword)

    results = {result.doc_id: result for result in retriever.search("query", [1.0], top_k=3)}

    assert results["a"].metadata == {"raw_text": "from vector"}
    assert results["b"].metadata == {"raw_text": "from snapshot"}
    assert results["c"].metadata == {"searchable_text": "keyword only text"}


def test_hybrid_truncates_to_top_k():
    vector = StaticVectorIndex([VectorHit(f"v{i}", 0.9 - i * 0.01) for i in range(6)])
    keyword = StaticKeywordIndex([KeywordHit(f"k{i}", 10.0 - i) for i in range(6)])
    retriever = HybridRetriever(vector, keyword)

    results = retriever.search("query", [1.0], top_k=3)

    assert len(results) == 3
    # Equal fused scores keep vector-list order first.
    assert [result.doc_id for result in results] == ["v0", "k0", "v1"]


def test_hybrid_config_controls_fusion_constant_and_threshold():
    vector = StaticVectorIndex([VectorHit("a", 0.8)])
    keyword = StaticKeywordIndex([])
    retriever = HybridRetriever(
        vector,
        keyword,
        config=HybridRetrievalConfig(rrf_k=10, vector_score_threshold=0.5),
    )

    results = retriever.search("query", [1.0], top_k=1)

    assert results[0].fused_score == pytest.approx(1 / 11)
    assert vector.calls == [(2, 0.5)]


def test_single_backend_searches_report_source():
    vector = StaticVectorIndex([VectorHit("a", 0.8, {"raw_text": "A"})])
    keyword = StaticKeywordIndex([KeywordHit("b", 4.2)], texts={"b": "text b"})
    retriever = HybridRetriever(vector, keyword)

    vector_results = retriever.search_vector_only([1.0], top_k=5, score_threshold=0.1)
    keyword_results = retriever.search_keyword_only("query", top_k=5)

    assert vector.calls == [(5, 0.1)]
    assert vector_results[0].source == "VECTOR"
    assert vector_results[0].fused_score == 0.8
    assert keyword_results[0].source == "KEYWORD"
    assert keyword_results[0].keyword_score == 4.2
    assert keyword_results[0].metadata == {"searchable_text": "text b"}


def test_hybrid_over_real_indexes_on_empty_corpus():
    retriever = HybridRetriever(VectorIndex(), BM25Index())

    assert retriever.search("payment security", [1.0, 0.0], top_k=5) == []


def test_hybrid_over_real_indexes_prefers_semantic_match_when_lexical_absent():
    vector = VectorIndex()
    bm25 = BM25Index()
    vector.replace_all(
        [
            IndexedDocument("fox", [0.0, 1.0], {"raw_text": "The quick brown fox."}),
            IndexedDocument("card", [1.0, 0.0], {"raw_text": "Encrypt cardholder data."}),
        ]
    )
    bm25.rebuild({"fox": "the quick brown fox", "card": "encrypt cardholder data"})
    retriever = HybridRetriever(vector, bm25)

    results = retriever.search("protect credit cards", [0.9, 0.1], top_k=2)

    assert [result.doc_id for result in results] == ["card"]
    assert results[0].keyword_score is None
    assert results[0].metadata == {"raw_text": "Encrypt cardholder data."}

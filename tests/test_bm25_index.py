from __future__ import annotations

import json
import math
import threading
import time

import pytest

from requirement_search.exceptions import PersistenceError
from requirement_search.hybrid_search import BM25Index, KeywordSnapshot
from requirement_search.hybrid_search.bm25_index import BM25_INDEX_FILE

DOCUMENTS = {
    "d1": "payment security payment",
    "d2": "security audit",
    "d3": "office chairs",
}


def _expected_score(tf: int, doc_len: int, avgdl: float, n: int, df: int) -> float:
    k1, b = 1.5, 0.75
    idf = math.log((n - df + 0.5) / (df + 0.5) + 1)
    return idf * (tf * (k1 + 1)) / (tf + k1 * (1 - b + b * doc_len / avgdl))


def test_rebuild_records_lengths_and_inverted_index():
    index = BM25Index()
    snapshot = index.rebuild(DOCUMENTS)

    assert snapshot.total_docs == 3
    assert snapshot.doc_lengths == {"d1": 3, "d2": 2, "d3": 2}
    assert snapshot.avg_doc_length == pytest.approx(7 / 3)
    assert snapshot.inverted_index["payment"] == {"d1": 2}
    assert snapshot.inverted_index["security"] == {"d1": 1, "d2": 1}


def test_search_matches_hand_computed_bm25():
    index = BM25Index()
    index.rebuild(DOCUMENTS)

    hits = index.search("payment security")

    assert [hit.doc_id for hit in hits] == ["d1", "d2"]
    avgdl = 7 / 3
    expected_d1 = _expected_score(2, 3, avgdl, 3, 1) + _expected_score(1, 3, avgdl, 3, 2)
    expected_d2 = _expected_score(1, 2, avgdl, 3, 2)
    assert hits[0].score == pytest.approx(expected_d1)
    assert hits[1].score == pytest.approx(expected_d2)


def test_repeated_query_terms_count_once():
    index = BM25Index()
    index.rebuild(DOCUMENTS)

    assert index.search("payment payment payment")[0].score == pytest.approx(
        index.search("payment")[0].score
    )


def test_documents_without_query_terms_are_excluded():
    index = BM25Index()
    index.rebuild(DOCUMENTS)

    hits = index.search("payment")

    assert [hit.doc_id for hit in hits] == ["d1"]
    assert index.score("payment", "d3") == 0.0
    assert index.search("unknown words") == []


def test_score_is_monotone_and_saturating_in_term_frequency():
    # Every document has four tokens, so length and idf are fixed.
    filler = ["aa", "bb", "cc", "dd"]
    documents = {
        f"tf{tf}": " ".join(["term"] * tf + filler[: 4 - tf]) for tf in range(1, 5)
    }
    documents["other"] = "zz yy xx ww"
    index = BM25Index()
    index.rebuild(documents)

    scores = [index.score("term", f"tf{tf}") for tf in range(1, 5)]
    gains = [later - earlier for earlier, later in zip(scores, scores[1:])]

    assert all(gain > 0 for gain in gains)
    assert all(later < earlier for earlier, later in zip(gains, gains[1:]))


def test_search_respects_top_k_and_breaks_ties_by_document_order():
    index = BM25Index()
    index.rebuild({"z": "shared token", "y": "shared token", "x": "shared token"})

    hits = index.search("shared", top_k=2)

    assert [hit.doc_id for hit in hits] == ["z", "y"]
    assert index.search("shared", top_k=0) == []


def test_empty_index_returns_no_results():
    index = BM25Index()

    assert index.search("payment") == []
    index.rebuild({})
    assert index.count() == 0
    assert index.snapshot.avg_doc_length == 0.0
    assert index.search("payment") == []


def test_all_empty_documents_do_not_divide_by_zero():
    index = BM25Index()
    snapshot = index.rebuild({"a": "", "b": "x y"})

    assert snapshot.avg_doc_length == 0.0
    assert index.search("x y anything") == []


def test_zero_average_length_uses_one_minus_b_normalization():
    index = BM25Index()
    snapshot = KeywordSnapshot(avg_doc_length=0.0, total_docs=1)

    assert index._term_score(snapshot, 1.0, 1, 0) == pytest.approx(2.5 / (1 + 1.5 * 0.25))


def test_persist_and_load_round_trip(tmp_path):
    index = BM25Index(tmp_path)
    index.rebuild(DOCUMENTS)

    payload = json.loads((tmp_path / BM25_INDEX_FILE).read_text(encoding="utf-8"))
    assert set(payload) == {
        "inverted_index",
        "doc_lengths",
        "doc_texts",
        "avg_doc_length",
        "total_docs",
    }
    assert payload["total_docs"] == 3

    reloaded = BM25Index(tmp_path)
    assert reloaded.load() is True
    assert reloaded.search("payment security") == index.search("payment security")
    assert reloaded.get_text("d2") == "security audit"


def test_load_without_file_returns_false(tmp_path):
    assert BM25Index(tmp_path).load() is False


def test_load_rejects_malformed_index(tmp_path):
    (tmp_path / BM25_INDEX_FILE).write_text('{"inverted_index": []}', encoding="utf-8")

    with pytest.raises(PersistenceError, match="Malformed"):
        BM25Index(tmp_path).load()


def test_failed_persist_keeps_previous_snapshot(tmp_path, monkeypatch):
    index = BM25Index(tmp_path)
    index.rebuild({"keep": "payment gateway"})

    def broken_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("requirement_search.storage.files.os.replace", broken_replace)

    with pytest.raises(PersistenceError):
        index.rebuild({"new": "office chairs"})

    monkeypatch.undo()
    assert [hit.doc_id for hit in index.search("payment")] == ["keep"]
    assert index.search("chairs") == []


def test_load_rejects_postings_for_unknown_documents(tmp_path):
    payload = {
        "inverted_index": {"payment": {"ghost": 1}},
        "doc_lengths": {"real": 1},
        "doc_texts": {"real": "payment"},
        "avg_doc_length": 1.0,
        "total_docs": 1,
    }
    (tmp_path / BM25_INDEX_FILE).write_text(json.dumps(payload), encoding="utf-8")
    index = BM25Index(tmp_path)

    with pytest.raises(PersistenceError, match="without a length"):
        index.load()

    assert index.count() == 0


def test_snapshot_records_document_order_once():
    snapshot = BM25Index().build_snapshot({"z": "one", "a": "two", "m": "three"})

    assert snapshot.order == {"z": 0, "a": 1, "m": 2}
    assert KeywordSnapshot.from_data(snapshot.to_data()).order == snapshot.order


def test_overlapping_rebuilds_publish_in_commit_order(tmp_path, monkeypatch):
    index = BM25Index(tmp_path)
    first_publishing = threading.Event()
    publish = index.publish

    def slow_publish(snapshot):
        if "first" in snapshot.doc_lengths:
            first_publishing.set()
            # Leave room for the second writer to race ahead.
            time.sleep(0.2)
        publish(snapshot)

    monkeypatch.setattr(index, "publish", slow_publish)

    first = threading.Thread(target=index.rebuild, args=({"first": "payment gateway"},))
    first.start()
    assert first_publishing.wait(timeout=5)
    second = threading.Thread(target=index.rebuild, args=({"second": "office chairs"},))
    second.start()
    first.join(timeout=5)
    second.join(timeout=5)

    on_disk = BM25Index(tmp_path)
    on_disk.load()
    assert list(index.snapshot.doc_lengths) == list(on_disk.snapshot.doc_lengths) == ["second"]

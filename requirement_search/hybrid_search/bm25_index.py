from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping

from pydantic import BaseModel, Field, ValidationError

from requirement_search.exceptions import InvalidDocumentError, PersistenceError
from requirement_search.storage.files import FileTransaction

from .models import KeywordHit
from .tokenizer import TokenizeFn, tokenize

logger = logging.getLogger(__name__)

BM25_INDEX_FILE = "bm25_index.json"


class BM25IndexData(BaseModel):
    """On-disk layout of a keyword snapshot."""

    inverted_index: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    doc_lengths: Dict[str, int] = Field(default_factory=dict)
    doc_texts: Dict[str, str] = Field(default_factory=dict)
    avg_doc_length: float = 0.0
    total_docs: int = 0


@dataclass(frozen=True)
class KeywordSnapshot:
    """Immutable, fully built state of a :class:`BM25Index`."""

    inverted_index: Mapping[str, Mapping[str, int]] = field(default_factory=dict)
    doc_lengths: Mapping[str, int] = field(default_factory=dict)
    doc_texts: Mapping[str, str] = field(default_factory=dict)
    avg_doc_length: float = 0.0
    total_docs: int = 0
    order: Mapping[str, int] = field(init=False, repr=False, compare=False, default_factory=dict)

    def __post_init__(self) -> None:
        # Insertion position of every document; breaks score ties in search.
        object.__setattr__(
            self, "order", {doc_id: position for position, doc_id in enumerate(self.doc_lengths)}
        )

    def to_data(self) -> BM25IndexData:
        return BM25IndexData(
            inverted_index={term: dict(postings) for term, postings in self.inverted_index.items()},
            doc_lengths=dict(self.doc_lengths),
            doc_texts=dict(self.doc_texts),
            avg_doc_length=self.avg_doc_length,
            total_docs=self.total_docs,
        )

    @classmethod
    def from_data(cls, data: BM25IndexData) -> "KeywordSnapshot":
        return cls(
            inverted_index=data.inverted_index,
            doc_lengths=data.doc_lengths,
            doc_texts=data.doc_texts,
            avg_doc_length=data.avg_doc_length,
            total_docs=data.total_docs,
        )


class BM25Index:
    """BM25 keyword index backed by an inverted index with JSON persistence."""

    def __init__(
        self,
        index_dir: Path | str | None = None,
        *,
        k1: float = 1.5,
        b: float = 0.75,
        tokenizer: TokenizeFn | None = None,
    ) -> None:
        self.index_dir = Path(index_dir) if index_dir is not None else None
        self.k1 = k1
        self.b = b
        self.tokenizer: TokenizeFn = tokenizer or tokenize
        self._snapshot = KeywordSnapshot()
        # Held across build, commit and publish so disk and memory change in the same order.
        self.write_lock = threading.RLock()

    @property
    def snapshot(self) -> KeywordSnapshot:
        return self._snapshot

    @property
    def index_path(self) -> Path | None:
        return self.index_dir / BM25_INDEX_FILE if self.index_dir is not None else None

    def count(self) -> int:
        return self._snapshot.total_docs

    def get_text(self, doc_id: str) -> str | None:
        return self._snapshot.doc_texts.get(doc_id)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    def build_snapshot(self, documents: Mapping[str, str]) -> KeywordSnapshot:
        inverted_index: Dict[str, Dict[str, int]] = {}
        doc_lengths: Dict[str, int] = {}
        doc_texts: Dict[str, str] = {}

        for doc_id, text in documents.items():
            if not doc_id:
                raise InvalidDocumentError("Keyword document has no id")
            tokens = self.tokenizer(text or "")
            doc_lengths[doc_id] = len(tokens)
            doc_texts[doc_id] = text or ""
            for term, frequency in Counter(tokens).items():
                inverted_index.setdefault(term, {})[doc_id] = frequency

        total_docs = len(doc_lengths)
        avg_doc_length = sum(doc_lengths.values()) / total_docs if total_docs else 0.0

        return KeywordSnapshot(
            inverted_index=inverted_index,
            doc_lengths=doc_lengths,
            doc_texts=doc_texts,
            avg_doc_length=avg_doc_length,
            total_docs=total_docs,
        )

    def stage(self, snapshot: KeywordSnapshot, transaction: FileTransaction) -> None:
        if self.index_dir is None:
            return
        transaction.write_text(
            self.index_dir / BM25_INDEX_FILE, snapshot.to_data().model_dump_json(indent=2)
        )

    def publish(self, snapshot: KeywordSnapshot) -> None:
        """Make ``snapshot`` visible to readers; callers hold :attr:`write_lock`."""

        self._snapshot = snapshot

    def reset(self) -> None:
        with self.write_lock:
            self.publish(KeywordSnapshot())

    def rebuild(self, documents: Mapping[str, str]) -> KeywordSnapshot:
        """Rebuild the index from ``documents`` (id -> text) and persist it."""

        logger.info("Building BM25 index for %s documents", len(documents))
        with self.write_lock:
            snapshot = self.build_snapshot(documents)

            try:
                with FileTransaction() as transaction:
                    self.stage(snapshot, transaction)
                    transaction.commit()
            except OSError as exc:
                raise PersistenceError(f"Failed to persist BM25 index: {exc}") from exc

            self.publish(snapshot)
        logger.info(
            "BM25 index built successfully. Avg doc length: %.2f", snapshot.avg_doc_length
        )
        return snapshot

    def load(self) -> bool:
        """Load the persisted snapshot, returning ``False`` when none exists."""

        with self.write_lock:
            return self._load()

    def _load(self) -> bool:
        index_path = self.index_path
        if index_path is None:
            return False
        if not index_path.exists():
            logger.info("No existing BM25 index found at %s", index_path)
            return False

        try:
            data = BM25IndexData.model_validate_json(index_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise PersistenceError(f"Failed to read BM25 index: {exc}") from exc
        except ValidationError as exc:
            raise PersistenceError(f"Malformed BM25 index at {index_path}: {exc}") from exc

        if data.total_docs != len(data.doc_lengths):
            raise PersistenceError(
                f"BM25 index declares {data.total_docs} documents "
                f"but stores {len(data.doc_lengths)} lengths"
            )

        unknown = {
            doc_id
            for postings in data.inverted_index.values()
            for doc_id in postings
            if doc_id not in data.doc_lengths
        }
        if unknown:
            raise PersistenceError(
                f"BM25 index postings reference {len(unknown)} documents without a length"
            )

        self.publish(KeywordSnapshot.from_data(data))
        logger.info("Loaded BM25 index with %s documents", data.total_docs)
        return True

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    def search(self, query: str, top_k: int = 100) -> List[KeywordHit]:
        snapshot = self._snapshot
        if not snapshot.total_docs or top_k <= 0:
            return []

        terms = list(dict.fromkeys(self.tokenizer(query or "")))
        scores: Dict[str, float] = {}
        for term in terms:
            postings = snapshot.inverted_index.get(term)
            if not postings:
                continue
            idf = self._idf(snapshot, len(postings))
            for doc_id, frequency in postings.items():
                scores[doc_id] = scores.get(doc_id, 0.0) + self._term_score(
                    snapshot, idf, frequency, snapshot.doc_lengths[doc_id]
                )

        order = snapshot.order
        ranked = sorted(
            (item for item in scores.items() if item[1] > 0),
            key=lambda item: (-item[1], order.get(item[0], len(order))),
        )
        hits = [KeywordHit(doc_id=doc_id, score=score) for doc_id, score in ranked[:top_k]]
        logger.debug("BM25 search returned %s results for query: %s", len(hits), query)
        return hits

    def score(self, query: str, doc_id: str) -> float:
        """Return the BM25 score of a single document for ``query``."""

        snapshot = self._snapshot
        if doc_id not in snapshot.doc_lengths:
            return 0.0

        total = 0.0
        for term in dict.fromkeys(self.tokenizer(query or "")):
            postings = snapshot.inverted_index.get(term)
            if not postings or doc_id not in postings:
                continue
            total += self._term_score(
                snapshot,
                self._idf(snapshot, len(postings)),
                postings[doc_id],
                snapshot.doc_lengths[doc_id],
            )
        return total

    @staticmethod
    def _idf(snapshot: KeywordSnapshot, doc_freq: int) -> float:
        return math.log((snapshot.total_docs - doc_freq + 0.5) / (doc_freq + 0.5) + 1.0)

    def _term_score(
        self, snapshot: KeywordSnapshot, idf: float, frequency: int, doc_length: int
    ) -> float:
        # An all-empty corpus has avgdl == 0; length normalization then reduces to 1 - b.
        if snapshot.avg_doc_length > 0:
            length_ratio = doc_length / snapshot.avg_doc_length
        else:
            length_ratio = 0.0
        denom = frequency + self.k1 * (1 - self.b + self.b * length_ratio)
        return idf * (frequency * (self.k1 + 1)) / denom


__all__ = ["BM25Index", "BM25IndexData", "BM25_INDEX_FILE", "KeywordSnapshot"]

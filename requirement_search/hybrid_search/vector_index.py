from __future__ import annotations

import json
import logging
import struct
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from requirement_search.exceptions import (
    DimensionMismatchError,
    InvalidDocumentError,
    PersistenceError,
)
from requirement_search.storage.files import FileTransaction

from .models import IndexedDocument, VectorHit

logger = logging.getLogger(__name__)

EMBEDDINGS_FILE = "embeddings.bin"
METADATA_FILE = "metadata.json"
ID_FIELD = "client_reference_id"

# Vectors shorter than this are stored as-is instead of being divided by ~0.
MIN_NORM = 1e-10

_HEADER = struct.Struct("<ii")
_FLOAT32_LE = np.dtype("<f4")


def l2_normalize(matrix: np.ndarray) -> np.ndarray:
    """Return a float32 copy of ``matrix`` with every row scaled to unit length.

    Rows whose magnitude is below ``MIN_NORM`` are returned unchanged.
    """

    values = np.array(matrix, dtype=np.float64, copy=True)
    if values.ndim == 1:
        return l2_normalize(values.reshape(1, -1))[0]
    if values.size == 0:
        return values.astype(np.float32)

    norms = np.linalg.norm(values, axis=1, keepdims=True)
    scale = np.where(norms < MIN_NORM, 1.0, norms)
    return (values / scale).astype(np.float32)


@dataclass(frozen=True, eq=False)
class VectorSnapshot:
    """Immutable, fully built state of a :class:`VectorIndex`."""

    ids: Tuple[str, ...] = ()
    vectors: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.float32))
    metadata: Tuple[Dict[str, Any], ...] = ()
    positions: Mapping[str, int] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.ids)

    @property
    def dimension(self) -> int:
        return int(self.vectors.shape[1]) if self.vectors.ndim == 2 else 0


class VectorIndex:
    """Exact cosine-similarity index over unit-normalized embeddings.

    Search is a brute-force dot product against every stored row. State lives in
    an immutable :class:`VectorSnapshot` that is rebuilt off to the side and
    published by swapping a single reference, so readers never observe a
    half-replaced index.
    """

    def __init__(self, index_dir: Path | str | None = None, *, dimension: int | None = None) -> None:
        self.index_dir = Path(index_dir) if index_dir is not None else None
        self._pinned_dimension = dimension
        self._snapshot = VectorSnapshot()
        # Held across build, commit and publish so disk and memory change in the same order.
        self.write_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def snapshot(self) -> VectorSnapshot:
        return self._snapshot

    @property
    def dimension(self) -> int | None:
        snapshot = self._snapshot
        if snapshot.count:
            return snapshot.dimension
        return self._pinned_dimension

    @property
    def embeddings_path(self) -> Path | None:
        return self.index_dir / EMBEDDINGS_FILE if self.index_dir is not None else None

    @property
    def metadata_path(self) -> Path | None:
        return self.index_dir / METADATA_FILE if self.index_dir is not None else None

    def count(self) -> int:
        return self._snapshot.count

    def ids(self) -> List[str]:
        return list(self._snapshot.ids)

    def get_metadata(self, doc_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshot
        position = snapshot.positions.get(doc_id)
        if position is None:
            return None
        return dict(snapshot.metadata[position])

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    def build_snapshot(self, documents: Iterable[IndexedDocument]) -> VectorSnapshot:
        """Validate and normalize ``documents`` into a new, unpublished snapshot."""

        docs = list(documents)
        expected = self._pinned_dimension
        positions: Dict[str, int] = {}
        rows: List[np.ndarray] = []

        for position, doc in enumerate(docs):
            if not doc.doc_id:
                raise InvalidDocumentError(f"Document at position {position} has no id")
            if doc.doc_id in positions:
                raise InvalidDocumentError(f"Duplicate document id {doc.doc_id!r}")

            vector = np.asarray(doc.embedding, dtype=np.float32)
            if vector.ndim != 1:
                raise DimensionMismatchError(
                    expected or 0, int(vector.size), document_id=doc.doc_id
                )
            if expected is None:
                expected = int(vector.shape[0])
            elif vector.shape[0] != expected:
                raise DimensionMismatchError(
                    expected, int(vector.shape[0]), document_id=doc.doc_id
                )

            positions[doc.doc_id] = position
            rows.append(vector)

        if rows:
            vectors = l2_normalize(np.vstack(rows))
        else:
            vectors = np.zeros((0, expected or 0), dtype=np.float32)
        vectors.setflags(write=False)

        return VectorSnapshot(
            ids=tuple(doc.doc_id for doc in docs),
            vectors=vectors,
            metadata=tuple(
                {key: value for key, value in doc.metadata.items() if key != ID_FIELD}
                for doc in docs
            ),
            positions=positions,
        )

    def stage(self, snapshot: VectorSnapshot, transaction: FileTransaction) -> None:
        """Add the persisted form of ``snapshot`` to ``transaction``."""

        if self.index_dir is None:
            return

        payload = bytearray(_HEADER.pack(snapshot.count, snapshot.dimension))
        payload += np.ascontiguousarray(snapshot.vectors, dtype=_FLOAT32_LE).tobytes()

        records = [
            {ID_FIELD: doc_id, **metadata}
            for doc_id, metadata in zip(snapshot.ids, snapshot.metadata)
        ]

        transaction.write_bytes(self.index_dir / EMBEDDINGS_FILE, bytes(payload))
        transaction.write_text(
            self.index_dir / METADATA_FILE, json.dumps(records, indent=2, ensure_ascii=False)
        )

    def publish(self, snapshot: VectorSnapshot) -> None:
        """Make ``snapshot`` visible to readers; callers hold :attr:`write_lock`."""

        self._snapshot = snapshot

    def reset(self) -> None:
        """Drop the in-memory snapshot; files on disk are left alone."""

        with self.write_lock:
            self.publish(VectorSnapshot())

    def replace_all(self, documents: Iterable[IndexedDocument]) -> VectorSnapshot:
        """Replace the whole index with ``documents`` and persist it.

        The new snapshot only becomes visible once it has been durably written.
        """

        with self.write_lock:
            snapshot = self.build_snapshot(documents)
            logger.info("Replacing vector index with %s vectors", snapshot.count)

            try:
                with FileTransaction() as transaction:
                    self.stage(snapshot, transaction)
                    transaction.commit()
            except OSError as exc:
                raise PersistenceError(f"Failed to persist vector index: {exc}") from exc

            self.publish(snapshot)
        logger.info("Vector index now holds %s vectors", snapshot.count)
        return snapshot

    def load(self) -> bool:
        """Load the persisted snapshot, returning ``False`` when none exists."""

        with self.write_lock:
            return self._load()

    def _load(self) -> bool:
        embeddings_path = self.embeddings_path
        metadata_path = self.metadata_path
        if embeddings_path is None or metadata_path is None:
            return False
        if not embeddings_path.exists() or not metadata_path.exists():
            logger.info("No existing vector index found in %s", self.index_dir)
            return False

        logger.info("Loading vector index from %s", self.index_dir)
        try:
            raw = embeddings_path.read_bytes()
            records = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Failed to read vector index: {exc}") from exc

        vectors = _decode_vectors(raw, embeddings_path)
        count, dimension = vectors.shape

        if count and self._pinned_dimension is not None and dimension != self._pinned_dimension:
            raise DimensionMismatchError(self._pinned_dimension, dimension)
        if not isinstance(records, list) or len(records) != count:
            actual = len(records) if isinstance(records, list) else "non-list"
            raise PersistenceError(
                f"Vector metadata holds {actual} records but {count} vectors are stored"
            )

        ids: List[str] = []
        metadata: List[Dict[str, Any]] = []
        positions: Dict[str, int] = {}
        for position, record in enumerate(records):
            if not isinstance(record, dict) or not record.get(ID_FIELD):
                raise PersistenceError(f"Vector metadata record {position} has no id")
            payload = dict(record)
            doc_id = str(payload.pop(ID_FIELD))
            ids.append(doc_id)
            metadata.append(payload)
            positions[doc_id] = position

        if not count and self._pinned_dimension is not None:
            vectors = np.zeros((0, self._pinned_dimension), dtype=np.float32)
        vectors.setflags(write=False)

        self.publish(
            VectorSnapshot(
                ids=tuple(ids),
                vectors=vectors,
                metadata=tuple(metadata),
                positions=positions,
            )
        )
        logger.info("Loaded %s vectors from disk", count)
        return True

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    def search(
        self,
        query_embedding: Sequence[float],
        top_k: int = 10,
        score_threshold: float = 0.3,
    ) -> List[VectorHit]:
        """Return up to ``top_k`` hits scoring at least ``score_threshold``."""

        snapshot = self._snapshot
        if not snapshot.count:
            logger.debug("No vectors in store; returning empty results")
            return []
        if top_k <= 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        if query.ndim != 1 or query.shape[0] != snapshot.dimension:
            raise DimensionMismatchError(snapshot.dimension, int(query.size))

        scores = snapshot.vectors @ l2_normalize(query)
        candidates = np.flatnonzero(scores >= score_threshold)
        order = candidates[np.argsort(-scores[candidates], kind="stable")][:top_k]

        hits = [
            VectorHit(
                doc_id=snapshot.ids[position],
                score=float(scores[position]),
                metadata=dict(snapshot.metadata[position]),
            )
            for position in order
        ]
        logger.debug(
            "Vector search returned %s results (threshold: %s)", len(hits), score_threshold
        )
        return hits


def _decode_vectors(raw: bytes, path: Path) -> np.ndarray:
    if len(raw) < _HEADER.size:
        raise PersistenceError(f"Vector file {path} is truncated")

    count, dimension = _HEADER.unpack_from(raw)
    if count < 0 or dimension < 0:
        raise PersistenceError(f"Vector file {path} has an invalid header")

    expected_size = _HEADER.size + count * dimension * _FLOAT32_LE.itemsize
    if len(raw) != expected_size:
        raise PersistenceError(
            f"Vector file {path} holds {len(raw)} bytes, expected {expected_size}"
        )

    if not count or not dimension:
        return np.zeros((count, dimension), dtype=np.float32)

    values = np.frombuffer(raw, dtype=_FLOAT32_LE, offset=_HEADER.size)
    return values.astype(np.float32).reshape(count, dimension)


__all__ = ["EMBEDDINGS_FILE", "METADATA_FILE", "VectorIndex", "VectorSnapshot", "l2_normalize"]

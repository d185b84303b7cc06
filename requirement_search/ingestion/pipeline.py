"""Rebuild the vector and keyword indexes from one batch of requirements."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from requirement_search.exceptions import CountMismatchError, PersistenceError
from requirement_search.hybrid_search.bm25_index import BM25Index
from requirement_search.hybrid_search.embeddings import Embedder
from requirement_search.hybrid_search.models import IndexedDocument
from requirement_search.hybrid_search.vector_index import VectorIndex
from requirement_search.models import Requirement
from requirement_search.storage.files import FileTransaction

logger = logging.getLogger(__name__)

FIELD_DELIMITER = " | "


def build_searchable_text(requirement: Requirement) -> str:
    """Concatenate text and tagged metadata into the string that gets indexed.

    The same text is embedded and tokenized, so tagged fields such as
    ``regulation: pci dss`` are searchable by both backends.
    """

    parts: List[str] = [requirement.normalized_text, requirement.raw_text]

    action = requirement.action
    if action.verb:
        parts.append(f"action: {action.verb} {action.modality}")

    classification = requirement.classification
    if classification.requirement_type:
        parts.append(f"type: {classification.requirement_type}")
    if classification.criticality:
        parts.append(f"criticality: {classification.criticality}")

    if requirement.constraint.description:
        parts.append(f"constraint: {requirement.constraint.description}")

    entities = requirement.entities
    parts.extend(f"system: {system}" for system in entities.systems if system)
    parts.extend(f"standard: {standard}" for standard in entities.standards if standard)
    parts.extend(f"regulation: {regulation}" for regulation in entities.regulations if regulation)

    return FIELD_DELIMITER.join(part for part in parts if part and part.strip()).lower()


@dataclass(frozen=True)
class IngestionReport:
    document_count: int
    dimension: int
    avg_doc_length: float
    vocabulary_size: int
    elapsed_s: float


class IngestionPipeline:
    """Build both index snapshots and publish them together.

    Validation for both indexes happens before anything is written. The three
    snapshot files are committed in a single :class:`FileTransaction` while both
    index write locks are held, and the in-memory snapshots are swapped only
    after the commit succeeds, so a failure leaves both indexes at their
    previous state.
    """

    def __init__(self, vector_index: VectorIndex, bm25_index: BM25Index) -> None:
        self.vector_index = vector_index
        self.bm25_index = bm25_index

    def ingest(
        self,
        requirements: Sequence[Requirement],
        embeddings: Sequence[Sequence[float]],
    ) -> IngestionReport:
        if len(embeddings) != len(requirements):
            logger.error(
                "Embedding count mismatch: expected %s, got %s",
                len(requirements),
                len(embeddings),
            )
            raise CountMismatchError(len(requirements), len(embeddings))

        started = time.perf_counter()
        logger.info("Starting ingestion of %s requirements", len(requirements))

        texts = [build_searchable_text(requirement) for requirement in requirements]
        documents = [
            IndexedDocument(
                doc_id=requirement.client_reference_id,
                embedding=embedding,
                metadata=requirement.index_metadata(),
            )
            for requirement, embedding in zip(requirements, embeddings)
        ]
        keyword_documents: Dict[str, str] = {
            requirement.client_reference_id: text
            for requirement, text in zip(requirements, texts)
        }

        # Lock order: vector, then keyword.
        with self.vector_index.write_lock, self.bm25_index.write_lock:
            vector_snapshot = self.vector_index.build_snapshot(documents)
            keyword_snapshot = self.bm25_index.build_snapshot(keyword_documents)

            try:
                with FileTransaction() as transaction:
                    self.vector_index.stage(vector_snapshot, transaction)
                    self.bm25_index.stage(keyword_snapshot, transaction)
                    transaction.commit()
            except OSError as exc:
                logger.error("Failed to persist index snapshots: %s", exc)
                raise PersistenceError(f"Failed to persist index snapshots: {exc}") from exc

            self.vector_index.publish(vector_snapshot)
            self.bm25_index.publish(keyword_snapshot)

        report = IngestionReport(
            document_count=vector_snapshot.count,
            dimension=vector_snapshot.dimension,
            avg_doc_length=keyword_snapshot.avg_doc_length,
            vocabulary_size=len(keyword_snapshot.inverted_index),
            elapsed_s=time.perf_counter() - started,
        )
        logger.info(
            "Successfully ingested %s requirements (dimension %s, vocabulary %s)",
            report.document_count,
            report.dimension,
            report.vocabulary_size,
        )
        return report

    def ingest_with_embedder(
        self,
        requirements: Sequence[Requirement],
        embedder: Embedder,
        *,
        batch_size: Optional[int] = None,
    ) -> IngestionReport:
        """Embed the searchable text of every requirement, then :meth:`ingest`."""

        texts = [build_searchable_text(requirement) for requirement in requirements]
        logger.info("Generating embeddings for %s requirements", len(texts))
        if batch_size is None:
            embeddings = embedder.embed_batch(texts)
        else:
            embeddings = []
            for start in range(0, len(texts), batch_size):
                embeddings.extend(embedder.embed_batch(texts[start : start + batch_size]))
        return self.ingest(requirements, list(embeddings))


__all__ = ["FIELD_DELIMITER", "IngestionPipeline", "IngestionReport", "build_searchable_text"]

"""Primary entrypoint for requirement ingestion and retrieval."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from requirement_search.clients.azure_openai import AzureOpenAIEmbedder
from requirement_search.config import SearchConfig
from requirement_search.exceptions import ConfigError
from requirement_search.hybrid_search import (
    BM25Index,
    Embedder,
    HybridRetrievalConfig,
    HybridRetriever,
    RetrievedRequirement,
    VectorIndex,
)
from requirement_search.ingestion import IngestionPipeline, IngestionReport
from requirement_search.models import Requirement

logger = logging.getLogger(__name__)


class RequirementSearchEngine:
    """Owns both indexes and exposes ingestion and the three search modes."""

    def __init__(
        self,
        config: Optional[SearchConfig] = None,
        *,
        embedder: Optional[Embedder] = None,
        load: bool = True,
    ) -> None:
        self.config = config or SearchConfig()
        self._ensure_directories()
        self._embedder = embedder

        self.vector_index = VectorIndex(
            self.config.index_dir, dimension=self.config.embedding_dimension
        )
        self.bm25_index = BM25Index(self.config.index_dir)
        self.retriever = HybridRetriever(
            self.vector_index,
            self.bm25_index,
            config=HybridRetrievalConfig(
                rrf_k=self.config.rrf_k,
                vector_score_threshold=self.config.vector_score_threshold,
            ),
        )
        self.pipeline = IngestionPipeline(self.vector_index, self.bm25_index)

        if load:
            self.load()

    def _ensure_directories(self) -> None:
        path = self.config.index_dir
        if path.exists() and not path.is_dir():
            raise ConfigError(f"Configured path is not a directory: {path}")
        path.mkdir(parents=True, exist_ok=True)

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            if not self.config.embeddings_configured:
                raise ConfigError(
                    "Embedding provider is not configured; set AZURE_OPENAI_ENDPOINT, "
                    "AZURE_OPENAI_API_KEY and AZURE_OPENAI_EMB_DEPLOYMENT"
                )
            self._embedder = AzureOpenAIEmbedder(
                endpoint=self.config.azure_openai_endpoint or "",
                api_key=self.config.azure_openai_api_key or "",
                deployment=self.config.azure_openai_embedding_deployment or "",
                api_version=self.config.azure_openai_api_version,
                dimension=self.config.embedding_dimension,
                batch_size=self.config.embedding_batch_size,
                batch_delay_s=self.config.embedding_batch_delay_s,
                timeout=self.config.request_timeout_s,
                max_attempts=self.config.request_max_attempts,
            )
        return self._embedder

    def load(self) -> bool:
        """Load persisted snapshots; returns ``True`` when both indexes were found.

        A lone snapshot is not served: both indexes are reset to empty until the
        next ingestion writes a matching pair.
        """

        with self.vector_index.write_lock, self.bm25_index.write_lock:
            vector_loaded = self.vector_index.load()
            keyword_loaded = self.bm25_index.load()
            if vector_loaded != keyword_loaded:
                logger.warning(
                    "Only one index snapshot found in %s (vector=%s, keyword=%s); "
                    "serving empty indexes until the next ingestion",
                    self.config.index_dir,
                    vector_loaded,
                    keyword_loaded,
                )
                self.vector_index.reset()
                self.bm25_index.reset()
        return vector_loaded and keyword_loaded

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def ingest(
        self, requirements: Sequence[Requirement], embeddings: Sequence[Sequence[float]]
    ) -> IngestionReport:
        return self.pipeline.ingest(requirements, embeddings)

    def ingest_requirements(self, requirements: Sequence[Requirement]) -> IngestionReport:
        """Embed ``requirements`` with the configured provider and rebuild both indexes."""

        return self.pipeline.ingest_with_embedder(requirements, self.embedder)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------
    def search_hybrid(
        self,
        query_text: str,
        query_embedding: Optional[Sequence[float]] = None,
        top_k: int = 10,
    ) -> List[RetrievedRequirement]:
        if query_embedding is None:
            query_embedding = self.embedder.embed(query_text)
        return self.retriever.search(query_text, query_embedding, top_k=top_k)

    def search_vector_only(
        self,
        query_embedding: Sequence[float],
        top_k: int = 10,
        score_threshold: Optional[float] = None,
    ) -> List[RetrievedRequirement]:
        return self.retriever.search_vector_only(
            query_embedding, top_k=top_k, score_threshold=score_threshold
        )

    def search_keyword_only(self, query_text: str, top_k: int = 10) -> List[RetrievedRequirement]:
        return self.retriever.search_keyword_only(query_text, top_k=top_k)

    def count(self) -> int:
        return self.vector_index.count()


__all__ = ["RequirementSearchEngine"]

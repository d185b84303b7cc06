"""Azure OpenAI embeddings client."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from requirement_search.exceptions import ConfigError, EmbeddingError

from .base import BaseHttpClient, ClientError

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-02-01"
DEFAULT_DIMENSION = 3072


class AzureOpenAIEmbedder(BaseHttpClient):
    """Embed texts through an Azure OpenAI embeddings deployment.

    ``embed_batch`` never raises for provider failures: a batch that still fails
    after retries is returned as zero vectors of ``dimension`` so the caller
    keeps one vector per input text.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str,
        deployment: str,
        api_version: str = DEFAULT_API_VERSION,
        dimension: int = DEFAULT_DIMENSION,
        batch_size: int = 50,
        batch_delay_s: float = 0.0,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
    ) -> None:
        if not endpoint:
            raise ConfigError("Azure OpenAI endpoint is not configured")
        if not api_key:
            raise ConfigError("Azure OpenAI API key is not configured")
        if not deployment:
            raise ConfigError("Azure OpenAI embedding deployment is not configured")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        super().__init__(
            session=session, base_url=endpoint, timeout=timeout, max_attempts=max_attempts
        )
        self.deployment = deployment
        self.api_version = api_version
        self.dimension = dimension
        self.batch_size = batch_size
        self.batch_delay_s = batch_delay_s
        self.session.headers["api-key"] = api_key
        logger.info("Azure OpenAI embeddings initialized with deployment: %s", deployment)

    @property
    def model_name(self) -> str:
        return self.deployment

    def embed(self, text: str) -> List[float]:
        """Embed a single query text, raising :class:`EmbeddingError` on failure."""

        try:
            return self._embed_request([text])[0]
        except (ClientError, KeyError, TypeError, ValueError) as exc:
            logger.error("Error generating embedding for text: %s", text[:50])
            raise EmbeddingError(f"Failed to embed query: {exc}") from exc

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        items = list(texts)
        embeddings: List[List[float]] = []
        logger.info(
            "Generating embeddings for %s texts in batches of %s", len(items), self.batch_size
        )

        for start in range(0, len(items), self.batch_size):
            batch = items[start : start + self.batch_size]
            try:
                embeddings.extend(self._embed_request(batch))
                logger.info(
                    "Generated embeddings for batch %s/%s",
                    min(start + self.batch_size, len(items)),
                    len(items),
                )
            except (ClientError, KeyError, TypeError, ValueError) as exc:
                logger.error("Error generating batch embeddings at index %s: %s", start, exc)
                embeddings.extend([0.0] * self.dimension for _ in batch)

            if self.batch_delay_s and start + self.batch_size < len(items):
                time.sleep(self.batch_delay_s)

        return embeddings

    def _embed_request(self, batch: List[str]) -> List[List[float]]:
        response = self._request(
            "POST",
            f"/openai/deployments/{self.deployment}/embeddings",
            params={"api-version": self.api_version},
            json={"input": batch},
        )
        payload: Dict[str, Any] = response.json()
        data = payload.get("data")
        if not isinstance(data, list) or len(data) != len(batch):
            raise ValueError(
                f"Expected {len(batch)} embeddings, got "
                f"{len(data) if isinstance(data, list) else 'none'}"
            )
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [[float(value) for value in item["embedding"]] for item in ordered]


__all__ = ["AzureOpenAIEmbedder", "DEFAULT_API_VERSION", "DEFAULT_DIMENSION"]

"""Application configuration for the requirement search engine."""

from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(name: str) -> AliasChoices:
    return AliasChoices(name, f"REQUIREMENT_SEARCH_{name}")


class SearchConfig(BaseSettings):  # type: ignore[misc]
    """Settings controlling index paths, retrieval parameters and the embedding service."""

    index_dir: Path = Field(
        Path("vector_indexes"), description="Directory holding the persisted index snapshots"
    )
    embedding_dimension: int = Field(3072, description="Dimension of every stored embedding")
    embedding_batch_size: int = Field(50, description="Texts sent per embeddings request")
    embedding_batch_delay_s: float = Field(
        1.0, description="Pause between embedding batches to stay under rate limits"
    )
    vector_score_threshold: float = Field(
        0.3, description="Minimum cosine similarity for vector candidates"
    )
    rrf_k: int = Field(60, description="Reciprocal Rank Fusion smoothing constant")
    request_timeout_s: float = Field(
        30.0, description="Default timeout (in seconds) for outbound HTTP requests"
    )
    request_max_attempts: int = Field(
        3, description="Attempts per HTTP request before a throttled or failing call gives up"
    )

    azure_openai_endpoint: Optional[str] = Field(
        None, validation_alias=_env("AZURE_OPENAI_ENDPOINT")
    )
    azure_openai_api_key: Optional[str] = Field(
        None, validation_alias=_env("AZURE_OPENAI_API_KEY"), repr=False
    )
    azure_openai_embedding_deployment: Optional[str] = Field(
        None, validation_alias=_env("AZURE_OPENAI_EMB_DEPLOYMENT")
    )
    azure_openai_api_version: str = Field(
        "2024-02-01", validation_alias=_env("AZURE_OPENAI_API_VERSION")
    )

    model_config = SettingsConfigDict(
        env_prefix="REQUIREMENT_SEARCH_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalize paths to absolute locations."""

        self.index_dir = self.index_dir.expanduser().resolve()

    @field_validator(
        "embedding_dimension", "embedding_batch_size", "rrf_k", "request_max_attempts"
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("vector_score_threshold")
    @classmethod
    def validate_threshold(cls, value: float) -> float:
        if not -1.0 <= value <= 1.0:
            raise ValueError("vector_score_threshold must lie within [-1, 1]")
        return value

    @property
    def embeddings_configured(self) -> bool:
        return bool(
            self.azure_openai_endpoint
            and self.azure_openai_api_key
            and self.azure_openai_embedding_deployment
        )

"""Outbound API clients."""

from .azure_openai import AzureOpenAIEmbedder
from .base import (
    BaseHttpClient,
    ClientError,
    RateLimitedError,
    RequestRejectedError,
    UnauthorizedError,
    UpstreamError,
)

__all__ = [
    "AzureOpenAIEmbedder",
    "BaseHttpClient",
    "ClientError",
    "RateLimitedError",
    "RequestRejectedError",
    "UnauthorizedError",
    "UpstreamError",
]

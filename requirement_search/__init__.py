"""Hybrid BM25 + vector retrieval over structured requirement records."""

from .config import SearchConfig
from .engine import RequirementSearchEngine
from .exceptions import (
    CountMismatchError,
    DimensionMismatchError,
    PersistenceError,
    RequirementSearchError,
)
from .hybrid_search import RetrievedRequirement
from .ingestion import IngestionReport
from .models import ProposalData, Requirement

__all__ = [
    "CountMismatchError",
    "DimensionMismatchError",
    "IngestionReport",
    "PersistenceError",
    "ProposalData",
    "Requirement",
    "RequirementSearchEngine",
    "RequirementSearchError",
    "RetrievedRequirement",
    "SearchConfig",
]

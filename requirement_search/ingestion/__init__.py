"""Requirement loading and index (re)building."""

from .loader import load_proposal, validate_requirements
from .pipeline import IngestionPipeline, IngestionReport, build_searchable_text

__all__ = [
    "IngestionPipeline",
    "IngestionReport",
    "build_searchable_text",
    "load_proposal",
    "validate_requirements",
]

"""Load and sanity-check requirement exports."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import List

from pydantic import ValidationError

from requirement_search.exceptions import RequirementLoadError
from requirement_search.models import ProposalData

logger = logging.getLogger(__name__)


def load_proposal(path: Path | str) -> ProposalData:
    """Parse the requirement export at ``path``."""

    file_path = Path(path)
    logger.info("Loading requirements from %s", file_path)

    if not file_path.exists():
        raise RequirementLoadError(f"File not found: {file_path}")

    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RequirementLoadError(f"Could not read {file_path}: {exc}") from exc

    try:
        proposal = ProposalData.model_validate_json(content)
    except ValidationError as exc:
        raise RequirementLoadError(f"Invalid requirement export {file_path}: {exc}") from exc

    logger.info(
        "Successfully loaded %s requirements from %s", len(proposal.requirements), file_path
    )
    return proposal


def validate_requirements(proposal: ProposalData) -> List[str]:
    """Return data-quality issues; an empty list means the export looks sound."""

    issues: List[str] = []

    if not proposal.requirements:
        issues.append("No requirements found in the data")

    reference_counts = Counter(req.client_reference_id for req in proposal.requirements)
    duplicates = [ref for ref, count in reference_counts.items() if count > 1]
    if duplicates:
        issues.append(f"Found {len(duplicates)} duplicate client reference IDs")

    missing_ids = sum(1 for req in proposal.requirements if not req.client_reference_id)
    if missing_ids:
        issues.append(f"Found {missing_ids} requirements without a client reference ID")

    empty_texts = sum(1 for req in proposal.requirements if not req.normalized_text.strip())
    if empty_texts:
        issues.append(f"Found {empty_texts} requirements with empty normalized text")

    for issue in issues:
        logger.warning("Validation issue: %s", issue)
    if not issues:
        logger.info("Validation passed successfully")
    return issues


__all__ = ["load_proposal", "validate_requirements"]

"""Requirement records as exported by the requirement extraction pipeline."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _lowercase_keys(cls, data: Any) -> Any:
        # Exports are matched case-insensitively ("Raw_Text" == "raw_text").
        if isinstance(data, dict):
            return {key.lower() if isinstance(key, str) else key: value for key, value in data.items()}
        return data

    @field_validator("*", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info) -> Any:
        if value is None:
            field = cls.model_fields[info.field_name]
            if not field.is_required() and field.default is not None:
                return field.get_default(call_default_factory=True)
        return value


class RequirementAction(_Record):
    verb: str = ""
    modality: str = ""


class RequirementConstraint(_Record):
    type: str = ""
    description: str = ""
    subcategories: List[str] = Field(default_factory=list)


class RequirementClassification(_Record):
    requirement_type: str = ""
    criticality: str = ""
    fit_gap: Optional[str] = None
    mvp: Optional[str] = None
    phase: Optional[str] = None


class RequirementEntities(_Record):
    systems: List[str] = Field(default_factory=list)
    standards: List[str] = Field(default_factory=list)
    regulations: List[str] = Field(default_factory=list)
    regions: List[str] = Field(default_factory=list)
    dates: List[str] = Field(default_factory=list)


class Requirement(_Record):
    """A single structured requirement record."""

    client_reference_id: str = ""
    id: Optional[str] = None
    raw_text: str = ""
    normalized_text: str = ""
    confidence_score: float = 0.0
    status: str = ""
    action: RequirementAction = Field(default_factory=RequirementAction)
    constraint: RequirementConstraint = Field(default_factory=RequirementConstraint)
    classification: RequirementClassification = Field(default_factory=RequirementClassification)
    entities: RequirementEntities = Field(default_factory=RequirementEntities)

    def index_metadata(self) -> Dict[str, Any]:
        """Payload stored next to the vector and returned with search hits."""

        return {
            "normalized_text": self.normalized_text,
            "raw_text": self.raw_text,
            "constraint_type": self.constraint.type,
            "requirement_type": self.classification.requirement_type,
            "criticality": self.classification.criticality,
        }


class ProposalData(_Record):
    """Envelope of a requirement export."""

    schema_version: str = ""
    proposal_id: Optional[str] = None
    rfp_id: str = ""
    customer_id: str = ""
    customer_name: str = ""
    industry: str = ""
    region: str = ""
    product_id: str = ""
    product_name: Optional[str] = None
    version_id: str = ""
    received_date: str = ""
    requirements: List[Requirement] = Field(default_factory=list)


__all__ = [
    "ProposalData",
    "Requirement",
    "RequirementAction",
    "RequirementClassification",
    "RequirementConstraint",
    "RequirementEntities",
]

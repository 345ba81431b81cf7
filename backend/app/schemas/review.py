"""Review action schemas for classification and relationship records."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from app.ai.thresholds import CONFIDENCE_HIGH
from app.ai.types import InferredEntityType


class ClassificationStatusUpdate(BaseModel):
    """Approve or reject one classification, optionally overriding its type."""

    status: Literal["approved", "rejected"]
    reviewer_id: str = Field(min_length=1)
    override_type: InferredEntityType | None = None


class RelationshipStatusUpdate(BaseModel):
    """Approve or reject one relationship."""

    status: Literal["approved", "rejected"]
    reviewer_id: str = Field(min_length=1)


class BulkApproveRequest(BaseModel):
    """Approve explicit ids, or every pending record at or above ``threshold``."""

    reviewer_id: str = Field(min_length=1)
    ids: list[str] | None = None
    approve_high_confidence: bool = False
    threshold: float = Field(default=CONFIDENCE_HIGH, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_selection(self) -> "BulkApproveRequest":
        if not self.approve_high_confidence and not self.ids:
            raise ValueError("Provide ids or set approve_high_confidence.")
        return self


class BulkApproveResult(BaseModel):
    approved: int

"""Enrichment run, review record, and preview schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

RunStatus = Literal["pending", "running", "completed", "failed"]
ReviewStatus = Literal["pending", "approved", "rejected"]


class EnrichmentTotals(BaseModel):
    """Aggregate counts recorded when a run completes."""

    notes_processed: int = 0
    classifications_created: int = 0
    relationships_found: int = 0
    high_confidence_count: int = 0
    low_confidence_count: int = 0
    user_review_required: int = 0


class EnrichmentTriggerRequest(BaseModel):
    """Request body for starting enrichment of an import."""

    created_by_user_id: str | None = None
    override_existing: bool = False
    player_character_names: list[str] = Field(default_factory=list)


class EnrichmentRunRead(BaseModel):
    """Serialized enrichment run."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    import_run_id: str
    team_id: str
    status: RunStatus
    override_existing: bool
    model_name: str | None = None
    totals: EnrichmentTotals | None = Field(default=None, validation_alias=AliasChoices("totals", "totals_json"))
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class NoteClassificationRead(BaseModel):
    """Classification record with the classified note's title."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    note_id: str
    note_title: str | None = None
    inferred_type: str
    confidence: float
    explanation: str
    extracted_entities: list[str] = Field(default_factory=list)
    status: ReviewStatus
    approved_by_user_id: str | None = None
    approved_at: datetime | None = None


class NoteRelationshipRead(BaseModel):
    """Relationship record with both endpoint titles."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    from_note_id: str
    from_note_title: str | None = None
    to_note_id: str
    to_note_title: str | None = None
    relationship_type: str
    confidence: float
    evidence_snippet: str
    evidence_type: str
    status: ReviewStatus
    approved_by_user_id: str | None = None
    approved_at: datetime | None = None


class EnrichmentRunDetail(BaseModel):
    """Run plus its review records."""

    run: EnrichmentRunRead
    classifications: list[NoteClassificationRead] = Field(default_factory=list)
    relationships: list[NoteRelationshipRead] = Field(default_factory=list)


class EnrichmentTriggerResult(BaseModel):
    enrichment_run_id: str
    status: RunStatus


class PreviewRequest(BaseModel):
    """Request body for a synchronous enrichment preview."""

    player_character_names: list[str] = Field(default_factory=list)
    override_existing: bool = False
    operation_id: str | None = Field(default=None, min_length=1, max_length=64)


class PreviewClassification(BaseModel):
    note_id: str
    title: str
    current_type: str
    inferred_type: str
    confidence: float
    explanation: str
    from_cache: bool = False


class PreviewRelationship(BaseModel):
    from_note_id: str
    from_note_title: str
    to_note_id: str
    to_note_title: str
    relationship_type: str
    confidence: float
    evidence_snippet: str
    evidence_type: str


class RelationshipConfidenceBuckets(BaseModel):
    high: int = 0
    medium: int = 0
    low: int = 0


class PreviewSummary(BaseModel):
    total_notes: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    relationships: RelationshipConfidenceBuckets = Field(default_factory=RelationshipConfidenceBuckets)
    cache_hits: int = 0


class PreviewRead(BaseModel):
    """Preview of what enrichment would produce, held for five minutes."""

    preview_id: str
    import_run_id: str
    team_id: str
    classifications: list[PreviewClassification] = Field(default_factory=list)
    relationships: list[PreviewRelationship] = Field(default_factory=list)
    summary: PreviewSummary = Field(default_factory=PreviewSummary)
    created_at: datetime


class CommitPreviewRequest(BaseModel):
    created_by_user_id: str | None = None


class ProgressRead(BaseModel):
    """Progress snapshot for a long-running operation."""

    model_config = ConfigDict(from_attributes=True)

    operation_id: str
    phase: Literal["classifying", "relationships", "complete", "failed"]
    current: int
    total: int
    current_item: str | None = None
    started_at: datetime
    error: str | None = None

"""Human review transitions for classification and relationship records."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.ai.thresholds import CONFIDENCE_HIGH
from app.ai.types import INFERRED_ENTITY_TYPES
from app.models.base import utc_now
from app.models.enrichment_run import EnrichmentRun
from app.models.note_classification import NoteClassification
from app.models.note_relationship import NoteRelationship
from app.services.enrichment import get_note, map_inferred_to_note_type

logger = logging.getLogger(__name__)

REVIEW_DECISIONS = ("approved", "rejected")


class ReviewValidationError(ValueError):
    """Raised for an invalid status, override type, or threshold."""


class ReviewConflictError(RuntimeError):
    """Raised when a record has already left the pending state."""


def update_classification_status(
    db: Session,
    classification_id: str,
    status: str,
    reviewer_id: str,
    *,
    override_type: str | None = None,
    team_id: str | None = None,
) -> NoteClassification | None:
    """Approve or reject a pending classification.

    Approval writes the chosen type (``override_type`` when given) to the
    note's ``note_type``. Returns ``None`` when the record is not visible to
    ``team_id``.
    """

    _validate_decision(status)
    if override_type is not None and override_type not in INFERRED_ENTITY_TYPES:
        raise ReviewValidationError(f"Invalid override type: {override_type!r}")

    classification = _scoped_classification(db, classification_id, team_id)
    if classification is None:
        return None
    if classification.status != "pending":
        raise ReviewConflictError(f"Classification {classification_id} is already {classification.status}")

    _apply_decision(classification, status, reviewer_id)
    if status == "approved":
        _apply_note_type(db, classification, override_type or classification.inferred_type)
    db.commit()
    db.refresh(classification)
    logger.info(
        "enrichment.classification_reviewed classification_id=%s status=%s override_type=%s",
        classification_id,
        status,
        override_type,
    )
    return classification


def update_relationship_status(
    db: Session,
    relationship_id: str,
    status: str,
    reviewer_id: str,
    *,
    team_id: str | None = None,
) -> NoteRelationship | None:
    _validate_decision(status)
    stmt = select(NoteRelationship).where(NoteRelationship.id == relationship_id)
    if team_id is not None:
        stmt = stmt.join(EnrichmentRun, EnrichmentRun.id == NoteRelationship.enrichment_run_id).where(
            EnrichmentRun.team_id == team_id
        )
    relationship = db.scalar(stmt)
    if relationship is None:
        return None
    if relationship.status != "pending":
        raise ReviewConflictError(f"Relationship {relationship_id} is already {relationship.status}")

    _apply_decision(relationship, status, reviewer_id)
    db.commit()
    db.refresh(relationship)
    logger.info("enrichment.relationship_reviewed relationship_id=%s status=%s", relationship_id, status)
    return relationship


def bulk_approve_classifications(
    db: Session,
    enrichment_run_id: str,
    reviewer_id: str,
    *,
    classification_ids: Sequence[str] | None = None,
    approve_high_confidence: bool = False,
    threshold: float = CONFIDENCE_HIGH,
) -> int:
    """Approve pending classifications of a run and update their notes' types.

    Either every pending record at or above ``threshold``, or the explicit
    ids. Records that are no longer pending are skipped. Returns the number
    approved.
    """

    stmt = _bulk_selection(
        NoteClassification,
        enrichment_run_id,
        classification_ids,
        approve_high_confidence,
        threshold,
    )
    rows = list(db.scalars(stmt))
    for row in rows:
        _apply_decision(row, "approved", reviewer_id)
        _apply_note_type(db, row, row.inferred_type)
    db.commit()
    logger.info("enrichment.classifications_bulk_approved run_id=%s approved=%d", enrichment_run_id, len(rows))
    return len(rows)


def bulk_approve_relationships(
    db: Session,
    enrichment_run_id: str,
    reviewer_id: str,
    *,
    relationship_ids: Sequence[str] | None = None,
    approve_high_confidence: bool = False,
    threshold: float = CONFIDENCE_HIGH,
) -> int:
    stmt = _bulk_selection(
        NoteRelationship,
        enrichment_run_id,
        relationship_ids,
        approve_high_confidence,
        threshold,
    )
    rows = list(db.scalars(stmt))
    for row in rows:
        _apply_decision(row, "approved", reviewer_id)
    db.commit()
    logger.info("enrichment.relationships_bulk_approved run_id=%s approved=%d", enrichment_run_id, len(rows))
    return len(rows)


def _bulk_selection(model, enrichment_run_id: str, ids, approve_high_confidence: bool, threshold: float):  # noqa: ANN001
    if not 0.0 <= threshold <= 1.0:
        raise ReviewValidationError(f"Threshold must be between 0 and 1, got {threshold}")
    stmt = select(model).where(model.enrichment_run_id == enrichment_run_id, model.status == "pending")
    if approve_high_confidence:
        return stmt.where(model.confidence >= threshold)
    if not ids:
        raise ReviewValidationError("Provide ids or set approve_high_confidence")
    return stmt.where(model.id.in_(list(ids)))


def _scoped_classification(db: Session, classification_id: str, team_id: str | None) -> NoteClassification | None:
    stmt = select(NoteClassification).where(NoteClassification.id == classification_id)
    if team_id is not None:
        stmt = stmt.join(EnrichmentRun, EnrichmentRun.id == NoteClassification.enrichment_run_id).where(
            EnrichmentRun.team_id == team_id
        )
    return db.scalar(stmt)


def _validate_decision(status: str) -> None:
    if status not in REVIEW_DECISIONS:
        raise ReviewValidationError(f"Invalid status: {status!r}")


def _apply_decision(row: NoteClassification | NoteRelationship, status: str, reviewer_id: str) -> None:
    row.status = status
    row.approved_by_user_id = reviewer_id
    row.approved_at = utc_now()


def _apply_note_type(db: Session, classification: NoteClassification, inferred_type: str) -> None:
    note = get_note(db, classification.note_id)
    if note is not None:
        note.note_type = map_inferred_to_note_type(inferred_type)

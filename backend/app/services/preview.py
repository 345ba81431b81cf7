"""Synchronous enrichment preview and its commit into a reviewable run."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta
from functools import lru_cache
from time import perf_counter
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.ai.provider_interface import GenerationProvider
from app.ai.thresholds import CONFIDENCE_HIGH, CONFIDENCE_LOW, CONFIDENCE_REVIEW, ConfidenceTally
from app.ai.types import ClassificationOptions
from app.models.base import utc_now
from app.models.enrichment_run import EnrichmentRun
from app.models.note import Note
from app.models.note_classification import NoteClassification
from app.models.note_relationship import NoteRelationship
from app.schemas.enrichment import (
    EnrichmentTotals,
    PreviewClassification,
    PreviewRead,
    PreviewRelationship,
    PreviewSummary,
    RelationshipConfidenceBuckets,
)
from app.services.background_jobs import prepare_notes_for_classification, prepare_notes_for_relationships
from app.services.cached_provider import CachingGenerationProvider
from app.services.enrichment import create_enrichment_run, list_notes_for_import
from app.services.enrichment_cache import EnrichmentCache
from app.services.ephemeral_store import EphemeralStore, ProgressTracker

logger = logging.getLogger(__name__)

PREVIEW_RETENTION = timedelta(minutes=5)


@lru_cache(maxsize=1)
def get_preview_store() -> EphemeralStore[PreviewRead]:
    """Return the process-wide preview store."""

    return EphemeralStore(PREVIEW_RETENTION)


def run_preview(
    db: Session,
    import_run_id: str,
    team_id: str,
    provider: GenerationProvider,
    *,
    cache: EnrichmentCache | None,
    store: EphemeralStore[PreviewRead],
    progress: ProgressTracker,
    player_character_names: Sequence[str] = (),
    override_existing: bool = False,
    operation_id: str | None = None,
) -> PreviewRead:
    """Classify and relate an import's notes without persisting review records.

    Progress moves through ``classifying``, ``relationships`` and ``complete``
    under ``operation_id``, which is also the preview id.
    """

    started = perf_counter()
    preview_id = operation_id or str(uuid4())
    notes = list_notes_for_import(db, import_run_id, team_id)
    inputs = prepare_notes_for_classification(notes, override_existing)
    progress.start(preview_id, total=len(inputs), phase="classifying")

    generator: GenerationProvider = provider
    if cache is not None:
        generator = CachingGenerationProvider(provider, cache, team_id)

    try:
        classifications = []
        if inputs:
            classifications = generator.classify_notes(
                inputs,
                progress.callback(preview_id, "classifying"),
                ClassificationOptions(player_character_names=list(player_character_names)),
            )
        relationships = generator.extract_relationships(
            prepare_notes_for_relationships(notes, classifications),
            progress.callback(preview_id, "relationships"),
        )
    except Exception as exc:
        progress.fail(preview_id, str(exc) or exc.__class__.__name__)
        logger.exception("enrichment.preview_failed preview_id=%s import_run_id=%s", preview_id, import_run_id)
        raise

    notes_by_id = {note.id: note for note in notes}
    hit_ids = generator.last_hit_note_ids if isinstance(generator, CachingGenerationProvider) else set()
    preview_classifications = [
        PreviewClassification(
            note_id=result.note_id,
            title=notes_by_id[result.note_id].title,
            current_type=notes_by_id[result.note_id].note_type,
            inferred_type=result.inferred_type,
            confidence=result.confidence,
            explanation=result.explanation,
            from_cache=result.note_id in hit_ids,
        )
        for result in classifications
        if result.note_id in notes_by_id
    ]
    preview_relationships = [
        PreviewRelationship(
            from_note_id=result.from_note_id,
            from_note_title=notes_by_id[result.from_note_id].title,
            to_note_id=result.to_note_id,
            to_note_title=notes_by_id[result.to_note_id].title,
            relationship_type=result.relationship_type,
            confidence=result.confidence,
            evidence_snippet=result.evidence_snippet,
            evidence_type=result.evidence_type,
        )
        for result in relationships
        if result.from_note_id in notes_by_id and result.to_note_id in notes_by_id
    ]

    preview = PreviewRead(
        preview_id=preview_id,
        import_run_id=import_run_id,
        team_id=team_id,
        classifications=preview_classifications,
        relationships=preview_relationships,
        summary=summarize_preview(len(notes), preview_classifications, preview_relationships, len(hit_ids)),
        created_at=utc_now(),
    )
    store.set(preview_id, preview)
    progress.complete(preview_id)
    logger.info(
        "enrichment.preview_timing preview_id=%s notes=%d classifications=%d relationships=%d total_ms=%.2f",
        preview_id,
        len(notes),
        len(preview_classifications),
        len(preview_relationships),
        (perf_counter() - started) * 1000.0,
    )
    return preview


def summarize_preview(
    total_notes: int,
    classifications: Sequence[PreviewClassification],
    relationships: Sequence[PreviewRelationship],
    cache_hits: int = 0,
) -> PreviewSummary:
    by_type: dict[str, int] = {}
    for item in classifications:
        by_type[item.inferred_type] = by_type.get(item.inferred_type, 0) + 1

    buckets = RelationshipConfidenceBuckets()
    for item in relationships:
        if item.confidence >= CONFIDENCE_HIGH:
            buckets.high += 1
        elif item.confidence >= CONFIDENCE_REVIEW:
            buckets.medium += 1
        elif item.confidence >= CONFIDENCE_LOW:
            buckets.low += 1
    return PreviewSummary(total_notes=total_notes, by_type=by_type, relationships=buckets, cache_hits=cache_hits)


def commit_preview(
    db: Session,
    preview_id: str,
    team_id: str,
    *,
    store: EphemeralStore[PreviewRead],
    created_by_user_id: str | None = None,
) -> EnrichmentRun | None:
    """Persist a stored preview as a completed run with pending review records.

    Returns ``None`` when the preview has expired or belongs to another team.
    """

    preview = store.get(preview_id)
    if preview is None or preview.team_id != team_id:
        return None

    run = create_enrichment_run(
        db,
        preview.import_run_id,
        team_id,
        created_by_user_id=created_by_user_id,
    )
    try:
        _persist_preview_records(db, run, preview)
    except Exception as exc:
        db.rollback()
        run.status = "failed"
        run.error_message = str(exc) or exc.__class__.__name__
        db.commit()
        logger.exception("enrichment.preview_commit_failed preview_id=%s run_id=%s", preview_id, run.id)
        raise
    db.refresh(run)
    store.pop(preview_id)
    logger.info(
        "enrichment.preview_committed preview_id=%s run_id=%s totals=%s",
        preview_id,
        run.id,
        run.totals_json,
    )
    return run


def _persist_preview_records(db: Session, run: EnrichmentRun, preview: PreviewRead) -> None:
    referenced_ids = {item.note_id for item in preview.classifications} | _endpoint_ids(preview)
    live_note_ids = set(db.scalars(select(Note.id).where(Note.id.in_(referenced_ids)))) if referenced_ids else set()

    tally = ConfidenceTally()
    classifications_created = 0
    for item in preview.classifications:
        if item.note_id not in live_note_ids:
            continue
        db.add(
            NoteClassification(
                enrichment_run_id=run.id,
                note_id=item.note_id,
                inferred_type=item.inferred_type,
                confidence=item.confidence,
                explanation=item.explanation,
                extracted_entities=[],
                status="pending",
            )
        )
        classifications_created += 1
        tally.add(item.confidence)

    relationships_found = 0
    for item in preview.relationships:
        if item.from_note_id not in live_note_ids or item.to_note_id not in live_note_ids:
            continue
        db.add(
            NoteRelationship(
                enrichment_run_id=run.id,
                from_note_id=item.from_note_id,
                to_note_id=item.to_note_id,
                relationship_type=item.relationship_type,
                confidence=item.confidence,
                evidence_snippet=item.evidence_snippet,
                evidence_type=item.evidence_type,
                status="pending",
            )
        )
        relationships_found += 1
        tally.add(item.confidence)

    now = utc_now()
    run.status = "completed"
    run.started_at = now
    run.completed_at = now
    run.totals_json = EnrichmentTotals(
        notes_processed=preview.summary.total_notes,
        classifications_created=classifications_created,
        relationships_found=relationships_found,
        high_confidence_count=tally.high,
        low_confidence_count=tally.low,
        user_review_required=tally.review_required,
    ).model_dump()
    db.commit()


def _endpoint_ids(preview: PreviewRead) -> set[str]:
    ids: set[str] = set()
    for item in preview.relationships:
        ids.update((item.from_note_id, item.to_note_id))
    return ids

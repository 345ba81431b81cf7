"""Enrichment run persistence, note lookup, and provider selection."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.ai.llm_provider import LLMGenerationProvider, OpenAIChatCompletionsClient, ProviderConfigurationError
from app.ai.mock_provider import MockGenerationProvider
from app.ai.provider_interface import GenerationProvider
from app.ai.types import InferredEntityType
from app.config import Settings, get_settings
from app.models.enrichment_run import EnrichmentRun
from app.models.note import Note
from app.models.note_classification import NoteClassification
from app.models.note_relationship import NoteRelationship
from app.schemas.enrichment import (
    EnrichmentRunDetail,
    EnrichmentRunRead,
    NoteClassificationRead,
    NoteRelationshipRead,
)

logger = logging.getLogger(__name__)

# Notes a user already typed by hand are skipped unless the run overrides them.
PRECLASSIFIED_NOTE_TYPES = frozenset({"character", "npc", "area", "poi", "quest"})

NOTE_TYPE_TO_INFERRED: dict[str, InferredEntityType] = {
    "character": "Character",
    "npc": "NPC",
    "poi": "Area",
    "area": "Area",
    "quest": "Quest",
    "session_log": "SessionLog",
}
INFERRED_TO_NOTE_TYPE: dict[str, str] = {
    "Character": "character",
    "NPC": "npc",
    "Area": "area",
    "Quest": "quest",
    "SessionLog": "session_log",
    "Note": "note",
}


class EnrichmentConflictError(RuntimeError):
    """Raised when an import already has an enrichment run that has not failed."""

    def __init__(self, run: EnrichmentRun) -> None:
        super().__init__(f"Enrichment already exists for import {run.import_run_id}")
        self.run = run


def map_note_type_to_inferred(note_type: str | None) -> InferredEntityType:
    return NOTE_TYPE_TO_INFERRED.get((note_type or "").lower(), "Note")


def map_inferred_to_note_type(inferred_type: str) -> str:
    return INFERRED_TO_NOTE_TYPE.get(inferred_type, "note")


def get_default_provider(settings: Settings | None = None) -> GenerationProvider:
    """Build the generation provider named by ``Settings.ai_provider``."""

    settings = settings or get_settings()
    if settings.ai_provider == "mock":
        return MockGenerationProvider()
    if not settings.openai_api_key:
        raise ProviderConfigurationError("OPENAI_API_KEY is required when AI_PROVIDER=openai")
    client = OpenAIChatCompletionsClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.openai_timeout_seconds,
        max_tokens=settings.openai_max_tokens,
    )
    return LLMGenerationProvider(
        client,
        batch_size=settings.enrichment_batch_size,
        batch_delay_seconds=settings.enrichment_batch_delay_seconds,
    )


def get_note(db: Session, note_id: str) -> Note | None:
    return db.scalar(select(Note).where(Note.id == note_id))


def list_notes_for_import(db: Session, import_run_id: str, team_id: str | None = None) -> list[Note]:
    """Return every note created by an import, oldest first."""

    stmt = select(Note).where(Note.import_run_id == import_run_id)
    if team_id is not None:
        stmt = stmt.where(Note.team_id == team_id)
    return list(db.scalars(stmt.order_by(Note.created_at.asc(), Note.id.asc())))


def get_enrichment_run(db: Session, run_id: str, team_id: str | None = None) -> EnrichmentRun | None:
    run = db.scalar(select(EnrichmentRun).where(EnrichmentRun.id == run_id))
    if run is None or (team_id is not None and run.team_id != team_id):
        return None
    return run


def create_enrichment_run(
    db: Session,
    import_run_id: str,
    team_id: str,
    *,
    created_by_user_id: str | None = None,
    override_existing: bool = False,
    player_character_names: Sequence[str] = (),
) -> EnrichmentRun:
    """Create a pending run; only a failed earlier run may be retried."""

    existing = db.scalar(
        select(EnrichmentRun)
        .where(EnrichmentRun.import_run_id == import_run_id, EnrichmentRun.status != "failed")
        .limit(1)
    )
    if existing is not None:
        raise EnrichmentConflictError(existing)

    run = EnrichmentRun(
        import_run_id=import_run_id,
        team_id=team_id,
        created_by_user_id=created_by_user_id,
        status="pending",
        override_existing=override_existing,
        player_character_names=[name.strip() for name in player_character_names if name.strip()],
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info(
        "enrichment.run_created run_id=%s import_run_id=%s team_id=%s override_existing=%s",
        run.id,
        import_run_id,
        team_id,
        override_existing,
    )
    return run


def list_classifications(db: Session, run_id: str) -> list[NoteClassification]:
    return list(
        db.scalars(
            select(NoteClassification)
            .where(NoteClassification.enrichment_run_id == run_id)
            .order_by(NoteClassification.created_at.asc(), NoteClassification.id.asc())
        )
    )


def list_relationships(db: Session, run_id: str) -> list[NoteRelationship]:
    return list(
        db.scalars(
            select(NoteRelationship)
            .where(NoteRelationship.enrichment_run_id == run_id)
            .order_by(NoteRelationship.created_at.asc(), NoteRelationship.id.asc())
        )
    )


def get_enrichment_run_detail(db: Session, run_id: str, team_id: str | None = None) -> EnrichmentRunDetail | None:
    """Return a run with its review records, each labelled with note titles."""

    run = get_enrichment_run(db, run_id, team_id)
    if run is None:
        return None
    classifications = list_classifications(db, run_id)
    relationships = list_relationships(db, run_id)

    note_ids: set[str] = {row.note_id for row in classifications}
    for row in relationships:
        note_ids.update((row.from_note_id, row.to_note_id))
    titles = dict(db.execute(select(Note.id, Note.title).where(Note.id.in_(note_ids))).all()) if note_ids else {}

    return EnrichmentRunDetail(
        run=EnrichmentRunRead.model_validate(run),
        classifications=[
            NoteClassificationRead(
                id=row.id,
                note_id=row.note_id,
                note_title=titles.get(row.note_id),
                inferred_type=row.inferred_type,
                confidence=row.confidence,
                explanation=row.explanation,
                extracted_entities=list(row.extracted_entities or []),
                status=row.status,
                approved_by_user_id=row.approved_by_user_id,
                approved_at=row.approved_at,
            )
            for row in classifications
        ],
        relationships=[
            NoteRelationshipRead(
                id=row.id,
                from_note_id=row.from_note_id,
                from_note_title=titles.get(row.from_note_id),
                to_note_id=row.to_note_id,
                to_note_title=titles.get(row.to_note_id),
                relationship_type=row.relationship_type,
                confidence=row.confidence,
                evidence_snippet=row.evidence_snippet,
                evidence_type=row.evidence_type,
                status=row.status,
                approved_by_user_id=row.approved_by_user_id,
                approved_at=row.approved_at,
            )
            for row in relationships
        ],
    )

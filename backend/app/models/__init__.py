"""ORM models package exports."""

from app.models.ai_cache_entry import AICacheEntry
from app.models.enrichment_run import EnrichmentRun
from app.models.note import Note
from app.models.note_classification import NoteClassification
from app.models.note_relationship import NoteRelationship

__all__ = [
    "Note",
    "EnrichmentRun",
    "NoteClassification",
    "NoteRelationship",
    "AICacheEntry",
]

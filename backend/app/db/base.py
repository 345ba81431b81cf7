"""SQLAlchemy metadata registry import for Alembic."""

from app.models import AICacheEntry, EnrichmentRun, Note, NoteClassification, NoteRelationship
from app.models.base import Base

__all__ = ["Base", "Note", "EnrichmentRun", "NoteClassification", "NoteRelationship", "AICacheEntry"]

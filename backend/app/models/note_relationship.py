"""Reviewable note relationship model."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, IdMixin


class NoteRelationship(Base, IdMixin, CreatedAtMixin):
    """Directed relationship between two notes, awaiting human review."""

    __tablename__ = "note_relationships"

    enrichment_run_id: Mapped[str] = mapped_column(
        ForeignKey("enrichment_runs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    from_note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), index=True, nullable=False)
    to_note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), index=True, nullable=False)
    relationship_type: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    evidence_snippet: Mapped[str] = mapped_column(Text, default="", nullable=False)
    evidence_type: Mapped[str] = mapped_column(String(16), default="Heuristic", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False, index=True)
    approved_by_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

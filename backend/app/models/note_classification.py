"""Reviewable note classification model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, IdMixin


class NoteClassification(Base, IdMixin, CreatedAtMixin):
    """Inferred entity type for one note, awaiting human review."""

    __tablename__ = "note_classifications"

    enrichment_run_id: Mapped[str] = mapped_column(
        ForeignKey("enrichment_runs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), index=True, nullable=False)
    inferred_type: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    explanation: Mapped[str] = mapped_column(Text, default="", nullable=False)
    extracted_entities: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False, index=True)
    approved_by_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

"""Campaign note ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, IdMixin, utc_now


class Note(Base, IdMixin, CreatedAtMixin):
    """Imported campaign note that enrichment reads and annotates."""

    __tablename__ = "notes"

    team_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    import_run_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    content_markdown: Mapped[str | None] = mapped_column(Text, nullable=True)
    note_type: Mapped[str] = mapped_column(String(32), default="note", nullable=False)
    linked_note_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

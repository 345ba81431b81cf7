"""Enrichment run status and totals model."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, IdMixin


class EnrichmentRun(Base, IdMixin, CreatedAtMixin):
    """One classify-then-relate pass over the notes of an import."""

    __tablename__ = "enrichment_runs"

    import_run_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    team_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    created_by_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False, index=True)
    override_existing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    player_character_names: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    model_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    totals_json: Mapped[dict[str, int] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

"""Content-addressed AI result cache model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, IdMixin


class AICacheEntry(Base, IdMixin, CreatedAtMixin):
    """Stored classification or relationship result keyed by normalized content."""

    __tablename__ = "ai_cache_entries"
    __table_args__ = (
        UniqueConstraint(
            "team_id",
            "cache_type",
            "content_hash",
            "algorithm_version",
            "context_hash",
            name="uq_ai_cache_entries_key",
        ),
    )

    cache_type: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    algorithm_version: Mapped[str] = mapped_column(String(32), nullable=False)
    context_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    team_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    result_json: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False)
    model_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # Relationship entries only; the pair hash alone cannot recover direction.
    from_content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

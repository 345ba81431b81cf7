"""enrichment schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "notes",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("team_id", sa.String(length=36), nullable=False),
        sa.Column("import_run_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("content_markdown", sa.Text(), nullable=True),
        sa.Column("note_type", sa.String(length=32), nullable=False, server_default="note"),
        sa.Column("linked_note_ids", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notes_team_id", "notes", ["team_id"], unique=False)
    op.create_index("ix_notes_import_run_id", "notes", ["import_run_id"], unique=False)
    op.create_index("ix_notes_created_at", "notes", ["created_at"], unique=False)

    op.create_table(
        "enrichment_runs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("import_run_id", sa.String(length=36), nullable=False),
        sa.Column("team_id", sa.String(length=36), nullable=False),
        sa.Column("created_by_user_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("override_existing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("player_character_names", sa.JSON(), nullable=False),
        sa.Column("model_name", sa.String(length=128), nullable=True),
        sa.Column("totals_json", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_enrichment_runs_import_run_id", "enrichment_runs", ["import_run_id"], unique=False)
    op.create_index("ix_enrichment_runs_team_id", "enrichment_runs", ["team_id"], unique=False)
    op.create_index("ix_enrichment_runs_status", "enrichment_runs", ["status"], unique=False)
    op.create_index("ix_enrichment_runs_created_at", "enrichment_runs", ["created_at"], unique=False)

    op.create_table(
        "note_classifications",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("enrichment_run_id", sa.String(length=36), nullable=False),
        sa.Column("note_id", sa.String(length=36), nullable=False),
        sa.Column("inferred_type", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("explanation", sa.Text(), nullable=False, server_default=""),
        sa.Column("extracted_entities", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("approved_by_user_id", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["enrichment_run_id"], ["enrichment_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_note_classifications_enrichment_run_id",
        "note_classifications",
        ["enrichment_run_id"],
        unique=False,
    )
    op.create_index("ix_note_classifications_note_id", "note_classifications", ["note_id"], unique=False)
    op.create_index("ix_note_classifications_status", "note_classifications", ["status"], unique=False)
    op.create_index("ix_note_classifications_created_at", "note_classifications", ["created_at"], unique=False)

    op.create_table(
        "note_relationships",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("enrichment_run_id", sa.String(length=36), nullable=False),
        sa.Column("from_note_id", sa.String(length=36), nullable=False),
        sa.Column("to_note_id", sa.String(length=36), nullable=False),
        sa.Column("relationship_type", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("evidence_snippet", sa.Text(), nullable=False, server_default=""),
        sa.Column("evidence_type", sa.String(length=16), nullable=False, server_default="Heuristic"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("approved_by_user_id", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["enrichment_run_id"], ["enrichment_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_note_id"], ["notes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["to_note_id"], ["notes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_note_relationships_enrichment_run_id",
        "note_relationships",
        ["enrichment_run_id"],
        unique=False,
    )
    op.create_index("ix_note_relationships_from_note_id", "note_relationships", ["from_note_id"], unique=False)
    op.create_index("ix_note_relationships_to_note_id", "note_relationships", ["to_note_id"], unique=False)
    op.create_index("ix_note_relationships_status", "note_relationships", ["status"], unique=False)
    op.create_index("ix_note_relationships_created_at", "note_relationships", ["created_at"], unique=False)

    op.create_table(
        "ai_cache_entries",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("cache_type", sa.String(length=32), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("algorithm_version", sa.String(length=32), nullable=False),
        sa.Column("context_hash", sa.String(length=64), nullable=True),
        sa.Column("team_id", sa.String(length=36), nullable=False),
        sa.Column("result_json", sa.JSON(), nullable=False),
        sa.Column("model_id", sa.String(length=128), nullable=False),
        sa.Column("from_content_hash", sa.String(length=64), nullable=True),
        sa.Column("to_content_hash", sa.String(length=64), nullable=True),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "team_id",
            "cache_type",
            "content_hash",
            "algorithm_version",
            "context_hash",
            name="uq_ai_cache_entries_key",
        ),
    )
    op.create_index("ix_ai_cache_entries_cache_type", "ai_cache_entries", ["cache_type"], unique=False)
    op.create_index("ix_ai_cache_entries_content_hash", "ai_cache_entries", ["content_hash"], unique=False)
    op.create_index("ix_ai_cache_entries_team_id", "ai_cache_entries", ["team_id"], unique=False)
    op.create_index("ix_ai_cache_entries_expires_at", "ai_cache_entries", ["expires_at"], unique=False)
    op.create_index("ix_ai_cache_entries_created_at", "ai_cache_entries", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_ai_cache_entries_created_at", table_name="ai_cache_entries")
    op.drop_index("ix_ai_cache_entries_expires_at", table_name="ai_cache_entries")
    op.drop_index("ix_ai_cache_entries_team_id", table_name="ai_cache_entries")
    op.drop_index("ix_ai_cache_entries_content_hash", table_name="ai_cache_entries")
    op.drop_index("ix_ai_cache_entries_cache_type", table_name="ai_cache_entries")
    op.drop_table("ai_cache_entries")

    op.drop_index("ix_note_relationships_created_at", table_name="note_relationships")
    op.drop_index("ix_note_relationships_status", table_name="note_relationships")
    op.drop_index("ix_note_relationships_to_note_id", table_name="note_relationships")
    op.drop_index("ix_note_relationships_from_note_id", table_name="note_relationships")
    op.drop_index("ix_note_relationships_enrichment_run_id", table_name="note_relationships")
    op.drop_table("note_relationships")

    op.drop_index("ix_note_classifications_created_at", table_name="note_classifications")
    op.drop_index("ix_note_classifications_status", table_name="note_classifications")
    op.drop_index("ix_note_classifications_note_id", table_name="note_classifications")
    op.drop_index("ix_note_classifications_enrichment_run_id", table_name="note_classifications")
    op.drop_table("note_classifications")

    op.drop_index("ix_enrichment_runs_created_at", table_name="enrichment_runs")
    op.drop_index("ix_enrichment_runs_status", table_name="enrichment_runs")
    op.drop_index("ix_enrichment_runs_team_id", table_name="enrichment_runs")
    op.drop_index("ix_enrichment_runs_import_run_id", table_name="enrichment_runs")
    op.drop_table("enrichment_runs")

    op.drop_index("ix_notes_created_at", table_name="notes")
    op.drop_index("ix_notes_import_run_id", table_name="notes")
    op.drop_index("ix_notes_team_id", table_name="notes")
    op.drop_table("notes")

"""Seed a demo campaign import and run enrichment over it.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import delete, select

# Make `app` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.db.session import SessionLocal
from app.models.enrichment_run import EnrichmentRun
from app.models.note import Note
from app.services.background_jobs import EnrichmentJob, EnrichmentWorker
from app.services.enrichment import create_enrichment_run, get_enrichment_run_detail


DEFAULT_TEAM_ID = "demo-team"
DEFAULT_IMPORT_RUN_ID = "demo-import-001"


def build_demo_notes(team_id: str, import_run_id: str) -> list[Note]:
    """Return a small deterministic campaign with links between notes."""

    rows = [
        ("demo-npc-mira", "Captain Mira Voss", "Harbor master of [Saltmere](/notes/demo-area-saltmere)."),
        ("demo-area-saltmere", "Saltmere", "A fishing town on the northern coast with one tavern."),
        (
            "demo-quest-brother",
            "Rescue the Lost Brother",
            "Find Tomas Voss near the cliffs. Reward offered by [Mira](/notes/demo-npc-mira).",
        ),
        ("demo-log-3", "Session 3 Recap", "Thorn and Ilsa reached Saltmere and found a map."),
        ("demo-pc-thorn", "Thorn", "Half-orc ranger played by Sam."),
    ]
    return [
        Note(
            id=note_id,
            team_id=team_id,
            import_run_id=import_run_id,
            title=title,
            content=content,
            content_markdown=content,
            note_type="note",
            linked_note_ids=[],
        )
        for note_id, title, content in rows
    ]


def reset_import(db, import_run_id: str) -> None:
    """Remove existing notes and runs for the demo import."""

    db.execute(delete(EnrichmentRun).where(EnrichmentRun.import_run_id == import_run_id))
    db.execute(delete(Note).where(Note.import_run_id == import_run_id))
    db.commit()


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo campaign import and run enrichment.")
    parser.add_argument("--team-id", default=DEFAULT_TEAM_ID, help=f"Team ID (default: {DEFAULT_TEAM_ID})")
    parser.add_argument(
        "--import-run-id",
        default=DEFAULT_IMPORT_RUN_ID,
        help=f"Import run ID to seed (default: {DEFAULT_IMPORT_RUN_ID})",
    )
    parser.add_argument(
        "--no-reset",
        action="store_true",
        help="Do not delete existing notes and runs for the import before seeding.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo notes, enrich them inline, and print a short summary."""

    args = parse_args()
    with SessionLocal() as db:
        if not args.no_reset:
            reset_import(db, args.import_run_id)
        existing = set(db.scalars(select(Note.id).where(Note.import_run_id == args.import_run_id)))
        db.add_all(note for note in build_demo_notes(args.team_id, args.import_run_id) if note.id not in existing)
        db.commit()
        run = create_enrichment_run(
            db,
            args.import_run_id,
            args.team_id,
            player_character_names=["Thorn", "Ilsa"],
        )

    worker = EnrichmentWorker(autostart=False)
    worker.enqueue(EnrichmentJob.from_run(run))
    worker.drain()

    with SessionLocal() as db:
        detail = get_enrichment_run_detail(db, run.id)

    print("Seed complete")
    print(f"enrichment_run_id={run.id}")
    if detail is not None:
        print(f"status={detail.run.status}")
        if detail.run.error_message:
            print(f"error_message={detail.run.error_message}")
        print(f"classifications={len(detail.classifications)}")
        print(f"relationships={len(detail.relationships)}")
    print()
    print("Inspect:")
    print(f"  GET /teams/{args.team_id}/enrichments/{run.id}")


if __name__ == "__main__":
    main()

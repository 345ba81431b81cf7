"""Run a real classification and relationship call against a few in-memory notes.

Usage (from repo root):
    python backend/scripts/smoke_llm_provider.py

Usage (from backend/):
    python scripts/smoke_llm_provider.py
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.ai.types import ClassificationOptions, InternalLink, NoteForClassification, NoteWithClassification
from app.services.enrichment import get_default_provider


def _demo_notes() -> list[NoteForClassification]:
    rows = [
        (
            "smoke-1",
            "Captain Mira Voss",
            "Harbor master of Saltmere. She hired the party to find the smugglers' cove and rescue her brother.",
        ),
        (
            "smoke-2",
            "Saltmere",
            "A fishing town on the northern coast. The Drowned Lantern tavern is where Mira Voss meets contacts.",
        ),
        (
            "smoke-3",
            "Rescue the Lost Brother",
            "Find Tomas Voss, last seen near the cliffs outside Saltmere. Mira Voss offers 200 gold.",
        ),
        (
            "smoke-4",
            "Session 3 Recap",
            "Thorn and Ilsa reached Saltmere, spoke with Mira Voss, and found a map to the cove.",
        ),
    ]
    return [NoteForClassification(id=note_id, title=title, content=content) for note_id, title, content in rows]


def main() -> None:
    provider = get_default_provider()
    notes = _demo_notes()
    classifications = provider.classify_notes(
        notes,
        on_progress=lambda current, total, item: print(f"classify {current}/{total} {item or ''}", file=sys.stderr),
        options=ClassificationOptions(player_character_names=["Thorn", "Ilsa"]),
    )
    inferred = {result.note_id: result.inferred_type for result in classifications}
    relationships = provider.extract_relationships(
        [
            NoteWithClassification(
                id=note.id,
                title=note.title,
                content=note.content,
                inferred_type=inferred.get(note.id, "Note"),
                internal_links=[InternalLink(target_note_id="smoke-2", link_text="Saltmere")]
                if note.id != "smoke-2"
                else [],
            )
            for note in notes
        ]
    )
    print(
        json.dumps(
            {
                "model": provider.model_name,
                "classifications": [
                    {
                        "note_id": result.note_id,
                        "inferred_type": result.inferred_type,
                        "confidence": result.confidence,
                        "explanation": result.explanation,
                        "extracted_entities": result.extracted_entities,
                    }
                    for result in classifications
                ],
                "relationships": [
                    {
                        "from_note_id": result.from_note_id,
                        "to_note_id": result.to_note_id,
                        "relationship_type": result.relationship_type,
                        "confidence": result.confidence,
                        "evidence_type": result.evidence_type,
                        "evidence_snippet": result.evidence_snippet,
                    }
                    for result in relationships
                ],
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()

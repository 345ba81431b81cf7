"""Unit tests for the deterministic mock generation provider."""

from __future__ import annotations

import unittest

from app.ai.mock_provider import MockGenerationProvider
from app.ai.types import (
    ClassificationOptions,
    NoteForClassification,
    NoteReference,
    NoteWithClassification,
    RelationshipResult,
)


class MockGenerationProviderTests(unittest.TestCase):
    def test_title_heuristics(self) -> None:
        provider = MockGenerationProvider()
        notes = [
            NoteForClassification(id="n1", title="Captain Mira Voss", content="Details."),
            NoteForClassification(id="n2", title="Saltmere Town", content="Details."),
            NoteForClassification(id="n3", title="Rescue the Brother", content="Details."),
            NoteForClassification(id="n4", title="Session 3 Recap", content="Details."),
            NoteForClassification(id="n5", title="Thorn", content="Details."),
            NoteForClassification(id="n6", title="Shopping list", content="Eggs."),
        ]

        results = provider.classify_notes(notes, options=ClassificationOptions(player_character_names=["Thorn"]))

        self.assertEqual(
            [(result.inferred_type, result.confidence) for result in results],
            [
                ("NPC", 0.80),
                ("Area", 0.85),
                ("Quest", 0.75),
                ("SessionLog", 0.90),
                ("Character", 0.95),
                ("Note", 0.75),
            ],
        )
        self.assertEqual(provider.classify_calls, [["n1", "n2", "n3", "n4", "n5", "n6"]])

    def test_preset_classification_wins_and_clear_resets(self) -> None:
        provider = MockGenerationProvider()
        provider.set_mock_classification("n1", "Quest", 0.42)
        note = NoteForClassification(id="n1", title="Captain Mira", content="")

        self.assertEqual(provider.classify_notes([note])[0].inferred_type, "Quest")
        provider.clear()
        self.assertEqual(provider.classify_calls, [])
        self.assertEqual(provider.classify_notes([note])[0].inferred_type, "NPC")

    def test_relationships_are_filtered_to_supplied_notes(self) -> None:
        provider = MockGenerationProvider()
        provider.set_mock_relationships(
            [
                RelationshipResult("a", "b", "Related", 0.7),
                RelationshipResult("a", "ghost", "Related", 0.7),
            ]
        )
        notes = [
            NoteWithClassification(id="a", title="A", content="", inferred_type="Note"),
            NoteWithClassification(id="b", title="B", content="", inferred_type="Note"),
        ]

        results = provider.extract_relationships(notes)

        self.assertEqual([(r.from_note_id, r.to_note_id) for r in results], [("a", "b")])

    def test_entities_fall_back_to_capitalized_words(self) -> None:
        provider = MockGenerationProvider()
        result = provider.extract_entities(
            "Mira met Tomas near Saltmere. Mira left.",
            [NoteReference(id="npc1", title="Mira", note_type="npc")],
        )

        by_name = {entity.name: entity for entity in result.entities}
        self.assertEqual(by_name["Mira"].mentions, 2)
        self.assertEqual(by_name["Mira"].matched_note_id, "npc1")
        self.assertIsNone(by_name["Saltmere"].matched_note_id)
        self.assertEqual(provider.entity_calls, 1)


if __name__ == "__main__":
    unittest.main()

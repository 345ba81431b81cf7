"""Deterministic generation provider for tests and offline development."""

from __future__ import annotations

import re

from app.ai.provider_interface import GenerationProvider, ProgressCallback
from app.ai.types import (
    ClassificationOptions,
    ClassificationResult,
    EntityExtractionResult,
    ExtractedEntity,
    InferredEntityType,
    NoteForClassification,
    NoteReference,
    NoteWithClassification,
    RelationshipResult,
)

DEFAULT_CONFIDENCE = 0.75
MAX_SIMPLE_ENTITIES = 10

NPC_INDICATORS = (
    "lord",
    "lady",
    "king",
    "queen",
    "prince",
    "princess",
    "captain",
    "commander",
    "chief",
    "elder",
    "master",
    "doctor",
    "professor",
    "sir",
    "dame",
)
AREA_INDICATORS = (
    "city",
    "town",
    "village",
    "castle",
    "tower",
    "dungeon",
    "forest",
    "mountain",
    "river",
    "lake",
    "ocean",
    "tavern",
    "inn",
    "temple",
    "shrine",
    "guild",
    "academy",
    "kingdom",
    "empire",
    "realm",
)
QUEST_INDICATORS = (
    "quest",
    "mission",
    "find the",
    "defeat the",
    "rescue",
    "retrieve",
    "investigate",
    "kill the",
    "destroy the",
    "save the",
)
SESSION_INDICATORS = ("session", "episode", "game night", "recap")

TWO_CAPITALIZED_WORDS = re.compile(r"^[A-Z][a-z]+ [A-Z][a-z]+$")
CAPITALIZED_WORD = re.compile(r"\b[A-Z][a-z]{2,}\b")


class MockGenerationProvider(GenerationProvider):
    """Provider returning preset results, or title heuristics when none are set."""

    model_name = "mock"

    def __init__(self, default_confidence: float = DEFAULT_CONFIDENCE) -> None:
        self.default_confidence = default_confidence
        self._classifications: dict[str, ClassificationResult] = {}
        self._relationships: list[RelationshipResult] = []
        self._entities = EntityExtractionResult()
        self.classify_calls: list[list[str]] = []
        self.relationship_calls: list[list[str]] = []
        self.entity_calls = 0
        self.last_options: ClassificationOptions | None = None

    def set_mock_classification(
        self,
        note_id: str,
        inferred_type: InferredEntityType = "Note",
        confidence: float | None = None,
        explanation: str = "Mock classification",
        extracted_entities: list[str] | None = None,
    ) -> None:
        self._classifications[note_id] = ClassificationResult(
            note_id=note_id,
            inferred_type=inferred_type,
            confidence=self.default_confidence if confidence is None else confidence,
            explanation=explanation,
            extracted_entities=list(extracted_entities or []),
        )

    def set_mock_relationships(self, relationships: list[RelationshipResult]) -> None:
        self._relationships = list(relationships)

    def set_mock_entities(self, result: EntityExtractionResult) -> None:
        self._entities = result

    def clear(self) -> None:
        self._classifications.clear()
        self._relationships = []
        self._entities = EntityExtractionResult()
        self.classify_calls.clear()
        self.relationship_calls.clear()
        self.entity_calls = 0

    def classify_notes(
        self,
        notes: list[NoteForClassification],
        on_progress: ProgressCallback | None = None,
        options: ClassificationOptions | None = None,
    ) -> list[ClassificationResult]:
        self.classify_calls.append([note.id for note in notes])
        self.last_options = options
        pc_names = {name.strip().lower() for name in (options.player_character_names if options else [])}

        results = []
        for index, note in enumerate(notes):
            if on_progress is not None:
                on_progress(index, len(notes), note.title)
            preset = self._classifications.get(note.id)
            results.append(preset if preset is not None else self._classify_by_title(note, pc_names))
        if on_progress is not None:
            on_progress(len(notes), len(notes), None)
        return results

    def extract_relationships(
        self,
        notes: list[NoteWithClassification],
        on_progress: ProgressCallback | None = None,
    ) -> list[RelationshipResult]:
        self.relationship_calls.append([note.id for note in notes])
        if on_progress is not None:
            on_progress(len(notes), len(notes), None)
        known_ids = {note.id for note in notes}
        return [
            relationship
            for relationship in self._relationships
            if relationship.from_note_id in known_ids and relationship.to_note_id in known_ids
        ]

    def extract_entities(
        self,
        content: str,
        existing_notes: list[NoteReference] | None = None,
    ) -> EntityExtractionResult:
        self.entity_calls += 1
        if self._entities.entities or self._entities.relationships:
            return self._entities

        titles = {reference.title.lower(): reference.id for reference in existing_notes or []}
        counts: dict[str, int] = {}
        for name in CAPITALIZED_WORD.findall(content):
            counts[name] = counts.get(name, 0) + 1
        return EntityExtractionResult(
            entities=[
                ExtractedEntity(
                    name=name,
                    type="npc",
                    confidence=self.default_confidence,
                    mentions=mentions,
                    matched_note_id=titles.get(name.lower()),
                )
                for name, mentions in list(counts.items())[:MAX_SIMPLE_ENTITIES]
            ]
        )

    def _classify_by_title(self, note: NoteForClassification, pc_names: set[str]) -> ClassificationResult:
        title = note.title.lower()
        content = note.content.lower()
        inferred_type: InferredEntityType = "Note"
        confidence = self.default_confidence
        explanation = "Default mock classification"

        # Later matches win.
        if any(indicator in title for indicator in NPC_INDICATORS) or TWO_CAPITALIZED_WORDS.match(note.title):
            inferred_type, confidence, explanation = "NPC", 0.80, "Title contains person indicator"
        if any(indicator in title for indicator in AREA_INDICATORS):
            inferred_type, confidence, explanation = "Area", 0.85, "Title contains place indicator"
        if any(indicator in title or indicator in content for indicator in QUEST_INDICATORS):
            inferred_type, confidence, explanation = "Quest", 0.75, "Title or content contains quest indicator"
        if any(indicator in title for indicator in SESSION_INDICATORS):
            inferred_type, confidence, explanation = "SessionLog", 0.90, "Title contains session log indicator"
        if title.strip() in pc_names:
            inferred_type, confidence, explanation = "Character", 0.95, "Title matches a player character"

        return ClassificationResult(
            note_id=note.id,
            inferred_type=inferred_type,
            confidence=confidence,
            explanation=explanation,
            extracted_entities=_simple_entities(note.content),
        )


def _simple_entities(content: str) -> list[str]:
    entities: list[str] = []
    words = content.split()
    for index in range(1, len(words)):
        if re.search(r"[.!?]$", words[index - 1]):
            continue
        word = re.sub(r"[^a-zA-Z]", "", words[index])
        if len(word) > 2 and word[0].isupper() and word[1:].islower() and word not in entities:
            entities.append(word)
    return entities[:MAX_SIMPLE_ENTITIES]

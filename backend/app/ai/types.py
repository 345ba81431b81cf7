"""Typed enrichment inputs and outputs independent of persistence."""

from dataclasses import dataclass, field
from typing import Literal

InferredEntityType = Literal["Character", "NPC", "Area", "Quest", "SessionLog", "Note"]
RelationshipType = Literal["QuestHasNPC", "QuestAtPlace", "NPCInPlace", "Related"]
EvidenceType = Literal["Link", "Mention", "Heuristic"]
EntityKind = Literal["npc", "place", "quest", "item", "faction"]

INFERRED_ENTITY_TYPES: tuple[InferredEntityType, ...] = (
    "Character",
    "NPC",
    "Area",
    "Quest",
    "SessionLog",
    "Note",
)
RELATIONSHIP_TYPES: tuple[RelationshipType, ...] = ("QuestHasNPC", "QuestAtPlace", "NPCInPlace", "Related")
EVIDENCE_TYPES: tuple[EvidenceType, ...] = ("Link", "Mention", "Heuristic")
ENTITY_KINDS: tuple[EntityKind, ...] = ("npc", "place", "quest", "item", "faction")

FALLBACK_CONFIDENCE = 0.5


@dataclass(slots=True)
class NoteForClassification:
    """Read-only snapshot of a note sent for classification."""

    id: str
    title: str
    content: str
    current_type: str = "note"
    existing_link_titles: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ClassificationOptions:
    """Optional classification context."""

    player_character_names: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ClassificationResult:
    """Inferred entity type for one note."""

    note_id: str
    inferred_type: InferredEntityType
    confidence: float
    explanation: str = ""
    extracted_entities: list[str] = field(default_factory=list)
    is_fallback: bool = False


@dataclass(slots=True)
class InternalLink:
    """Link from one note to another note in the same set."""

    target_note_id: str
    link_text: str


@dataclass(slots=True)
class NoteWithClassification:
    """Note content plus its resolved type, used for relationship extraction."""

    id: str
    title: str
    content: str
    inferred_type: InferredEntityType
    internal_links: list[InternalLink] = field(default_factory=list)


@dataclass(slots=True)
class RelationshipResult:
    """Directed relationship between two notes."""

    from_note_id: str
    to_note_id: str
    relationship_type: RelationshipType
    confidence: float
    evidence_snippet: str = ""
    evidence_type: EvidenceType = "Heuristic"


@dataclass(slots=True)
class NoteReference:
    """Existing note offered as a match target during entity extraction."""

    id: str
    title: str
    note_type: str


@dataclass(slots=True)
class ExtractedEntity:
    """Entity mentioned in a block of free text."""

    name: str
    type: EntityKind
    confidence: float
    mentions: int = 1
    context: str | None = None
    matched_note_id: str | None = None


@dataclass(slots=True)
class EntityRelationship:
    """Loose relationship between two extracted entities."""

    entity1: str
    entity2: str
    relationship: str
    confidence: float


@dataclass(slots=True)
class EntityExtractionResult:
    """Container for entity extraction outputs."""

    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[EntityRelationship] = field(default_factory=list)


def clamp_confidence(value: object, default: float = FALLBACK_CONFIDENCE) -> float:
    """Coerce a model-reported confidence into [0, 1]."""

    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if parsed != parsed:  # NaN
        return default
    return max(0.0, min(1.0, parsed))


def fallback_classification(note_id: str, explanation: str) -> ClassificationResult:
    """Default result used whenever a note could not be classified."""

    return ClassificationResult(
        note_id=note_id,
        inferred_type="Note",
        confidence=FALLBACK_CONFIDENCE,
        explanation=explanation,
        extracted_entities=[],
        is_fallback=True,
    )

"""Generation provider interface for pluggable model implementations."""

from abc import ABC, abstractmethod
from collections.abc import Callable

from app.ai.types import (
    ClassificationOptions,
    ClassificationResult,
    EntityExtractionResult,
    NoteForClassification,
    NoteReference,
    NoteWithClassification,
    RelationshipResult,
)

ProgressCallback = Callable[[int, int, str | None], None]


class GenerationProvider(ABC):
    """Abstract provider for classification, relationship, and entity extraction.

    Implementations handle batching, pacing, and error recovery internally and
    never raise past these operations.
    """

    model_name: str = "unknown"

    @abstractmethod
    def classify_notes(
        self,
        notes: list[NoteForClassification],
        on_progress: ProgressCallback | None = None,
        options: ClassificationOptions | None = None,
    ) -> list[ClassificationResult]:
        """Return exactly one classification per input note."""

    @abstractmethod
    def extract_relationships(
        self,
        notes: list[NoteWithClassification],
        on_progress: ProgressCallback | None = None,
    ) -> list[RelationshipResult]:
        """Return deduplicated relationships between the supplied notes."""

    @abstractmethod
    def extract_entities(
        self,
        content: str,
        existing_notes: list[NoteReference] | None = None,
    ) -> EntityExtractionResult:
        """Extract entities and their relationships from one block of text."""

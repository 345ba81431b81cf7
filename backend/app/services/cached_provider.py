"""Generation provider wrapper that reads and writes the enrichment cache."""

from __future__ import annotations

import logging
from time import perf_counter

from app.ai.provider_interface import GenerationProvider, ProgressCallback
from app.ai.types import (
    ClassificationOptions,
    ClassificationResult,
    EntityExtractionResult,
    NoteForClassification,
    NoteReference,
    NoteWithClassification,
    RelationshipResult,
    fallback_classification,
)
from app.services.enrichment_cache import EnrichmentCache

logger = logging.getLogger(__name__)


class CachingGenerationProvider(GenerationProvider):
    """Serve classifications from the cache and send only misses to the wrapped provider."""

    def __init__(self, provider: GenerationProvider, cache: EnrichmentCache, team_id: str) -> None:
        self._provider = provider
        self._cache = cache
        self._team_id = team_id
        self.cache_hits = 0
        self.cache_misses = 0
        self.last_hit_note_ids: set[str] = set()

    @property
    def model_name(self) -> str:  # type: ignore[override]
        return self._provider.model_name

    def classify_notes(
        self,
        notes: list[NoteForClassification],
        on_progress: ProgressCallback | None = None,
        options: ClassificationOptions | None = None,
    ) -> list[ClassificationResult]:
        started = perf_counter()
        pc_names = list(options.player_character_names) if options else []
        total = len(notes)
        cached = self._cache.get_classifications_batch(notes, pc_names, self._team_id)
        misses = [note for note in notes if note.id not in cached]
        hits = total - len(misses)
        self.last_hit_note_ids = set(cached)
        self.cache_hits += hits
        self.cache_misses += len(misses)

        fresh: dict[str, ClassificationResult] = {}
        if misses:

            def _offset_progress(current: int, _: int, item: str | None) -> None:
                if on_progress is not None:
                    on_progress(hits + current, total, item)

            for result in self._provider.classify_notes(misses, _offset_progress, options):
                fresh[result.note_id] = result

            notes_by_id = {note.id: note for note in misses}
            for note_id, result in fresh.items():
                note = notes_by_id.get(note_id)
                if note is None or result.is_fallback:
                    continue
                self._cache.set_classification(
                    note,
                    pc_names,
                    result,
                    self._team_id,
                    model_id=self._provider.model_name,
                )
        elif on_progress is not None:
            on_progress(total, total, None)

        logger.info(
            "enrichment.classification_cache team_id=%s notes=%d hits=%d misses=%d total_ms=%.2f",
            self._team_id,
            total,
            hits,
            len(misses),
            (perf_counter() - started) * 1000.0,
        )
        return [
            cached.get(note.id) or fresh.get(note.id) or fallback_classification(note.id, "Note was missing from AI response")
            for note in notes
        ]

    def extract_relationships(
        self,
        notes: list[NoteWithClassification],
        on_progress: ProgressCallback | None = None,
    ) -> list[RelationshipResult]:
        results = self._provider.extract_relationships(notes, on_progress)
        notes_by_id = {note.id: note for note in notes}
        for result in results:
            from_note = notes_by_id.get(result.from_note_id)
            to_note = notes_by_id.get(result.to_note_id)
            if from_note is None or to_note is None:
                continue
            self._cache.set_relationship(
                from_note,
                to_note,
                result,
                self._team_id,
                model_id=self._provider.model_name,
            )
        return results

    def extract_entities(
        self,
        content: str,
        existing_notes: list[NoteReference] | None = None,
    ) -> EntityExtractionResult:
        return self._provider.extract_entities(content, existing_notes)

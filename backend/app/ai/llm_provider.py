"""LLM-backed generation provider for note classification and relationship extraction."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.ai.provider_interface import GenerationProvider, ProgressCallback
from app.ai.response_recovery import (
    EXCERPT_LENGTH,
    NoStructureFound,
    ResponseParseError,
    parse_structured_response,
)
from app.ai.thresholds import CONFIDENCE_HIGH, CONFIDENCE_LOW
from app.ai.types import (
    ENTITY_KINDS,
    EVIDENCE_TYPES,
    INFERRED_ENTITY_TYPES,
    RELATIONSHIP_TYPES,
    ClassificationOptions,
    ClassificationResult,
    EntityExtractionResult,
    EntityRelationship,
    ExtractedEntity,
    InferredEntityType,
    NoteForClassification,
    NoteReference,
    NoteWithClassification,
    RelationshipResult,
    clamp_confidence,
    fallback_classification,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY_SECONDS = 0.15
CLASSIFICATION_CONTENT_LIMIT = 2000
RELATIONSHIP_CONTENT_LIMIT = 1500
ENTITY_CONTENT_LIMIT = 12000
MAX_LINKS_PER_NOTE = 10
MAX_EXAMPLES_PER_TYPE = 15

_PROMPT_FILES: dict[str, Path] = {
    "classification": Path(__file__).resolve().parent / "prompts" / "classification_v1.txt",
    "relationship": Path(__file__).resolve().parent / "prompts" / "relationship_v1.txt",
    "entities": Path(__file__).resolve().parent / "prompts" / "entities_v1.txt",
}
_TYPE_ALIASES: dict[str, InferredEntityType] = {
    **{value.lower(): value for value in INFERRED_ENTITY_TYPES},
    "person": "NPC",
    "place": "Area",
    "location": "Area",
    "poi": "Area",
    "session_log": "SessionLog",
    "pc": "Character",
}


class LLMProviderError(RuntimeError):
    """Raised when the generation model cannot be reached or returns an unusable envelope."""


class ProviderConfigurationError(LLMProviderError):
    """Raised when the production provider is selected without credentials."""


class LLMClient(Protocol):
    """Protocol for pluggable text-generation clients used by the provider."""

    def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        """Return the raw text of one model response."""


@dataclass(slots=True)
class OpenAIChatCompletionsClient:
    """Minimal OpenAI-compatible Chat Completions client using stdlib HTTP."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 60
    max_tokens: int = 4096

    def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        """Call the model and return its text content."""

        payload = {
            "model": self.model,
            "temperature": 0,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMProviderError(f"Model HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise LLMProviderError(f"Model request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise LLMProviderError("Model request timed out") from exc

        try:
            decoded = json.loads(raw)
            message = decoded["choices"][0]["message"]
            refusal = message.get("refusal")
            if isinstance(refusal, str) and refusal.strip():
                raise LLMProviderError(f"Model refused request: {refusal.strip()}")
            content = message["content"]
            if not isinstance(content, str):
                raise TypeError("Model response content is not a string")
            return content
        except LLMProviderError:
            raise
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise LLMProviderError("Model returned an unexpected response envelope") from exc


@lru_cache(maxsize=8)
def _get_system_prompt(name: str) -> str:
    prompt_file = _PROMPT_FILES.get(name)
    if prompt_file is None:
        raise LLMProviderError(f"Prompt is not registered: {name}")
    try:
        prompt_text = prompt_file.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise LLMProviderError(f"Failed to load prompt file: {prompt_file}") from exc
    if not prompt_text:
        raise LLMProviderError(f"Prompt file is empty: {prompt_file}")
    return prompt_text


class _RawModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class _RawClassification(_RawModel):
    note_id: str = Field(alias="noteId")
    inferred_type: str = Field(default="Note", alias="inferredType")
    confidence: Any = 0.5
    explanation: str | None = ""
    extracted_entities: list[Any] = Field(default_factory=list, alias="extractedEntities")


class _RawRelationship(_RawModel):
    from_note_id: str = Field(alias="fromNoteId")
    to_note_id: str = Field(alias="toNoteId")
    relationship_type: str = Field(default="Related", alias="relationshipType")
    confidence: Any = 0.5
    evidence_snippet: str | None = Field(default="", alias="evidenceSnippet")
    evidence_type: str = Field(default="Heuristic", alias="evidenceType")


class _RawEntity(_RawModel):
    name: str
    type: str = "npc"
    confidence: Any = 0.0
    mentions: Any = 1
    context: str | None = None
    matched_note_id: str | None = Field(default=None, alias="matchedNoteId")


class _RawEntityRelationship(_RawModel):
    entity1: str
    entity2: str
    relationship: str = "related"
    confidence: Any = 0.0


class LLMGenerationProvider(GenerationProvider):
    """Generation provider that batches notes into prompts and recovers model JSON."""

    def __init__(
        self,
        client: LLMClient,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._batch_size = max(1, int(batch_size))
        self._batch_delay_seconds = max(0.0, float(batch_delay_seconds))
        self._sleep = sleep

    @property
    def model_name(self) -> str:  # type: ignore[override]
        return str(getattr(self._client, "model", self._client.__class__.__name__))

    def classify_notes(
        self,
        notes: list[NoteForClassification],
        on_progress: ProgressCallback | None = None,
        options: ClassificationOptions | None = None,
    ) -> list[ClassificationResult]:
        """Classify notes batch by batch, carrying high-confidence labels forward."""

        total = len(notes)
        pc_names = _clean_names(options.player_character_names if options else [])
        examples: dict[str, list[str]] = {}
        results: list[ClassificationResult] = []
        batches = _chunk(notes, self._batch_size)

        for batch_index, batch in enumerate(batches):
            _report_progress(on_progress, len(results), total, batch[0].title)
            batch_results = self._classify_batch(batch, pc_names, examples)
            results.extend(batch_results)
            _remember_examples(examples, batch, batch_results)
            if batch_index < len(batches) - 1:
                self._sleep(self._batch_delay_seconds)

        _report_progress(on_progress, total, total, None)
        return results

    def extract_relationships(
        self,
        notes: list[NoteWithClassification],
        on_progress: ProgressCallback | None = None,
    ) -> list[RelationshipResult]:
        """Extract relationships batch by batch against the full note set."""

        if len(notes) < 2:
            return []

        total = len(notes)
        known_ids = {note.id for note in notes}
        notes_by_type = _group_notes_by_type(notes)
        results: list[RelationshipResult] = []
        batches = _chunk(notes, self._batch_size)
        processed = 0

        for batch_index, batch in enumerate(batches):
            _report_progress(on_progress, processed, total, batch[0].title)
            results.extend(self._extract_relationship_batch(batch, notes_by_type, known_ids))
            processed += len(batch)
            if batch_index < len(batches) - 1:
                self._sleep(self._batch_delay_seconds)

        _report_progress(on_progress, total, total, None)
        return deduplicate_relationships(results)

    def extract_entities(
        self,
        content: str,
        existing_notes: list[NoteReference] | None = None,
    ) -> EntityExtractionResult:
        """Extract named entities from free text in a single model call."""

        if not content or not content.strip():
            return EntityExtractionResult()

        references = list(existing_notes or [])
        user_prompt = self._build_entity_prompt(content, references)
        try:
            raw = self._client.complete(system_prompt=_get_system_prompt("entities"), user_prompt=user_prompt)
        except Exception:
            logger.exception("enrichment.extract_entities_failed content_chars=%d", len(content))
            return EntityExtractionResult()

        try:
            parsed = parse_structured_response(raw)
        except (NoStructureFound, ResponseParseError) as exc:
            _log_malformed("extract_entities", exc, raw)
            return EntityExtractionResult()
        if not isinstance(parsed, dict):
            _log_malformed("extract_entities", "payload is not an object", raw)
            return EntityExtractionResult()

        return _normalize_entity_payload(parsed, {reference.id for reference in references})

    def _classify_batch(
        self,
        batch: list[NoteForClassification],
        pc_names: list[str],
        examples: dict[str, list[str]],
    ) -> list[ClassificationResult]:
        user_prompt = self._build_classification_prompt(batch, pc_names, examples)
        try:
            raw = self._client.complete(
                system_prompt=_get_system_prompt("classification"),
                user_prompt=user_prompt,
            )
        except Exception:
            logger.exception("enrichment.classify_batch_failed batch_size=%d", len(batch))
            return [fallback_classification(note.id, "Classification failed due to provider error") for note in batch]

        try:
            parsed = parse_structured_response(raw)
        except (NoStructureFound, ResponseParseError) as exc:
            _log_malformed("classify_batch", exc, raw)
            return [fallback_classification(note.id, "Failed to parse AI response") for note in batch]

        items = _unwrap_list(parsed, ("classifications", "results", "notes"))
        if items is None:
            _log_malformed("classify_batch", "payload is not a list", raw)
            return [fallback_classification(note.id, "Failed to parse AI response") for note in batch]
        return _normalize_classifications(items, batch)

    def _extract_relationship_batch(
        self,
        batch: list[NoteWithClassification],
        notes_by_type: dict[str, list[dict[str, str]]],
        known_ids: set[str],
    ) -> list[RelationshipResult]:
        user_prompt = self._build_relationship_prompt(batch, notes_by_type)
        try:
            raw = self._client.complete(
                system_prompt=_get_system_prompt("relationship"),
                user_prompt=user_prompt,
            )
        except Exception:
            logger.exception("enrichment.relationship_batch_failed batch_size=%d", len(batch))
            return []

        try:
            parsed = parse_structured_response(raw)
        except (NoStructureFound, ResponseParseError) as exc:
            _log_malformed("relationship_batch", exc, raw)
            return []

        items = _unwrap_list(parsed, ("relationships", "results"))
        if items is None:
            _log_malformed("relationship_batch", "payload is not a list", raw)
            return []
        return _normalize_relationships(items, known_ids)

    @staticmethod
    def _build_classification_prompt(
        batch: list[NoteForClassification],
        pc_names: list[str],
        examples: dict[str, list[str]],
    ) -> str:
        notes_json = [
            {
                "id": note.id,
                "title": note.title,
                "content": note.content[:CLASSIFICATION_CONTENT_LIMIT],
                "currentType": note.current_type,
                "linkedTitles": note.existing_link_titles[:MAX_LINKS_PER_NOTE],
            }
            for note in batch
        ]
        sections = []
        if pc_names:
            sections.append(
                "Player characters in this campaign (classify notes about them as Character, not NPC):\n"
                + "\n".join(f"- {name}" for name in pc_names)
            )
        if any(examples.values()):
            lines = [
                f"- {inferred_type}: {', '.join(titles)}"
                for inferred_type, titles in sorted(examples.items())
                if titles
            ]
            sections.append(
                "Notes already classified with high confidence earlier in this import:\n" + "\n".join(lines)
            )
        sections.append(
            "Classify the following notes. Return a JSON array with one object per note:\n"
            "```json\n"
            '[{"noteId": "string", "inferredType": "Character" | "NPC" | "Area" | "Quest" | "SessionLog" | "Note", '
            '"confidence": 0.0-1.0, "explanation": "brief reason", "extractedEntities": ["name"]}]\n'
            "```"
        )
        sections.append("Notes to classify:\n" + json.dumps(notes_json, indent=2, ensure_ascii=False))
        return "\n\n".join(sections)

    @staticmethod
    def _build_relationship_prompt(
        batch: list[NoteWithClassification],
        notes_by_type: dict[str, list[dict[str, str]]],
    ) -> str:
        batch_json = [
            {
                "id": note.id,
                "title": note.title,
                "type": note.inferred_type,
                "content": note.content[:RELATIONSHIP_CONTENT_LIMIT],
                "links": [
                    {"targetNoteId": link.target_note_id, "linkText": link.link_text}
                    for link in note.internal_links[:MAX_LINKS_PER_NOTE]
                ],
            }
            for note in batch
        ]
        return (
            "Find relationships between these notes.\n\n"
            "Available notes in the campaign, grouped by type:\n"
            f"{json.dumps(notes_by_type, indent=2, ensure_ascii=False)}\n\n"
            "Notes to analyze (find their relationships to any available note):\n"
            f"{json.dumps(batch_json, indent=2, ensure_ascii=False)}\n\n"
            "Return a JSON array of relationships:\n"
            "```json\n"
            '[{"fromNoteId": "string", "toNoteId": "string", '
            '"relationshipType": "QuestHasNPC" | "QuestAtPlace" | "NPCInPlace" | "Related", '
            '"confidence": 0.0-1.0, "evidenceSnippet": "quoted text", "evidenceType": "Link" | "Mention" | "Heuristic"}]\n'
            "```"
        )

    @staticmethod
    def _build_entity_prompt(content: str, references: list[NoteReference]) -> str:
        reference_json = [
            {"id": reference.id, "title": reference.title, "type": reference.note_type}
            for reference in references[:200]
        ]
        return (
            "Extract entities from this session text.\n\n"
            f"Existing notes that entities may match:\n{json.dumps(reference_json, indent=2, ensure_ascii=False)}\n\n"
            f"Text:\n{content[:ENTITY_CONTENT_LIMIT]}\n\n"
            "Return a JSON object:\n"
            "```json\n"
            '{"entities": [{"name": "string", "type": "npc" | "place" | "quest" | "item" | "faction", '
            '"confidence": 0.0-1.0, "mentions": 1, "context": "short quote", "matchedNoteId": "string or null"}], '
            '"relationships": [{"entity1": "string", "entity2": "string", "relationship": "string", "confidence": 0.0-1.0}]}\n'
            "```"
        )


def deduplicate_relationships(relationships: list[RelationshipResult]) -> list[RelationshipResult]:
    """Keep the first relationship per unordered note pair and relationship type."""

    seen: set[tuple[str, str, str]] = set()
    unique: list[RelationshipResult] = []
    for relationship in relationships:
        low, high = sorted((relationship.from_note_id, relationship.to_note_id))
        key = (low, high, relationship.relationship_type)
        if key in seen:
            continue
        seen.add(key)
        unique.append(relationship)
    return unique


def _normalize_classifications(
    items: list[Any],
    batch: list[NoteForClassification],
) -> list[ClassificationResult]:
    by_note_id: dict[str, ClassificationResult] = {}
    for item in items:
        try:
            raw = _RawClassification.model_validate(item)
        except ValidationError:
            continue
        note_id = raw.note_id.strip()
        if not note_id or note_id in by_note_id:
            continue
        by_note_id[note_id] = ClassificationResult(
            note_id=note_id,
            inferred_type=_TYPE_ALIASES.get(raw.inferred_type.strip().lower(), "Note"),
            confidence=clamp_confidence(raw.confidence),
            explanation=(raw.explanation or "").strip(),
            extracted_entities=_clean_names(str(value) for value in raw.extracted_entities if value is not None),
        )

    results = []
    for note in batch:
        result = by_note_id.get(note.id)
        if result is None:
            result = fallback_classification(note.id, "Note was missing from AI response")
        results.append(result)
    return results


def _normalize_relationships(items: list[Any], known_ids: set[str]) -> list[RelationshipResult]:
    results = []
    for item in items:
        try:
            raw = _RawRelationship.model_validate(item)
        except ValidationError:
            continue
        from_id = raw.from_note_id.strip()
        to_id = raw.to_note_id.strip()
        if not from_id or not to_id or from_id == to_id:
            continue
        if from_id not in known_ids or to_id not in known_ids:
            continue
        results.append(
            RelationshipResult(
                from_note_id=from_id,
                to_note_id=to_id,
                relationship_type=raw.relationship_type if raw.relationship_type in RELATIONSHIP_TYPES else "Related",
                confidence=clamp_confidence(raw.confidence),
                evidence_snippet=(raw.evidence_snippet or "").strip(),
                evidence_type=raw.evidence_type if raw.evidence_type in EVIDENCE_TYPES else "Heuristic",
            )
        )
    return results


def _normalize_entity_payload(parsed: dict[str, Any], reference_ids: set[str]) -> EntityExtractionResult:
    entities: list[ExtractedEntity] = []
    for item in parsed.get("entities") or []:
        try:
            raw = _RawEntity.model_validate(item)
        except ValidationError:
            continue
        name = _clean_text(raw.name)
        confidence = clamp_confidence(raw.confidence, default=0.0)
        if not name or confidence < CONFIDENCE_LOW:
            continue
        kind = raw.type.strip().lower()
        try:
            mentions = max(1, int(raw.mentions))
        except (TypeError, ValueError):
            mentions = 1
        entities.append(
            ExtractedEntity(
                name=name,
                type=kind if kind in ENTITY_KINDS else "npc",  # type: ignore[arg-type]
                confidence=confidence,
                mentions=mentions,
                context=_clean_text(raw.context) or None,
                matched_note_id=raw.matched_note_id if raw.matched_note_id in reference_ids else None,
            )
        )

    relationships: list[EntityRelationship] = []
    for item in parsed.get("relationships") or []:
        try:
            raw_relationship = _RawEntityRelationship.model_validate(item)
        except ValidationError:
            continue
        confidence = clamp_confidence(raw_relationship.confidence, default=0.0)
        entity1 = _clean_text(raw_relationship.entity1)
        entity2 = _clean_text(raw_relationship.entity2)
        if not entity1 or not entity2 or confidence < CONFIDENCE_LOW:
            continue
        relationships.append(
            EntityRelationship(
                entity1=entity1,
                entity2=entity2,
                relationship=_clean_text(raw_relationship.relationship) or "related",
                confidence=confidence,
            )
        )
    return EntityExtractionResult(entities=entities, relationships=relationships)


def _remember_examples(
    examples: dict[str, list[str]],
    batch: list[NoteForClassification],
    results: list[ClassificationResult],
) -> None:
    titles = {note.id: note.title for note in batch}
    for result in results:
        if result.is_fallback or result.confidence < CONFIDENCE_HIGH:
            continue
        bucket = examples.setdefault(result.inferred_type, [])
        title = titles.get(result.note_id)
        if title and len(bucket) < MAX_EXAMPLES_PER_TYPE and title not in bucket:
            bucket.append(title)


def _group_notes_by_type(notes: list[NoteWithClassification]) -> dict[str, list[dict[str, str]]]:
    grouped: dict[str, list[dict[str, str]]] = {}
    for note in notes:
        grouped.setdefault(note.inferred_type, []).append({"id": note.id, "title": note.title})
    return grouped


def _unwrap_list(parsed: Any, keys: tuple[str, ...]) -> list[Any] | None:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in keys:
            value = parsed.get(key)
            if isinstance(value, list):
                return value
    return None


def _report_progress(on_progress: ProgressCallback | None, current: int, total: int, item: str | None) -> None:
    if on_progress is None:
        return
    try:
        on_progress(current, total, item)
    except Exception:
        logger.warning("enrichment.progress_callback_failed current=%d total=%d", current, total, exc_info=True)


def _log_malformed(operation: str, error: object, raw: str) -> None:
    logger.warning(
        "enrichment.%s_malformed_response error=%s excerpt=%r",
        operation,
        error,
        (raw or "")[:EXCERPT_LENGTH],
    )


def _chunk(items: list[Any], size: int) -> list[list[Any]]:
    return [items[index : index + size] for index in range(0, len(items), size)]


def _clean_text(value: str | None) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", " ", value).strip()


def _clean_names(values: Any) -> list[str]:
    names: list[str] = []
    for value in values:
        cleaned = _clean_text(value)
        if cleaned and cleaned not in names:
            names.append(cleaned)
    return names

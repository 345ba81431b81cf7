"""Content-addressed cache for classification and relationship results.

Entries are keyed by a SHA-256 hash of normalized note text, the current
algorithm version for the operation type, an optional context hash, and the
team id. Readers treat expired entries as misses and leave them for
``prune_expired``. A stored result never changes after it is written; only its
hit counter moves, and that update runs on a background executor so lookups
never wait on it.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ai.cache_versions import OPERATION_TYPES, get_current_version, is_operation_type
from app.ai.types import (
    EVIDENCE_TYPES,
    INFERRED_ENTITY_TYPES,
    RELATIONSHIP_TYPES,
    ClassificationResult,
    NoteForClassification,
    NoteWithClassification,
    RelationshipResult,
    clamp_confidence,
)
from app.config import get_settings
from app.db.session import SessionLocal
from app.models.ai_cache_entry import AICacheEntry
from app.models.base import utc_now

logger = logging.getLogger(__name__)

HASH_CONTENT_LIMIT = 2000
NO_PC_CONTEXT = "no-pc-context"
EXPIRING_SOON_DAYS = 7

_WHITESPACE_RE = re.compile(r"\s+")
_MARKDOWN_CHARS_RE = re.compile(r"[#*_\[\]`]")

_hit_executor: ThreadPoolExecutor | None = None


class CacheValidationError(ValueError):
    """Raised when an admin operation names an unknown operation type."""


@dataclass(slots=True)
class ClassificationCacheKey:
    content_hash: str
    context_hash: str
    algorithm_version: str


@dataclass(slots=True)
class RelationshipCacheKey:
    pair_hash: str
    from_content_hash: str
    to_content_hash: str
    algorithm_version: str


@dataclass(slots=True)
class CacheStats:
    total_entries: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    total_hits: int = 0
    expiring_soon: int = 0
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_for_hash(title: str, content: str) -> str:
    """Normalize note text so cosmetic edits do not change the cache key.

    Content past the first 2000 characters is ignored, matching the truncation
    applied when the note is sent for classification.
    """

    normalized_title = title.strip().lower()
    normalized_content = content[:HASH_CONTENT_LIMIT].strip().lower()
    normalized_content = _WHITESPACE_RE.sub(" ", normalized_content)
    normalized_content = _MARKDOWN_CHARS_RE.sub("", normalized_content)
    return f"{normalized_title}::{normalized_content}"


def content_hash(title: str, content: str) -> str:
    return sha256_hex(normalize_for_hash(title, content))


def context_hash(player_character_names: Iterable[str]) -> str:
    """Hash the player-character context; sorted before lowercasing."""

    names = [name.lower() for name in sorted(player_character_names)]
    return sha256_hex("|".join(names) or NO_PC_CONTEXT)


def classification_cache_key(
    note: NoteForClassification,
    player_character_names: Iterable[str],
    algorithm_version: str | None = None,
) -> ClassificationCacheKey:
    return ClassificationCacheKey(
        content_hash=content_hash(note.title, note.content),
        context_hash=context_hash(player_character_names),
        algorithm_version=algorithm_version or get_current_version("classification"),
    )


def relationship_cache_key(
    from_note: NoteWithClassification,
    to_note: NoteWithClassification,
    algorithm_version: str | None = None,
) -> RelationshipCacheKey:
    """Build an order-independent key for a note pair."""

    from_hash = content_hash(from_note.title, from_note.content)
    to_hash = content_hash(to_note.title, to_note.content)
    return RelationshipCacheKey(
        pair_hash=sha256_hex("::".join(sorted((from_hash, to_hash)))),
        from_content_hash=from_hash,
        to_content_hash=to_hash,
        algorithm_version=algorithm_version or get_current_version("relationship"),
    )


class EnrichmentCache:
    """Team-scoped cache store backed by the ``ai_cache_entries`` table.

    Each operation runs in its own short-lived session so cache writes commit
    independently of the enrichment run that produced them.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        model_id: str = "unknown",
        ttl_days: int | None = None,
        clock: Callable[[], datetime] = utc_now,
        hit_executor: Executor | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._model_id = model_id
        self._ttl = timedelta(days=ttl_days if ttl_days is not None else get_settings().ai_cache_ttl_days)
        self._clock = clock
        self._hit_executor = hit_executor

    def get_classification(
        self,
        note: NoteForClassification,
        player_character_names: Sequence[str],
        team_id: str,
    ) -> ClassificationResult | None:
        key = classification_cache_key(note, player_character_names)
        with self._session_factory() as db:
            entry = db.scalar(
                select(AICacheEntry).where(
                    AICacheEntry.team_id == team_id,
                    AICacheEntry.cache_type == "classification",
                    AICacheEntry.content_hash == key.content_hash,
                    AICacheEntry.algorithm_version == key.algorithm_version,
                    AICacheEntry.context_hash == key.context_hash,
                    AICacheEntry.expires_at > self._clock(),
                )
            )
            if entry is None:
                return None
            result = _classification_from_payload(note.id, entry.result_json)
            entry_id = entry.id
        if result is not None:
            self._record_hits([entry_id])
        return result

    def get_classifications_batch(
        self,
        notes: Sequence[NoteForClassification],
        player_character_names: Sequence[str],
        team_id: str,
    ) -> dict[str, ClassificationResult]:
        """Look up many notes sharing one PC context in a single query."""

        if not notes:
            return {}
        version = get_current_version("classification")
        ctx_hash = context_hash(player_character_names)
        notes_by_hash: dict[str, list[NoteForClassification]] = {}
        for note in notes:
            notes_by_hash.setdefault(content_hash(note.title, note.content), []).append(note)

        with self._session_factory() as db:
            entries = list(
                db.scalars(
                    select(AICacheEntry).where(
                        AICacheEntry.team_id == team_id,
                        AICacheEntry.cache_type == "classification",
                        AICacheEntry.content_hash.in_(list(notes_by_hash)),
                        AICacheEntry.algorithm_version == version,
                        AICacheEntry.context_hash == ctx_hash,
                        AICacheEntry.expires_at > self._clock(),
                    )
                )
            )
            results: dict[str, ClassificationResult] = {}
            hit_ids: list[str] = []
            for entry in entries:
                matched = False
                for note in notes_by_hash.get(entry.content_hash, []):
                    result = _classification_from_payload(note.id, entry.result_json)
                    if result is not None:
                        results[note.id] = result
                        matched = True
                if matched:
                    hit_ids.append(entry.id)

        self._record_hits(hit_ids)
        return results

    def set_classification(
        self,
        note: NoteForClassification,
        player_character_names: Sequence[str],
        result: ClassificationResult,
        team_id: str,
        *,
        model_id: str | None = None,
    ) -> None:
        key = classification_cache_key(note, player_character_names)
        payload = {
            "inferred_type": result.inferred_type,
            "confidence": clamp_confidence(result.confidence),
            "explanation": result.explanation,
            "extracted_entities": list(result.extracted_entities),
        }
        self._insert(
            AICacheEntry(
                cache_type="classification",
                content_hash=key.content_hash,
                algorithm_version=key.algorithm_version,
                context_hash=key.context_hash,
                team_id=team_id,
                result_json=payload,
                model_id=model_id or self._model_id,
            )
        )

    def get_relationship(
        self,
        from_note: NoteWithClassification,
        to_note: NoteWithClassification,
        team_id: str,
    ) -> RelationshipResult | None:
        """Return the cached relationship for a pair, oriented to the query order."""

        key = relationship_cache_key(from_note, to_note)
        with self._session_factory() as db:
            entry = db.scalar(
                select(AICacheEntry).where(
                    AICacheEntry.team_id == team_id,
                    AICacheEntry.cache_type == "relationship",
                    AICacheEntry.content_hash == key.pair_hash,
                    AICacheEntry.algorithm_version == key.algorithm_version,
                    AICacheEntry.context_hash.is_(None),
                    AICacheEntry.expires_at > self._clock(),
                )
            )
            if entry is None:
                return None
            same_direction = entry.from_content_hash == key.from_content_hash
            if same_direction:
                endpoints = (from_note.id, to_note.id)
            else:
                endpoints = (to_note.id, from_note.id)
            result = _relationship_from_payload(*endpoints, entry.result_json)
            entry_id = entry.id
        if result is not None:
            self._record_hits([entry_id])
        return result

    def set_relationship(
        self,
        from_note: NoteWithClassification,
        to_note: NoteWithClassification,
        result: RelationshipResult,
        team_id: str,
        *,
        model_id: str | None = None,
    ) -> None:
        key = relationship_cache_key(from_note, to_note)
        payload = {
            "relationship_type": result.relationship_type,
            "confidence": clamp_confidence(result.confidence),
            "evidence_snippet": result.evidence_snippet,
            "evidence_type": result.evidence_type,
        }
        self._insert(
            AICacheEntry(
                cache_type="relationship",
                content_hash=key.pair_hash,
                algorithm_version=key.algorithm_version,
                context_hash=None,
                team_id=team_id,
                result_json=payload,
                model_id=model_id or self._model_id,
                from_content_hash=key.from_content_hash,
                to_content_hash=key.to_content_hash,
            )
        )

    def invalidate_by_version(self, operation_type: str, version: str) -> int:
        if not is_operation_type(operation_type):
            raise CacheValidationError(
                f"Unknown operation type: {operation_type!r}. Expected one of: {', '.join(OPERATION_TYPES)}"
            )
        return self._delete_where(
            AICacheEntry.cache_type == operation_type,
            AICacheEntry.algorithm_version == version,
        )

    def invalidate_by_team(self, team_id: str) -> int:
        return self._delete_where(AICacheEntry.team_id == team_id)

    def prune_expired(self) -> int:
        return self._delete_where(AICacheEntry.expires_at <= self._clock())

    def get_stats(self) -> CacheStats:
        now = self._clock()
        with self._session_factory() as db:
            by_type = {
                cache_type: int(count)
                for cache_type, count in db.execute(
                    select(AICacheEntry.cache_type, func.count(AICacheEntry.id)).group_by(AICacheEntry.cache_type)
                ).all()
            }
            total_hits, oldest, newest = db.execute(
                select(
                    func.coalesce(func.sum(AICacheEntry.hit_count), 0),
                    func.min(AICacheEntry.created_at),
                    func.max(AICacheEntry.created_at),
                )
            ).one()
            expiring_soon = db.scalar(
                select(func.count(AICacheEntry.id)).where(
                    AICacheEntry.expires_at > now,
                    AICacheEntry.expires_at <= now + timedelta(days=EXPIRING_SOON_DAYS),
                )
            )
        return CacheStats(
            total_entries=sum(by_type.values()),
            by_type=by_type,
            total_hits=int(total_hits or 0),
            expiring_soon=int(expiring_soon or 0),
            oldest_entry=oldest,
            newest_entry=newest,
        )

    def _insert(self, entry: AICacheEntry) -> None:
        now = self._clock()
        entry.created_at = now
        entry.expires_at = now + self._ttl
        entry.hit_count = 0
        key_conditions = (
            AICacheEntry.team_id == entry.team_id,
            AICacheEntry.cache_type == entry.cache_type,
            AICacheEntry.content_hash == entry.content_hash,
            AICacheEntry.algorithm_version == entry.algorithm_version,
            AICacheEntry.context_hash.is_(None)
            if entry.context_hash is None
            else AICacheEntry.context_hash == entry.context_hash,
        )
        with self._session_factory() as db:
            live_id = db.scalar(select(AICacheEntry.id).where(*key_conditions, AICacheEntry.expires_at > now))
            if live_id is not None:
                return
            # An expired entry under the same key is replaced, never updated in place.
            db.execute(delete(AICacheEntry).where(*key_conditions))
            db.add(entry)
            try:
                db.commit()
            except IntegrityError:
                # Another writer stored the same key first.
                db.rollback()
                logger.debug(
                    "enrichment_cache.duplicate_write cache_type=%s team_id=%s",
                    entry.cache_type,
                    entry.team_id,
                )

    def _delete_where(self, *conditions: Any) -> int:
        with self._session_factory() as db:
            result = db.execute(delete(AICacheEntry).where(*conditions))
            db.commit()
            return int(result.rowcount or 0)

    def _record_hits(self, entry_ids: list[str]) -> None:
        if not entry_ids:
            return
        executor = self._hit_executor or _get_hit_executor()
        try:
            executor.submit(_increment_hit_counts, self._session_factory, list(entry_ids))
        except RuntimeError:
            logger.debug("enrichment_cache.hit_count_skipped entries=%d", len(entry_ids))


def _increment_hit_counts(session_factory: Callable[[], Session], entry_ids: list[str]) -> None:
    try:
        with session_factory() as db:
            db.execute(
                update(AICacheEntry)
                .where(AICacheEntry.id.in_(entry_ids))
                .values(hit_count=AICacheEntry.hit_count + 1)
            )
            db.commit()
    except Exception:
        logger.debug("enrichment_cache.hit_count_failed entries=%d", len(entry_ids), exc_info=True)


def _get_hit_executor() -> ThreadPoolExecutor:
    global _hit_executor
    if _hit_executor is None:
        _hit_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ai-cache-hits")
    return _hit_executor


def shutdown_hit_executor(wait: bool = True) -> None:
    """Stop the shared hit-count executor; a later cache hit starts a new one."""

    global _hit_executor
    executor, _hit_executor = _hit_executor, None
    if executor is not None:
        executor.shutdown(wait=wait)


def _classification_from_payload(note_id: str, payload: dict[str, Any]) -> ClassificationResult | None:
    inferred_type = payload.get("inferred_type")
    if inferred_type not in INFERRED_ENTITY_TYPES:
        return None
    return ClassificationResult(
        note_id=note_id,
        inferred_type=inferred_type,
        confidence=clamp_confidence(payload.get("confidence")),
        explanation=str(payload.get("explanation") or ""),
        extracted_entities=[str(name) for name in payload.get("extracted_entities") or []],
    )


def _relationship_from_payload(from_note_id: str, to_note_id: str, payload: dict[str, Any]) -> RelationshipResult | None:
    relationship_type = payload.get("relationship_type")
    if relationship_type not in RELATIONSHIP_TYPES:
        return None
    evidence_type = payload.get("evidence_type")
    return RelationshipResult(
        from_note_id=from_note_id,
        to_note_id=to_note_id,
        relationship_type=relationship_type,
        confidence=clamp_confidence(payload.get("confidence")),
        evidence_snippet=str(payload.get("evidence_snippet") or ""),
        evidence_type=evidence_type if evidence_type in EVIDENCE_TYPES else "Heuristic",
    )

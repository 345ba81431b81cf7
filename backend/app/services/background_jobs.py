"""Background enrichment worker: single-flight, FIFO, one consumer thread."""

from __future__ import annotations

import logging
import queue
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from time import perf_counter

from sqlalchemy.orm import Session

from app.ai.provider_interface import GenerationProvider
from app.ai.thresholds import ConfidenceTally
from app.ai.types import (
    ClassificationOptions,
    ClassificationResult,
    InternalLink,
    NoteForClassification,
    NoteWithClassification,
)
from app.db.session import SessionLocal
from app.models.base import utc_now
from app.models.enrichment_run import EnrichmentRun
from app.models.note import Note
from app.models.note_classification import NoteClassification
from app.models.note_relationship import NoteRelationship
from app.schemas.enrichment import EnrichmentTotals
from app.services.cached_provider import CachingGenerationProvider
from app.services.enrichment import (
    PRECLASSIFIED_NOTE_TYPES,
    get_default_provider,
    list_notes_for_import,
    map_note_type_to_inferred,
)
from app.services.enrichment_cache import EnrichmentCache
from app.services.ephemeral_store import ProgressTracker, get_progress_tracker

logger = logging.getLogger(__name__)

INTERNAL_LINK_RE = re.compile(r"\[([^\]]+)\]\(/notes/([^)]+)\)")

ProviderFactory = Callable[[], GenerationProvider]
CacheFactory = Callable[[GenerationProvider], EnrichmentCache | None]


@dataclass(frozen=True, slots=True)
class EnrichmentJob:
    """Queue message identifying one run to process."""

    enrichment_run_id: str
    import_run_id: str
    team_id: str
    override_existing: bool = False
    player_character_names: tuple[str, ...] = ()

    @classmethod
    def from_run(cls, run: EnrichmentRun) -> "EnrichmentJob":
        return cls(
            enrichment_run_id=run.id,
            import_run_id=run.import_run_id,
            team_id=run.team_id,
            override_existing=run.override_existing,
            player_character_names=tuple(run.player_character_names or ()),
        )


def _default_cache_factory(session_factory: Callable[[], Session]) -> CacheFactory:
    def _build(provider: GenerationProvider) -> EnrichmentCache:
        return EnrichmentCache(session_factory, model_id=provider.model_name)

    return _build


class EnrichmentWorker:
    """Process enrichment runs strictly one at a time in enqueue order.

    Jobs go onto a ``queue.Queue`` consumed by a single daemon thread. The run
    lock plus ``_active_run_id`` make the one-run-at-a-time rule explicit, so
    ``drain`` and the consumer thread can never overlap.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        provider_factory: ProviderFactory = get_default_provider,
        cache_factory: CacheFactory | None = None,
        progress: ProgressTracker | None = None,
        *,
        autostart: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._provider_factory = provider_factory
        self._cache_factory = cache_factory
        self._progress = progress
        self._autostart = autostart
        self._queue: queue.Queue[EnrichmentJob] = queue.Queue()
        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._active_run_id: str | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_busy(self) -> bool:
        with self._state_lock:
            return self._active_run_id is not None

    @property
    def active_run_id(self) -> str | None:
        with self._state_lock:
            return self._active_run_id

    @property
    def queue_length(self) -> int:
        return self._queue.qsize()

    def enqueue(self, job: EnrichmentJob) -> None:
        self._queue.put(job)
        logger.info(
            "enrichment.job_enqueued run_id=%s import_run_id=%s queue_length=%d",
            job.enrichment_run_id,
            job.import_run_id,
            self._queue.qsize(),
        )
        if self._autostart:
            self._ensure_consumer()

    def drain(self) -> int:
        """Process every queued job on the calling thread; returns the number processed."""

        processed = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return processed
            try:
                self._run_job(job)
            finally:
                self._queue.task_done()
            processed += 1

    def wait_until_idle(self) -> None:
        self._queue.join()

    def _ensure_consumer(self) -> None:
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._consume, name="enrichment-worker", daemon=True)
            self._thread.start()

    def _consume(self) -> None:
        while True:
            job = self._queue.get()
            try:
                self._run_job(job)
            finally:
                self._queue.task_done()

    def _run_job(self, job: EnrichmentJob) -> None:
        with self._run_lock:
            with self._state_lock:
                self._active_run_id = job.enrichment_run_id
            try:
                self._process(job)
            except Exception:
                # One broken job must not stop the queue behind it.
                logger.exception("enrichment.job_crashed run_id=%s", job.enrichment_run_id)
            finally:
                with self._state_lock:
                    self._active_run_id = None

    def _process(self, job: EnrichmentJob) -> None:
        started = perf_counter()
        db: Session | None = None
        try:
            db = self._session_factory()
            provider = self._provider_factory()
            cache_factory = self._cache_factory or _default_cache_factory(self._session_factory)
            cache = cache_factory(provider)
            if cache is not None:
                provider = CachingGenerationProvider(provider, cache, job.team_id)
            totals = process_enrichment_run(db, job, provider, progress=self._progress)
            logger.info(
                (
                    "enrichment.run_timing run_id=%s notes=%d classifications=%d relationships=%d "
                    "review_required=%d total_ms=%.2f"
                ),
                job.enrichment_run_id,
                totals.notes_processed,
                totals.classifications_created,
                totals.relationships_found,
                totals.user_review_required,
                (perf_counter() - started) * 1000.0,
            )
        except Exception as exc:
            if db is not None:
                db.rollback()
            logger.exception(
                "enrichment.run_failed run_id=%s elapsed_ms=%.2f",
                job.enrichment_run_id,
                (perf_counter() - started) * 1000.0,
            )
            self._mark_failed(job.enrichment_run_id, str(exc) or exc.__class__.__name__)
        finally:
            if db is not None:
                db.close()

    def _mark_failed(self, run_id: str, error_message: str) -> None:
        if self._progress is not None:
            self._progress.fail(run_id, error_message)
        try:
            with self._session_factory() as db:
                run = db.get(EnrichmentRun, run_id)
                if run is None:
                    return
                run.status = "failed"
                run.error_message = error_message
                run.completed_at = utc_now()
                db.commit()
        except Exception:
            logger.exception("enrichment.run_fail_status_write_failed run_id=%s", run_id)


def process_enrichment_run(
    db: Session,
    job: EnrichmentJob,
    provider: GenerationProvider,
    *,
    progress: ProgressTracker | None = None,
) -> EnrichmentTotals:
    """Classify then relate the notes of one import and persist pending review records.

    Any exception propagates; the caller owns the failure transition.
    """

    run = db.get(EnrichmentRun, job.enrichment_run_id)
    if run is None:
        raise LookupError(f"Enrichment run not found: {job.enrichment_run_id}")
    run.status = "running"
    run.started_at = utc_now()
    run.model_name = provider.model_name
    run.error_message = None
    db.commit()

    notes = list_notes_for_import(db, job.import_run_id, job.team_id)
    classification_inputs = prepare_notes_for_classification(notes, job.override_existing)
    if progress is not None:
        progress.start(job.enrichment_run_id, total=len(classification_inputs))
    if not notes:
        return _complete_run(db, run, EnrichmentTotals(), progress)

    notes_by_id = {note.id: note for note in notes}
    tally = ConfidenceTally()

    classification_results: list[ClassificationResult] = []
    if classification_inputs:
        classification_results = provider.classify_notes(
            classification_inputs,
            progress.callback(job.enrichment_run_id, "classifying") if progress is not None else None,
            ClassificationOptions(player_character_names=list(job.player_character_names)),
        )
    classification_results = [result for result in classification_results if result.note_id in notes_by_id]
    for result in classification_results:
        db.add(
            NoteClassification(
                enrichment_run_id=run.id,
                note_id=result.note_id,
                inferred_type=result.inferred_type,
                confidence=result.confidence,
                explanation=result.explanation,
                extracted_entities=list(result.extracted_entities),
                status="pending",
            )
        )
        tally.add(result.confidence)

    relationship_inputs = prepare_notes_for_relationships(notes, classification_results)
    relationship_results = provider.extract_relationships(
        relationship_inputs,
        progress.callback(job.enrichment_run_id, "relationships") if progress is not None else None,
    )
    relationships_found = 0
    for result in relationship_results:
        if result.from_note_id not in notes_by_id or result.to_note_id not in notes_by_id:
            continue
        db.add(
            NoteRelationship(
                enrichment_run_id=run.id,
                from_note_id=result.from_note_id,
                to_note_id=result.to_note_id,
                relationship_type=result.relationship_type,
                confidence=result.confidence,
                evidence_snippet=result.evidence_snippet,
                evidence_type=result.evidence_type,
                status="pending",
            )
        )
        relationships_found += 1
        tally.add(result.confidence)

    totals = EnrichmentTotals(
        notes_processed=len(notes),
        classifications_created=len(classification_results),
        relationships_found=relationships_found,
        high_confidence_count=tally.high,
        low_confidence_count=tally.low,
        user_review_required=tally.review_required,
    )
    return _complete_run(db, run, totals, progress)


def _complete_run(
    db: Session,
    run: EnrichmentRun,
    totals: EnrichmentTotals,
    progress: ProgressTracker | None,
) -> EnrichmentTotals:
    run.totals_json = totals.model_dump()
    run.status = "completed"
    run.completed_at = utc_now()
    db.commit()
    if progress is not None:
        progress.complete(run.id)
    return totals


def prepare_notes_for_classification(notes: list[Note], override_existing: bool) -> list[NoteForClassification]:
    """Snapshot notes for classification, skipping hand-typed ones unless overriding."""

    titles = {note.id: note.title for note in notes}
    prepared = []
    for note in notes:
        if not override_existing and (note.note_type or "").lower() in PRECLASSIFIED_NOTE_TYPES:
            continue
        prepared.append(
            NoteForClassification(
                id=note.id,
                title=note.title,
                content=_note_text(note),
                current_type=note.note_type or "note",
                existing_link_titles=[
                    titles[linked_id] for linked_id in note.linked_note_ids or [] if linked_id in titles
                ],
            )
        )
    return prepared


def prepare_notes_for_relationships(
    notes: list[Note],
    classification_results: list[ClassificationResult],
) -> list[NoteWithClassification]:
    inferred_by_id = {result.note_id: result.inferred_type for result in classification_results}
    return [
        NoteWithClassification(
            id=note.id,
            title=note.title,
            content=_note_text(note),
            inferred_type=inferred_by_id.get(note.id) or map_note_type_to_inferred(note.note_type),
            internal_links=extract_internal_links(note, notes),
        )
        for note in notes
    ]


def extract_internal_links(note: Note, all_notes: list[Note]) -> list[InternalLink]:
    """Collect links to notes in the same set from markdown and ``linked_note_ids``, one per target."""

    titles = {candidate.id: candidate.title for candidate in all_notes}
    links: list[InternalLink] = []
    seen: set[str] = set()
    source = note.content_markdown or note.content or ""
    for match in INTERNAL_LINK_RE.finditer(source):
        link_text, target_id = match.group(1), match.group(2)
        if target_id in titles and target_id not in seen:
            links.append(InternalLink(target_note_id=target_id, link_text=link_text))
            seen.add(target_id)
    for target_id in note.linked_note_ids or []:
        if target_id in titles and target_id not in seen:
            links.append(InternalLink(target_note_id=target_id, link_text=titles[target_id]))
            seen.add(target_id)
    return links


def _note_text(note: Note) -> str:
    return note.content or note.content_markdown or ""


@lru_cache(maxsize=1)
def get_enrichment_worker() -> EnrichmentWorker:
    """Return the process-wide worker."""

    return EnrichmentWorker(progress=get_progress_tracker())

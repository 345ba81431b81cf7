"""Integration tests for the content-addressed enrichment cache."""

from __future__ import annotations

import unittest
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.ai.cache_versions import get_current_version, get_version_history, is_current_version
from app.ai.types import ClassificationResult, NoteForClassification, NoteWithClassification, RelationshipResult
from app.models.ai_cache_entry import AICacheEntry
from app.db.base import Base
from app.services import enrichment_cache
from app.services.enrichment_cache import (
    CacheValidationError,
    EnrichmentCache,
    classification_cache_key,
    content_hash,
    context_hash,
    normalize_for_hash,
    relationship_cache_key,
    shutdown_hit_executor,
)


class InlineExecutor(Executor):
    """Runs submitted work immediately so hit counts are observable in tests."""

    def submit(self, fn, /, *args, **kwargs):  # noqa: ANN001, ANN201
        future: Future = Future()
        future.set_result(fn(*args, **kwargs))
        return future


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def _note(note_id: str, title: str, content: str) -> NoteForClassification:
    return NoteForClassification(id=note_id, title=title, content=content)


def _related(note_id: str, title: str, content: str, inferred_type: str = "Note") -> NoteWithClassification:
    return NoteWithClassification(id=note_id, title=title, content=content, inferred_type=inferred_type)


class CacheKeyTests(unittest.TestCase):
    def test_normalization_ignores_case_whitespace_and_markdown(self) -> None:
        self.assertEqual(
            content_hash("  Captain Mira ", "The **harbor**   master\n\nof `Saltmere`"),
            content_hash("captain mira", "the harbor master of saltmere"),
        )

    def test_content_beyond_limit_does_not_change_hash(self) -> None:
        base = "a" * 2000
        self.assertEqual(content_hash("T", base + "tail one"), content_hash("T", base + "different tail"))
        self.assertNotEqual(content_hash("T", "b" + base[1:]), content_hash("T", base))

    def test_normalized_form_separates_title_and_content(self) -> None:
        self.assertEqual(normalize_for_hash("Title", "Body"), "title::body")

    def test_context_hash_is_order_independent(self) -> None:
        self.assertEqual(context_hash(["Thorn", "Ilsa"]), context_hash(["Ilsa", "Thorn"]))
        self.assertEqual(context_hash([]), context_hash(()))
        self.assertNotEqual(context_hash([]), context_hash(["Thorn"]))

    def test_pair_hash_is_order_independent_but_direction_is_kept(self) -> None:
        first = _related("a", "Mira", "NPC")
        second = _related("b", "Saltmere", "Town")
        forward = relationship_cache_key(first, second)
        backward = relationship_cache_key(second, first)
        self.assertEqual(forward.pair_hash, backward.pair_hash)
        self.assertEqual(forward.from_content_hash, backward.to_content_hash)
        self.assertEqual(forward.algorithm_version, get_current_version("relationship"))

    def test_classification_key_uses_current_version(self) -> None:
        key = classification_cache_key(_note("n1", "Mira", "NPC"), ["Thorn"])
        self.assertEqual(key.algorithm_version, get_current_version("classification"))
        self.assertEqual(key.context_hash, context_hash(["Thorn"]))

    def test_version_registry_tracks_history(self) -> None:
        history = get_version_history("relationship")
        self.assertEqual(history[-1].version, get_current_version("relationship"))
        self.assertTrue(is_current_version("classification", get_current_version("classification")))
        self.assertFalse(is_current_version("classification", "1.0.0"))


class EnrichmentCacheTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        with self.SessionLocal() as db:
            db.execute(delete(AICacheEntry))
            db.commit()
        self.clock = _Clock(datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc))
        self.cache = EnrichmentCache(
            self.SessionLocal,
            model_id="test-model",
            ttl_days=30,
            clock=self.clock,
            hit_executor=InlineExecutor(),
        )

    def _entry_count(self) -> int:
        with self.SessionLocal() as db:
            return int(db.scalar(select(func.count(AICacheEntry.id))) or 0)

    def _hit_counts(self) -> list[int]:
        with self.SessionLocal() as db:
            return list(db.scalars(select(AICacheEntry.hit_count).order_by(AICacheEntry.created_at)))

    def test_classification_roundtrip_and_hit_count(self) -> None:
        note = _note("n1", "Captain Mira", "Harbor master of Saltmere.")
        self.assertIsNone(self.cache.get_classification(note, ["Thorn"], "team-a"))

        self.cache.set_classification(note, ["Thorn"], ClassificationResult("n1", "NPC", 0.9, "Named person"), "team-a")
        cached = self.cache.get_classification(note, ["Thorn"], "team-a")
        self.cache.get_classification(note, ["Thorn"], "team-a")

        assert cached is not None
        self.assertEqual((cached.note_id, cached.inferred_type, cached.confidence), ("n1", "NPC", 0.9))
        self.assertEqual(cached.explanation, "Named person")
        self.assertEqual(self._hit_counts(), [2])

    def test_cached_result_applies_to_other_note_with_same_content(self) -> None:
        self.cache.set_classification(_note("n1", "Mira", "NPC"), [], ClassificationResult("n1", "NPC", 0.9), "team-a")
        cached = self.cache.get_classification(_note("copy", "  MIRA ", "npc"), [], "team-a")
        assert cached is not None
        self.assertEqual(cached.note_id, "copy")

    def test_lookup_is_scoped_by_team_and_context(self) -> None:
        note = _note("n1", "Thorn", "Ranger.")
        self.cache.set_classification(note, ["Thorn"], ClassificationResult("n1", "Character", 0.95), "team-a")

        self.assertIsNone(self.cache.get_classification(note, ["Thorn"], "team-b"))
        self.assertIsNone(self.cache.get_classification(note, [], "team-a"))
        self.assertIsNotNone(self.cache.get_classification(note, ["thorn"], "team-a"))

    def test_existing_entry_is_never_overwritten(self) -> None:
        note = _note("n1", "Mira", "NPC")
        self.cache.set_classification(note, [], ClassificationResult("n1", "NPC", 0.9), "team-a")
        self.cache.set_classification(note, [], ClassificationResult("n1", "Area", 0.7), "team-a")

        cached = self.cache.get_classification(note, [], "team-a")
        assert cached is not None
        self.assertEqual(cached.inferred_type, "NPC")
        self.assertEqual(self._entry_count(), 1)

    def test_expired_entry_is_a_miss_and_is_replaced_on_write(self) -> None:
        note = _note("n1", "Mira", "NPC")
        self.cache.set_classification(note, [], ClassificationResult("n1", "NPC", 0.9), "team-a")

        self.clock.advance(days=30)
        self.assertIsNone(self.cache.get_classification(note, [], "team-a"))

        self.cache.set_classification(note, [], ClassificationResult("n1", "Area", 0.7), "team-a")
        cached = self.cache.get_classification(note, [], "team-a")
        assert cached is not None
        self.assertEqual(cached.inferred_type, "Area")
        self.assertEqual(self._entry_count(), 1)

    def test_batch_lookup_returns_only_hits(self) -> None:
        first = _note("n1", "Mira", "NPC")
        second = _note("n2", "Saltmere", "Town")
        twin = _note("n3", "Mira", "NPC")
        self.cache.set_classification(first, ["Thorn"], ClassificationResult("n1", "NPC", 0.9), "team-a")

        results = self.cache.get_classifications_batch([first, second, twin], ["Thorn"], "team-a")

        self.assertEqual(set(results), {"n1", "n3"})
        self.assertEqual(results["n3"].note_id, "n3")
        self.assertEqual(self._hit_counts(), [1])
        self.assertEqual(self.cache.get_classifications_batch([], ["Thorn"], "team-a"), {})

    def test_relationship_is_reoriented_for_reversed_query(self) -> None:
        quest = _related("q1", "Rescue", "Find Tomas.", "Quest")
        npc = _related("npc1", "Mira", "Harbor master.", "NPC")
        self.cache.set_relationship(
            quest,
            npc,
            RelationshipResult("q1", "npc1", "QuestHasNPC", 0.85, "Find Tomas", "Mention"),
            "team-a",
        )

        same = self.cache.get_relationship(quest, npc, "team-a")
        reversed_query = self.cache.get_relationship(npc, quest, "team-a")

        assert same is not None and reversed_query is not None
        self.assertEqual((same.from_note_id, same.to_note_id), ("q1", "npc1"))
        self.assertEqual((reversed_query.from_note_id, reversed_query.to_note_id), ("q1", "npc1"))
        self.assertEqual(reversed_query.relationship_type, "QuestHasNPC")
        self.assertEqual(reversed_query.evidence_type, "Mention")
        self.assertEqual(self._hit_counts(), [2])

    def test_relationship_miss_for_other_team(self) -> None:
        first = _related("a", "A", "a")
        second = _related("b", "B", "b")
        self.cache.set_relationship(first, second, RelationshipResult("a", "b", "Related", 0.6), "team-a")
        self.assertIsNone(self.cache.get_relationship(first, second, "team-b"))

    def test_invalidate_by_version_requires_known_operation_type(self) -> None:
        with self.assertRaises(CacheValidationError):
            self.cache.invalidate_by_version("summaries", "1.0.0")

    def test_invalidate_by_version_and_team(self) -> None:
        note = _note("n1", "Mira", "NPC")
        self.cache.set_classification(note, [], ClassificationResult("n1", "NPC", 0.9), "team-a")
        self.cache.set_classification(note, [], ClassificationResult("n1", "NPC", 0.9), "team-b")
        self.cache.set_relationship(
            _related("a", "A", "a"),
            _related("b", "B", "b"),
            RelationshipResult("a", "b", "Related", 0.6),
            "team-a",
        )

        self.assertEqual(self.cache.invalidate_by_version("classification", "0.9.0"), 0)
        self.assertEqual(self.cache.invalidate_by_team("team-b"), 1)
        self.assertEqual(
            self.cache.invalidate_by_version("classification", get_current_version("classification")),
            1,
        )
        self.assertEqual(self._entry_count(), 1)

    def test_prune_expired_removes_only_expired_entries(self) -> None:
        self.cache.set_classification(_note("n1", "Old", "x"), [], ClassificationResult("n1", "Note", 0.6), "team-a")
        self.clock.advance(days=20)
        self.cache.set_classification(_note("n2", "New", "y"), [], ClassificationResult("n2", "Note", 0.6), "team-a")
        self.clock.advance(days=11)

        self.assertEqual(self.cache.prune_expired(), 1)
        self.assertEqual(self._entry_count(), 1)

    def test_stats_summarize_entries(self) -> None:
        self.assertEqual(self.cache.get_stats().total_entries, 0)

        note = _note("n1", "Mira", "NPC")
        self.cache.set_classification(note, [], ClassificationResult("n1", "NPC", 0.9), "team-a")
        self.clock.advance(days=25)
        self.cache.set_relationship(
            _related("a", "A", "a"),
            _related("b", "B", "b"),
            RelationshipResult("a", "b", "Related", 0.6),
            "team-a",
        )
        self.cache.get_classification(note, [], "team-a")

        stats = self.cache.get_stats()
        self.assertEqual(stats.total_entries, 2)
        self.assertEqual(stats.by_type, {"classification": 1, "relationship": 1})
        self.assertEqual(stats.total_hits, 1)
        self.assertEqual(stats.expiring_soon, 1)
        assert stats.oldest_entry is not None and stats.newest_entry is not None
        self.assertLess(stats.oldest_entry, stats.newest_entry)


class HitExecutorLifecycleTests(unittest.TestCase):
    def test_shutdown_stops_shared_executor_and_allows_restart(self) -> None:
        executor = enrichment_cache._get_hit_executor()
        self.assertIs(enrichment_cache._get_hit_executor(), executor)

        shutdown_hit_executor()

        self.assertIsNone(enrichment_cache._hit_executor)
        with self.assertRaises(RuntimeError):
            executor.submit(lambda: None)
        restarted = enrichment_cache._get_hit_executor()
        self.assertIsNot(restarted, executor)
        shutdown_hit_executor()
        shutdown_hit_executor()


if __name__ == "__main__":
    unittest.main()

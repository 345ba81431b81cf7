"""Integration tests for classification and relationship review transitions."""

from __future__ import annotations

import unittest

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models.enrichment_run import EnrichmentRun
from app.models.note import Note
from app.models.note_classification import NoteClassification
from app.models.note_relationship import NoteRelationship
from app.services.enrichment import get_enrichment_run_detail
from app.services.review import (
    ReviewConflictError,
    ReviewValidationError,
    bulk_approve_classifications,
    bulk_approve_relationships,
    update_classification_status,
    update_relationship_status,
)


class ReviewServiceTests(unittest.TestCase):
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
        self.db: Session = self.SessionLocal()
        self.db.execute(delete(NoteRelationship))
        self.db.execute(delete(NoteClassification))
        self.db.execute(delete(EnrichmentRun))
        self.db.execute(delete(Note))
        self.db.commit()

        self.db.add_all(
            [
                Note(id="mira", team_id="team-a", import_run_id="imp", title="Captain Mira", content="NPC"),
                Note(id="salt", team_id="team-a", import_run_id="imp", title="Saltmere", content="Town"),
                Note(id="quest", team_id="team-a", import_run_id="imp", title="Rescue", content="Quest"),
            ]
        )
        self.run = EnrichmentRun(id="run-1", import_run_id="imp", team_id="team-a", status="completed")
        self.db.add(self.run)
        self.db.add_all(
            [
                NoteClassification(
                    id="c-mira", enrichment_run_id="run-1", note_id="mira", inferred_type="NPC", confidence=0.9
                ),
                NoteClassification(
                    id="c-salt", enrichment_run_id="run-1", note_id="salt", inferred_type="Area", confidence=0.7
                ),
                NoteClassification(
                    id="c-quest", enrichment_run_id="run-1", note_id="quest", inferred_type="Quest", confidence=0.85
                ),
                NoteRelationship(
                    id="r-1",
                    enrichment_run_id="run-1",
                    from_note_id="quest",
                    to_note_id="mira",
                    relationship_type="QuestHasNPC",
                    confidence=0.92,
                ),
                NoteRelationship(
                    id="r-2",
                    enrichment_run_id="run-1",
                    from_note_id="mira",
                    to_note_id="salt",
                    relationship_type="NPCInPlace",
                    confidence=0.55,
                ),
            ]
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _note_type(self, note_id: str) -> str:
        self.db.expire_all()
        note = self.db.get(Note, note_id)
        assert note is not None
        return note.note_type

    def test_approval_sets_note_type(self) -> None:
        updated = update_classification_status(self.db, "c-mira", "approved", "reviewer-1", team_id="team-a")

        assert updated is not None
        self.assertEqual(updated.status, "approved")
        self.assertEqual(updated.approved_by_user_id, "reviewer-1")
        self.assertIsNotNone(updated.approved_at)
        self.assertEqual(self._note_type("mira"), "npc")

    def test_override_type_wins_on_approval(self) -> None:
        update_classification_status(self.db, "c-salt", "approved", "reviewer-1", override_type="Quest")
        self.assertEqual(self._note_type("salt"), "quest")

    def test_rejection_leaves_note_type(self) -> None:
        updated = update_classification_status(self.db, "c-mira", "rejected", "reviewer-1")
        assert updated is not None
        self.assertEqual(updated.status, "rejected")
        self.assertEqual(self._note_type("mira"), "note")

    def test_only_pending_records_transition(self) -> None:
        update_classification_status(self.db, "c-mira", "rejected", "reviewer-1")
        with self.assertRaises(ReviewConflictError):
            update_classification_status(self.db, "c-mira", "approved", "reviewer-2")
        self.assertEqual(self._note_type("mira"), "note")

    def test_invalid_status_and_override_are_rejected(self) -> None:
        with self.assertRaises(ReviewValidationError):
            update_classification_status(self.db, "c-mira", "pending", "reviewer-1")
        with self.assertRaises(ReviewValidationError):
            update_classification_status(self.db, "c-mira", "approved", "reviewer-1", override_type="Dragon")
        with self.assertRaises(ReviewValidationError):
            update_relationship_status(self.db, "r-1", "maybe", "reviewer-1")

    def test_records_are_scoped_to_team(self) -> None:
        self.assertIsNone(update_classification_status(self.db, "c-mira", "approved", "x", team_id="team-b"))
        self.assertIsNone(update_relationship_status(self.db, "r-1", "approved", "x", team_id="team-b"))
        self.assertIsNone(update_classification_status(self.db, "missing", "approved", "x"))

    def test_relationship_review(self) -> None:
        updated = update_relationship_status(self.db, "r-2", "rejected", "reviewer-1", team_id="team-a")
        assert updated is not None
        self.assertEqual(updated.status, "rejected")
        with self.assertRaises(ReviewConflictError):
            update_relationship_status(self.db, "r-2", "approved", "reviewer-1")

    def test_bulk_approve_high_confidence_classifications(self) -> None:
        update_classification_status(self.db, "c-quest", "rejected", "reviewer-1")

        approved = bulk_approve_classifications(self.db, "run-1", "reviewer-2", approve_high_confidence=True)

        self.assertEqual(approved, 1)
        self.assertEqual(self._note_type("mira"), "npc")
        self.assertEqual(self._note_type("salt"), "note")
        self.assertEqual(self._note_type("quest"), "note")

    def test_bulk_approve_by_ids_and_threshold(self) -> None:
        self.assertEqual(
            bulk_approve_classifications(self.db, "run-1", "reviewer-1", classification_ids=["c-salt", "ghost"]),
            1,
        )
        self.assertEqual(
            bulk_approve_relationships(self.db, "run-1", "reviewer-1", approve_high_confidence=True, threshold=0.5),
            2,
        )
        statuses = set(self.db.scalars(select(NoteRelationship.status)))
        self.assertEqual(statuses, {"approved"})

    def test_bulk_approve_validation(self) -> None:
        with self.assertRaises(ReviewValidationError):
            bulk_approve_classifications(self.db, "run-1", "reviewer-1")
        with self.assertRaises(ReviewValidationError):
            bulk_approve_relationships(self.db, "run-1", "reviewer-1", approve_high_confidence=True, threshold=1.5)

    def test_run_detail_includes_titles(self) -> None:
        detail = get_enrichment_run_detail(self.db, "run-1", "team-a")

        assert detail is not None
        self.assertEqual(len(detail.classifications), 3)
        titles = {row.note_id: row.note_title for row in detail.classifications}
        self.assertEqual(titles["mira"], "Captain Mira")
        relationship = next(row for row in detail.relationships if row.id == "r-1")
        self.assertEqual((relationship.from_note_title, relationship.to_note_title), ("Rescue", "Captain Mira"))
        self.assertIsNone(get_enrichment_run_detail(self.db, "run-1", "team-b"))


if __name__ == "__main__":
    unittest.main()

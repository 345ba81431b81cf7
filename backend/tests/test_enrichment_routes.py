"""API tests for enrichment trigger, review, preview, and progress routes."""

from __future__ import annotations

import unittest
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.ai.mock_provider import MockGenerationProvider
from app.ai.types import RelationshipResult
from app.db.dependencies import get_db
from app.main import app
from app.models.ai_cache_entry import AICacheEntry
from app.db.base import Base
from app.models.enrichment_run import EnrichmentRun
from app.models.note import Note
from app.models.note_classification import NoteClassification
from app.models.note_relationship import NoteRelationship
from app.routers.enrichment import get_enrichment_cache, get_generation_provider
from app.services.background_jobs import EnrichmentWorker, get_enrichment_worker
from app.services.ephemeral_store import EphemeralStore, ProgressTracker, get_progress_tracker
from app.services.preview import get_preview_store


class EnrichmentRouteTests(unittest.TestCase):
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
            db.execute(delete(NoteRelationship))
            db.execute(delete(NoteClassification))
            db.execute(delete(EnrichmentRun))
            db.execute(delete(Note))
            db.execute(delete(AICacheEntry))
            db.add_all(
                [
                    Note(id="mira", team_id="team-a", import_run_id="imp", title="Captain Mira", content="Harbor."),
                    Note(id="salt", team_id="team-a", import_run_id="imp", title="Saltmere Town", content="Fishing."),
                ]
            )
            db.commit()

        self.provider = MockGenerationProvider()
        self.provider.set_mock_relationships([RelationshipResult("mira", "salt", "NPCInPlace", 0.9)])
        self.progress = ProgressTracker()
        self.store: EphemeralStore = EphemeralStore(timedelta(minutes=5))
        self.worker = EnrichmentWorker(
            self.SessionLocal,
            provider_factory=lambda: self.provider,
            cache_factory=lambda _: None,
            progress=self.progress,
            autostart=False,
        )

        def _get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_enrichment_worker] = lambda: self.worker
        app.dependency_overrides[get_generation_provider] = lambda: self.provider
        app.dependency_overrides[get_enrichment_cache] = lambda: None
        app.dependency_overrides[get_preview_store] = lambda: self.store
        app.dependency_overrides[get_progress_tracker] = lambda: self.progress
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _trigger(self) -> str:
        response = self.client.post("/teams/team-a/imports/imp/enrich", json={"player_character_names": []})
        self.assertEqual(response.status_code, 202)
        return response.json()["data"]["enrichment_run_id"]

    def test_trigger_queues_run_and_rejects_duplicates(self) -> None:
        run_id = self._trigger()
        self.assertEqual(self.worker.queue_length, 1)

        duplicate = self.client.post("/teams/team-a/imports/imp/enrich", json={})
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["detail"]["enrichment_run_id"], run_id)

    def test_run_detail_after_processing(self) -> None:
        run_id = self._trigger()
        self.worker.drain()

        response = self.client.get(f"/teams/team-a/enrichments/{run_id}")
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["run"]["status"], "completed")
        self.assertEqual(data["run"]["totals"]["classifications_created"], 2)
        self.assertEqual(len(data["relationships"]), 1)
        self.assertEqual(data["relationships"][0]["from_note_title"], "Captain Mira")

        self.assertEqual(self.client.get(f"/teams/team-b/enrichments/{run_id}").status_code, 404)

    def test_classification_review_round_trip(self) -> None:
        run_id = self._trigger()
        self.worker.drain()
        detail = self.client.get(f"/teams/team-a/enrichments/{run_id}").json()["data"]
        classification_id = detail["classifications"][0]["id"]

        approved = self.client.patch(
            f"/teams/team-a/classifications/{classification_id}",
            json={"status": "approved", "reviewer_id": "gm-1"},
        )
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["data"]["status"], "approved")

        again = self.client.patch(
            f"/teams/team-a/classifications/{classification_id}",
            json={"status": "rejected", "reviewer_id": "gm-1"},
        )
        self.assertEqual(again.status_code, 409)

        invalid = self.client.patch(
            f"/teams/team-a/classifications/{classification_id}",
            json={"status": "maybe", "reviewer_id": "gm-1"},
        )
        self.assertEqual(invalid.status_code, 422)

        missing = self.client.patch(
            "/teams/team-a/relationships/does-not-exist",
            json={"status": "approved", "reviewer_id": "gm-1"},
        )
        self.assertEqual(missing.status_code, 404)

    def test_bulk_approve_relationships(self) -> None:
        run_id = self._trigger()
        self.worker.drain()

        response = self.client.post(
            f"/teams/team-a/enrichments/{run_id}/relationships/bulk-approve",
            json={"reviewer_id": "gm-1", "approve_high_confidence": True},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["approved"], 1)

        no_selection = self.client.post(
            f"/teams/team-a/enrichments/{run_id}/classifications/bulk-approve",
            json={"reviewer_id": "gm-1"},
        )
        self.assertEqual(no_selection.status_code, 422)

    def test_preview_progress_and_commit(self) -> None:
        preview = self.client.post(
            "/teams/team-a/imports/imp/enrichment-preview",
            json={"operation_id": "op-42"},
        )
        self.assertEqual(preview.status_code, 200)
        self.assertEqual(preview.json()["data"]["summary"]["total_notes"], 2)

        progress = self.client.get("/progress/op-42")
        self.assertEqual(progress.status_code, 200)
        self.assertEqual(progress.json()["data"]["phase"], "complete")
        self.assertEqual(self.client.get("/progress/unknown").status_code, 404)

        committed = self.client.post("/teams/team-a/enrichment-previews/op-42/commit", json={})
        self.assertEqual(committed.status_code, 200)
        self.assertEqual(committed.json()["data"]["status"], "completed")
        self.assertEqual(
            self.client.post("/teams/team-a/enrichment-previews/op-42/commit", json={}).status_code,
            404,
        )


if __name__ == "__main__":
    unittest.main()

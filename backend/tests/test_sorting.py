"""Tests for column sorting across API endpoints and the sorting utility."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.sorting import apply_order_by
from app.main import app
from app.models.record_mapping import RecordMapping
from app.models.sync_run import SyncRunStatus
from app.repositories.record_mapping_repository import RecordMappingRepository
from app.services.integrations.ledger import SyncRunLedger
from tests.conftest import create_integration


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def integration(db_session):
    return create_integration(db_session)


@pytest.fixture
def mappings(db_session: Session, integration):
    repo = RecordMappingRepository(db_session)
    base = datetime(2024, 1, 1, tzinfo=UTC)
    for offset, external_id in enumerate(["c-b", "c-c", "c-a"]):
        repo.add(
            integration.id,
            "contact",
            external_id,
            uuid4(),
            synced_at=base + timedelta(days=offset),
        )
    db_session.commit()


def _external_ids(query) -> list[str]:
    return [m.external_id for m in query.all()]


class TestApplyOrderBy:
    """Tests for the core sorting utility function."""

    def test_sort_by_valid_field_asc(self, db_session: Session, mappings):
        query = apply_order_by(db_session.query(RecordMapping), RecordMapping, "external_id:asc")

        assert _external_ids(query) == ["c-a", "c-b", "c-c"]

    def test_sort_by_valid_field_desc(self, db_session: Session, mappings):
        query = apply_order_by(db_session.query(RecordMapping), RecordMapping, "external_id:desc")

        assert _external_ids(query) == ["c-c", "c-b", "c-a"]

    def test_missing_direction_is_ascending(self, db_session: Session, mappings):
        query = apply_order_by(db_session.query(RecordMapping), RecordMapping, "external_id")

        assert _external_ids(query) == ["c-a", "c-b", "c-c"]

    def test_invalid_direction_is_ascending(self, db_session: Session, mappings):
        query = apply_order_by(
            db_session.query(RecordMapping), RecordMapping, "external_id:sideways"
        )

        assert _external_ids(query) == ["c-a", "c-b", "c-c"]

    def test_unknown_field_uses_default(self, db_session: Session, mappings):
        query = apply_order_by(
            db_session.query(RecordMapping),
            RecordMapping,
            "password:asc",
            default_field="last_synced_at",
        )

        # Newest sync first
        assert _external_ids(query) == ["c-a", "c-c", "c-b"]

    def test_none_uses_default(self, db_session: Session, mappings):
        query = apply_order_by(
            db_session.query(RecordMapping),
            RecordMapping,
            None,
            default_field="last_synced_at",
            default_direction="asc",
        )

        assert _external_ids(query) == ["c-b", "c-c", "c-a"]


class TestSortingEndpoints:
    def test_mappings_order_by(self, client, integration, mappings):
        response = client.get(
            f"/v1/integrations/{integration.id}/mappings",
            params={"order_by": "external_id:asc"},
        )

        assert response.status_code == 200
        assert [m["external_id"] for m in response.json()] == ["c-a", "c-b", "c-c"]

    def test_sync_runs_newest_first_by_default(self, client, db_session, integration):
        base = datetime(2024, 1, 1, tzinfo=UTC)
        ids = []
        for offset in range(3):
            ledger = SyncRunLedger(
                db_session, clock=lambda offset=offset: base + timedelta(hours=offset)
            )
            run = ledger.start(integration.id, "full", "inbound")
            ledger.finish(run.id, SyncRunStatus.COMPLETED)
            ids.append(str(run.id))

        response = client.get(f"/v1/integrations/{integration.id}/sync_runs")
        assert [r["id"] for r in response.json()] == list(reversed(ids))

        response = client.get(
            f"/v1/integrations/{integration.id}/sync_runs",
            params={"order_by": "started_at:asc"},
        )
        assert [r["id"] for r in response.json()] == ids

"""Tests for the integrations and OAuth HTTP API."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.integration import Integration, IntegrationProvider
from app.models.record_mapping import RecordMapping
from app.models.sync_run import SyncRunStatus
from app.repositories.record_mapping_repository import RecordMappingRepository
from app.services.integrations.base import NormalizedRecord
from app.services.integrations.credential_store import CredentialStore
from app.services.integrations.errors import (
    CapabilityNotSupported,
    CredentialNotFound,
    IntegrationNotFound,
    NotConnected,
    RunAlreadyInProgress,
)
from app.services.integrations.ledger import SyncRunLedger
from app.services.integrations.oauth import decode_state
from app.services.integrations.reconciliation import SyncSummary
from tests.conftest import DEFAULT_ORG_ID, create_integration


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def integration(db_session):
    return create_integration(db_session)


def _engine_returning(**attrs) -> MagicMock:
    engine = MagicMock()
    for name, value in attrs.items():
        setattr(engine, name, value)
    return engine


class TestIntegrationsAPI:
    def test_list_integrations(self, client, db_session):
        create_integration(db_session, provider="hubspot")
        create_integration(db_session, provider="slack")

        response = client.get("/v1/integrations/")

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "2"
        assert {i["provider"] for i in response.json()} == {"hubspot", "slack"}

    def test_list_is_scoped_to_organization(self, client, integration):
        response = client.get("/v1/integrations/", headers={"X-Organization-Id": str(uuid4())})

        assert response.status_code == 200
        assert response.json() == []

    def test_invalid_organization_header(self, client):
        response = client.get("/v1/integrations/", headers={"X-Organization-Id": "nope"})

        assert response.status_code == 400

    def test_status_lists_every_provider(self, client, db_session):
        connected = create_integration(db_session, provider="hubspot")
        needs_reauth = create_integration(db_session, provider="salesforce", is_active=False)
        needs_reauth.error_details = {"reason": "revoked", "reauth_required": True}
        db_session.commit()

        response = client.get("/v1/integrations/status")

        assert response.status_code == 200
        by_provider = {s["provider"]: s for s in response.json()}
        assert set(by_provider) == {p.value for p in IntegrationProvider}
        assert by_provider["hubspot"]["connected"] is True
        assert by_provider["hubspot"]["integration_id"] == str(connected.id)
        assert by_provider["salesforce"]["connected"] is False
        assert by_provider["salesforce"]["reauth_required"] is True
        assert by_provider["slack"] == {
            "provider": "slack",
            "connected": False,
            "integration_id": None,
            "provider_account_email": None,
            "last_synced_at": None,
            "reauth_required": False,
        }

    def test_get_integration(self, client, integration):
        response = client.get(f"/v1/integrations/{integration.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "hubspot"
        assert data["is_active"] is True
        assert "access_token" not in data

    def test_get_integration_not_found(self, client):
        assert client.get(f"/v1/integrations/{uuid4()}").status_code == 404

    def test_update_settings(self, client, integration):
        response = client.put(
            f"/v1/integrations/{integration.id}",
            json={"settings": {"sync_direction": "bidirectional"}},
        )

        assert response.status_code == 200
        assert response.json()["settings"] == {"sync_direction": "bidirectional"}

    def test_update_not_found(self, client):
        response = client.put(f"/v1/integrations/{uuid4()}", json={"settings": {}})

        assert response.status_code == 404

    def test_disconnect(self, client, db_session, integration):
        response = client.delete(f"/v1/integrations/{integration.id}")

        assert response.status_code == 204
        db_session.expire_all()
        saved = db_session.query(Integration).filter(Integration.id == integration.id).one()
        assert saved.is_active is False
        with pytest.raises(CredentialNotFound):
            CredentialStore(db_session).get(integration.id)

    def test_disconnect_not_found(self, client):
        assert client.delete(f"/v1/integrations/{uuid4()}").status_code == 404


class TestSyncAPI:
    def test_run_sync_returns_summary(self, client, integration):
        run_id = uuid4()
        engine = _engine_returning()
        engine.sync.return_value = SyncSummary(
            run_id=run_id,
            status=SyncRunStatus.COMPLETED_WITH_ERRORS.value,
            created=2,
            skipped=1,
            errors=[{"code": "malformed_record", "message": "no id"}],
        )

        with patch("app.routers.integrations.ReconciliationEngine", return_value=engine):
            response = client.post(f"/v1/integrations/{integration.id}/sync", json={})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["run_id"] == str(run_id)
        assert data["created"] == 2
        assert data["errors"][0]["code"] == "malformed_record"
        engine.sync.assert_called_once()
        kwargs = engine.sync.call_args.kwargs
        assert kwargs["organization_id"] == DEFAULT_ORG_ID
        assert kwargs["sync_type"].value == "full"

    @pytest.mark.parametrize(
        "error,status_code",
        [
            (IntegrationNotFound("missing"), 404),
            (NotConnected("disconnected"), 409),
            (RunAlreadyInProgress("busy"), 409),
        ],
    )
    def test_run_sync_rejections(self, client, integration, error, status_code):
        engine = _engine_returning()
        engine.sync.side_effect = error

        with patch("app.routers.integrations.ReconciliationEngine", return_value=engine):
            response = client.post(f"/v1/integrations/{integration.id}/sync", json={})

        assert response.status_code == status_code
        assert response.json()["detail"] == error.message

    def test_selective_sync_requires_ids(self, client, integration):
        response = client.post(
            f"/v1/integrations/{integration.id}/sync", json={"sync_type": "selective"}
        )

        assert response.status_code == 422

    def test_enqueue_sync(self, client, integration):
        job = MagicMock(job_id="job-1")

        with patch("app.tasks.enqueue_task", new=AsyncMock(return_value=job)) as enqueue:
            response = client.post(
                f"/v1/integrations/{integration.id}/sync/enqueue",
                json={"sync_type": "selective", "external_ids": ["c1"]},
            )

        assert response.status_code == 202
        assert response.json() == {
            "integration_id": str(integration.id),
            "job_id": "job-1",
            "enqueued": True,
        }
        enqueue.assert_awaited_once_with(
            "sync_integration_task",
            str(integration.id),
            str(DEFAULT_ORG_ID),
            "selective",
            ["c1"],
            None,
            _job_id=None,
        )

    def test_enqueue_full_sync_already_queued(self, client, integration):
        with patch("app.tasks.enqueue_task", new=AsyncMock(return_value=None)) as enqueue:
            response = client.post(f"/v1/integrations/{integration.id}/sync/enqueue", json={})

        assert response.status_code == 202
        assert response.json()["enqueued"] is False
        assert response.json()["job_id"] is None
        assert enqueue.call_args.kwargs == {"_job_id": f"sync:{integration.id}:full"}

    def test_enqueue_disconnected_integration(self, client, db_session):
        integration = create_integration(db_session, is_active=False)

        response = client.post(f"/v1/integrations/{integration.id}/sync/enqueue", json={})

        assert response.status_code == 409

    def test_preview_remote_records(self, client, integration):
        record = NormalizedRecord(
            external_id="c1",
            record_type="contact",
            fields={"contact_name": "Ana", "email": "ana@example.com"},
            updated_at=datetime(2024, 1, 1, tzinfo=UTC),
        )
        engine = _engine_returning()
        engine.preview_remote_records.return_value = (
            [record],
            "next-page",
            [{"code": "malformed_record", "message": "no id"}],
        )

        with patch("app.routers.integrations.ReconciliationEngine", return_value=engine):
            response = client.get(
                f"/v1/integrations/{integration.id}/remote_records",
                params={"page_token": "p1"},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["records"][0]["external_id"] == "c1"
        assert data["records"][0]["fields"]["email"] == "ana@example.com"
        assert data["next_page_token"] == "next-page"
        assert data["errors"][0]["code"] == "malformed_record"
        assert engine.preview_remote_records.call_args.kwargs["page_token"] == "p1"

    def test_preview_of_push_only_provider(self, client, integration):
        engine = _engine_returning()
        engine.preview_remote_records.side_effect = CapabilityNotSupported("slack cannot list")

        with patch("app.routers.integrations.ReconciliationEngine", return_value=engine):
            response = client.get(f"/v1/integrations/{integration.id}/remote_records")

        assert response.status_code == 422


class TestSyncRunsAPI:
    def test_list_and_get_runs(self, client, db_session, integration):
        ledger = SyncRunLedger(db_session)
        first = ledger.start(integration.id, "full", "inbound")
        ledger.finish(first.id, SyncRunStatus.COMPLETED)
        second = ledger.start(integration.id, "scheduled", "inbound")

        response = client.get(f"/v1/integrations/{integration.id}/sync_runs")

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "2"
        assert {r["id"] for r in response.json()} == {str(first.id), str(second.id)}

        response = client.get(
            f"/v1/integrations/{integration.id}/sync_runs", params={"status": "running"}
        )
        assert [r["id"] for r in response.json()] == [str(second.id)]

        response = client.get(f"/v1/integrations/{integration.id}/sync_runs/{second.id}")
        assert response.status_code == 200
        assert response.json()["status"] == "running"
        assert response.json()["sync_type"] == "scheduled"

    def test_get_run_not_found(self, client, integration):
        response = client.get(f"/v1/integrations/{integration.id}/sync_runs/{uuid4()}")

        assert response.status_code == 404

    def test_cancel_running_run(self, client, db_session, integration):
        run = SyncRunLedger(db_session).start(integration.id, "full", "inbound")

        response = client.post(f"/v1/integrations/{integration.id}/sync_runs/{run.id}/cancel")

        assert response.status_code == 202
        assert response.json()["cancel_requested"] is True

    def test_cancel_finished_run(self, client, db_session, integration):
        ledger = SyncRunLedger(db_session)
        run = ledger.start(integration.id, "full", "inbound")
        ledger.finish(run.id, SyncRunStatus.COMPLETED)

        response = client.post(f"/v1/integrations/{integration.id}/sync_runs/{run.id}/cancel")

        assert response.status_code == 409


class TestLinkedResourcesAPI:
    def _link(self, client, integration, **overrides):
        body = {
            "resource_type": "spreadsheet_tab",
            "external_resource_id": "sheet-1/Leads",
            "external_resource_name": "Leads",
            "field_mapping": {"Budget": "budget"},
            "sync_direction": "bidirectional",
        }
        body.update(overrides)
        return client.post(f"/v1/integrations/{integration.id}/linked_resources", json=body)

    def test_link_and_list(self, client, integration):
        response = self._link(client, integration)

        assert response.status_code == 201
        data = response.json()
        assert data["external_resource_id"] == "sheet-1/Leads"
        assert data["field_mapping"] == {"Budget": "budget"}
        assert data["sync_direction"] == "bidirectional"
        assert data["is_active"] is True

        response = client.get(f"/v1/integrations/{integration.id}/linked_resources")
        assert [r["id"] for r in response.json()] == [data["id"]]

    def test_duplicate_link(self, client, integration):
        self._link(client, integration)

        assert self._link(client, integration).status_code == 409

    def test_invalid_field_mapping(self, client, integration):
        response = self._link(client, integration, field_mapping={" ": "notes"})

        assert response.status_code == 422

    def test_unlink_removes_its_mappings(self, client, db_session, integration):
        resource_id = self._link(client, integration).json()["id"]
        repo = RecordMappingRepository(db_session)
        repo.add(
            integration.id,
            "contact",
            "email:ana@example.com",
            uuid4(),
            synced_at=datetime(2024, 1, 1, tzinfo=UTC),
            linked_resource_id=UUID(resource_id),
        )
        repo.add(
            integration.id,
            "contact",
            "direct-1",
            uuid4(),
            synced_at=datetime(2024, 1, 1, tzinfo=UTC),
        )
        db_session.commit()

        response = client.delete(
            f"/v1/integrations/{integration.id}/linked_resources/{resource_id}"
        )

        assert response.status_code == 204
        db_session.expire_all()
        remaining = db_session.query(RecordMapping).all()
        assert [m.external_id for m in remaining] == ["direct-1"]
        assert (
            client.delete(
                f"/v1/integrations/{integration.id}/linked_resources/{resource_id}"
            ).status_code
            == 404
        )

    def test_linked_resources_of_unknown_integration(self, client):
        assert client.get(f"/v1/integrations/{uuid4()}/linked_resources").status_code == 404


class TestMappingsAPI:
    def test_list_mappings(self, client, db_session, integration):
        local_id = uuid4()
        RecordMappingRepository(db_session).add(
            integration.id,
            "contact",
            "c1",
            local_id,
            synced_at=datetime(2024, 1, 1, tzinfo=UTC),
        )
        db_session.commit()

        response = client.get(f"/v1/integrations/{integration.id}/mappings")

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "1"
        (mapping,) = response.json()
        assert mapping["external_id"] == "c1"
        assert mapping["local_id"] == str(local_id)
        assert mapping["record_type"] == "contact"


class TestOAuthAPI:
    def test_connect_requires_user(self, client):
        assert client.get("/v1/oauth/hubspot/connect").status_code == 401

    def test_connect_unknown_provider(self, client):
        response = client.get("/v1/oauth/myspace/connect", headers={"X-User-Id": "user-1"})

        assert response.status_code == 404

    def test_connect_returns_authorization_url(self, client):
        response = client.get(
            "/v1/oauth/google_sheets/connect",
            params={"return_to": "/settings"},
            headers={"X-User-Id": "user-1"},
        )

        assert response.status_code == 200
        url = response.json()["authorization_url"]
        state = decode_state(parse_qs(urlparse(url).query)["state"][0])
        assert state.provider == "google_sheets"
        assert state.user_id == "user-1"
        assert state.company_id == DEFAULT_ORG_ID
        assert state.return_to == "/settings"

    def test_connect_rejects_offsite_return_to(self, client):
        response = client.get(
            "/v1/oauth/hubspot/connect",
            params={"return_to": "https://evil.example.com"},
            headers={"X-User-Id": "user-1"},
        )

        assert response.status_code == 422

    def test_callback_redirects_with_error(self, client):
        response = client.get(
            "/v1/oauth/hubspot/callback",
            params={"code": "c", "state": "garbage"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/integrations?error=hubspot_invalid_state"

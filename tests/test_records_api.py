"""Integration tests for the patient and referral API endpoints.

Uses InMemoryRecordRepository and the FakeSalesforce transport on app.state,
driven through httpx AsyncClient. A local write always answers 201/200; the
`sync` block reports what happened remotely.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.referral_hub.sync.coordinator import SyncCoordinator

PATIENT = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": "0100 000 000",
    "date_of_birth": "1815-12-10",
}

REFERRAL = {
    "patient_name": "Ada Lovelace",
    "condition": "Suspected glaucoma",
    "urgency": "urgent",
    "practice_name": "High Street Opticians",
}


def _make_mock_app():
    """Create a minimal FastAPI app with the record routers."""
    from fastapi import FastAPI

    from src.referral_hub.api.v1.patients import router as patients_router
    from src.referral_hub.api.v1.referrals import router as referrals_router

    app = FastAPI()
    app.include_router(patients_router, prefix="/v1")
    app.include_router(referrals_router, prefix="/v1")
    return app


@pytest_asyncio.fixture
async def client_and_repo(repository, coordinator, session_manager):
    """Test client with InMemoryRecordRepository and an inline coordinator."""
    app = _make_mock_app()
    app.state.record_repository = repository
    app.state.sync_coordinator = coordinator
    app.state.session_manager = session_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, repository


# ── Referrals ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_referral_syncs_live(client_and_repo, fake_salesforce):
    """POST /v1/referrals -> 201 with a live sync block."""
    client, repo = client_and_repo

    resp = await client.post("/v1/referrals", json=REFERRAL)

    assert resp.status_code == 201
    data = resp.json()
    assert data["referral_number"].startswith("REF-")
    assert data["sync"]["mode"] == "live"
    assert data["sync"]["action"] == "created"
    assert data["sync_status"] == "synced"
    assert data["remote_id"] == data["sync"]["remote_id"]
    assert fake_salesforce.find(data["referral_number"]) == [data["remote_id"]]


@pytest.mark.asyncio
async def test_create_referral_during_outage_still_saves(client_and_repo, fake_salesforce):
    """Salesforce down -> 201, record stored, sync simulated."""
    client, repo = client_and_repo
    fake_salesforce.reachable = False

    resp = await client.post("/v1/referrals", json=REFERRAL)

    assert resp.status_code == 201
    data = resp.json()
    assert data["sync"]["mode"] == "simulation"
    assert data["sync"]["reason"].startswith("session unavailable")
    assert data["sync_status"] == "simulated"
    assert data["remote_id"].startswith("SIM_")
    assert data["id"] in repo.referrals


@pytest.mark.asyncio
async def test_create_referral_with_rejected_write_reports_failure(client_and_repo, fake_salesforce):
    """Salesforce validation error -> 201 with failed live sync and verbatim error."""
    client, _ = client_and_repo
    fake_salesforce.create_error = "Condition__c: required field missing"

    resp = await client.post("/v1/referrals", json=REFERRAL)

    assert resp.status_code == 201
    data = resp.json()
    assert data["sync"]["mode"] == "live"
    assert data["sync"]["status"] == "failed"
    assert data["sync"]["error"] == "Condition__c: required field missing"
    assert data["sync_status"] == "failed"
    assert data["remote_id"] is None


@pytest.mark.asyncio
async def test_update_referral_updates_remote(client_and_repo, fake_salesforce):
    """PUT /v1/referrals/{id} -> 200 and the remote record is updated in place."""
    client, _ = client_and_repo
    created = (await client.post("/v1/referrals", json=REFERRAL)).json()

    resp = await client.put(f"/v1/referrals/{created['id']}", json={"status": "triaged"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "triaged"
    assert data["sync"]["action"] == "updated"
    assert data["remote_id"] == created["remote_id"]
    assert fake_salesforce.records[created["remote_id"]]["Status__c"] == "triaged"
    assert fake_salesforce.count("create") == 1


@pytest.mark.asyncio
async def test_resync_after_outage(client_and_repo, fake_salesforce):
    """POST /v1/referrals/{id}/sync replaces the simulated ID with a real one."""
    client, _ = client_and_repo
    fake_salesforce.reachable = False
    created = (await client.post("/v1/referrals", json=REFERRAL)).json()

    fake_salesforce.reachable = True
    resp = await client.post(f"/v1/referrals/{created['id']}/sync")

    data = resp.json()
    assert resp.status_code == 200
    assert data["sync"]["mode"] == "live"
    assert data["sync_status"] == "synced"
    assert not data["remote_id"].startswith("SIM_")


@pytest.mark.asyncio
async def test_list_referrals_filters_by_urgency(client_and_repo):
    client, _ = client_and_repo
    await client.post("/v1/referrals", json=REFERRAL)
    await client.post("/v1/referrals", json={**REFERRAL, "urgency": "routine"})

    resp = await client.get("/v1/referrals", params={"urgency": "urgent"})

    assert resp.status_code == 200
    assert [r["urgency"] for r in resp.json()] == ["urgent"]


@pytest.mark.asyncio
async def test_delete_referral_removes_remote(client_and_repo, fake_salesforce):
    client, _ = client_and_repo
    created = (await client.post("/v1/referrals", json=REFERRAL)).json()

    resp = await client.delete(f"/v1/referrals/{created['id']}")

    assert resp.status_code == 200
    data = resp.json()
    assert data["deleted"] is True
    assert data["sync"]["action"] == "deleted"
    assert fake_salesforce.records == {}


@pytest.mark.asyncio
async def test_get_referral_not_found(client_and_repo):
    client, _ = client_and_repo

    resp = await client.get("/v1/referrals/999")

    assert resp.status_code == 404


# ── Patients ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_patient(client_and_repo, fake_salesforce):
    client, _ = client_and_repo

    resp = await client.post("/v1/patients", json=PATIENT)

    assert resp.status_code == 201
    data = resp.json()
    assert data["patient_number"].startswith("PAT-")
    assert data["sync"]["action"] == "created"
    remote = fake_salesforce.records[data["remote_id"]]
    assert remote["Name"] == "Ada Lovelace"
    assert remote["Source__c"] == "Patient Management System"


@pytest.mark.asyncio
async def test_duplicate_patient_email_conflicts(client_and_repo):
    client, _ = client_and_repo
    await client.post("/v1/patients", json=PATIENT)

    resp = await client.post("/v1/patients", json=PATIENT)

    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_patient_validation_error(client_and_repo):
    client, _ = client_and_repo

    resp = await client.post("/v1/patients", json={**PATIENT, "email": "not-an-email"})

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_search_patients(client_and_repo):
    client, _ = client_and_repo
    await client.post("/v1/patients", json=PATIENT)
    await client.post(
        "/v1/patients",
        json={**PATIENT, "first_name": "Grace", "last_name": "Hopper", "email": "grace@example.com"},
    )

    resp = await client.get("/v1/patients", params={"search": "hopper"})

    assert [p["first_name"] for p in resp.json()] == ["Grace"]


@pytest.mark.asyncio
async def test_delete_unsynced_patient_is_noop_remotely(client_and_repo, fake_salesforce):
    client, repo = client_and_repo
    fake_salesforce.reachable = False
    created = (await client.post("/v1/patients", json=PATIENT)).json()
    fake_salesforce.reachable = True

    resp = await client.delete(f"/v1/patients/{created['id']}")

    assert resp.status_code == 200
    assert resp.json()["sync"]["action"] == "noop"
    assert repo.patients == {}


# ── Wiring ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_repository_returns_503():
    app = _make_mock_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/v1/referrals")

    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_without_coordinator_write_is_unsynced(repository):
    app = _make_mock_app()
    app.state.record_repository = repository
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/v1/referrals", json=REFERRAL)

    assert resp.status_code == 201
    assert resp.json()["sync"] == {
        "mode": None,
        "status": "unsynced",
        "action": None,
        "remote_id": None,
        "error": None,
        "reason": None,
        "pending": False,
    }


@pytest.mark.asyncio
async def test_background_mode_reports_pending(repository, executor):
    coordinator = SyncCoordinator(executor=executor, repository=repository, background=True)
    app = _make_mock_app()
    app.state.record_repository = repository
    app.state.sync_coordinator = coordinator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/v1/referrals", json=REFERRAL)

    assert resp.status_code == 201
    assert resp.json()["sync"]["pending"] is True

    await coordinator.drain()
    stored = await repository.get_referral(resp.json()["id"])
    assert stored.sync_status.value == "synced"

"""Shared test fixtures for the sync engine and record API.

Provides:
- FakeSalesforce: in-process stand-in for the Salesforce OAuth and REST APIs,
  served through httpx.MockTransport (no network)
- InMemoryRecordRepository: RecordRepository test double, including the
  conditional persist_sync_result semantics
- Fixtures wiring SalesforceClient / SessionManager / SyncExecutor /
  SyncCoordinator against the fakes
"""

from __future__ import annotations

import itertools
import json
import re
from datetime import date, datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
from tenacity import wait_none

from src.referral_hub.config import Settings
from src.referral_hub.records.repository import (
    DuplicateRecordError,
    format_referral_number,
    new_patient_number,
)
from src.referral_hub.records.schemas import (
    PatientCreate,
    PatientFilter,
    PatientRead,
    PatientUpdate,
    ReferralCreate,
    ReferralFilter,
    ReferralRead,
    ReferralUpdate,
)
from src.referral_hub.sync.coordinator import SyncCoordinator
from src.referral_hub.sync.executor import SyncExecutor
from src.referral_hub.sync.salesforce import SalesforceClient
from src.referral_hub.sync.schemas import RecordKind, SyncStatus
from src.referral_hub.sync.session import SessionManager
from src.referral_hub.sync.simulation import SimulationFallback, is_simulated_id
from src.referral_hub.sync.upsert import UpsertResolver

INSTANCE_URL = "https://example.my.salesforce.com"
API_PREFIX = "/services/data/v58.0"

_KEY_IN_SOQL = re.compile(r"= '((?:[^'\\]|\\.)*)'")


# ── Fake Salesforce ──────────────────────────────────────────────────────────


class FakeSalesforce:
    """Minimal Salesforce emulation for Referral__c.

    Attributes:
        reachable: False makes every request fail with a connection error.
        valid_passwords: password+token values accepted by the token endpoint.
        create_error / update_error / delete_error: Salesforce error message to
            return (400) for the next writes of that kind.
        query_status: Force a status code (e.g. 401, 500) on queries.
        malformed: operations ("login", "query", "create") answered with a
            200 HTML page instead of JSON, as a proxy or maintenance page would.
        records: remote_id -> fields, in creation order.
        calls: list of (operation, detail) for assertions.
    """

    def __init__(self) -> None:
        self.reachable = True
        self.valid_passwords = {"s3cret"}
        self.create_error: str | None = None
        self.update_error: str | None = None
        self.delete_error: str | None = None
        self.query_status: int | None = None
        self.malformed: set[str] = set()
        self.records: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self._ids = itertools.count(1)
        self._tokens = itertools.count(1)

    # helpers for tests

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    def seed(self, business_key: str, **fields) -> str:
        remote_id = self._new_id()
        self.records[remote_id] = {"Referral_Number__c": business_key, **fields}
        return remote_id

    def find(self, business_key: str) -> list[str]:
        return [rid for rid, f in self.records.items() if f.get("Referral_Number__c") == business_key]

    def _new_id(self) -> str:
        return f"a0B5g{next(self._ids):013d}"

    @staticmethod
    def _error(status_code: int, message: str, code: str = "FIELD_CUSTOM_VALIDATION_EXCEPTION"):
        return httpx.Response(status_code, json=[{"message": message, "errorCode": code, "fields": []}])

    @staticmethod
    def _maintenance_page() -> httpx.Response:
        return httpx.Response(
            200, text="<html>Maintenance</html>", headers={"content-type": "text/html"}
        )

    # transport handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.reachable:
            raise httpx.ConnectError("Name or service not known", request=request)

        path = request.url.path
        if path == "/services/oauth2/token":
            return self._token(request)

        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return self._error(401, "Session expired or invalid", "INVALID_SESSION_ID")

        if path == f"{API_PREFIX}/query":
            return self._query(request)
        if path == f"{API_PREFIX}/sobjects/Referral__c" and request.method == "POST":
            return self._create(request)
        match = re.fullmatch(rf"{API_PREFIX}/sobjects/Referral__c/(\w+)", path)
        if match and request.method == "PATCH":
            return self._update(request, match.group(1))
        if match and request.method == "DELETE":
            return self._delete(match.group(1))
        return httpx.Response(404, json=[{"message": "The requested resource does not exist", "errorCode": "NOT_FOUND"}])

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.calls.append(("login", form.get("username", "")))
        if "login" in self.malformed:
            return self._maintenance_page()
        if form.get("grant_type") != "password" or form.get("password") not in self.valid_passwords:
            return httpx.Response(
                400, json={"error": "invalid_grant", "error_description": "authentication failure"}
            )
        return httpx.Response(
            200,
            json={
                "access_token": f"00Dxx!token{next(self._tokens)}",
                "instance_url": INSTANCE_URL,
                "token_type": "Bearer",
            },
        )

    def _query(self, request: httpx.Request) -> httpx.Response:
        soql = request.url.params.get("q", "")
        self.calls.append(("query", soql))
        if "query" in self.malformed:
            return self._maintenance_page()
        if self.query_status is not None:
            if self.query_status == 401:
                return self._error(401, "Session expired or invalid", "INVALID_SESSION_ID")
            return httpx.Response(self.query_status, text="Service Unavailable")
        match = _KEY_IN_SOQL.search(soql)
        key = match.group(1).replace("\\'", "'").replace("\\\\", "\\") if match else ""
        records = [
            {"attributes": {"type": "Referral__c"}, "Id": rid} for rid in self.find(key)
        ]
        return httpx.Response(200, json={"totalSize": len(records), "done": True, "records": records})

    def _create(self, request: httpx.Request) -> httpx.Response:
        fields = json.loads(request.content)
        self.calls.append(("create", fields.get("Referral_Number__c", "")))
        if self.create_error:
            return self._error(400, self.create_error)
        if "create" in self.malformed:
            return self._maintenance_page()
        remote_id = self._new_id()
        self.records[remote_id] = fields
        return httpx.Response(201, json={"id": remote_id, "success": True, "errors": []})

    def _update(self, request: httpx.Request, remote_id: str) -> httpx.Response:
        self.calls.append(("update", remote_id))
        if self.update_error:
            return self._error(400, self.update_error)
        if remote_id not in self.records:
            return self._error(404, "entity is deleted", "ENTITY_IS_DELETED")
        self.records[remote_id].update(json.loads(request.content))
        return httpx.Response(204)

    def _delete(self, remote_id: str) -> httpx.Response:
        self.calls.append(("delete", remote_id))
        if self.delete_error:
            return self._error(400, self.delete_error)
        if self.records.pop(remote_id, None) is None:
            return self._error(404, "entity is deleted", "ENTITY_IS_DELETED")
        return httpx.Response(204)


# ── In-Memory Repository ─────────────────────────────────────────────────────


class InMemoryRecordRepository:
    """In-memory RecordRepository for testing without a database."""

    def __init__(self) -> None:
        self.patients: dict[int, PatientRead] = {}
        self.referrals: dict[int, ReferralRead] = {}
        self.sync_written_at: dict[tuple[RecordKind, int], datetime] = {}
        self.persist_calls: list[tuple] = []
        self.fail_persist = False
        self._ids = itertools.count(1)
        self._referral_sequence = itertools.count(1)
        self._clock = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)

    def tick(self) -> datetime:
        """Strictly increasing timestamps, like successive commits."""
        self._clock += timedelta(milliseconds=1)
        return self._clock

    # patients

    async def create_patient(self, data: PatientCreate) -> PatientRead:
        if any(p.email == data.email for p in self.patients.values()):
            raise DuplicateRecordError(f"Patient with email {data.email} already exists")
        now = self.tick()
        patient = PatientRead(
            id=next(self._ids),
            patient_number=new_patient_number(),
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self.patients[patient.id] = patient
        return patient

    async def get_patient(self, patient_id: int) -> PatientRead | None:
        return self.patients.get(patient_id)

    async def list_patients(self, filters: PatientFilter | None = None) -> list[PatientRead]:
        result = list(self.patients.values())
        if filters and filters.status:
            result = [p for p in result if p.status == filters.status]
        if filters and filters.search:
            needle = filters.search.lower()
            result = [
                p for p in result
                if needle in f"{p.first_name} {p.last_name} {p.email} {p.phone}".lower()
            ]
        return result

    async def update_patient(self, patient_id: int, data: PatientUpdate) -> PatientRead | None:
        patient = self.patients.get(patient_id)
        if patient is None:
            return None
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        updated = patient.model_copy(update={**changes, "updated_at": self.tick()})
        self.patients[patient_id] = updated
        return updated

    async def delete_patient(self, patient_id: int) -> PatientRead | None:
        return self.patients.pop(patient_id, None)

    # referrals

    async def create_referral(self, data: ReferralCreate) -> ReferralRead:
        now = self.tick()
        # Mirrors referral_number_seq: values are never handed out twice
        referral = ReferralRead(
            id=next(self._ids),
            referral_number=format_referral_number(now.date(), next(self._referral_sequence)),
            created_at=now,
            updated_at=now,
            **{**data.model_dump(), "date_received": data.date_received or date(2025, 1, 15)},
        )
        self.referrals[referral.id] = referral
        return referral

    async def get_referral(self, referral_id: int) -> ReferralRead | None:
        return self.referrals.get(referral_id)

    async def list_referrals(self, filters: ReferralFilter | None = None) -> list[ReferralRead]:
        result = list(self.referrals.values())
        if filters and filters.status:
            result = [r for r in result if r.status == filters.status]
        if filters and filters.urgency:
            result = [r for r in result if r.urgency == filters.urgency]
        return result

    async def update_referral(self, referral_id: int, data: ReferralUpdate) -> ReferralRead | None:
        referral = self.referrals.get(referral_id)
        if referral is None:
            return None
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        updated = referral.model_copy(update={**changes, "updated_at": self.tick()})
        self.referrals[referral_id] = updated
        return updated

    async def delete_referral(self, referral_id: int) -> ReferralRead | None:
        return self.referrals.pop(referral_id, None)

    # sync outcomes

    async def persist_sync_result(self, kind, local_id, remote_id, sync_status, written_at) -> bool:
        self.persist_calls.append((kind, local_id, remote_id, sync_status, written_at))
        if self.fail_persist:
            raise RuntimeError("database unavailable")

        table = self.patients if kind == RecordKind.PATIENT else self.referrals
        record = table.get(local_id)
        if record is None or record.updated_at > written_at:
            return False
        previous = self.sync_written_at.get((kind, local_id))
        if previous is not None and previous > written_at:
            return False

        update: dict = {"sync_status": SyncStatus(sync_status)}
        if remote_id is not None:
            keeps_real_id = (
                is_simulated_id(remote_id)
                and record.remote_id is not None
                and not is_simulated_id(record.remote_id)
            )
            if not keeps_real_id:
                update["remote_id"] = remote_id
        table[local_id] = record.model_copy(update=update)
        self.sync_written_at[(kind, local_id)] = written_at
        return True


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    """Settings with environment-tier credentials accepted by FakeSalesforce."""
    return Settings(
        _env_file=None,
        SALESFORCE_USERNAME="integration@example.com",
        SALESFORCE_PASSWORD="s3cret",
        SALESFORCE_SECURITY_TOKEN="",
        SALESFORCE_CLIENT_ID="client-id",
        SALESFORCE_CLIENT_SECRET="client-secret",
        SALESFORCE_DEMO_USERNAME="",
        SALESFORCE_DEMO_PASSWORD="",
        SYNC_SIMULATION_DELAY_SECONDS=0,
    )


@pytest.fixture
def fake_salesforce() -> FakeSalesforce:
    return FakeSalesforce()


@pytest.fixture
def salesforce_client(fake_salesforce) -> SalesforceClient:
    return SalesforceClient(
        api_version="v58.0",
        timeout=5.0,
        retry_attempts=1,
        retry_wait=wait_none(),
        transport=httpx.MockTransport(fake_salesforce.handler),
    )


@pytest.fixture
def session_manager(salesforce_client, settings) -> SessionManager:
    return SessionManager(client=salesforce_client, settings=settings)


@pytest.fixture
def executor(session_manager, salesforce_client) -> SyncExecutor:
    return SyncExecutor(
        session_manager=session_manager,
        resolver=UpsertResolver(salesforce_client),
        simulation=SimulationFallback(delay_seconds=0),
    )


@pytest.fixture
def repository() -> InMemoryRecordRepository:
    return InMemoryRecordRepository()


@pytest.fixture
def coordinator(executor, repository) -> SyncCoordinator:
    return SyncCoordinator(executor=executor, repository=repository)

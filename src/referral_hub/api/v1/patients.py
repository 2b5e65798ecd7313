"""REST API endpoints for patient records.

Provides CRUD for patients plus a manual re-sync endpoint. Every write is
committed locally first; the Salesforce sync runs afterwards and its result
is reported in the `sync` block of the response.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel

from src.referral_hub.api.deps import get_record_repository, get_sync_coordinator
from src.referral_hub.api.v1.sync_info import SyncInfo, run_committed_sync, sync_info_from
from src.referral_hub.records.repository import DuplicateRecordError
from src.referral_hub.records.schemas import (
    PatientCreate,
    PatientFilter,
    PatientRead,
    PatientStatus,
    PatientUpdate,
)
from src.referral_hub.sync.schemas import RecordKind

router = APIRouter(prefix="/patients", tags=["patients"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class PatientResponse(BaseModel):
    """Patient data, serializes dates to ISO strings."""

    id: int
    patient_number: str
    first_name: str
    last_name: str
    email: str
    phone: str
    date_of_birth: str
    address: str | None = None
    emergency_contact: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    medications: str | None = None
    status: str
    remote_id: str | None = None
    sync_status: str
    created_at: str | None = None
    updated_at: str | None = None
    sync: SyncInfo | None = None


class PatientDeleteResponse(BaseModel):
    id: int
    patient_number: str
    deleted: bool = True
    sync: SyncInfo


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _patient_to_response(patient: PatientRead, sync: SyncInfo | None = None) -> PatientResponse:
    """Convert PatientRead to PatientResponse."""
    return PatientResponse(
        id=patient.id,
        patient_number=patient.patient_number,
        first_name=patient.first_name,
        last_name=patient.last_name,
        email=patient.email,
        phone=patient.phone,
        date_of_birth=patient.date_of_birth.isoformat(),
        address=patient.address,
        emergency_contact=patient.emergency_contact,
        medical_history=patient.medical_history,
        allergies=patient.allergies,
        medications=patient.medications,
        status=patient.status.value,
        remote_id=patient.remote_id,
        sync_status=patient.sync_status.value,
        created_at=patient.created_at.isoformat() if patient.created_at else None,
        updated_at=patient.updated_at.isoformat() if patient.updated_at else None,
        sync=sync,
    )


async def _sync_and_respond(request: Request, repo: Any, patient: PatientRead) -> PatientResponse:
    coordinator = get_sync_coordinator(request)
    outcome, pending = await run_committed_sync(coordinator, patient.to_sync_record())
    refreshed = await repo.get_patient(patient.id) or patient
    return _patient_to_response(
        refreshed,
        sync_info_from(outcome, refreshed.sync_status.value, pending=pending),
    )


def _not_found(patient_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Patient not found: {patient_id}",
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=PatientResponse, status_code=201)
async def create_patient(body: PatientCreate, request: Request) -> PatientResponse:
    """Create a patient, then mirror it to Salesforce."""
    repo = get_record_repository(request)
    try:
        patient = await repo.create_patient(body)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return await _sync_and_respond(request, repo, patient)


@router.get("", response_model=list[PatientResponse])
async def list_patients(
    request: Request,
    search: str | None = Query(default=None, description="Match name, email or phone"),
    status_filter: PatientStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[PatientResponse]:
    """List patients with optional filters."""
    repo = get_record_repository(request)
    filters = PatientFilter(search=search, status=status_filter, limit=limit, offset=offset)
    patients = await repo.list_patients(filters)
    return [_patient_to_response(p) for p in patients]


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(patient_id: int, request: Request) -> PatientResponse:
    """Get a single patient by ID."""
    repo = get_record_repository(request)
    patient = await repo.get_patient(patient_id)
    if patient is None:
        raise _not_found(patient_id)
    return _patient_to_response(patient)


@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(patient_id: int, body: PatientUpdate, request: Request) -> PatientResponse:
    """Update a patient, then mirror the change to Salesforce."""
    repo = get_record_repository(request)
    try:
        patient = await repo.update_patient(patient_id, body)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if patient is None:
        raise _not_found(patient_id)
    return await _sync_and_respond(request, repo, patient)


@router.delete("/{patient_id}", response_model=PatientDeleteResponse)
async def delete_patient(patient_id: int, request: Request) -> PatientDeleteResponse:
    """Delete a patient locally, then remove its Salesforce mirror."""
    repo = get_record_repository(request)
    patient = await repo.delete_patient(patient_id)
    if patient is None:
        raise _not_found(patient_id)
    # Stamped on the same clock the repository uses for updated_at
    deleted_at = datetime.now(timezone.utc)

    coordinator = get_sync_coordinator(request)
    outcome = None
    if coordinator is not None:
        outcome = await coordinator.on_record_deleted(
            RecordKind.PATIENT, patient.patient_number, deleted_at
        )
    pending = outcome is None and coordinator is not None and coordinator.background
    return PatientDeleteResponse(
        id=patient.id,
        patient_number=patient.patient_number,
        sync=sync_info_from(outcome, patient.sync_status.value, pending=pending),
    )


@router.post("/{patient_id}/sync", response_model=PatientResponse)
async def resync_patient(patient_id: int, request: Request) -> PatientResponse:
    """Retry the Salesforce sync for a patient without changing it."""
    repo = get_record_repository(request)
    patient = await repo.get_patient(patient_id)
    if patient is None:
        raise _not_found(patient_id)
    return await _sync_and_respond(request, repo, patient)

"""REST API endpoints for referral records.

Mirrors the patient endpoints. Referrals are keyed in Salesforce by their
REF-YYYYMM-NNNN referral number.
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
    ReferralCreate,
    ReferralFilter,
    ReferralRead,
    ReferralStatus,
    ReferralUpdate,
    ReferralUrgency,
)
from src.referral_hub.sync.schemas import RecordKind

router = APIRouter(prefix="/referrals", tags=["referrals"])


class ReferralResponse(BaseModel):
    id: int
    referral_number: str
    patient_id: int | None = None
    patient_name: str
    condition: str
    urgency: str
    status: str
    clinical_notes: str | None = None
    practice_name: str | None = None
    date_received: str
    remote_id: str | None = None
    sync_status: str
    created_at: str | None = None
    updated_at: str | None = None
    sync: SyncInfo | None = None


class ReferralDeleteResponse(BaseModel):
    id: int
    referral_number: str
    deleted: bool = True
    sync: SyncInfo


def _referral_to_response(referral: ReferralRead, sync: SyncInfo | None = None) -> ReferralResponse:
    return ReferralResponse(
        id=referral.id,
        referral_number=referral.referral_number,
        patient_id=referral.patient_id,
        patient_name=referral.patient_name,
        condition=referral.condition,
        urgency=referral.urgency.value,
        status=referral.status.value,
        clinical_notes=referral.clinical_notes,
        practice_name=referral.practice_name,
        date_received=referral.date_received.isoformat(),
        remote_id=referral.remote_id,
        sync_status=referral.sync_status.value,
        created_at=referral.created_at.isoformat() if referral.created_at else None,
        updated_at=referral.updated_at.isoformat() if referral.updated_at else None,
        sync=sync,
    )


async def _sync_and_respond(request: Request, repo: Any, referral: ReferralRead) -> ReferralResponse:
    coordinator = get_sync_coordinator(request)
    outcome, pending = await run_committed_sync(coordinator, referral.to_sync_record())
    refreshed = await repo.get_referral(referral.id) or referral
    return _referral_to_response(
        refreshed,
        sync_info_from(outcome, refreshed.sync_status.value, pending=pending),
    )


def _not_found(referral_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Referral not found: {referral_id}",
    )


@router.post("", response_model=ReferralResponse, status_code=201)
async def create_referral(body: ReferralCreate, request: Request) -> ReferralResponse:
    """Create a referral, then mirror it to Salesforce."""
    repo = get_record_repository(request)
    try:
        referral = await repo.create_referral(body)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return await _sync_and_respond(request, repo, referral)


@router.get("", response_model=list[ReferralResponse])
async def list_referrals(
    request: Request,
    search: str | None = Query(default=None, description="Match number, patient, condition or practice"),
    status_filter: ReferralStatus | None = Query(default=None, alias="status"),
    urgency: ReferralUrgency | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[ReferralResponse]:
    """List referrals with optional filters."""
    repo = get_record_repository(request)
    filters = ReferralFilter(
        search=search, status=status_filter, urgency=urgency, limit=limit, offset=offset
    )
    referrals = await repo.list_referrals(filters)
    return [_referral_to_response(r) for r in referrals]


@router.get("/{referral_id}", response_model=ReferralResponse)
async def get_referral(referral_id: int, request: Request) -> ReferralResponse:
    repo = get_record_repository(request)
    referral = await repo.get_referral(referral_id)
    if referral is None:
        raise _not_found(referral_id)
    return _referral_to_response(referral)


@router.put("/{referral_id}", response_model=ReferralResponse)
async def update_referral(referral_id: int, body: ReferralUpdate, request: Request) -> ReferralResponse:
    """Update a referral, then mirror the change to Salesforce."""
    repo = get_record_repository(request)
    referral = await repo.update_referral(referral_id, body)
    if referral is None:
        raise _not_found(referral_id)
    return await _sync_and_respond(request, repo, referral)


@router.delete("/{referral_id}", response_model=ReferralDeleteResponse)
async def delete_referral(referral_id: int, request: Request) -> ReferralDeleteResponse:
    repo = get_record_repository(request)
    referral = await repo.delete_referral(referral_id)
    if referral is None:
        raise _not_found(referral_id)
    deleted_at = datetime.now(timezone.utc)

    coordinator = get_sync_coordinator(request)
    outcome = None
    if coordinator is not None:
        outcome = await coordinator.on_record_deleted(
            RecordKind.REFERRAL, referral.referral_number, deleted_at
        )
    pending = outcome is None and coordinator is not None and coordinator.background
    return ReferralDeleteResponse(
        id=referral.id,
        referral_number=referral.referral_number,
        sync=sync_info_from(outcome, referral.sync_status.value, pending=pending),
    )


@router.post("/{referral_id}/sync", response_model=ReferralResponse)
async def resync_referral(referral_id: int, request: Request) -> ReferralResponse:
    """Retry the Salesforce sync for a referral without changing it."""
    repo = get_record_repository(request)
    referral = await repo.get_referral(referral_id)
    if referral is None:
        raise _not_found(referral_id)
    return await _sync_and_respond(request, repo, referral)

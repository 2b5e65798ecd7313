"""Pydantic schemas for patients and referrals.

Create/Update schemas carry caller input; Read schemas carry persisted state,
including the sync columns. Read schemas convert themselves into the
SyncRecord snapshot consumed by the sync layer.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

from src.referral_hub.sync.schemas import RecordKind, SyncRecord, SyncStatus


class PatientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ReferralUrgency(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class ReferralStatus(str, Enum):
    RECEIVED = "received"
    TRIAGED = "triaged"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    REJECTED = "rejected"


# ── Patients ────────────────────────────────────────────────────────────────


class PatientCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str = Field(min_length=1, max_length=50)
    date_of_birth: date
    address: str | None = None
    emergency_contact: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    medications: str | None = None
    status: PatientStatus = PatientStatus.ACTIVE


class PatientUpdate(BaseModel):
    """Partial update; the business key and sync columns are not updatable."""

    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: str | None = Field(default=None, min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = Field(default=None, min_length=1, max_length=50)
    date_of_birth: date | None = None
    address: str | None = None
    emergency_contact: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    medications: str | None = None
    status: PatientStatus | None = None


class PatientRead(BaseModel):
    id: int
    patient_number: str
    first_name: str
    last_name: str
    email: str
    phone: str
    date_of_birth: date
    address: str | None = None
    emergency_contact: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    medications: str | None = None
    status: PatientStatus = PatientStatus.ACTIVE
    remote_id: str | None = None
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    created_at: datetime | None = None
    updated_at: datetime

    def to_sync_record(self) -> SyncRecord:
        return SyncRecord(
            kind=RecordKind.PATIENT,
            local_id=self.id,
            remote_id=self.remote_id,
            fields=self.model_dump(
                exclude={"id", "remote_id", "sync_status", "created_at", "updated_at"}
            ),
            updated_at=self.updated_at,
        )


class PatientFilter(BaseModel):
    search: str | None = None
    status: PatientStatus | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


# ── Referrals ───────────────────────────────────────────────────────────────


class ReferralCreate(BaseModel):
    patient_id: int | None = None
    patient_name: str = Field(min_length=1, max_length=200)
    condition: str = Field(min_length=1, max_length=300)
    urgency: ReferralUrgency = ReferralUrgency.ROUTINE
    status: ReferralStatus = ReferralStatus.RECEIVED
    clinical_notes: str | None = None
    practice_name: str | None = None
    date_received: date | None = None


class ReferralUpdate(BaseModel):
    patient_id: int | None = None
    patient_name: str | None = Field(default=None, min_length=1, max_length=200)
    condition: str | None = Field(default=None, min_length=1, max_length=300)
    urgency: ReferralUrgency | None = None
    status: ReferralStatus | None = None
    clinical_notes: str | None = None
    practice_name: str | None = None
    date_received: date | None = None


class ReferralRead(BaseModel):
    id: int
    referral_number: str
    patient_id: int | None = None
    patient_name: str
    condition: str
    urgency: ReferralUrgency = ReferralUrgency.ROUTINE
    status: ReferralStatus = ReferralStatus.RECEIVED
    clinical_notes: str | None = None
    practice_name: str | None = None
    date_received: date
    remote_id: str | None = None
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    created_at: datetime | None = None
    updated_at: datetime

    def to_sync_record(self) -> SyncRecord:
        return SyncRecord(
            kind=RecordKind.REFERRAL,
            local_id=self.id,
            remote_id=self.remote_id,
            fields=self.model_dump(
                exclude={"id", "patient_id", "remote_id", "sync_status", "created_at", "updated_at"}
            ),
            updated_at=self.updated_at,
        )


class ReferralFilter(BaseModel):
    search: str | None = None
    status: ReferralStatus | None = None
    urgency: ReferralUrgency | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

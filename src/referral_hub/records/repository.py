"""Record repository -- async CRUD for patients and referrals.

Provides RecordRepository with the session_factory callable pattern. Handles
serialization between Pydantic schemas and SQLAlchemy models, business-key
generation, and the conditional write of sync outcomes.

Every create/update stamps updated_at from Python so the value handed to the
sync layer is exactly the value stored in the row.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, timezone

import structlog
from sqlalchemy import Update, case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.referral_hub.records.models import REFERRAL_NUMBER_SEQ, PatientModel, ReferralModel
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
from src.referral_hub.sync.schemas import RecordKind, SyncStatus
from src.referral_hub.sync.simulation import is_simulated_id

logger = structlog.get_logger(__name__)

_KEY_GENERATION_ATTEMPTS = 5

# Columns that an explicit null in a partial update must not clear
_REQUIRED_PATIENT_FIELDS = {"first_name", "last_name", "email", "phone", "date_of_birth", "status"}
_REQUIRED_REFERRAL_FIELDS = {"patient_name", "condition", "urgency", "status", "date_received"}


class DuplicateRecordError(ValueError):
    """Raised when a write violates a unique constraint (e.g. patient email)."""


# ── Business Keys ───────────────────────────────────────────────────────────


def new_patient_number() -> str:
    return f"PAT-{uuid.uuid4().hex[:10].upper()}"


def format_referral_number(today: date, sequence: int) -> str:
    """REF-YYYYMM-NNNN; the suffix widens past 9999 rather than wrapping."""
    return f"REF-{today:%Y%m}-{sequence:04d}"


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_patient(model: PatientModel) -> PatientRead:
    """Convert PatientModel to PatientRead schema."""
    return PatientRead(
        id=model.id,
        patient_number=model.patient_number,
        first_name=model.first_name,
        last_name=model.last_name,
        email=model.email,
        phone=model.phone,
        date_of_birth=model.date_of_birth,
        address=model.address,
        emergency_contact=model.emergency_contact,
        medical_history=model.medical_history,
        allergies=model.allergies,
        medications=model.medications,
        status=model.status,
        remote_id=model.remote_id,
        sync_status=model.sync_status,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_referral(model: ReferralModel) -> ReferralRead:
    """Convert ReferralModel to ReferralRead schema."""
    return ReferralRead(
        id=model.id,
        referral_number=model.referral_number,
        patient_id=model.patient_id,
        patient_name=model.patient_name,
        condition=model.condition,
        urgency=model.urgency,
        status=model.status,
        clinical_notes=model.clinical_notes,
        practice_name=model.practice_name,
        date_received=model.date_received,
        remote_id=model.remote_id,
        sync_status=model.sync_status,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


_MODELS: dict[RecordKind, type[PatientModel] | type[ReferralModel]] = {
    RecordKind.PATIENT: PatientModel,
    RecordKind.REFERRAL: ReferralModel,
}


def build_sync_result_update(
    kind: RecordKind,
    local_id: int,
    remote_id: str | None,
    sync_status: SyncStatus,
    written_at: datetime,
) -> Update:
    """Conditional UPDATE storing one sync outcome; see persist_sync_result."""
    model = _MODELS[kind]
    values: dict = {
        "sync_status": sync_status.value,
        "sync_written_at": written_at,
    }
    if remote_id is not None:
        if is_simulated_id(remote_id):
            values["remote_id"] = case(
                (model.remote_id.is_(None), remote_id),
                (model.remote_id.like("SIM\\_%", escape="\\"), remote_id),
                else_=model.remote_id,
            )
        else:
            values["remote_id"] = remote_id

    return (
        update(model)
        .where(
            model.id == local_id,
            model.updated_at <= written_at,
            or_(model.sync_written_at.is_(None), model.sync_written_at <= written_at),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )


# ── Repository ──────────────────────────────────────────────────────────────


class RecordRepository:
    """Async CRUD for patients and referrals plus sync outcome persistence.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Patients ────────────────────────────────────────────────────────────

    async def create_patient(self, data: PatientCreate) -> PatientRead:
        """Create a patient with a fresh patient_number.

        Raises:
            DuplicateRecordError: A patient with the same email exists.
        """
        async for session in self._session_factory():
            now = datetime.now(timezone.utc)
            model = PatientModel(
                patient_number=new_patient_number(),
                first_name=data.first_name,
                last_name=data.last_name,
                email=data.email,
                phone=data.phone,
                date_of_birth=data.date_of_birth,
                address=data.address,
                emergency_contact=data.emergency_contact,
                medical_history=data.medical_history,
                allergies=data.allergies,
                medications=data.medications,
                status=data.status.value,
                sync_status=SyncStatus.UNSYNCED.value,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateRecordError(f"Patient with email {data.email} already exists") from exc
            await session.refresh(model)
            logger.info("records.patient_created", patient_id=model.id, patient_number=model.patient_number)
            return _model_to_patient(model)

    async def get_patient(self, patient_id: int) -> PatientRead | None:
        async for session in self._session_factory():
            model = await session.get(PatientModel, patient_id)
            return _model_to_patient(model) if model is not None else None

    async def list_patients(self, filters: PatientFilter | None = None) -> list[PatientRead]:
        """List patients, newest first, with optional search and status filter."""
        filters = filters or PatientFilter()
        async for session in self._session_factory():
            stmt = select(PatientModel)
            if filters.status:
                stmt = stmt.where(PatientModel.status == filters.status.value)
            if filters.search:
                pattern = f"%{filters.search}%"
                stmt = stmt.where(
                    or_(
                        PatientModel.first_name.ilike(pattern),
                        PatientModel.last_name.ilike(pattern),
                        PatientModel.email.ilike(pattern),
                        PatientModel.phone.ilike(pattern),
                    )
                )
            stmt = stmt.order_by(PatientModel.created_at.desc()).limit(filters.limit).offset(filters.offset)
            result = await session.execute(stmt)
            return [_model_to_patient(m) for m in result.scalars().all()]

    async def update_patient(self, patient_id: int, data: PatientUpdate) -> PatientRead | None:
        """Apply a partial update. Returns None if the patient does not exist.

        Raises:
            DuplicateRecordError: The new email belongs to another patient.
        """
        async for session in self._session_factory():
            model = await session.get(PatientModel, patient_id)
            if model is None:
                return None
            for field_name in data.model_fields_set:
                value = getattr(data, field_name)
                if value is None and field_name in _REQUIRED_PATIENT_FIELDS:
                    continue
                setattr(model, field_name, value.value if hasattr(value, "value") else value)
            model.updated_at = datetime.now(timezone.utc)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateRecordError(f"Patient with email {data.email} already exists") from exc
            await session.refresh(model)
            return _model_to_patient(model)

    async def delete_patient(self, patient_id: int) -> PatientRead | None:
        """Delete a patient. Returns the deleted row, or None if absent."""
        async for session in self._session_factory():
            model = await session.get(PatientModel, patient_id)
            if model is None:
                return None
            deleted = _model_to_patient(model)
            await session.delete(model)
            await session.commit()
            logger.info("records.patient_deleted", patient_id=patient_id)
            return deleted

    # ── Referrals ───────────────────────────────────────────────────────────

    async def create_referral(self, data: ReferralCreate) -> ReferralRead:
        """Create a referral numbered from referral_number_seq.

        Sequence values are never reused, so deleting a referral never frees
        its number. A collision with a row that predates the sequence is
        retried with the next value.
        """
        last_error: IntegrityError | None = None

        for _ in range(_KEY_GENERATION_ATTEMPTS):
            async for session in self._session_factory():
                sequence = await session.scalar(select(REFERRAL_NUMBER_SEQ.next_value()))
                now = datetime.now(timezone.utc)
                model = ReferralModel(
                    referral_number=format_referral_number(now.date(), sequence),
                    patient_id=data.patient_id,
                    patient_name=data.patient_name,
                    condition=data.condition,
                    urgency=data.urgency.value,
                    status=data.status.value,
                    clinical_notes=data.clinical_notes,
                    practice_name=data.practice_name,
                    date_received=data.date_received or now.date(),
                    sync_status=SyncStatus.UNSYNCED.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(model)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    last_error = exc
                    logger.info("records.referral_number_collision", referral_number=model.referral_number)
                    break
                await session.refresh(model)
                logger.info(
                    "records.referral_created",
                    referral_id=model.id,
                    referral_number=model.referral_number,
                )
                return _model_to_referral(model)

        raise DuplicateRecordError("Could not allocate a unique referral number") from last_error

    async def get_referral(self, referral_id: int) -> ReferralRead | None:
        async for session in self._session_factory():
            model = await session.get(ReferralModel, referral_id)
            return _model_to_referral(model) if model is not None else None

    async def list_referrals(self, filters: ReferralFilter | None = None) -> list[ReferralRead]:
        """List referrals, newest first, with optional search/status/urgency filters."""
        filters = filters or ReferralFilter()
        async for session in self._session_factory():
            stmt = select(ReferralModel)
            if filters.status:
                stmt = stmt.where(ReferralModel.status == filters.status.value)
            if filters.urgency:
                stmt = stmt.where(ReferralModel.urgency == filters.urgency.value)
            if filters.search:
                pattern = f"%{filters.search}%"
                stmt = stmt.where(
                    or_(
                        ReferralModel.referral_number.ilike(pattern),
                        ReferralModel.patient_name.ilike(pattern),
                        ReferralModel.condition.ilike(pattern),
                        ReferralModel.practice_name.ilike(pattern),
                    )
                )
            stmt = stmt.order_by(ReferralModel.created_at.desc()).limit(filters.limit).offset(filters.offset)
            result = await session.execute(stmt)
            return [_model_to_referral(m) for m in result.scalars().all()]

    async def update_referral(self, referral_id: int, data: ReferralUpdate) -> ReferralRead | None:
        async for session in self._session_factory():
            model = await session.get(ReferralModel, referral_id)
            if model is None:
                return None
            for field_name in data.model_fields_set:
                value = getattr(data, field_name)
                if value is None and field_name in _REQUIRED_REFERRAL_FIELDS:
                    continue
                setattr(model, field_name, value.value if hasattr(value, "value") else value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_referral(model)

    async def delete_referral(self, referral_id: int) -> ReferralRead | None:
        async for session in self._session_factory():
            model = await session.get(ReferralModel, referral_id)
            if model is None:
                return None
            deleted = _model_to_referral(model)
            await session.delete(model)
            await session.commit()
            logger.info("records.referral_deleted", referral_id=referral_id)
            return deleted

    # ── Sync Outcomes ───────────────────────────────────────────────────────

    async def persist_sync_result(
        self,
        kind: RecordKind,
        local_id: int,
        remote_id: str | None,
        sync_status: SyncStatus,
        written_at: datetime,
    ) -> bool:
        """Store a sync outcome unless a newer write has superseded it.

        The update only applies when the row still reflects the write the
        outcome belongs to (updated_at <= written_at) and no outcome of a
        later write has been stored (sync_written_at <= written_at).

        remote_id handling:
        - None leaves the stored remote_id untouched (never cleared)
        - a simulated ID never replaces a real Salesforce ID

        Returns:
            True if the row was updated, False if the outcome was discarded.
        """
        stmt = build_sync_result_update(kind, local_id, remote_id, sync_status, written_at)

        async for session in self._session_factory():
            result = await session.execute(stmt)
            await session.commit()
            applied = result.rowcount > 0
            logger.debug(
                "records.sync_result_persisted" if applied else "records.sync_result_skipped",
                kind=kind.value,
                local_id=local_id,
                sync_status=sync_status.value,
            )
            return applied
        return False

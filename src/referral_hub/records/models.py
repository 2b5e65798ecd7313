"""Record persistence models -- the local system of record.

Two SQLAlchemy models:
- PatientModel: Patient demographics and medical summary
- ReferralModel: Incoming optician referrals

Both carry the same sync columns:
- remote_id: Salesforce ID (or simulated ID); only written by the sync
  outcome handler and never cleared once set
- sync_status: unsynced | synced | failed | simulated
- sync_written_at: commit timestamp of the write whose outcome was stored last,
  used to discard outcomes that arrive for superseded writes
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Integer,
    Sequence,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.referral_hub.core.database import Base


class PatientModel(Base):
    """A registered patient.

    patient_number is the immutable business key used to correlate the
    patient with its Salesforce mirror. The local integer id is never sent.
    """

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact: Mapped[str | None] = mapped_column(Text, nullable=True)
    medical_history: Mapped[str | None] = mapped_column(Text, nullable=True)
    allergies: Mapped[str | None] = mapped_column(Text, nullable=True)
    medications: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)

    remote_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sync_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unsynced", server_default="unsynced"
    )
    sync_written_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


# Suffix source for referral numbers; not reset monthly and never reused
REFERRAL_NUMBER_SEQ = Sequence("referral_number_seq", metadata=Base.metadata)


class ReferralModel(Base):
    """A referral received from an optician practice.

    referral_number (REF-YYYYMM-NNNN, NNNN drawn from referral_number_seq) is
    the immutable business key and is written to Salesforce as
    Referral_Number__c. Sequence values are never handed out twice, so a
    deleted referral's number is never given to a new one.
    """

    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referral_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    patient_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    patient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    condition: Mapped[str] = mapped_column(String(300), nullable=False)
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default="routine", index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="received", index=True)
    clinical_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    practice_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    date_received: Mapped[date] = mapped_column(Date, nullable=False, server_default=func.current_date())

    remote_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sync_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unsynced", server_default="unsynced"
    )
    sync_written_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

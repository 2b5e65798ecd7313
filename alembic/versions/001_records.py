"""Create patients and referrals tables with sync columns.

Revision ID: 001_records
Revises:
Create Date: 2026-10-19

Both tables carry remote_id, sync_status, and sync_written_at for the
Salesforce mirror. Business keys (patient_number, referral_number) are unique.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_records"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _sync_columns() -> list[sa.Column]:
    return [
        sa.Column("remote_id", sa.String(64), nullable=True),
        sa.Column("sync_status", sa.String(20), server_default="unsynced", nullable=False),
        sa.Column("sync_written_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ── patients table ──────────────────────────────────────────────────

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_number", sa.String(32), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("emergency_contact", sa.Text(), nullable=True),
        sa.Column("medical_history", sa.Text(), nullable=True),
        sa.Column("allergies", sa.Text(), nullable=True),
        sa.Column("medications", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        *_sync_columns(),
        sa.UniqueConstraint("patient_number", name="uq_patients_patient_number"),
        sa.UniqueConstraint("email", name="uq_patients_email"),
    )
    op.create_index("ix_patients_status", "patients", ["status"])

    # ── referrals table ─────────────────────────────────────────────────

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("referral_number", sa.String(32), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=True),
        sa.Column("patient_name", sa.String(200), nullable=False),
        sa.Column("condition", sa.String(300), nullable=False),
        sa.Column("urgency", sa.String(20), server_default="routine", nullable=False),
        sa.Column("status", sa.String(20), server_default="received", nullable=False),
        sa.Column("clinical_notes", sa.Text(), nullable=True),
        sa.Column("practice_name", sa.String(200), nullable=True),
        sa.Column("date_received", sa.Date(), server_default=sa.func.current_date(), nullable=False),
        *_sync_columns(),
        sa.UniqueConstraint("referral_number", name="uq_referrals_referral_number"),
    )
    op.create_index("ix_referrals_patient_id", "referrals", ["patient_id"])
    op.create_index("ix_referrals_urgency", "referrals", ["urgency"])
    op.create_index("ix_referrals_status", "referrals", ["status"])


def downgrade() -> None:
    op.drop_table("referrals")
    op.drop_table("patients")

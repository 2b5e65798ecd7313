"""Draw referral number suffixes from a sequence.

Revision ID: 002_referral_number_seq
Revises: 001_records
Create Date: 2026-10-19

The sequence starts above the highest existing suffix so numbers already
issued, including those of deleted referrals still mirrored in Salesforce,
are never handed out again.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_referral_number_seq"
down_revision: Union[str, None] = "001_records"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute(sa.schema.CreateSequence(sa.Sequence("referral_number_seq")))
    op.execute(
        """
        SELECT setval(
            'referral_number_seq',
            COALESCE(
                (SELECT max(CAST(split_part(referral_number, '-', 3) AS bigint))
                 FROM referrals
                 WHERE referral_number ~ '^REF-[0-9]{6}-[0-9]+$'),
                0
            ) + 1,
            false
        )
        """
    )


def downgrade() -> None:
    op.execute(sa.schema.DropSequence(sa.Sequence("referral_number_seq")))

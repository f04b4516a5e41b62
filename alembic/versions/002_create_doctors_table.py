"""Create doctors table with weekly schedule

Revision ID: 002
Revises: 001
Create Date: 2026-10-05 09:10:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create doctors table."""
    op.create_table(
        "doctors",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("specialization", sa.String(200), nullable=True),
        sa.Column("license_number", sa.String(100), nullable=True, unique=True),
        sa.Column("consultation_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'XOF'")),
        sa.Column("clinic_name", sa.Text(), nullable=True),
        sa.Column("clinic_address", sa.Text(), nullable=True),
        # Bit 0 = Monday ... bit 6 = Sunday
        sa.Column("working_days", sa.Integer(), nullable=False),
        sa.Column("working_start_time", sa.Time(), nullable=False),
        sa.Column("working_end_time", sa.Time(), nullable=False),
        sa.Column("appointment_duration", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "accepts_online_payment",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "working_start_time < working_end_time",
            name="doctors_working_hours_check",
        ),
        sa.CheckConstraint("appointment_duration > 0", name="doctors_appointment_duration_check"),
        sa.CheckConstraint(
            "working_days >= 0 AND working_days < 128",
            name="doctors_working_days_check",
        ),
    )

    op.create_index("ix_doctors_user_id", "doctors", ["user_id"], unique=True)
    op.create_index("ix_doctors_specialization", "doctors", ["specialization"])
    op.create_index("ix_doctors_is_verified", "doctors", ["is_verified"])


def downgrade() -> None:
    """Drop doctors table."""
    op.drop_index("ix_doctors_is_verified", table_name="doctors")
    op.drop_index("ix_doctors_specialization", table_name="doctors")
    op.drop_index("ix_doctors_user_id", table_name="doctors")
    op.drop_table("doctors")

"""Create time_slots table

Revision ID: 003
Revises: 002
Create Date: 2026-10-05 09:20:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create time_slots table."""
    op.create_table(
        "time_slots",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "doctor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("doctors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'available'")),
        sa.Column("block_reason", sa.Text(), nullable=True),
        sa.Column("blocked_at", sa.TIMESTAMP(timezone=True), nullable=True),
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
        # Generation relies on this key for ON CONFLICT DO NOTHING
        sa.UniqueConstraint(
            "doctor_id", "date", "start_time", name="uq_time_slots_doctor_date_start"
        ),
        sa.CheckConstraint("start_time < end_time", name="time_slots_time_range_check"),
        sa.CheckConstraint(
            "status IN ('available', 'booked', 'blocked')",
            name="time_slots_status_check",
        ),
    )

    op.create_index("idx_time_slots_doctor_date", "time_slots", ["doctor_id", "date"])
    op.create_index("idx_time_slots_status", "time_slots", ["status"])


def downgrade() -> None:
    """Drop time_slots table."""
    op.drop_index("idx_time_slots_status", table_name="time_slots")
    op.drop_index("idx_time_slots_doctor_date", table_name="time_slots")
    op.drop_table("time_slots")

"""Create push_tokens table

Revision ID: 006
Revises: 005
Create Date: 2026-10-05 09:50:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create push_tokens table."""
    op.create_table(
        "push_tokens",
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
        sa.Column("fcm_token", sa.Text(), nullable=False),
        sa.Column("platform", sa.String(10), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "platform IN ('android', 'ios', 'web')",
            name="push_tokens_platform_check",
        ),
    )

    op.create_index("idx_push_tokens_user_id", "push_tokens", ["user_id"])
    op.create_index("idx_push_tokens_is_active", "push_tokens", ["is_active"])


def downgrade() -> None:
    """Drop push_tokens table."""
    op.drop_index("idx_push_tokens_is_active", table_name="push_tokens")
    op.drop_index("idx_push_tokens_user_id", table_name="push_tokens")
    op.drop_table("push_tokens")

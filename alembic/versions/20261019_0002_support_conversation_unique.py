"""one help center chat per user

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 12:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0002"
down_revision: str | Sequence[str] | None = "20261019_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_index(
        "uq_chat_support_conversation",
        "chat_conversations",
        ["customer_user_id", "vendor_user_id"],
        unique=True,
        postgresql_where=sa.text("is_support"),
    )


def downgrade() -> None:
    op.drop_index("uq_chat_support_conversation", table_name="chat_conversations")

"""chat closure schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    product_status = sa.Enum("publish", "draft", "archived", name="product_status")
    closed_reason = sa.Enum(
        "ended_by_user",
        "inactive",
        "product_unavailable",
        name="chat_closed_reason",
    )

    bind = op.get_bind()
    product_status.create(bind, checkfirst=True)
    closed_reason.create(bind, checkfirst=True)

    op.create_table(
        "catalog_products",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_user_id", sa.String(length=120), nullable=True),
        sa.Column(
            "status",
            sa.Enum("publish", "draft", "archived", name="product_status", create_type=False),
            nullable=False,
            server_default=sa.text("'draft'"),
        ),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "chat_conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_user_id", sa.String(length=120), nullable=False),
        sa.Column("vendor_user_id", sa.String(length=120), nullable=False),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_support", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "admin_takeover_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("admin_takeover_by_user_id", sa.String(length=120), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by_user_id", sa.String(length=120), nullable=True),
        sa.Column(
            "closed_reason",
            sa.Enum(
                "ended_by_user",
                "inactive",
                "product_unavailable",
                name="chat_closed_reason",
                create_type=False,
            ),
            nullable=True,
        ),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "last_message_preview",
            sa.String(length=160),
            nullable=False,
            server_default=sa.text("''"),
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_id"], ["catalog_products.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "customer_user_id",
            "vendor_user_id",
            "product_id",
            name="uq_chat_conversation_participants_product",
        ),
    )
    op.create_index(
        "ix_chat_conversations_customer_user_id", "chat_conversations", ["customer_user_id"]
    )
    op.create_index(
        "ix_chat_conversations_vendor_user_id", "chat_conversations", ["vendor_user_id"]
    )
    op.create_index("ix_chat_conversations_closed_at", "chat_conversations", ["closed_at"])

    op.create_table(
        "chat_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender_user_id", sa.String(length=120), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["chat_conversations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_chat_messages_conversation_id", "chat_messages", ["conversation_id"])


def downgrade() -> None:
    op.drop_index("ix_chat_messages_conversation_id", table_name="chat_messages")
    op.drop_table("chat_messages")

    op.drop_index("ix_chat_conversations_closed_at", table_name="chat_conversations")
    op.drop_index("ix_chat_conversations_vendor_user_id", table_name="chat_conversations")
    op.drop_index("ix_chat_conversations_customer_user_id", table_name="chat_conversations")
    op.drop_table("chat_conversations")
    op.drop_table("catalog_products")

    bind = op.get_bind()
    sa.Enum(name="chat_closed_reason").drop(bind, checkfirst=True)
    sa.Enum(name="product_status").drop(bind, checkfirst=True)

"""init handoff schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS: dict[str, tuple[str, ...]] = {
    "operator_presence": ("available", "busy", "offline"),
    "handoff_status": ("pending", "active", "resolved"),
    "sender_origin": ("customer", "operator", "system"),
    "turn_role": ("customer", "automated-agent"),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name, create_type=False)


def _timestamp(name: str, nullable: bool = False, server_default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()") if server_default else None,
        nullable=nullable,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "widget_api_keys",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("label", sa.String(length=120), nullable=False),
        sa.Column("key_hash", sa.String(length=64), nullable=False),
        sa.Column("allowed_domains", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key_hash", name="uq_widget_api_keys_key_hash"),
    )
    op.create_index("ix_widget_api_keys_tenant_id", "widget_api_keys", ["tenant_id"])

    op.create_table(
        "operators",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=False),
        sa.Column("username", sa.String(length=80), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "presence",
            _enum("operator_presence"),
            nullable=False,
            server_default=sa.text("'offline'"),
        ),
        sa.Column("active_chats", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_chats", sa.Integer(), nullable=False, server_default=sa.text("5")),
        _timestamp("last_seen_at", nullable=True, server_default=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username", name="uq_operators_username"),
        sa.CheckConstraint("active_chats >= 0", name="ck_operators_active_chats"),
    )
    op.create_index("ix_operators_tenant_id", "operators", ["tenant_id"])

    op.create_table(
        "conversations",
        sa.Column("id", sa.String(length=120), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversations_tenant_id", "conversations", ["tenant_id"])

    op.create_table(
        "automated_turns",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", sa.String(length=120), nullable=False),
        sa.Column("role", _enum("turn_role"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        _timestamp("created_at", server_default=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automated_turns_conversation_order",
        "automated_turns",
        ["conversation_id", "created_at", "sequence"],
    )

    op.create_table(
        "handoffs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", sa.String(length=120), nullable=True),
        sa.Column(
            "status",
            _enum("handoff_status"),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        _timestamp("requested_at"),
        _timestamp("picked_up_at", nullable=True, server_default=False),
        _timestamp("resolved_at", nullable=True, server_default=False),
        sa.Column("assigned_operator_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("contact_email", sa.String(length=320), nullable=True),
        sa.Column("contact_message", sa.Text(), nullable=True),
        sa.Column("last_customer_message", sa.Text(), nullable=True),
        sa.Column("context_json", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["assigned_operator_id"], ["operators.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_handoffs_open_per_conversation",
        "handoffs",
        ["conversation_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'resolved' AND conversation_id IS NOT NULL"),
    )
    op.create_index("ix_handoffs_tenant_status", "handoffs", ["tenant_id", "status"])
    op.create_index("ix_handoffs_assigned_operator_id", "handoffs", ["assigned_operator_id"])

    op.create_table(
        "handoff_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("handoff_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender_origin", _enum("sender_origin"), nullable=False),
        sa.Column("sender_operator_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        _timestamp("created_at", server_default=False),
        sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_operator_id"], ["operators.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_handoff_messages_handoff_order",
        "handoff_messages",
        ["handoff_id", "created_at", "sequence"],
    )


def downgrade() -> None:
    op.drop_index("ix_handoff_messages_handoff_order", table_name="handoff_messages")
    op.drop_table("handoff_messages")

    op.drop_index("ix_handoffs_assigned_operator_id", table_name="handoffs")
    op.drop_index("ix_handoffs_tenant_status", table_name="handoffs")
    op.drop_index("uq_handoffs_open_per_conversation", table_name="handoffs")
    op.drop_table("handoffs")

    op.drop_index("ix_automated_turns_conversation_order", table_name="automated_turns")
    op.drop_table("automated_turns")

    op.drop_index("ix_conversations_tenant_id", table_name="conversations")
    op.drop_table("conversations")

    op.drop_index("ix_operators_tenant_id", table_name="operators")
    op.drop_table("operators")

    op.drop_index("ix_widget_api_keys_tenant_id", table_name="widget_api_keys")
    op.drop_table("widget_api_keys")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(bind, checkfirst=True)

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Identity,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from support_handoff.domain.enums import (
    HandoffStatus,
    OperatorPresence,
    SenderOrigin,
    TurnRole,
)


class Base(DeclarativeBase):
    pass


def _enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class WidgetApiKey(Base):
    __tablename__ = "widget_api_keys"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), index=True, nullable=False)
    label: Mapped[str] = mapped_column(String(120), nullable=False, default="default")
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    allowed_domains: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Operator(Base, TimestampMixin):
    __tablename__ = "operators"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    presence: Mapped[OperatorPresence] = mapped_column(
        _enum_column(OperatorPresence, "operator_presence"),
        nullable=False,
        default=OperatorPresence.OFFLINE,
    )
    active_chats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_chats: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Conversation(Base):
    __tablename__ = "conversations"

    # Opaque session id minted by the automated-agent backend.
    id: Mapped[str] = mapped_column(String(120), primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AutomatedTurn(Base):
    __tablename__ = "automated_turns"
    __table_args__ = (
        Index("ix_automated_turns_conversation_order", "conversation_id", "created_at", "sequence"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sequence: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False)
    tenant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    conversation_id: Mapped[str] = mapped_column(
        String(120), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[TurnRole] = mapped_column(_enum_column(TurnRole, "turn_role"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Handoff(Base):
    __tablename__ = "handoffs"
    __table_args__ = (
        Index(
            "uq_handoffs_open_per_conversation",
            "conversation_id",
            unique=True,
            postgresql_where=text("status <> 'resolved' AND conversation_id IS NOT NULL"),
        ),
        Index("ix_handoffs_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    conversation_id: Mapped[str | None] = mapped_column(
        String(120), ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[HandoffStatus] = mapped_column(
        _enum_column(HandoffStatus, "handoff_status"),
        nullable=False,
        default=HandoffStatus.PENDING,
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_operator_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True, index=True
    )
    contact_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    contact_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_customer_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    context_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class HandoffMessage(Base):
    __tablename__ = "handoff_messages"
    __table_args__ = (
        Index("ix_handoff_messages_handoff_order", "handoff_id", "created_at", "sequence"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sequence: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False)
    handoff_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("handoffs.id", ondelete="CASCADE"), nullable=False
    )
    sender_origin: Mapped[SenderOrigin] = mapped_column(
        _enum_column(SenderOrigin, "sender_origin"), nullable=False
    )
    sender_operator_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.domain.enums import (
    HandoffStatus,
    OperatorPresence,
    SenderOrigin,
    TurnRole,
)
from support_handoff.infra.db.models import (
    AutomatedTurn,
    Conversation,
    Handoff,
    HandoffMessage,
    Operator,
    WidgetApiKey,
)


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, conversation_id: str) -> Conversation | None:
        return await self.session.get(Conversation, conversation_id)

    async def get_by_id_for_update(self, conversation_id: str) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation).where(Conversation.id == conversation_id).with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, conversation_id: str, tenant_id: UUID) -> Conversation:
        conversation = Conversation(id=conversation_id, tenant_id=tenant_id)
        self.session.add(conversation)
        await self.session.flush()
        await self.session.refresh(conversation)
        return conversation


class AutomatedTurnRepository:
    """Append-only log of customer and automated-agent turns."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        tenant_id: UUID,
        conversation_id: str,
        role: TurnRole,
        body: str,
        created_at: datetime,
    ) -> AutomatedTurn:
        turn = AutomatedTurn(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            role=role,
            body=body,
            created_at=created_at,
        )
        self.session.add(turn)
        await self.session.flush()
        await self.session.refresh(turn)
        return turn

    async def get_last_timestamp(self, conversation_id: str) -> datetime | None:
        stmt = select(func.max(AutomatedTurn.created_at)).where(
            AutomatedTurn.conversation_id == conversation_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_conversation(self, conversation_id: str) -> list[AutomatedTurn]:
        stmt: Select[tuple[AutomatedTurn]] = (
            select(AutomatedTurn)
            .where(AutomatedTurn.conversation_id == conversation_id)
            .order_by(AutomatedTurn.created_at.asc(), AutomatedTurn.sequence.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class HandoffMessageRepository:
    """Append-only ledger of messages exchanged during a handoff."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        handoff_id: UUID,
        sender_origin: SenderOrigin,
        body: str,
        created_at: datetime,
        sender_operator_id: UUID | None = None,
    ) -> HandoffMessage:
        message = HandoffMessage(
            handoff_id=handoff_id,
            sender_origin=sender_origin,
            sender_operator_id=sender_operator_id,
            body=body,
            created_at=created_at,
        )
        self.session.add(message)
        await self.session.flush()
        await self.session.refresh(message)
        return message

    async def get_last_timestamp(self, handoff_id: UUID) -> datetime | None:
        stmt = select(func.max(HandoffMessage.created_at)).where(
            HandoffMessage.handoff_id == handoff_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_handoff(self, handoff_id: UUID) -> list[HandoffMessage]:
        return await self.list_since(handoff_id, since=None)

    async def list_since(
        self,
        handoff_id: UUID,
        since: datetime | None,
        sender_origin: SenderOrigin | None = None,
    ) -> list[HandoffMessage]:
        stmt: Select[tuple[HandoffMessage]] = select(HandoffMessage).where(
            HandoffMessage.handoff_id == handoff_id
        )
        if since is not None:
            stmt = stmt.where(HandoffMessage.created_at > since)
        if sender_origin is not None:
            stmt = stmt.where(HandoffMessage.sender_origin == sender_origin)
        stmt = stmt.order_by(HandoffMessage.created_at.asc(), HandoffMessage.sequence.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class HandoffRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, handoff_id: UUID) -> Handoff | None:
        return await self.session.get(Handoff, handoff_id)

    async def get_by_id_for_update(self, handoff_id: UUID) -> Handoff | None:
        stmt: Select[tuple[Handoff]] = (
            select(Handoff)
            .where(Handoff.id == handoff_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_open_for_conversation(self, conversation_id: str) -> Handoff | None:
        stmt: Select[tuple[Handoff]] = (
            select(Handoff)
            .where(
                Handoff.conversation_id == conversation_id,
                Handoff.status != HandoffStatus.RESOLVED,
            )
            .order_by(Handoff.requested_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        tenant_id: UUID,
        conversation_id: str | None,
        status: HandoffStatus,
        requested_at: datetime,
        last_customer_message: str | None,
        context_json: dict | None,
        contact_email: str | None = None,
        contact_message: str | None = None,
    ) -> Handoff:
        handoff = Handoff(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            status=status,
            requested_at=requested_at,
            last_customer_message=last_customer_message,
            context_json=context_json,
            contact_email=contact_email,
            contact_message=contact_message,
        )
        self.session.add(handoff)
        await self.session.flush()
        await self.session.refresh(handoff)
        return handoff

    async def attach_contact(
        self,
        handoff: Handoff,
        contact_email: str | None,
        contact_message: str | None,
    ) -> None:
        if contact_email:
            handoff.contact_email = contact_email
        if contact_message:
            handoff.contact_message = contact_message
        await self.session.flush()

    async def transition_status(
        self,
        handoff_id: UUID,
        expected: HandoffStatus,
        target: HandoffStatus,
        values: dict[str, Any] | None = None,
        assigned_operator_id: UUID | None = None,
    ) -> Handoff | None:
        """Move a handoff to ``target`` only if it is still in ``expected``.

        Returns ``None`` when the guard does not match, so concurrent callers
        racing for the same transition see exactly one winner.
        """
        stmt = update(Handoff).where(
            Handoff.id == handoff_id,
            Handoff.status == expected,
        )
        if assigned_operator_id is not None:
            stmt = stmt.where(Handoff.assigned_operator_id == assigned_operator_id)

        stmt = (
            stmt.values(status=target, **(values or {}))
            .returning(Handoff)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_tenant(
        self,
        tenant_id: UUID,
        status_filter: HandoffStatus | None = None,
        limit: int = 100,
    ) -> list[Handoff]:
        stmt: Select[tuple[Handoff]] = select(Handoff).where(Handoff.tenant_id == tenant_id)
        if status_filter is not None:
            stmt = stmt.where(Handoff.status == status_filter)
        stmt = stmt.order_by(Handoff.requested_at.desc(), Handoff.id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_operator(
        self,
        operator_id: UUID,
        status_filter: HandoffStatus | None = None,
        limit: int = 100,
    ) -> list[Handoff]:
        stmt: Select[tuple[Handoff]] = select(Handoff).where(
            Handoff.assigned_operator_id == operator_id
        )
        if status_filter is not None:
            stmt = stmt.where(Handoff.status == status_filter)
        stmt = stmt.order_by(
            Handoff.picked_up_at.desc().nulls_last(), Handoff.id.asc()
        ).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class OperatorRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, operator_id: UUID) -> Operator | None:
        return await self.session.get(Operator, operator_id)

    async def get_by_username(self, username: str) -> Operator | None:
        stmt: Select[tuple[Operator]] = (
            select(Operator).where(func.lower(Operator.username) == username.lower()).limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: UUID) -> list[Operator]:
        stmt: Select[tuple[Operator]] = (
            select(Operator)
            .where(Operator.tenant_id == tenant_id)
            .order_by(Operator.display_name.asc(), Operator.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def has_capacity(self, tenant_id: UUID) -> bool:
        stmt = (
            select(Operator.id)
            .where(
                Operator.tenant_id == tenant_id,
                Operator.is_active.is_(True),
                Operator.presence == OperatorPresence.AVAILABLE,
                Operator.active_chats < Operator.max_chats,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def create(
        self,
        tenant_id: UUID,
        display_name: str,
        username: str,
        password_hash: str,
        max_chats: int = 5,
        presence: OperatorPresence = OperatorPresence.OFFLINE,
    ) -> Operator:
        operator = Operator(
            tenant_id=tenant_id,
            display_name=display_name,
            username=username,
            password_hash=password_hash,
            max_chats=max_chats,
            presence=presence,
            active_chats=0,
        )
        self.session.add(operator)
        await self.session.flush()
        await self.session.refresh(operator)
        return operator

    async def update_presence(
        self,
        operator: Operator,
        presence: OperatorPresence,
        seen_at: datetime | None = None,
    ) -> None:
        operator.presence = presence
        if seen_at is not None:
            operator.last_seen_at = seen_at
        await self.session.flush()

    async def touch_last_seen(self, operator: Operator, seen_at: datetime) -> None:
        operator.last_seen_at = seen_at
        await self.session.flush()

    async def set_all_presence(self, presence: OperatorPresence) -> None:
        await self.session.execute(update(Operator).values(presence=presence))

    async def increment_active_chats(self, operator_id: UUID) -> None:
        await self.session.execute(
            update(Operator)
            .where(Operator.id == operator_id)
            .values(active_chats=Operator.active_chats + 1)
        )

    async def decrement_active_chats(self, operator_id: UUID) -> None:
        await self.session.execute(
            update(Operator)
            .where(Operator.id == operator_id)
            .values(active_chats=func.greatest(Operator.active_chats - 1, 0))
        )

    async def mark_stale_offline(self, seen_before: datetime) -> list[Operator]:
        stmt = (
            update(Operator)
            .where(
                Operator.presence == OperatorPresence.AVAILABLE,
                Operator.last_seen_at.is_not(None),
                Operator.last_seen_at < seen_before,
            )
            .values(presence=OperatorPresence.OFFLINE)
            .returning(Operator)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class WidgetApiKeyRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_active_by_hash(self, key_hash: str) -> WidgetApiKey | None:
        stmt: Select[tuple[WidgetApiKey]] = (
            select(WidgetApiKey)
            .where(WidgetApiKey.key_hash == key_hash, WidgetApiKey.is_active.is_(True))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        tenant_id: UUID,
        key_hash: str,
        allowed_domains: list[str],
        label: str = "default",
    ) -> WidgetApiKey:
        api_key = WidgetApiKey(
            tenant_id=tenant_id,
            key_hash=key_hash,
            allowed_domains=allowed_domains,
            label=label,
            is_active=True,
        )
        self.session.add(api_key)
        await self.session.flush()
        return api_key

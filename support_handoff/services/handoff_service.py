import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.core.config import get_settings
from support_handoff.domain.enums import (
    EscalationOutcome,
    HandoffStatus,
    SenderOrigin,
    TransitionAction,
)
from support_handoff.domain.ordering import next_timestamp
from support_handoff.domain.state_machine import HandoffLifecycle
from support_handoff.infra.db.models import Handoff, HandoffMessage, Operator
from support_handoff.infra.db.repositories import (
    ConversationRepository,
    HandoffMessageRepository,
    HandoffRepository,
    OperatorRepository,
)
from support_handoff.infra.realtime.channels import (
    handoff_channel,
    operator_channel,
    tenant_operators_channel,
)
from support_handoff.infra.realtime.events import RealtimeEvent
from support_handoff.infra.realtime.publisher import NoopRealtimePublisher, RealtimePublisher
from support_handoff.services.errors import (
    ConversationNotFoundError,
    HandoffAccessDeniedError,
    HandoffNotActiveError,
    HandoffNotAvailableError,
    HandoffNotFoundError,
    OperatorNotFoundError,
)

logger = logging.getLogger(__name__)

CUSTOMER_ENDED_NOTICE = "User ended the chat"


@dataclass(slots=True)
class EscalationResult:
    handoff: Handoff
    outcome: EscalationOutcome
    created: bool


@dataclass(slots=True)
class HandoffStatusView:
    handoff: Handoff
    operator_name: str | None


@dataclass(slots=True)
class ContextTurn:
    role: str
    body: str


class HandoffService:
    """Single writer of handoff status.

    Every status change goes through a guarded update keyed on the state the
    lifecycle requires, so the database row is the only arbiter between
    concurrent callers.
    """

    def __init__(
        self,
        session: AsyncSession,
        handoffs: HandoffRepository | None = None,
        messages: HandoffMessageRepository | None = None,
        operators: OperatorRepository | None = None,
        conversations: ConversationRepository | None = None,
        realtime: RealtimePublisher | None = None,
    ) -> None:
        self.session = session
        self.handoffs = handoffs or HandoffRepository(session)
        self.messages = messages or HandoffMessageRepository(session)
        self.operators = operators or OperatorRepository(session)
        self.conversations = conversations or ConversationRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()
        self.settings = get_settings()

    async def escalate(
        self,
        tenant_id: UUID,
        conversation_id: str | None,
        recent_turns: list[ContextTurn],
        last_customer_message: str | None,
        contact_email: str | None = None,
        contact_message: str | None = None,
        metadata: dict[str, Any] | None = None,
        handoff_id: UUID | None = None,
    ) -> EscalationResult:
        if handoff_id is not None:
            known = await self._get_handoff_or_raise(tenant_id, handoff_id)
            self._assert_customer_owns(known, conversation_id)
            if not HandoffLifecycle.is_terminal(known.status):
                return await self._reuse_open_handoff(known, contact_email, contact_message)

        if conversation_id is not None:
            conversation = await self.conversations.get_by_id(conversation_id)
            if conversation is None or conversation.tenant_id != tenant_id:
                raise ConversationNotFoundError(conversation_id)

            existing = await self.handoffs.get_open_for_conversation(conversation_id)
            if existing is not None:
                return await self._reuse_open_handoff(
                    existing, contact_email, contact_message
                )

        status = HandoffLifecycle.transition(None, TransitionAction.ESCALATE)
        has_capacity = await self.operators.has_capacity(tenant_id)
        window = max(self.settings.handoff_context_window, 0)
        trimmed_turns = recent_turns[-window:] if window else []

        try:
            handoff = await self.handoffs.create(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                status=status,
                requested_at=datetime.now(UTC),
                last_customer_message=_clean_optional(last_customer_message),
                context_json={
                    "recent_turns": [
                        {"role": turn.role, "body": turn.body} for turn in trimmed_turns
                    ],
                    "metadata": metadata or {},
                },
                contact_email=_clean_optional(contact_email),
                contact_message=_clean_optional(contact_message),
            )
            await self.session.commit()
        except IntegrityError:
            # Lost a race with a concurrent escalation of the same conversation.
            await self.session.rollback()
            existing = (
                await self.handoffs.get_open_for_conversation(conversation_id)
                if conversation_id is not None
                else None
            )
            if existing is None:
                raise
            return await self._reuse_open_handoff(existing, contact_email, contact_message)

        await self.session.refresh(handoff)
        outcome = EscalationOutcome.PENDING if has_capacity else EscalationOutcome.AFTER_HOURS
        logger.info(
            "Handoff %s created as %s for tenant %s (outcome=%s)",
            handoff.id,
            handoff.status.value,
            tenant_id,
            outcome.value,
        )

        await self._safe_publish(
            channels=[tenant_operators_channel(tenant_id)],
            event=RealtimeEvent.HANDOFF_REQUESTED,
            payload={"handoff": self._handoff_payload(handoff), "outcome": outcome.value},
        )
        return EscalationResult(handoff=handoff, outcome=outcome, created=True)

    async def claim(self, tenant_id: UUID, handoff_id: UUID, operator_id: UUID) -> Handoff:
        operator = await self._get_operator_or_raise(tenant_id, operator_id)
        await self._get_handoff_or_raise(tenant_id, handoff_id)

        now = datetime.now(UTC)
        claimed = await self.handoffs.transition_status(
            handoff_id,
            expected=HandoffLifecycle.required_state(TransitionAction.CLAIM),
            target=HandoffLifecycle.transition(HandoffStatus.PENDING, TransitionAction.CLAIM),
            values={"assigned_operator_id": operator.id, "picked_up_at": now},
        )
        if claimed is None:
            await self.session.rollback()
            logger.info("Operator %s lost claim on handoff %s", operator_id, handoff_id)
            raise HandoffNotAvailableError(handoff_id)

        await self.operators.increment_active_chats(operator.id)
        notice = await self._append(
            claimed.id,
            SenderOrigin.SYSTEM,
            f"{operator.display_name} has joined the chat",
        )
        await self.session.commit()
        await self.session.refresh(claimed)
        logger.info("Handoff %s claimed by operator %s", claimed.id, operator.id)

        await self._safe_publish(
            channels=self._handoff_channels(claimed),
            event=RealtimeEvent.HANDOFF_CLAIMED,
            payload={
                "handoff": self._handoff_payload(claimed),
                "operator": {"id": str(operator.id), "display_name": operator.display_name},
            },
        )
        await self._emit_message_created(claimed, notice)
        return claimed

    async def resolve_by_operator(
        self, tenant_id: UUID, handoff_id: UUID, operator_id: UUID
    ) -> Handoff:
        operator = await self._get_operator_or_raise(tenant_id, operator_id)
        handoff = await self._get_handoff_or_raise(tenant_id, handoff_id)
        if (
            handoff.assigned_operator_id is not None
            and handoff.assigned_operator_id != operator.id
        ):
            raise HandoffAccessDeniedError(handoff_id)
        HandoffLifecycle.transition(handoff.status, TransitionAction.RESOLVE)

        return await self._resolve(
            handoff,
            notice=f"Chat resolved by {operator.display_name}",
            resolved_by="operator",
            assigned_operator_id=operator.id,
        )

    async def resolve_by_customer(
        self,
        tenant_id: UUID,
        handoff_id: UUID,
        conversation_id: str | None,
    ) -> Handoff:
        handoff = await self._get_handoff_or_raise(tenant_id, handoff_id)
        self._assert_customer_owns(handoff, conversation_id)
        HandoffLifecycle.transition(handoff.status, TransitionAction.RESOLVE)

        return await self._resolve(
            handoff,
            notice=CUSTOMER_ENDED_NOTICE,
            resolved_by="customer",
        )

    async def end_chat(
        self,
        tenant_id: UUID,
        conversation_id: str | None,
        handoff_id: UUID | None,
    ) -> Handoff | None:
        """Customer closed the widget chat; resolves the handoff only if it is active."""
        if handoff_id is None:
            return None

        handoff = await self._get_handoff_or_raise(tenant_id, handoff_id)
        self._assert_customer_owns(handoff, conversation_id)
        if handoff.status != HandoffStatus.ACTIVE:
            return handoff

        try:
            return await self._resolve(
                handoff,
                notice=CUSTOMER_ENDED_NOTICE,
                resolved_by="customer",
            )
        except HandoffNotActiveError:
            return await self._get_handoff_or_raise(tenant_id, handoff_id)

    async def send_customer_message(
        self,
        tenant_id: UUID,
        handoff_id: UUID,
        body: str,
        conversation_id: str | None = None,
    ) -> HandoffMessage:
        cleaned_body = _clean_body(body)
        handoff = await self._lock_active_handoff(tenant_id, handoff_id)
        self._assert_customer_owns(handoff, conversation_id)

        message = await self._append(handoff.id, SenderOrigin.CUSTOMER, cleaned_body)
        await self.session.commit()
        await self._emit_message_created(handoff, message)
        return message

    async def send_operator_message(
        self,
        tenant_id: UUID,
        handoff_id: UUID,
        operator_id: UUID,
        body: str,
    ) -> HandoffMessage:
        cleaned_body = _clean_body(body)
        operator = await self._get_operator_or_raise(tenant_id, operator_id)
        handoff = await self._lock_active_handoff(tenant_id, handoff_id)
        if handoff.assigned_operator_id != operator.id:
            await self.session.rollback()
            raise HandoffAccessDeniedError(handoff_id)

        message = await self._append(
            handoff.id,
            SenderOrigin.OPERATOR,
            cleaned_body,
            sender_operator_id=operator.id,
        )
        await self.session.commit()
        await self._emit_message_created(handoff, message)
        return message

    async def get_status(self, tenant_id: UUID, handoff_id: UUID) -> HandoffStatusView:
        handoff = await self._get_handoff_or_raise(tenant_id, handoff_id)
        operator_name = None
        if handoff.assigned_operator_id is not None:
            operator = await self.operators.get_by_id(handoff.assigned_operator_id)
            operator_name = operator.display_name if operator is not None else None
        return HandoffStatusView(handoff=handoff, operator_name=operator_name)

    async def poll_messages(
        self,
        tenant_id: UUID,
        handoff_id: UUID,
        since: datetime | None = None,
    ) -> list[HandoffMessage]:
        await self._get_handoff_or_raise(tenant_id, handoff_id)
        return await self.messages.list_since(
            handoff_id, since=since, sender_origin=SenderOrigin.OPERATOR
        )

    async def list_messages(
        self,
        tenant_id: UUID,
        handoff_id: UUID,
        since: datetime | None = None,
    ) -> list[HandoffMessage]:
        await self._get_handoff_or_raise(tenant_id, handoff_id)
        return await self.messages.list_since(handoff_id, since=since)

    async def list_handoffs(
        self,
        tenant_id: UUID,
        status_filter: HandoffStatus | None = None,
    ) -> list[Handoff]:
        return await self.handoffs.list_for_tenant(tenant_id, status_filter=status_filter)

    async def list_for_operator(
        self,
        tenant_id: UUID,
        operator_id: UUID,
        status_filter: HandoffStatus | None = None,
    ) -> list[Handoff]:
        operator = await self._get_operator_or_raise(tenant_id, operator_id)
        return await self.handoffs.list_for_operator(operator.id, status_filter=status_filter)

    async def get_handoff(self, tenant_id: UUID, handoff_id: UUID) -> Handoff:
        return await self._get_handoff_or_raise(tenant_id, handoff_id)

    async def _reuse_open_handoff(
        self,
        handoff: Handoff,
        contact_email: str | None,
        contact_message: str | None,
    ) -> EscalationResult:
        if handoff.status == HandoffStatus.PENDING and (contact_email or contact_message):
            await self.handoffs.attach_contact(
                handoff,
                _clean_optional(contact_email),
                _clean_optional(contact_message),
            )
            await self.session.commit()

        if handoff.status == HandoffStatus.ACTIVE:
            outcome = EscalationOutcome.PENDING
        elif await self.operators.has_capacity(handoff.tenant_id):
            outcome = EscalationOutcome.PENDING
        else:
            outcome = EscalationOutcome.AFTER_HOURS
        return EscalationResult(handoff=handoff, outcome=outcome, created=False)

    async def _resolve(
        self,
        handoff: Handoff,
        notice: str,
        resolved_by: str,
        assigned_operator_id: UUID | None = None,
    ) -> Handoff:
        resolved = await self.handoffs.transition_status(
            handoff.id,
            expected=HandoffLifecycle.required_state(TransitionAction.RESOLVE),
            target=HandoffLifecycle.transition(HandoffStatus.ACTIVE, TransitionAction.RESOLVE),
            values={"resolved_at": datetime.now(UTC)},
            assigned_operator_id=assigned_operator_id,
        )
        if resolved is None:
            await self.session.rollback()
            current = await self.handoffs.get_by_id(handoff.id)
            raise HandoffNotActiveError(
                handoff.id, current.status if current is not None else handoff.status
            )

        if resolved.assigned_operator_id is not None:
            await self.operators.decrement_active_chats(resolved.assigned_operator_id)
        system_message = await self._append(resolved.id, SenderOrigin.SYSTEM, notice)
        await self.session.commit()
        await self.session.refresh(resolved)
        logger.info("Handoff %s resolved by %s", resolved.id, resolved_by)

        await self._emit_message_created(resolved, system_message)
        await self._safe_publish(
            channels=self._handoff_channels(resolved),
            event=RealtimeEvent.HANDOFF_RESOLVED,
            payload={"handoff": self._handoff_payload(resolved), "resolved_by": resolved_by},
        )
        return resolved

    async def _append(
        self,
        handoff_id: UUID,
        origin: SenderOrigin,
        body: str,
        sender_operator_id: UUID | None = None,
    ) -> HandoffMessage:
        last = await self.messages.get_last_timestamp(handoff_id)
        return await self.messages.append(
            handoff_id=handoff_id,
            sender_origin=origin,
            body=body,
            created_at=next_timestamp(last),
            sender_operator_id=sender_operator_id,
        )

    async def _lock_active_handoff(self, tenant_id: UUID, handoff_id: UUID) -> Handoff:
        handoff = await self.handoffs.get_by_id_for_update(handoff_id)
        if handoff is None or handoff.tenant_id != tenant_id:
            await self.session.rollback()
            raise HandoffNotFoundError(handoff_id)
        if not HandoffLifecycle.accepts_messages(handoff.status):
            await self.session.rollback()
            raise HandoffNotActiveError(handoff.id, handoff.status)
        return handoff

    async def _get_handoff_or_raise(self, tenant_id: UUID, handoff_id: UUID) -> Handoff:
        handoff = await self.handoffs.get_by_id(handoff_id)
        if handoff is None or handoff.tenant_id != tenant_id:
            raise HandoffNotFoundError(handoff_id)
        return handoff

    async def _get_operator_or_raise(self, tenant_id: UUID, operator_id: UUID) -> Operator:
        operator = await self.operators.get_by_id(operator_id)
        if operator is None or operator.tenant_id != tenant_id or not operator.is_active:
            raise OperatorNotFoundError(operator_id)
        return operator

    @staticmethod
    def _assert_customer_owns(handoff: Handoff, conversation_id: str | None) -> None:
        if handoff.conversation_id is not None and handoff.conversation_id != conversation_id:
            raise HandoffAccessDeniedError(handoff.id)

    async def _emit_message_created(self, handoff: Handoff, message: HandoffMessage) -> None:
        await self._safe_publish(
            channels=self._handoff_channels(handoff),
            event=RealtimeEvent.HANDOFF_MESSAGE_CREATED,
            payload={
                "handoff_id": str(handoff.id),
                "message": self._message_payload(message),
            },
        )

    async def _safe_publish(
        self,
        channels: list[str],
        event: RealtimeEvent,
        payload: dict[str, Any],
    ) -> None:
        try:
            await self.realtime.publish(channels, event, payload)
        except Exception:
            logger.warning("Failed to publish %s", event.value, exc_info=True)

    @staticmethod
    def _handoff_channels(handoff: Handoff) -> list[str]:
        channels = [tenant_operators_channel(handoff.tenant_id), handoff_channel(handoff.id)]
        if handoff.assigned_operator_id is not None:
            channels.append(operator_channel(handoff.assigned_operator_id))
        return channels

    @staticmethod
    def _handoff_payload(handoff: Handoff) -> dict[str, Any]:
        return {
            "id": str(handoff.id),
            "conversation_id": handoff.conversation_id,
            "status": handoff.status.value,
            "assigned_operator_id": (
                str(handoff.assigned_operator_id)
                if handoff.assigned_operator_id is not None
                else None
            ),
            "last_customer_message": handoff.last_customer_message,
            "contact_email": handoff.contact_email,
            "requested_at": handoff.requested_at.isoformat(),
            "picked_up_at": (
                handoff.picked_up_at.isoformat() if handoff.picked_up_at is not None else None
            ),
            "resolved_at": (
                handoff.resolved_at.isoformat() if handoff.resolved_at is not None else None
            ),
        }

    @staticmethod
    def _message_payload(message: HandoffMessage) -> dict[str, Any]:
        return {
            "id": str(message.id),
            "handoff_id": str(message.handoff_id),
            "sender_origin": message.sender_origin.value,
            "sender_operator_id": (
                str(message.sender_operator_id)
                if message.sender_operator_id is not None
                else None
            ),
            "body": message.body,
            "created_at": message.created_at.isoformat(),
        }


def _clean_body(body: str) -> str:
    cleaned = body.strip()
    if not cleaned:
        raise ValueError("Message body cannot be empty.")
    return cleaned


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None

import asyncio
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.core.config import get_settings
from support_handoff.domain.enums import HandoffStatus, TurnRole
from support_handoff.domain.ordering import next_timestamp
from support_handoff.infra.automated_agent import AutomatedAgent, AutomatedAgentError
from support_handoff.infra.db.models import AutomatedTurn, Conversation
from support_handoff.infra.db.repositories import (
    AutomatedTurnRepository,
    ConversationRepository,
    HandoffRepository,
)
from support_handoff.services.errors import (
    ConversationInHandoffError,
    ConversationNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AutomatedExchange:
    conversation: Conversation
    customer_turn: AutomatedTurn
    reply_turn: AutomatedTurn
    created: bool


class ConversationService:
    def __init__(
        self,
        session: AsyncSession,
        automated_agent: AutomatedAgent,
        conversations: ConversationRepository | None = None,
        turns: AutomatedTurnRepository | None = None,
        handoffs: HandoffRepository | None = None,
    ) -> None:
        self.session = session
        self.automated_agent = automated_agent
        self.conversations = conversations or ConversationRepository(session)
        self.turns = turns or AutomatedTurnRepository(session)
        self.handoffs = handoffs or HandoffRepository(session)
        self.settings = get_settings()

    async def send_customer_turn(
        self,
        tenant_id: UUID,
        conversation_id: str | None,
        text: str,
    ) -> AutomatedExchange:
        cleaned_text = text.strip()
        if not cleaned_text:
            raise ValueError("Message content cannot be empty.")

        if conversation_id is not None:
            conversation = await self._get_conversation_or_raise(tenant_id, conversation_id)
            open_handoff = await self.handoffs.get_open_for_conversation(conversation.id)
            if open_handoff is not None and open_handoff.status == HandoffStatus.ACTIVE:
                raise ConversationInHandoffError(conversation.id)
            reply = await self._request_reply(conversation.id, cleaned_text, attempts=1)
            created = False
        else:
            session_id = await self.automated_agent.start_session()
            reply = await self._request_reply(
                session_id,
                cleaned_text,
                attempts=max(self.settings.automated_agent_retry_attempts, 1),
            )
            conversation = await self.conversations.create(session_id, tenant_id)
            created = True
            logger.info("Conversation %s created for tenant %s", conversation.id, tenant_id)

        # Serializes turn timestamps per conversation.
        await self.conversations.get_by_id_for_update(conversation.id)
        last = await self.turns.get_last_timestamp(conversation.id)
        customer_at = next_timestamp(last)
        customer_turn = await self.turns.append(
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            role=TurnRole.CUSTOMER,
            body=cleaned_text,
            created_at=customer_at,
        )
        reply_turn = await self.turns.append(
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            role=TurnRole.AUTOMATED_AGENT,
            body=reply,
            created_at=next_timestamp(customer_at),
        )
        await self.session.commit()

        return AutomatedExchange(
            conversation=conversation,
            customer_turn=customer_turn,
            reply_turn=reply_turn,
            created=created,
        )

    async def _request_reply(self, session_id: str, text: str, attempts: int) -> str:
        """Ask the automated agent for a reply.

        Freshly created agent sessions sometimes answer empty or fail on the
        first call, so new conversations get several attempts with a linear
        delay before falling back to a fixed reply.
        """
        delay = self.settings.automated_agent_retry_delay_seconds
        for attempt in range(1, attempts + 1):
            try:
                reply = (await self.automated_agent.reply(session_id, text)).strip()
            except AutomatedAgentError:
                if attempt == attempts:
                    raise
                reply = ""
            if reply:
                return reply
            if attempt < attempts:
                logger.info(
                    "Empty reply for session %s (attempt %d/%d)", session_id, attempt, attempts
                )
                await asyncio.sleep(delay * attempt)
        return self.settings.automated_agent_fallback_reply

    async def _get_conversation_or_raise(
        self, tenant_id: UUID, conversation_id: str
    ) -> Conversation:
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None or conversation.tenant_id != tenant_id:
            raise ConversationNotFoundError(conversation_id)
        return conversation

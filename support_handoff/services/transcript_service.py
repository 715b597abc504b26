from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.domain.enums import (
    ClientHandoffStatus,
    SenderOrigin,
    TranscriptRole,
    TurnRole,
)
from support_handoff.domain.state_machine import HandoffLifecycle
from support_handoff.infra.db.models import AutomatedTurn, Handoff, HandoffMessage
from support_handoff.infra.db.repositories import (
    AutomatedTurnRepository,
    ConversationRepository,
    HandoffMessageRepository,
    HandoffRepository,
)
from support_handoff.services.errors import ConversationNotFoundError, HandoffNotFoundError

TURN_ROLES: dict[TurnRole, TranscriptRole] = {
    TurnRole.CUSTOMER: TranscriptRole.CUSTOMER,
    TurnRole.AUTOMATED_AGENT: TranscriptRole.AUTOMATED_AGENT,
}

ORIGIN_ROLES: dict[SenderOrigin, TranscriptRole] = {
    SenderOrigin.CUSTOMER: TranscriptRole.CUSTOMER,
    SenderOrigin.OPERATOR: TranscriptRole.OPERATOR,
    SenderOrigin.SYSTEM: TranscriptRole.SYSTEM,
}

# Automated turns sort before ledger messages stamped at the same instant.
_TURN_RANK = 0
_LEDGER_RANK = 1


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    id: UUID
    role: TranscriptRole
    body: str
    created_at: datetime
    sender_operator_id: UUID | None = None


@dataclass(slots=True)
class SessionHistory:
    conversation_id: str | None
    handoff: Handoff | None
    handoff_status: ClientHandoffStatus
    entries: list[TranscriptEntry]


def assemble_transcript(
    turns: Sequence[AutomatedTurn],
    ledger_messages: Sequence[HandoffMessage],
) -> list[TranscriptEntry]:
    """Merge automated turns and ledger messages into one time-ordered view.

    Ordering is by timestamp, then source (turns first), then each store's
    insertion sequence, so the result does not depend on argument order
    within either store.
    """
    keyed: list[tuple[tuple[datetime, int, int], TranscriptEntry]] = []
    for turn in turns:
        keyed.append(
            (
                (turn.created_at, _TURN_RANK, turn.sequence),
                TranscriptEntry(
                    id=turn.id,
                    role=TURN_ROLES[turn.role],
                    body=turn.body,
                    created_at=turn.created_at,
                ),
            )
        )
    for message in ledger_messages:
        keyed.append(
            (
                (message.created_at, _LEDGER_RANK, message.sequence),
                TranscriptEntry(
                    id=message.id,
                    role=ORIGIN_ROLES[message.sender_origin],
                    body=message.body,
                    created_at=message.created_at,
                    sender_operator_id=message.sender_operator_id,
                ),
            )
        )
    keyed.sort(key=lambda item: item[0])
    return [entry for _, entry in keyed]


class TranscriptService:
    """Read-side composition of the transcript. Writes nothing."""

    def __init__(
        self,
        session: AsyncSession,
        conversations: ConversationRepository | None = None,
        turns: AutomatedTurnRepository | None = None,
        handoffs: HandoffRepository | None = None,
        messages: HandoffMessageRepository | None = None,
    ) -> None:
        self.session = session
        self.conversations = conversations or ConversationRepository(session)
        self.turns = turns or AutomatedTurnRepository(session)
        self.handoffs = handoffs or HandoffRepository(session)
        self.messages = messages or HandoffMessageRepository(session)

    async def history(
        self,
        tenant_id: UUID,
        conversation_id: str | None = None,
        handoff_id: UUID | None = None,
    ) -> SessionHistory:
        if conversation_id is None and handoff_id is None:
            raise ValueError("conversation_id or handoff_id is required.")

        handoff: Handoff | None = None
        if handoff_id is not None:
            handoff = await self.handoffs.get_by_id(handoff_id)
            if handoff is None or handoff.tenant_id != tenant_id:
                raise HandoffNotFoundError(handoff_id)
            if (
                conversation_id is not None
                and handoff.conversation_id is not None
                and handoff.conversation_id != conversation_id
            ):
                raise HandoffNotFoundError(handoff_id)
            conversation_id = conversation_id or handoff.conversation_id

        turns: list[AutomatedTurn] = []
        if conversation_id is not None:
            conversation = await self.conversations.get_by_id(conversation_id)
            if conversation is None or conversation.tenant_id != tenant_id:
                raise ConversationNotFoundError(conversation_id)
            turns = await self.turns.list_by_conversation(conversation_id)
            if handoff is None:
                handoff = await self.handoffs.get_open_for_conversation(conversation_id)

        ledger_messages: list[HandoffMessage] = []
        if handoff is not None:
            ledger_messages = await self.messages.list_by_handoff(handoff.id)

        return SessionHistory(
            conversation_id=conversation_id,
            handoff=handoff,
            handoff_status=HandoffLifecycle.client_status(
                handoff.status if handoff is not None else None
            ),
            entries=assemble_transcript(turns, ledger_messages),
        )

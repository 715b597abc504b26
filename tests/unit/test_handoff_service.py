import asyncio
from dataclasses import dataclass
from uuid import UUID, uuid4

import pytest

from support_handoff.core.config import get_settings
from support_handoff.domain.enums import (
    EscalationOutcome,
    HandoffStatus,
    OperatorPresence,
    SenderOrigin,
    TransitionAction,
)
from support_handoff.domain.exceptions import InvalidHandoffTransition
from support_handoff.domain.state_machine import HandoffLifecycle
from support_handoff.infra.realtime.events import RealtimeEvent
from support_handoff.services.errors import (
    ConversationNotFoundError,
    HandoffAccessDeniedError,
    HandoffNotActiveError,
    HandoffNotAvailableError,
    HandoffNotFoundError,
)
from support_handoff.services.handoff_service import (
    CUSTOMER_ENDED_NOTICE,
    ContextTurn,
    HandoffService,
)
from tests.unit.fakes import (
    DummySession,
    FakeConversation,
    FakeConversationRepository,
    FakeHandoffMessageRepository,
    FakeHandoffRepository,
    FakeOperator,
    FakeOperatorRepository,
    RecordingPublisher,
)


@dataclass(slots=True)
class FixtureState:
    service: HandoffService
    session: DummySession
    tenant_id: UUID
    conversation: FakeConversation
    primary_operator: FakeOperator
    secondary_operator: FakeOperator
    operators: FakeOperatorRepository
    messages: FakeHandoffMessageRepository
    realtime: RecordingPublisher


@pytest.fixture
def fixture_state() -> FixtureState:
    session = DummySession()
    tenant_id = uuid4()
    conversations = FakeConversationRepository()
    operators = FakeOperatorRepository()
    messages = FakeHandoffMessageRepository()
    realtime = RecordingPublisher()

    conversation = FakeConversation(id="conv-1", tenant_id=tenant_id)
    conversations.conversations[conversation.id] = conversation
    primary_operator = operators.add(
        FakeOperator(id=uuid4(), tenant_id=tenant_id, display_name="Maya Chen")
    )
    secondary_operator = operators.add(
        FakeOperator(id=uuid4(), tenant_id=tenant_id, display_name="Alex Rivera")
    )

    service = HandoffService(
        session=session,
        handoffs=FakeHandoffRepository(),
        messages=messages,
        operators=operators,
        conversations=conversations,
        realtime=realtime,
    )
    service.settings = get_settings().model_copy(update={"handoff_context_window": 10})
    return FixtureState(
        service=service,
        session=session,
        tenant_id=tenant_id,
        conversation=conversation,
        primary_operator=primary_operator,
        secondary_operator=secondary_operator,
        operators=operators,
        messages=messages,
        realtime=realtime,
    )


async def _escalate(fixture_state: FixtureState, **kwargs):
    return await fixture_state.service.escalate(
        tenant_id=fixture_state.tenant_id,
        conversation_id=fixture_state.conversation.id,
        recent_turns=[ContextTurn(role="customer", body="Where is my order?")],
        last_customer_message="Where is my order?",
        **kwargs,
    )


async def _active_handoff(fixture_state: FixtureState):
    result = await _escalate(fixture_state)
    return await fixture_state.service.claim(
        fixture_state.tenant_id, result.handoff.id, fixture_state.primary_operator.id
    )


@pytest.mark.asyncio
async def test_escalate_creates_pending_handoff_when_operator_available(
    fixture_state: FixtureState,
) -> None:
    result = await _escalate(fixture_state)

    assert result.created
    assert result.outcome == EscalationOutcome.PENDING
    assert result.handoff.status == HandoffStatus.PENDING
    assert result.handoff.last_customer_message == "Where is my order?"
    assert result.handoff.context_json["recent_turns"] == [
        {"role": "customer", "body": "Where is my order?"}
    ]
    assert fixture_state.realtime.names() == [RealtimeEvent.HANDOFF_REQUESTED]


@pytest.mark.asyncio
async def test_escalate_creates_handoff_in_lifecycle_initial_state(
    fixture_state: FixtureState,
) -> None:
    handoffs = fixture_state.service.handoffs
    create = handoffs.create
    created_with: list[HandoffStatus] = []

    async def recording_create(**kwargs):
        created_with.append(kwargs["status"])
        return await create(**kwargs)

    handoffs.create = recording_create

    result = await _escalate(fixture_state)

    assert created_with == [HandoffLifecycle.transition(None, TransitionAction.ESCALATE)]
    assert result.handoff.status == created_with[0]


@pytest.mark.asyncio
async def test_escalate_keeps_only_recent_context_window(
    fixture_state: FixtureState,
) -> None:
    fixture_state.service.settings = get_settings().model_copy(
        update={"handoff_context_window": 2}
    )
    turns = [ContextTurn(role="customer", body=f"turn {index}") for index in range(5)]

    result = await fixture_state.service.escalate(
        tenant_id=fixture_state.tenant_id,
        conversation_id=fixture_state.conversation.id,
        recent_turns=turns,
        last_customer_message="turn 4",
    )

    bodies = [turn["body"] for turn in result.handoff.context_json["recent_turns"]]
    assert bodies == ["turn 3", "turn 4"]


@pytest.mark.asyncio
async def test_escalate_reports_after_hours_without_capacity(
    fixture_state: FixtureState,
) -> None:
    fixture_state.primary_operator.presence = OperatorPresence.OFFLINE
    fixture_state.secondary_operator.active_chats = fixture_state.secondary_operator.max_chats

    result = await _escalate(fixture_state)

    assert result.outcome == EscalationOutcome.AFTER_HOURS
    assert result.handoff.status == HandoffStatus.PENDING


@pytest.mark.asyncio
async def test_contact_details_attach_to_existing_pending_handoff(
    fixture_state: FixtureState,
) -> None:
    fixture_state.primary_operator.presence = OperatorPresence.OFFLINE
    fixture_state.secondary_operator.presence = OperatorPresence.OFFLINE
    first = await _escalate(fixture_state)

    second = await _escalate(
        fixture_state,
        contact_email="buyer@example.com",
        contact_message="Please email me about my refund.",
        handoff_id=first.handoff.id,
    )

    assert not second.created
    assert second.handoff.id == first.handoff.id
    assert second.handoff.contact_email == "buyer@example.com"
    assert second.handoff.contact_message == "Please email me about my refund."
    assert second.outcome == EscalationOutcome.AFTER_HOURS


@pytest.mark.asyncio
async def test_escalate_twice_reuses_open_handoff(fixture_state: FixtureState) -> None:
    first = await _escalate(fixture_state)
    second = await _escalate(fixture_state)

    assert second.handoff.id == first.handoff.id
    assert not second.created


@pytest.mark.asyncio
async def test_escalate_rejects_unknown_conversation(fixture_state: FixtureState) -> None:
    with pytest.raises(ConversationNotFoundError):
        await fixture_state.service.escalate(
            tenant_id=fixture_state.tenant_id,
            conversation_id="missing",
            recent_turns=[],
            last_customer_message=None,
        )


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(
    fixture_state: FixtureState,
) -> None:
    escalated = await _escalate(fixture_state)

    results = await asyncio.gather(
        fixture_state.service.claim(
            fixture_state.tenant_id, escalated.handoff.id, fixture_state.primary_operator.id
        ),
        fixture_state.service.claim(
            fixture_state.tenant_id, escalated.handoff.id, fixture_state.secondary_operator.id
        ),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, Exception)]
    winners = [result for result in results if not isinstance(result, Exception)]
    assert len(winners) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], HandoffNotAvailableError)
    assert str(failures[0]) == "Handoff is not available"

    handoff = winners[0]
    assert handoff.status == HandoffStatus.ACTIVE
    assert handoff.picked_up_at is not None
    total_chats = (
        fixture_state.primary_operator.active_chats
        + fixture_state.secondary_operator.active_chats
    )
    assert total_chats == 1
    assert fixture_state.session.rollbacks == 1


@pytest.mark.asyncio
async def test_claim_writes_join_notice_and_publishes(fixture_state: FixtureState) -> None:
    handoff = await _active_handoff(fixture_state)

    assert handoff.assigned_operator_id == fixture_state.primary_operator.id
    ledger = await fixture_state.messages.list_by_handoff(handoff.id)
    assert [(message.sender_origin, message.body) for message in ledger] == [
        (SenderOrigin.SYSTEM, "Maya Chen has joined the chat")
    ]
    assert RealtimeEvent.HANDOFF_CLAIMED in fixture_state.realtime.names()


@pytest.mark.asyncio
async def test_full_exchange_and_operator_resolve(fixture_state: FixtureState) -> None:
    handoff = await _active_handoff(fixture_state)
    service = fixture_state.service

    await service.send_operator_message(
        fixture_state.tenant_id,
        handoff.id,
        fixture_state.primary_operator.id,
        "Hi, I'm looking at your order now.",
    )
    await service.send_customer_message(
        fixture_state.tenant_id,
        handoff.id,
        "Thanks!",
        conversation_id=fixture_state.conversation.id,
    )
    resolved = await service.resolve_by_operator(
        fixture_state.tenant_id, handoff.id, fixture_state.primary_operator.id
    )

    assert resolved.status == HandoffStatus.RESOLVED
    assert resolved.resolved_at is not None
    assert fixture_state.primary_operator.active_chats == 0

    ledger = await fixture_state.messages.list_by_handoff(handoff.id)
    assert [message.sender_origin for message in ledger] == [
        SenderOrigin.SYSTEM,
        SenderOrigin.OPERATOR,
        SenderOrigin.CUSTOMER,
        SenderOrigin.SYSTEM,
    ]
    assert ledger[-1].body == "Chat resolved by Maya Chen"
    stamps = [message.created_at for message in ledger]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)


@pytest.mark.asyncio
async def test_resolve_rejects_operator_who_is_not_assigned(
    fixture_state: FixtureState,
) -> None:
    handoff = await _active_handoff(fixture_state)

    with pytest.raises(HandoffAccessDeniedError):
        await fixture_state.service.resolve_by_operator(
            fixture_state.tenant_id, handoff.id, fixture_state.secondary_operator.id
        )
    assert handoff.status == HandoffStatus.ACTIVE


@pytest.mark.asyncio
async def test_resolve_pending_handoff_is_invalid(fixture_state: FixtureState) -> None:
    escalated = await _escalate(fixture_state)

    with pytest.raises(InvalidHandoffTransition):
        await fixture_state.service.resolve_by_operator(
            fixture_state.tenant_id, escalated.handoff.id, fixture_state.primary_operator.id
        )


@pytest.mark.asyncio
async def test_resolved_at_is_set_once(fixture_state: FixtureState) -> None:
    handoff = await _active_handoff(fixture_state)
    resolved = await fixture_state.service.resolve_by_customer(
        fixture_state.tenant_id, handoff.id, fixture_state.conversation.id
    )
    first_resolved_at = resolved.resolved_at

    with pytest.raises(InvalidHandoffTransition):
        await fixture_state.service.resolve_by_operator(
            fixture_state.tenant_id, handoff.id, fixture_state.primary_operator.id
        )
    assert resolved.resolved_at == first_resolved_at


@pytest.mark.asyncio
async def test_messages_rejected_outside_active_handoff(
    fixture_state: FixtureState,
) -> None:
    escalated = await _escalate(fixture_state)
    with pytest.raises(HandoffNotActiveError):
        await fixture_state.service.send_customer_message(
            fixture_state.tenant_id,
            escalated.handoff.id,
            "Anyone there?",
            conversation_id=fixture_state.conversation.id,
        )

    await fixture_state.service.claim(
        fixture_state.tenant_id, escalated.handoff.id, fixture_state.primary_operator.id
    )
    await fixture_state.service.resolve_by_operator(
        fixture_state.tenant_id, escalated.handoff.id, fixture_state.primary_operator.id
    )
    with pytest.raises(HandoffNotActiveError):
        await fixture_state.service.send_operator_message(
            fixture_state.tenant_id,
            escalated.handoff.id,
            fixture_state.primary_operator.id,
            "One more thing",
        )


@pytest.mark.asyncio
async def test_customer_cannot_write_to_other_conversation_handoff(
    fixture_state: FixtureState,
) -> None:
    handoff = await _active_handoff(fixture_state)

    with pytest.raises(HandoffAccessDeniedError):
        await fixture_state.service.send_customer_message(
            fixture_state.tenant_id, handoff.id, "hello", conversation_id="someone-else"
        )


@pytest.mark.asyncio
async def test_handoff_is_invisible_to_other_tenant(fixture_state: FixtureState) -> None:
    escalated = await _escalate(fixture_state)

    with pytest.raises(HandoffNotFoundError):
        await fixture_state.service.get_status(uuid4(), escalated.handoff.id)


@pytest.mark.asyncio
async def test_poll_returns_operator_messages_after_watermark(
    fixture_state: FixtureState,
) -> None:
    handoff = await _active_handoff(fixture_state)
    for body in ("first", "second", "third"):
        await fixture_state.service.send_operator_message(
            fixture_state.tenant_id, handoff.id, fixture_state.primary_operator.id, body
        )
    await fixture_state.service.send_customer_message(
        fixture_state.tenant_id, handoff.id, "ok", conversation_id=fixture_state.conversation.id
    )

    polled = await fixture_state.service.poll_messages(fixture_state.tenant_id, handoff.id)
    assert [message.body for message in polled] == ["first", "second", "third"]

    again = await fixture_state.service.poll_messages(
        fixture_state.tenant_id, handoff.id, since=polled[-1].created_at
    )
    assert again == []


@pytest.mark.asyncio
async def test_status_view_includes_operator_name(fixture_state: FixtureState) -> None:
    handoff = await _active_handoff(fixture_state)

    view = await fixture_state.service.get_status(fixture_state.tenant_id, handoff.id)

    assert view.handoff.status == HandoffStatus.ACTIVE
    assert view.operator_name == "Maya Chen"


@pytest.mark.asyncio
async def test_end_chat_resolves_active_handoff(fixture_state: FixtureState) -> None:
    handoff = await _active_handoff(fixture_state)

    ended = await fixture_state.service.end_chat(
        fixture_state.tenant_id, fixture_state.conversation.id, handoff.id
    )

    assert ended is not None
    assert ended.status == HandoffStatus.RESOLVED
    ledger = await fixture_state.messages.list_by_handoff(handoff.id)
    assert ledger[-1].body == CUSTOMER_ENDED_NOTICE
    assert RealtimeEvent.HANDOFF_RESOLVED in fixture_state.realtime.names()


@pytest.mark.asyncio
async def test_end_chat_leaves_pending_handoff_untouched(
    fixture_state: FixtureState,
) -> None:
    escalated = await _escalate(fixture_state)

    ended = await fixture_state.service.end_chat(
        fixture_state.tenant_id, fixture_state.conversation.id, escalated.handoff.id
    )

    assert ended is not None
    assert ended.status == HandoffStatus.PENDING
    assert await fixture_state.service.end_chat(
        fixture_state.tenant_id, fixture_state.conversation.id, None
    ) is None


@pytest.mark.asyncio
async def test_publish_failure_does_not_break_claim(fixture_state: FixtureState) -> None:
    class BrokenPublisher:
        async def publish(self, channels, event, payload) -> None:
            raise RuntimeError("socket gone")

    fixture_state.service.realtime = BrokenPublisher()

    handoff = await _active_handoff(fixture_state)

    assert handoff.status == HandoffStatus.ACTIVE


@pytest.mark.asyncio
async def test_list_for_operator_returns_only_assigned_handoffs(
    fixture_state: FixtureState,
) -> None:
    claimed = await _active_handoff(fixture_state)
    other_conversation = FakeConversation(id="conv-2", tenant_id=fixture_state.tenant_id)
    fixture_state.service.conversations.conversations[other_conversation.id] = other_conversation
    waiting = await fixture_state.service.escalate(
        tenant_id=fixture_state.tenant_id,
        conversation_id=other_conversation.id,
        recent_turns=[],
        last_customer_message="Hello?",
    )

    mine = await fixture_state.service.list_for_operator(
        fixture_state.tenant_id, fixture_state.primary_operator.id
    )
    everything = await fixture_state.service.list_handoffs(fixture_state.tenant_id)
    pending = await fixture_state.service.list_handoffs(
        fixture_state.tenant_id, status_filter=HandoffStatus.PENDING
    )

    assert [handoff.id for handoff in mine] == [claimed.id]
    assert {handoff.id for handoff in everything} == {claimed.id, waiting.handoff.id}
    assert [handoff.id for handoff in pending] == [waiting.handoff.id]

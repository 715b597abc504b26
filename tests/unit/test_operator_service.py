from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from support_handoff.core.security import decode_operator_access_token, hash_password
from support_handoff.domain.enums import OperatorPresence
from support_handoff.infra.realtime.events import RealtimeEvent
from support_handoff.services.errors import OperatorAuthenticationError, OperatorNotFoundError
from support_handoff.services.operator_auth_service import OperatorAuthService
from support_handoff.services.operator_service import OperatorService
from tests.unit.fakes import (
    DummySession,
    FakeOperator,
    FakeOperatorRepository,
    RecordingPublisher,
)


@pytest.fixture
def operators() -> FakeOperatorRepository:
    repository = FakeOperatorRepository()
    repository.add(
        FakeOperator(
            id=uuid4(),
            tenant_id=uuid4(),
            display_name="Maya Chen",
            username="maya.chen",
            password_hash=hash_password("operator-password"),
            presence=OperatorPresence.OFFLINE,
        )
    )
    return repository


def _only(operators: FakeOperatorRepository) -> FakeOperator:
    return next(iter(operators.operators.values()))


@pytest.mark.asyncio
async def test_set_presence_publishes_only_on_change(operators: FakeOperatorRepository) -> None:
    realtime = RecordingPublisher()
    service = OperatorService(session=DummySession(), operators=operators, realtime=realtime)
    operator = _only(operators)

    await service.set_presence(operator.id, OperatorPresence.AVAILABLE)
    await service.set_presence(operator.id, OperatorPresence.AVAILABLE)

    assert operator.presence == OperatorPresence.AVAILABLE
    assert operator.last_seen_at is not None
    assert realtime.names() == [RealtimeEvent.OPERATOR_PRESENCE_CHANGED]
    assert realtime.events[0].payload["operator"]["presence"] == "available"


@pytest.mark.asyncio
async def test_heartbeat_revives_offline_operator(operators: FakeOperatorRepository) -> None:
    realtime = RecordingPublisher()
    service = OperatorService(session=DummySession(), operators=operators, realtime=realtime)
    operator = _only(operators)

    await service.heartbeat(operator.id)
    first_seen = operator.last_seen_at
    await service.heartbeat(operator.id)

    assert operator.presence == OperatorPresence.AVAILABLE
    assert operator.last_seen_at >= first_seen
    assert realtime.names() == [RealtimeEvent.OPERATOR_PRESENCE_CHANGED]


@pytest.mark.asyncio
async def test_busy_operator_stays_busy_on_heartbeat(operators: FakeOperatorRepository) -> None:
    service = OperatorService(session=DummySession(), operators=operators)
    operator = _only(operators)
    operator.presence = OperatorPresence.BUSY

    await service.heartbeat(operator.id)

    assert operator.presence == OperatorPresence.BUSY


@pytest.mark.asyncio
async def test_sweep_marks_silent_operators_offline(operators: FakeOperatorRepository) -> None:
    realtime = RecordingPublisher()
    service = OperatorService(session=DummySession(), operators=operators, realtime=realtime)
    silent = _only(operators)
    silent.presence = OperatorPresence.AVAILABLE
    silent.last_seen_at = datetime.now(UTC) - timedelta(minutes=10)
    fresh = operators.add(
        FakeOperator(
            id=uuid4(),
            tenant_id=silent.tenant_id,
            display_name="Alex Rivera",
            last_seen_at=datetime.now(UTC),
        )
    )

    stale = await service.sweep_stale(offline_after_seconds=120)

    assert [operator.id for operator in stale] == [silent.id]
    assert silent.presence == OperatorPresence.OFFLINE
    assert fresh.presence == OperatorPresence.AVAILABLE
    assert realtime.names() == [RealtimeEvent.OPERATOR_PRESENCE_CHANGED]


@pytest.mark.asyncio
async def test_sweep_leaves_busy_and_never_seen_operators_alone(
    operators: FakeOperatorRepository,
) -> None:
    realtime = RecordingPublisher()
    service = OperatorService(session=DummySession(), operators=operators, realtime=realtime)
    busy = _only(operators)
    busy.presence = OperatorPresence.BUSY
    busy.last_seen_at = datetime.now(UTC) - timedelta(minutes=10)
    never_seen = operators.add(
        FakeOperator(
            id=uuid4(),
            tenant_id=busy.tenant_id,
            display_name="Alex Rivera",
            last_seen_at=None,
        )
    )

    stale = await service.sweep_stale(offline_after_seconds=120)

    assert stale == []
    assert busy.presence == OperatorPresence.BUSY
    assert never_seen.presence == OperatorPresence.AVAILABLE
    assert realtime.names() == []


@pytest.mark.asyncio
async def test_list_operators_filters_to_available_capacity(
    operators: FakeOperatorRepository,
) -> None:
    service = OperatorService(session=DummySession(), operators=operators)
    offline = _only(operators)
    tenant_id = offline.tenant_id
    loaded = operators.add(
        FakeOperator(id=uuid4(), tenant_id=tenant_id, display_name="Alex Rivera", active_chats=2)
    )
    idle = operators.add(
        FakeOperator(id=uuid4(), tenant_id=tenant_id, display_name="Sam Okafor", active_chats=0)
    )
    operators.add(
        FakeOperator(
            id=uuid4(),
            tenant_id=tenant_id,
            display_name="Priya Nair",
            active_chats=3,
            max_chats=3,
        )
    )
    operators.add(FakeOperator(id=uuid4(), tenant_id=uuid4(), display_name="Other Tenant"))

    everyone = await service.list_operators(tenant_id)
    available = await service.list_operators(tenant_id, available_only=True)

    assert len(everyone) == 4
    assert [operator.id for operator in available] == [idle.id, loaded.id]


@pytest.mark.asyncio
async def test_unknown_operator_raises(operators: FakeOperatorRepository) -> None:
    service = OperatorService(session=DummySession(), operators=operators)

    with pytest.raises(OperatorNotFoundError):
        await service.set_presence(uuid4(), OperatorPresence.AVAILABLE)


@pytest.mark.asyncio
async def test_login_issues_token_for_valid_credentials(
    operators: FakeOperatorRepository,
) -> None:
    service = OperatorAuthService(session=DummySession(), operators=operators)
    operator = _only(operators)

    result = await service.login(" Maya.Chen ", "operator-password")

    assert result.token_type == "bearer"
    assert result.operator is operator
    claims = decode_operator_access_token(
        result.access_token, service.settings.operator_auth_secret
    )
    assert claims.operator_id == operator.id
    assert claims.tenant_id == operator.tenant_id


@pytest.mark.asyncio
async def test_login_rejects_bad_password_and_inactive_accounts(
    operators: FakeOperatorRepository,
) -> None:
    service = OperatorAuthService(session=DummySession(), operators=operators)

    with pytest.raises(OperatorAuthenticationError):
        await service.login("maya.chen", "nope")
    with pytest.raises(OperatorAuthenticationError):
        await service.login("nobody", "operator-password")

    _only(operators).is_active = False
    with pytest.raises(OperatorAuthenticationError):
        await service.login("maya.chen", "operator-password")

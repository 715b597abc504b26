import pytest

from support_handoff.infra.realtime import InMemoryRealtimeHub
from support_handoff.infra.realtime.channels import handoff_channel, tenant_operators_channel
from support_handoff.infra.realtime.events import RealtimeEvent


class FakeWebSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(data)


@pytest.mark.asyncio
async def test_socket_on_several_channels_receives_event_once() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.connect(socket)
    tenant_channel = tenant_operators_channel("tenant-1")
    thread_channel = handoff_channel("handoff-1")
    await hub.subscribe(socket, tenant_channel)
    await hub.subscribe(socket, thread_channel)

    await hub.publish(
        [tenant_channel, thread_channel],
        RealtimeEvent.HANDOFF_CLAIMED,
        {"handoff": {"id": "handoff-1"}},
    )

    assert socket.accepted
    assert len(socket.sent) == 1
    envelope = socket.sent[0]
    assert envelope["event"] == "handoff.claimed"
    assert envelope["channel"] == tenant_channel
    assert envelope["payload"] == {"handoff": {"id": "handoff-1"}}
    assert "sent_at" in envelope


@pytest.mark.asyncio
async def test_failed_socket_is_dropped() -> None:
    hub = InMemoryRealtimeHub()
    healthy = FakeWebSocket()
    broken = FakeWebSocket(fail=True)
    channel = tenant_operators_channel("tenant-1")
    await hub.subscribe(healthy, channel)
    await hub.subscribe(broken, channel)

    await hub.publish([channel], RealtimeEvent.HANDOFF_REQUESTED, {"handoff": {}})

    assert len(healthy.sent) == 1
    assert hub.subscriber_count(channel) == 1


@pytest.mark.asyncio
async def test_disconnect_removes_all_subscriptions() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.subscribe(socket, "a")
    await hub.subscribe(socket, "b")

    await hub.disconnect(socket)
    await hub.publish(["a", "b"], RealtimeEvent.HANDOFF_RESOLVED, {})

    assert socket.sent == []
    assert hub.subscriber_count("a") == 0
    assert hub.subscriber_count("b") == 0


@pytest.mark.asyncio
async def test_unsubscribe_keeps_other_channels() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.subscribe(socket, "a")
    await hub.subscribe(socket, "b")

    await hub.unsubscribe(socket, "a")
    await hub.publish(["a"], RealtimeEvent.HANDOFF_MESSAGE_CREATED, {})
    await hub.publish(["b"], RealtimeEvent.HANDOFF_MESSAGE_CREATED, {})

    assert [envelope["channel"] for envelope in socket.sent] == ["b"]

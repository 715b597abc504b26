from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from support_handoff.infra.realtime.events import RealtimeEvent


class RealtimePublisher(Protocol):
    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None: ...


class NoopRealtimePublisher:
    """Used when no hub is attached, e.g. in scripts and unit tests."""

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        return None

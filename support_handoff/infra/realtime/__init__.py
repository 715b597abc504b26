"""Operator push channel: websocket fan-out of handoff events."""

from support_handoff.infra.realtime.hub import InMemoryRealtimeHub

__all__ = ["InMemoryRealtimeHub"]

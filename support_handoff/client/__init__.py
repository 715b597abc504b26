"""Customer widget client: session persistence and transcript synchronization."""

from support_handoff.client.agent import ClientSyncAgent, Renderer
from support_handoff.client.api import WidgetApiClient, WidgetApiError
from support_handoff.client.seen import DisplayedMessageIds
from support_handoff.client.session_store import (
    ClientSessionRecord,
    InMemorySessionStore,
    JsonFileSessionStore,
)

__all__ = [
    "ClientSessionRecord",
    "ClientSyncAgent",
    "DisplayedMessageIds",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "Renderer",
    "WidgetApiClient",
    "WidgetApiError",
]

from enum import Enum


class RealtimeEvent(str, Enum):
    HANDOFF_REQUESTED = "handoff.requested"
    HANDOFF_CLAIMED = "handoff.claimed"
    HANDOFF_RESOLVED = "handoff.resolved"
    HANDOFF_MESSAGE_CREATED = "handoff.message.created"
    OPERATOR_PRESENCE_CHANGED = "operator.presence.changed"

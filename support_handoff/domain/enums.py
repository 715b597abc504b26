from enum import Enum


class HandoffStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"


class ClientHandoffStatus(str, Enum):
    """Status as reported to the widget, where ``none`` means no handoff exists."""

    NONE = "none"
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"


class EscalationOutcome(str, Enum):
    PENDING = "pending"
    AFTER_HOURS = "after-hours"


class SenderOrigin(str, Enum):
    CUSTOMER = "customer"
    OPERATOR = "operator"
    SYSTEM = "system"


class TurnRole(str, Enum):
    CUSTOMER = "customer"
    AUTOMATED_AGENT = "automated-agent"


class TranscriptRole(str, Enum):
    CUSTOMER = "customer"
    AUTOMATED_AGENT = "automated-agent"
    OPERATOR = "operator"
    SYSTEM = "system"


class OperatorPresence(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class TransitionAction(str, Enum):
    ESCALATE = "escalate"
    CLAIM = "claim"
    RESOLVE = "resolve"

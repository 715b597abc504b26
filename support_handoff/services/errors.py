from uuid import UUID

from support_handoff.domain.enums import HandoffStatus


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class HandoffNotFoundError(LookupError):
    def __init__(self, handoff_id: UUID) -> None:
        super().__init__(f"Handoff '{handoff_id}' not found")
        self.handoff_id = handoff_id


class OperatorNotFoundError(LookupError):
    def __init__(self, operator_id: UUID) -> None:
        super().__init__(f"Operator '{operator_id}' not found")
        self.operator_id = operator_id


class HandoffAccessDeniedError(PermissionError):
    def __init__(self, handoff_id: UUID) -> None:
        super().__init__(f"Handoff '{handoff_id}' is not accessible by this actor")
        self.handoff_id = handoff_id


class HandoffNotAvailableError(ValueError):
    def __init__(self, handoff_id: UUID) -> None:
        super().__init__("Handoff is not available")
        self.handoff_id = handoff_id


class HandoffNotActiveError(ValueError):
    def __init__(self, handoff_id: UUID, status: HandoffStatus) -> None:
        super().__init__(
            f"Handoff '{handoff_id}' is '{status.value}'. Messages require an active handoff."
        )
        self.handoff_id = handoff_id
        self.status = status


class ConversationInHandoffError(ValueError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' is handled by an operator. "
            "Send messages through the handoff."
        )
        self.conversation_id = conversation_id


class OperatorAuthenticationError(PermissionError):
    def __init__(self, message: str = "Invalid username or password") -> None:
        super().__init__(message)


class WidgetCredentialError(PermissionError):
    def __init__(self, message: str = "Invalid or missing widget key") -> None:
        super().__init__(message)


class WidgetDomainError(PermissionError):
    def __init__(self, domain: str | None) -> None:
        super().__init__(f"Domain '{domain or 'unknown'}' is not allowed for this widget key")
        self.domain = domain

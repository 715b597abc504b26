from support_handoff.domain.enums import (
    ClientHandoffStatus,
    HandoffStatus,
    TransitionAction,
)
from support_handoff.domain.exceptions import InvalidHandoffTransition


class HandoffLifecycle:
    """State machine for a handoff: none -> pending -> active -> resolved."""

    _allowed_transitions: dict[tuple[HandoffStatus | None, TransitionAction], HandoffStatus] = {
        (None, TransitionAction.ESCALATE): HandoffStatus.PENDING,
        (HandoffStatus.PENDING, TransitionAction.CLAIM): HandoffStatus.ACTIVE,
        (HandoffStatus.ACTIVE, TransitionAction.RESOLVE): HandoffStatus.RESOLVED,
    }

    @classmethod
    def transition(
        cls, current: HandoffStatus | None, action: TransitionAction
    ) -> HandoffStatus:
        next_state = cls._allowed_transitions.get((current, action))
        if next_state is None:
            raise InvalidHandoffTransition(current=current, action=action)
        return next_state

    @classmethod
    def required_state(cls, action: TransitionAction) -> HandoffStatus | None:
        for (current, candidate), _ in cls._allowed_transitions.items():
            if candidate == action:
                return current
        raise InvalidHandoffTransition(current=None, action=action)

    @staticmethod
    def is_terminal(status: HandoffStatus) -> bool:
        return status == HandoffStatus.RESOLVED

    @staticmethod
    def accepts_messages(status: HandoffStatus) -> bool:
        return status == HandoffStatus.ACTIVE

    @staticmethod
    def client_status(status: HandoffStatus | None) -> ClientHandoffStatus:
        if status is None:
            return ClientHandoffStatus.NONE
        return ClientHandoffStatus(status.value)

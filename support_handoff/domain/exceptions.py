from support_handoff.domain.enums import HandoffStatus, TransitionAction


class InvalidHandoffTransition(ValueError):
    def __init__(self, current: HandoffStatus | None, action: TransitionAction) -> None:
        current_label = current.value if current is not None else "none"
        super().__init__(
            f"Handoff is not in expected state: cannot '{action.value}' "
            f"from '{current_label}'."
        )
        self.current = current
        self.action = action

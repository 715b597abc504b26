import pytest

from support_handoff.domain.enums import ClientHandoffStatus, HandoffStatus, TransitionAction
from support_handoff.domain.exceptions import InvalidHandoffTransition
from support_handoff.domain.state_machine import HandoffLifecycle


def test_escalate_creates_pending_handoff() -> None:
    next_state = HandoffLifecycle.transition(None, TransitionAction.ESCALATE)
    assert next_state == HandoffStatus.PENDING


def test_pending_to_active_on_claim() -> None:
    next_state = HandoffLifecycle.transition(HandoffStatus.PENDING, TransitionAction.CLAIM)
    assert next_state == HandoffStatus.ACTIVE


def test_active_to_resolved_on_resolve() -> None:
    next_state = HandoffLifecycle.transition(HandoffStatus.ACTIVE, TransitionAction.RESOLVE)
    assert next_state == HandoffStatus.RESOLVED


@pytest.mark.parametrize(
    ("current", "action"),
    [
        (HandoffStatus.PENDING, TransitionAction.RESOLVE),
        (HandoffStatus.ACTIVE, TransitionAction.CLAIM),
        (HandoffStatus.RESOLVED, TransitionAction.CLAIM),
        (HandoffStatus.RESOLVED, TransitionAction.RESOLVE),
        (HandoffStatus.PENDING, TransitionAction.ESCALATE),
        (None, TransitionAction.CLAIM),
    ],
)
def test_invalid_transition_raises(
    current: HandoffStatus | None, action: TransitionAction
) -> None:
    with pytest.raises(InvalidHandoffTransition) as exc_info:
        HandoffLifecycle.transition(current, action)

    assert "not in expected state" in str(exc_info.value)


def test_required_state_matches_guarded_updates() -> None:
    assert HandoffLifecycle.required_state(TransitionAction.ESCALATE) is None
    assert HandoffLifecycle.required_state(TransitionAction.CLAIM) == HandoffStatus.PENDING
    assert HandoffLifecycle.required_state(TransitionAction.RESOLVE) == HandoffStatus.ACTIVE


def test_only_resolved_is_terminal() -> None:
    assert HandoffLifecycle.is_terminal(HandoffStatus.RESOLVED)
    assert not HandoffLifecycle.is_terminal(HandoffStatus.PENDING)
    assert not HandoffLifecycle.is_terminal(HandoffStatus.ACTIVE)


def test_only_active_accepts_messages() -> None:
    assert HandoffLifecycle.accepts_messages(HandoffStatus.ACTIVE)
    assert not HandoffLifecycle.accepts_messages(HandoffStatus.PENDING)
    assert not HandoffLifecycle.accepts_messages(HandoffStatus.RESOLVED)


def test_client_status_reports_none_without_handoff() -> None:
    assert HandoffLifecycle.client_status(None) == ClientHandoffStatus.NONE
    assert HandoffLifecycle.client_status(HandoffStatus.ACTIVE) == ClientHandoffStatus.ACTIVE

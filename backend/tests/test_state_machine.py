import pytest

from promotion.errors import InvalidTransitionError
from promotion.state_machine import (
    STATE_PROGRESS,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    PromotionState,
    PromotionStateMachine,
    can_transition,
)

HAPPY_PATH = [
    PromotionState.VALIDATING,
    PromotionState.DEPLOYING,
    PromotionState.CREATING_EXTERNAL_PRODUCT,
    PromotionState.CREATING_EXTERNAL_PRICE,
    PromotionState.PERSISTING,
    PromotionState.COMPLETED,
]


def test_happy_path_reaches_completed():
    machine = PromotionStateMachine("p1")
    for state in HAPPY_PATH:
        machine.transition(state)

    assert machine.state == PromotionState.COMPLETED
    assert machine.is_terminal
    assert [t.to_state for t in machine.history] == HAPPY_PATH


def test_terminal_states_have_no_exits():
    assert TERMINAL_STATES == {PromotionState.REJECTED, PromotionState.COMPLETED, PromotionState.FAILED}
    for state in TERMINAL_STATES:
        assert VALID_TRANSITIONS[state] == set()


@pytest.mark.parametrize(
    "state",
    [
        PromotionState.DEPLOYING,
        PromotionState.CREATING_EXTERNAL_PRODUCT,
        PromotionState.CREATING_EXTERNAL_PRICE,
        PromotionState.PERSISTING,
    ],
)
def test_failed_reachable_from_every_post_record_state(state):
    assert can_transition(state, PromotionState.FAILED)


def test_rejected_only_before_deploying():
    assert can_transition(PromotionState.VALIDATING, PromotionState.REJECTED)
    assert not can_transition(PromotionState.DEPLOYING, PromotionState.REJECTED)
    assert not can_transition(PromotionState.VALIDATING, PromotionState.FAILED)


def test_skipping_a_step_is_refused():
    machine = PromotionStateMachine("p1")
    machine.transition(PromotionState.VALIDATING)
    machine.transition(PromotionState.DEPLOYING)

    with pytest.raises(InvalidTransitionError):
        machine.transition(PromotionState.CREATING_EXTERNAL_PRICE)
    assert machine.state == PromotionState.DEPLOYING


def test_no_transition_out_of_completed():
    machine = PromotionStateMachine("p1")
    for state in HAPPY_PATH:
        machine.transition(state)
    with pytest.raises(InvalidTransitionError):
        machine.transition(PromotionState.FAILED)


def test_progress_is_monotonic_along_happy_path():
    progress = [STATE_PROGRESS[state][0] for state in HAPPY_PATH if state in STATE_PROGRESS]
    assert progress == [20, 40, 60, 80, 100]

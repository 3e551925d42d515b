# ABOUTME: Turn-commit state machine: the single authoritative transition function for a turn.
# ABOUTME: Idle -> DiceShowing -> AwaitingService -> PendingConfirm -> Committed -> Idle, as a lookup table.

from enum import Enum

from storyteller.models.game_state import TurnState
from storyteller.orchestration.exceptions import InvalidTurnTransition


class TurnEvent(str, Enum):
    """Inputs that drive the turn state machine"""
    CHOICE_WITH_DICE = "choice_with_dice"
    CHOICE_WITHOUT_DICE = "choice_without_dice"
    ENDING_REQUESTED = "ending_requested"
    DICE_SHOWN = "dice_shown"
    SERVICE_RESPONDED_WITH_DICE = "service_responded_with_dice"
    SERVICE_RESPONDED = "service_responded"
    SERVICE_FAILED = "service_failed"
    CANCELLED = "cancelled"
    DICE_ACKNOWLEDGED = "dice_acknowledged"
    COMMIT_FINISHED = "commit_finished"


TRANSITIONS: dict[tuple[TurnState, TurnEvent], TurnState] = {
    (TurnState.IDLE, TurnEvent.CHOICE_WITH_DICE): TurnState.DICE_SHOWING,
    (TurnState.IDLE, TurnEvent.CHOICE_WITHOUT_DICE): TurnState.AWAITING_SERVICE,
    (TurnState.IDLE, TurnEvent.ENDING_REQUESTED): TurnState.AWAITING_SERVICE,
    (TurnState.DICE_SHOWING, TurnEvent.DICE_SHOWN): TurnState.AWAITING_SERVICE,
    (TurnState.DICE_SHOWING, TurnEvent.CANCELLED): TurnState.IDLE,
    (TurnState.AWAITING_SERVICE, TurnEvent.SERVICE_RESPONDED_WITH_DICE): TurnState.PENDING_CONFIRM,
    (TurnState.AWAITING_SERVICE, TurnEvent.SERVICE_RESPONDED): TurnState.COMMITTED,
    (TurnState.AWAITING_SERVICE, TurnEvent.SERVICE_FAILED): TurnState.IDLE,
    (TurnState.AWAITING_SERVICE, TurnEvent.CANCELLED): TurnState.IDLE,
    (TurnState.PENDING_CONFIRM, TurnEvent.DICE_ACKNOWLEDGED): TurnState.COMMITTED,
    (TurnState.COMMITTED, TurnEvent.COMMIT_FINISHED): TurnState.IDLE,
}


def next_turn_state(state: TurnState, event: TurnEvent) -> TurnState:
    """
    Resolve the state that follows an event.

    Examples:
        >>> next_turn_state(TurnState.IDLE, TurnEvent.CHOICE_WITH_DICE)
        <TurnState.DICE_SHOWING: 'dice_showing'>

    Args:
        state: Current turn state
        event: Event being applied

    Returns:
        Next turn state

    Raises:
        InvalidTurnTransition: If the event is not legal in this state
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTurnTransition(state.value, event.value) from None


def allowed_events(state: TurnState) -> list[TurnEvent]:
    """Events accepted in a state, in declaration order"""
    return [event for (source, event) in TRANSITIONS if source == state]

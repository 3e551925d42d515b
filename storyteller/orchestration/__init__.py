"""Session orchestration: turn state machine, results and the SessionOrchestrator"""

from storyteller.orchestration.exceptions import (
    InvalidTurnTransition,
    InvariantViolation,
    NoActiveSession,
)
from storyteller.orchestration.results import (
    FailureKind,
    SessionView,
    TurnFailure,
    TurnResult,
)
from storyteller.orchestration.session_orchestrator import (
    PendingTurn,
    SessionOrchestrator,
    decide_ending_type,
)
from storyteller.orchestration.turn_machine import TurnEvent, allowed_events, next_turn_state

__all__ = [
    "SessionOrchestrator",
    "PendingTurn",
    "decide_ending_type",
    "TurnEvent",
    "next_turn_state",
    "allowed_events",
    "TurnResult",
    "TurnFailure",
    "FailureKind",
    "SessionView",
    "InvalidTurnTransition",
    "InvariantViolation",
    "NoActiveSession",
]

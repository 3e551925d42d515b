# ABOUTME: Result types returned by every mutating SessionOrchestrator call.
# ABOUTME: TurnResult carries a SessionView on success or a typed TurnFailure; no exception crosses the public API.

from enum import Enum

from pydantic import BaseModel, Field

from storyteller.models.dice_models import DiceRoll
from storyteller.models.game_state import (
    Character,
    Ending,
    GameGoal,
    Genre,
    Phase,
    Round,
    TurnState,
)


class FailureKind(str, Enum):
    """Why a turn could not proceed"""
    SERVICE_UNAVAILABLE = "service_unavailable"
    TURN_IN_PROGRESS = "turn_in_progress"
    INVALID_CHOICE = "invalid_choice"
    SESSION_ENDED = "session_ended"
    NO_PENDING_ROUND = "no_pending_round"
    NOT_FOUND = "not_found"
    NO_SESSION = "no_session"


class TurnFailure(BaseModel):
    """Typed failure; retryable failures leave the session ready for the same call again"""

    kind: FailureKind
    message: str
    retryable: bool = False


class SessionView(BaseModel):
    """Read-only snapshot of what the presentation layer needs"""

    session_id: str
    genre: Genre
    character: Character
    round_number: int
    max_rounds: int
    phase: Phase
    turn_state: TurnState
    current_round: Round
    pending_round: Round | None = None
    current_dice_roll: DiceRoll | None = None
    goal: GameGoal | None = None
    ending: Ending | None = None


class TurnResult(BaseModel):
    """Outcome of a mutating orchestrator call"""

    success: bool
    view: SessionView | None = None
    failure: TurnFailure | None = None
    persisted: bool = Field(
        default=True,
        description="False when the last snapshot write failed; play continues regardless"
    )

    @property
    def awaiting_confirmation(self) -> bool:
        """A dice round is generated and waits for acknowledge_dice_result()"""
        return self.view is not None and self.view.turn_state == TurnState.PENDING_CONFIRM

    @classmethod
    def ok(cls, view: SessionView, persisted: bool = True) -> "TurnResult":
        return cls(success=True, view=view, persisted=persisted)

    @classmethod
    def fail(
        cls,
        kind: FailureKind,
        message: str,
        retryable: bool = False,
        view: SessionView | None = None
    ) -> "TurnResult":
        return cls(
            success=False,
            view=view,
            failure=TurnFailure(kind=kind, message=message, retryable=retryable),
        )

# ABOUTME: Pydantic models for the session snapshot: rounds, choices, goals, endings and phases.
# ABOUTME: Session is the aggregate root persisted as a full snapshot; Phase and TurnState are derived enums.

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from storyteller.models.dice_models import DiceRoll


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


class Genre(str, Enum):
    """Story genres with dedicated narrator prompts"""
    WUXIA = "wuxia"
    URBAN_MYSTERY = "urban-mystery"
    PEAKY_BLINDERS = "peaky-blinders"


class Phase(str, Enum):
    """Narrative stage of a round, derived from (round, max_rounds) and never stored"""
    OPENING = "opening"
    GOAL_SELECTION = "goal-selection"
    DEVELOPMENT = "development"
    CLIMAX = "climax"
    ENDING = "ending"


class TurnState(str, Enum):
    """Per-turn commit protocol states"""
    IDLE = "idle"
    DICE_SHOWING = "dice_showing"
    AWAITING_SERVICE = "awaiting_service"
    PENDING_CONFIRM = "pending_confirm"
    COMMITTED = "committed"


class EndingType(str, Enum):
    """How the story concluded"""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial-success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class Character(BaseModel):
    """Player character"""

    id: str = Field(default_factory=lambda: _new_id("char"))
    name: str = Field(min_length=1, max_length=50)
    description: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class SimpleChoice(BaseModel):
    """Plain-text choice with no mechanics attached"""

    kind: Literal["simple"] = "simple"
    text: str = Field(min_length=1)

    @property
    def difficulty(self) -> int | None:
        return None

    @property
    def is_goal(self) -> bool:
        return False


class StructuredChoice(BaseModel):
    """Choice carrying an optional check difficulty and goal marker"""

    kind: Literal["structured"] = "structured"
    text: str = Field(min_length=1)
    difficulty: int | None = Field(default=None, ge=1, le=12)
    is_goal: bool = False


Choice = Annotated[SimpleChoice | StructuredChoice, Field(discriminator="kind")]


class Goal(BaseModel):
    """Goal template offered on the goal-selection round"""

    id: str
    description: str = Field(min_length=1)
    requirements: list[str] = Field(
        default_factory=list,
        description="Advisory requirements, never enforced"
    )


class Progress(BaseModel):
    """Goal completion percentage with the reason for the last change"""

    percentage: int = Field(default=0, ge=0, le=100)
    reason: str | None = None


class GameGoal(BaseModel):
    """Goal selected for this session plus its mutable progress"""

    goal: Goal
    progress: Progress = Field(default_factory=Progress)
    selected_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def validate_completion(self):
        """completed_at is set exactly when progress reached 100"""
        completed = self.progress.percentage >= 100
        if completed != (self.completed_at is not None):
            raise ValueError(
                f"completed_at must be set iff percentage >= 100 "
                f"(percentage={self.progress.percentage}, completed_at={self.completed_at})"
            )
        return self

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class Ending(BaseModel):
    """Terminal outcome of a session"""

    type: EndingType
    title: str
    description: str = ""
    conditions: list[str] = Field(default_factory=list)


class Round(BaseModel):
    """One narrative beat plus the choice made in it"""

    id: str = Field(default_factory=lambda: _new_id("round"))
    content: str = Field(min_length=1)
    choices: list[Choice] = Field(default_factory=list)
    chosen: str | None = Field(
        default=None,
        description="Text of the choice actually taken, null until resolved"
    )
    dice_roll: DiceRoll | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    goal_options: list[Goal] | None = None

    @field_validator("choices")
    @classmethod
    def validate_single_representation(cls, v: list) -> list:
        """A round's choices are all simple or all structured"""
        kinds = {choice.kind for choice in v}
        if len(kinds) > 1:
            raise ValueError("choices must share one representation")
        return v

    @property
    def is_goal_selection(self) -> bool:
        return bool(self.goal_options)

    def find_choice(self, text: str) -> SimpleChoice | StructuredChoice | None:
        """Return the offered choice with this text, if any"""
        for choice in self.choices:
            if choice.text == text:
                return choice
        return None


class Session(BaseModel):
    """Aggregate root: one linear narrative thread"""

    id: str = Field(default_factory=lambda: _new_id("session"))
    genre: Genre
    character: Character
    rounds: list[Round] = Field(min_length=1)
    active_index: int = Field(default=0, ge=0)
    goal: GameGoal | None = None
    ending: Ending | None = None
    max_rounds: int = Field(ge=1)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def validate_invariants(self):
        """Active index, ending terminality and per-round choice shape"""
        if not 0 <= self.active_index < len(self.rounds):
            raise ValueError(
                f"active_index {self.active_index} out of range for {len(self.rounds)} rounds"
            )

        if self.ending is not None and self.active_index != len(self.rounds) - 1:
            raise ValueError("an ended session must point at its final round")

        last = len(self.rounds) - 1
        for idx, rnd in enumerate(self.rounds):
            is_ending_round = self.ending is not None and idx == last
            expects_empty = rnd.is_goal_selection or is_ending_round
            if expects_empty != (len(rnd.choices) == 0):
                raise ValueError(
                    f"round {idx + 1}: choices must be empty iff it is a "
                    f"goal-selection or ending round"
                )
        return self

    @property
    def round_number(self) -> int:
        """1-based number of the active round"""
        return self.active_index + 1

    @property
    def current_round(self) -> Round:
        return self.rounds[self.active_index]

    @property
    def is_ended(self) -> bool:
        return self.ending is not None

    def append_round(self, new_round: Round) -> None:
        """Append a committed round and advance the active index"""
        if self.ending is not None:
            raise ValueError("cannot append rounds to an ended session")
        self.rounds.append(new_round)
        self.active_index = len(self.rounds) - 1
        self.touch()

    def touch(self) -> None:
        self.updated_at = _utcnow()

# ABOUTME: Pydantic models for the narrative-service boundary: outgoing requests and validated responses.
# ABOUTME: NarrativeResponse is what the validator/repairer hands to the orchestrator, whatever the raw payload looked like.

from enum import Enum

from pydantic import BaseModel, Field

from storyteller.models.dice_models import DiceRoll
from storyteller.models.game_state import (
    Character,
    Choice,
    EndingType,
    GameGoal,
    Genre,
    Goal,
    Phase,
    Progress,
)


class HistoryEntry(BaseModel):
    """One committed round as the narrator sees it"""

    content: str
    chosen: str | None = None


class NarrativeRequest(BaseModel):
    """Everything the narrative service needs to write the next round"""

    genre: Genre
    character: Character
    history: list[HistoryEntry] = Field(default_factory=list)
    user_input: str = ""
    phase: Phase
    round_number: int = Field(ge=1, description="Round being generated (1-based)")
    max_rounds: int = Field(ge=1)
    dice_roll: DiceRoll | None = None
    goal: GameGoal | None = None
    is_opening: bool = False
    is_goal_selection: bool = False
    is_ending: bool = False


class EndingPayload(BaseModel):
    """Ending as proposed by the service; the type is advisory"""

    type: EndingType | None = None
    title: str = Field(min_length=1)
    description: str = ""
    conditions: list[str] = Field(default_factory=list)


class ParseStage(str, Enum):
    """Which validator stage produced the response"""
    STRICT = "strict"
    LENIENT = "lenient"
    HEURISTIC = "heuristic"
    FALLBACK = "fallback"


class NarrativeResponse(BaseModel):
    """Well-formed narrative payload for one round"""

    content: str = Field(min_length=1)
    choices: list[Choice] = Field(default_factory=list)
    goal_options: list[Goal] | None = None
    progress: Progress | None = None
    ending: EndingPayload | None = None
    stage: ParseStage = ParseStage.STRICT
    issues: list[str] = Field(
        default_factory=list,
        description="Quality problems found and repaired while parsing"
    )

    @property
    def is_degraded(self) -> bool:
        """Whether the payload had to be reconstructed from unstructured text"""
        return self.stage in (ParseStage.HEURISTIC, ParseStage.FALLBACK)

"""Data models for the narrative session orchestrator"""

from .dice_models import DiceOutcome, DiceRoll
from .exceptions import InvariantViolation
from .game_state import (
    Character,
    Choice,
    Ending,
    EndingType,
    GameGoal,
    Genre,
    Goal,
    Phase,
    Progress,
    Round,
    Session,
    SimpleChoice,
    StructuredChoice,
    TurnState,
)
from .narrative import (
    EndingPayload,
    HistoryEntry,
    NarrativeRequest,
    NarrativeResponse,
    ParseStage,
)

__all__ = [
    # Errors
    "InvariantViolation",
    # Dice models
    "DiceOutcome",
    "DiceRoll",
    # Session models
    "Genre",
    "Phase",
    "TurnState",
    "EndingType",
    "Character",
    "SimpleChoice",
    "StructuredChoice",
    "Choice",
    "Goal",
    "Progress",
    "GameGoal",
    "Ending",
    "Round",
    "Session",
    # Narrative boundary models
    "HistoryEntry",
    "NarrativeRequest",
    "EndingPayload",
    "ParseStage",
    "NarrativeResponse",
]

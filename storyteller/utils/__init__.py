"""Utility modules for the narrative session orchestrator"""

from .dice import (
    DEFAULT_DIFFICULTY,
    outcome_label,
    outcome_symbol,
    resolve_outcome,
    roll_check,
    roll_d6,
)
from .goal_progress import (
    ProgressResult,
    apply_climax_swing,
    score_progress,
    validate_progress,
)
from .phases import DEFAULT_PHASE_CONFIG, PhaseConfig, get_phase, requires_dice

__all__ = [
    "PhaseConfig",
    "DEFAULT_PHASE_CONFIG",
    "get_phase",
    "requires_dice",
    "DEFAULT_DIFFICULTY",
    "roll_d6",
    "resolve_outcome",
    "roll_check",
    "outcome_label",
    "outcome_symbol",
    "ProgressResult",
    "score_progress",
    "apply_climax_swing",
    "validate_progress",
]

# ABOUTME: Pure mapping from (round number, max rounds) to the narrative Phase.
# ABOUTME: PhaseConfig validates its thresholds on construction so bad configurations fail at startup.

from pydantic import BaseModel, Field, model_validator

from storyteller.models.game_state import Phase


class PhaseConfig(BaseModel):
    """Round thresholds that shape the story arc"""

    model_config = {"frozen": True}

    opening_rounds: int = Field(
        default=2,
        ge=0,
        description="Rounds 1..N are narrative-only prologue"
    )
    goal_selection_round: int = Field(
        default=3,
        ge=1,
        description="Round on which the player picks a goal"
    )
    climax_lookback: int = Field(
        default=2,
        ge=1,
        description="Size of the closing window (ending round included); the rest of it is climax"
    )

    @model_validator(mode="after")
    def validate_order(self):
        """Goal selection must come after the opening rounds"""
        if self.opening_rounds >= self.goal_selection_round:
            raise ValueError(
                f"opening_rounds ({self.opening_rounds}) must be less than "
                f"goal_selection_round ({self.goal_selection_round})"
            )
        return self

    def validate_max_rounds(self, max_rounds: int) -> int:
        """
        Check that a session length leaves room for an ending after goal selection.

        Raises:
            ValueError: If max_rounds does not exceed goal_selection_round
        """
        if max_rounds <= self.goal_selection_round:
            raise ValueError(
                f"max_rounds ({max_rounds}) must be greater than "
                f"goal_selection_round ({self.goal_selection_round})"
            )
        return max_rounds


DEFAULT_PHASE_CONFIG = PhaseConfig()


def get_phase(
    round_number: int,
    max_rounds: int,
    config: PhaseConfig = DEFAULT_PHASE_CONFIG
) -> Phase:
    """
    Map a round to its narrative phase.

    Rules are evaluated in order:
    1. round <= opening_rounds           -> OPENING
    2. round == goal_selection_round     -> GOAL_SELECTION
    3. round >= max_rounds               -> ENDING
    4. round >= max_rounds - lookback + 1 -> CLIMAX
    5. otherwise                         -> DEVELOPMENT

    Examples:
        >>> get_phase(1, 6)
        <Phase.OPENING: 'opening'>
        >>> get_phase(6, 6)
        <Phase.ENDING: 'ending'>

    Args:
        round_number: 1-based round number
        max_rounds: Session length
        config: Phase thresholds

    Returns:
        Phase for the round
    """
    if round_number <= config.opening_rounds:
        return Phase.OPENING
    if round_number == config.goal_selection_round:
        return Phase.GOAL_SELECTION
    if round_number >= max_rounds:
        return Phase.ENDING
    if round_number >= max_rounds - config.climax_lookback + 1:
        return Phase.CLIMAX
    return Phase.DEVELOPMENT


def requires_dice(phase: Phase) -> bool:
    """Choices made during development and climax are resolved with a check"""
    return phase in (Phase.DEVELOPMENT, Phase.CLIMAX)

# ABOUTME: Pydantic models for 2d6 skill checks in the narrative engine.
# ABOUTME: Includes DiceOutcome enum and the immutable DiceRoll record with face/total validation.

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DiceOutcome(str, Enum):
    """Categorical result of a skill check, worst to best"""
    CRITICAL_FAIL = "critical-fail"
    FAIL = "fail"
    SUCCESS = "success"
    PERFECT = "perfect"
    CRITICAL_SUCCESS = "critical-success"

    @property
    def is_success(self) -> bool:
        """Whether the outcome counts as meeting the difficulty"""
        return self in (
            DiceOutcome.SUCCESS,
            DiceOutcome.PERFECT,
            DiceOutcome.CRITICAL_SUCCESS,
        )


class DiceRoll(BaseModel):
    """Result of a 2d6 check against a target difficulty

    Immutable once created. `total` is the sum of the two faces; `bonus` is
    only non-zero when the optional bonus variant is used.
    """

    model_config = ConfigDict(frozen=True)

    die1: int = Field(ge=1, le=6, description="First d6 face")
    die2: int = Field(ge=1, le=6, description="Second d6 face")
    total: int = Field(ge=2, le=12, description="Sum of both faces")
    bonus: int = Field(default=0, ge=0, description="Optional flat bonus added for the ladder")
    difficulty: int = Field(ge=1, le=12, description="Target number to meet or exceed")
    outcome: DiceOutcome
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("timestamp")
    @classmethod
    def validate_timezone_aware(cls, v: datetime) -> datetime:
        """Ensure timestamp is timezone-aware"""
        if v.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")
        return v

    @model_validator(mode="after")
    def validate_total(self):
        """Total must match the two faces"""
        if self.total != self.die1 + self.die2:
            raise ValueError(
                f"total ({self.total}) must equal die1 + die2 ({self.die1 + self.die2})"
            )
        return self

    @property
    def final_result(self) -> int:
        """Total including any bonus"""
        return self.total + self.bonus

    @property
    def margin(self) -> int:
        """Signed difference between final result and difficulty"""
        return self.final_result - self.difficulty

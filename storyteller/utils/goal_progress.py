# ABOUTME: Goal progress scoring from check difficulty and dice outcome, plus validation of service-supplied progress.
# ABOUTME: score_progress is also the fallback whenever the narrative service's own progress figure is unusable.

import random
from dataclasses import dataclass
from typing import Any

from loguru import logger

from storyteller.models.dice_models import DiceOutcome
from storyteller.models.game_state import Progress

# Difficulty -> (min, max) base progress delta in percentage points
DIFFICULTY_BUCKETS: dict[int, tuple[int, int]] = {
    6: (5, 10),
    8: (10, 15),
    9: (12, 20),
    10: (15, 25),
    11: (20, 30),
    12: (25, 35),
}
FALLBACK_BUCKET = 8

BUCKET_NAMES: dict[int, str] = {
    6: "easy",
    8: "normal",
    9: "hard",
    10: "hard",
    11: "very hard",
    12: "very hard",
}

OUTCOME_MULTIPLIERS: dict[DiceOutcome, float] = {
    DiceOutcome.CRITICAL_SUCCESS: 1.5,
    DiceOutcome.PERFECT: 1.2,
    DiceOutcome.SUCCESS: 1.0,
    DiceOutcome.FAIL: 0.0,
}

# Flat setback for a critical fail; not a multiplier of the bucket
CRITICAL_FAIL_SETBACK = 10


@dataclass(frozen=True)
class ProgressResult:
    """New progress percentage plus the signed change and its justification"""
    percentage: int
    delta: int
    reason: str

    def to_progress(self) -> Progress:
        return Progress(percentage=self.percentage, reason=self.reason)


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def score_progress(
    difficulty: int | None,
    outcome: DiceOutcome | None,
    current_percentage: int,
    rng: random.Random | None = None
) -> ProgressResult:
    """
    Compute new goal progress after a check.

    A base delta is drawn uniformly from the difficulty's bucket (unknown
    difficulties use bucket 8) and multiplied by the outcome: critical
    success x1.5, perfect x1.2, success x1.0, fail x0. A critical fail is a
    flat -10 setback floored at 0. Rounds without a dice roll never move
    progress.

    Args:
        difficulty: Difficulty of the choice taken (None -> bucket 8)
        outcome: Dice outcome, or None for a no-dice round
        current_percentage: Progress before this round
        rng: Optional random source for reproducible draws

    Returns:
        ProgressResult with percentage always in [0, 100]
    """
    current = _clamp(current_percentage)
    bucket_key = difficulty if difficulty in DIFFICULTY_BUCKETS else FALLBACK_BUCKET
    low, high = DIFFICULTY_BUCKETS[bucket_key]
    bucket_name = BUCKET_NAMES[bucket_key]

    base_delta = (rng or random).uniform(low, high)

    if outcome is None:
        return ProgressResult(
            percentage=current,
            delta=0,
            reason="No check this round, progress unchanged",
        )

    if outcome == DiceOutcome.CRITICAL_FAIL:
        new_percentage = max(0, current - CRITICAL_FAIL_SETBACK)
        result = ProgressResult(
            percentage=new_percentage,
            delta=new_percentage - current,
            reason=f"Critical failure! Goal progress set back {CRITICAL_FAIL_SETBACK}%",
        )
    else:
        delta = round(base_delta * OUTCOME_MULTIPLIERS[outcome])
        new_percentage = min(100, current + max(0, delta))
        if delta > 0:
            reason = (
                f"{outcome.value.replace('-', ' ').capitalize()} on a {bucket_name} "
                f"check, progress +{delta}%"
            )
        else:
            reason = f"Failed the {bucket_name} check, progress unchanged"
        result = ProgressResult(
            percentage=new_percentage,
            delta=new_percentage - current,
            reason=reason,
        )

    logger.bind(
        difficulty=difficulty,
        bucket=bucket_key,
        base_delta=round(base_delta, 2),
        outcome=outcome.value,
        current=current,
        new=result.percentage,
    ).debug("Goal progress calculated")

    return result


def apply_climax_swing(
    result: ProgressResult,
    current_percentage: int,
    min_swing: int
) -> ProgressResult:
    """
    Enforce the minimum positive swing for a successful climax check.

    Args:
        result: Progress already computed for the round
        current_percentage: Progress before the round
        min_swing: Minimum percentage points a successful climax must add

    Returns:
        Original result, or one raised to current + min_swing (capped at 100)
    """
    floor = min(100, _clamp(current_percentage) + min_swing)
    if result.percentage >= floor:
        return result
    return ProgressResult(
        percentage=floor,
        delta=floor - _clamp(current_percentage),
        reason=f"{result.reason} (climax swing +{min_swing}%)",
    )


def validate_progress(value: Any) -> Progress | None:
    """
    Check a service-supplied progress object before trusting it.

    Accepts {"percentage": <number 0-100>, "reason": <str>?}. Booleans,
    numeric strings, negatives, values over 100 and non-finite numbers are
    rejected.

    Args:
        value: Raw decoded value from the service payload

    Returns:
        Normalized Progress, or None if the value is unusable
    """
    if not isinstance(value, dict):
        return None

    percentage = value.get("percentage")
    if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
        return None

    if percentage != percentage or not 0 <= percentage <= 100:
        return None

    reason = value.get("reason")
    if reason is not None and not isinstance(reason, str):
        reason = str(reason)

    return Progress(percentage=int(round(percentage)), reason=reason)

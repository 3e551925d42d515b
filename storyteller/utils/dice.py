# ABOUTME: 2d6 skill-check resolution against a target difficulty, producing immutable DiceRoll records.
# ABOUTME: resolve_outcome is pure; roll_check draws the faces (injectable RNG) and delegates to it.

import random
from datetime import UTC, datetime

from loguru import logger

from storyteller.models.dice_models import DiceOutcome, DiceRoll

# Difficulty used when a check is required but the choice carries none
DEFAULT_DIFFICULTY = 8

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 12

OUTCOME_LABELS: dict[DiceOutcome, str] = {
    DiceOutcome.CRITICAL_FAIL: "Critical Failure",
    DiceOutcome.FAIL: "Failure",
    DiceOutcome.SUCCESS: "Success",
    DiceOutcome.PERFECT: "Perfect Success",
    DiceOutcome.CRITICAL_SUCCESS: "Critical Success",
}

OUTCOME_SYMBOLS: dict[DiceOutcome, str] = {
    DiceOutcome.CRITICAL_FAIL: "💀",
    DiceOutcome.FAIL: "❌",
    DiceOutcome.SUCCESS: "✓",
    DiceOutcome.PERFECT: "⭐",
    DiceOutcome.CRITICAL_SUCCESS: "🌟",
}


def roll_d6(rng: random.Random | None = None) -> int:
    """
    Roll a single d6.

    Args:
        rng: Optional random source (defaults to the module-level generator)

    Returns:
        Integer between 1 and 6 (inclusive)
    """
    return (rng or random).randint(1, 6)


def resolve_outcome(
    die1: int,
    die2: int,
    difficulty: int,
    bonus: int = 0
) -> DiceOutcome:
    """
    Classify a 2d6 check. Pure function of its inputs.

    Rules, evaluated in this order:
    1. Double six -> critical success, regardless of difficulty
    2. Double one -> critical fail, regardless of difficulty
    3. Base total 2-5 that misses the difficulty -> critical fail
    4. Otherwise by margin (total + bonus - difficulty):
       >= 6 critical success, >= 4 perfect, >= 0 success,
       >= -5 fail, anything lower critical fail

    Rule 3 reads the base faces only, so a low roll that narrowly misses
    resolves to critical fail even though the ladder alone would say fail.

    Args:
        die1: First face (1-6)
        die2: Second face (1-6)
        difficulty: Target number (1-12)
        bonus: Optional flat bonus for the ladder (bonus variant; default 0)

    Returns:
        DiceOutcome for the check

    Raises:
        ValueError: If faces or difficulty are out of range
    """
    for face in (die1, die2):
        if not 1 <= face <= 6:
            raise ValueError(f"Die face must be 1-6, got {face}")

    if not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY:
        raise ValueError(
            f"Difficulty must be {MIN_DIFFICULTY}-{MAX_DIFFICULTY}, got {difficulty}"
        )

    if bonus < 0:
        raise ValueError(f"Bonus cannot be negative, got {bonus}")

    base_total = die1 + die2
    margin = base_total + bonus - difficulty

    if die1 == 6 and die2 == 6:
        return DiceOutcome.CRITICAL_SUCCESS

    if die1 == 1 and die2 == 1:
        return DiceOutcome.CRITICAL_FAIL

    # Bad base roll: evaluated before the ladder, after the doubles
    if base_total <= 5 and margin < 0:
        return DiceOutcome.CRITICAL_FAIL

    if margin >= 6:
        return DiceOutcome.CRITICAL_SUCCESS
    if margin >= 4:
        return DiceOutcome.PERFECT
    if margin >= 0:
        return DiceOutcome.SUCCESS
    if margin >= -5:
        return DiceOutcome.FAIL
    return DiceOutcome.CRITICAL_FAIL


def roll_check(
    difficulty: int = DEFAULT_DIFFICULTY,
    rng: random.Random | None = None,
    bonus: int = 0
) -> DiceRoll:
    """
    Roll 2d6 against a difficulty and return the resulting DiceRoll.

    Synchronous and never suspends.

    Examples:
        >>> roll = roll_check(8, rng=random.Random(7))
        >>> roll.total == roll.die1 + roll.die2
        True

    Args:
        difficulty: Target number (1-12)
        rng: Optional random source for reproducible rolls
        bonus: Optional flat bonus (bonus variant; default 0)

    Returns:
        Immutable DiceRoll

    Raises:
        ValueError: If difficulty is out of range
    """
    die1 = roll_d6(rng)
    die2 = roll_d6(rng)
    outcome = resolve_outcome(die1, die2, difficulty, bonus=bonus)

    roll = DiceRoll(
        die1=die1,
        die2=die2,
        total=die1 + die2,
        bonus=bonus,
        difficulty=difficulty,
        outcome=outcome,
        timestamp=datetime.now(UTC),
    )

    logger.bind(
        dice=f"{die1} + {die2}",
        total=roll.total,
        bonus=bonus,
        difficulty=difficulty,
        outcome=outcome.value,
    ).info("Dice check complete")

    return roll


def outcome_label(outcome: DiceOutcome) -> str:
    """Human-readable name of an outcome"""
    return OUTCOME_LABELS[outcome]


def outcome_symbol(outcome: DiceOutcome) -> str:
    """Single-glyph marker for an outcome"""
    return OUTCOME_SYMBOLS[outcome]

# ABOUTME: Staged validator/repairer for raw narrative service output.
# ABOUTME: strict JSON -> lenient cleanup -> heuristic line scan -> hard fallback; always returns a usable NarrativeResponse.

import json
import re
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from storyteller.models.exceptions import InvariantViolation
from storyteller.models.game_state import (
    EndingType,
    Goal,
    Phase,
    SimpleChoice,
    StructuredChoice,
)
from storyteller.models.narrative import EndingPayload, NarrativeResponse, ParseStage
from storyteller.narrative.exceptions import MalformedOutput
from storyteller.utils.goal_progress import validate_progress

HEURISTIC_CHOICE_COUNT = 3
CLIMAX_CHOICE_COUNT = 2

GENERIC_CHOICES = [
    "Press on carefully",
    "Look for another way forward",
    "Step back and take stock",
]

GENERIC_GOALS = [
    "Uncover the truth behind what happened",
    "Protect the people who are caught up in it",
    "Settle the score with whoever is responsible",
]

FALLBACK_CONTENT = (
    "The thread of the story slips for a moment, and the scene blurs. "
    "When it settles again you are where you were, with the same choices "
    "still ahead of you."
)

FALLBACK_ENDING_TITLE = "The Story Closes"

# Enumerated line: "1.", "2)", "3、", "4:", "-", "*", "•", "Choice:", "Option 2:"
CHOICE_LINE = re.compile(
    r"^\s*(?:\d+\s*[.)、:：]|[-*•]|(?:choice|option)\s*\d*\s*[:：.)])\s*(?P<text>.+?)\s*$",
    re.IGNORECASE,
)
THINK_BLOCK = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
JSON_TAG = re.compile(r"</?json>", re.IGNORECASE)
TRAILING_COMMA = re.compile(r",\s*([}\]])")
HAS_WORD = re.compile(r"\w")


class _RawPayload(BaseModel):
    """Loosely typed view of the service's JSON object"""

    model_config = ConfigDict(extra="ignore")

    content: str = Field(min_length=1)
    choices: list[Any] = Field(default_factory=list)
    goal_options: list[Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("goalOptions", "goal_options"),
    )
    progress: Any = Field(
        default=None,
        validation_alias=AliasChoices("goalProgress", "goal_progress", "progress"),
    )
    ending: Any = None

    @field_validator("choices", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        """A null choice list reads as empty"""
        return [] if v is None else v


class _SalvageableOutput(MalformedOutput):
    """Decoded to an object with usable content that failed the schema or phase check"""

    def __init__(self, message: str, response: NarrativeResponse):
        super().__init__(message)
        self.response = response


def _extract_object(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedOutput("no JSON object span found")
    return text[start:end + 1]


def _clean_wrappers(text: str) -> str:
    text = THINK_BLOCK.sub("", text)
    text = CODE_FENCE.sub("", text)
    text = JSON_TAG.sub("", text)
    return text.strip()


def _parse_difficulty(value: Any, issues: list[str]) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.append(f"dropped non-numeric difficulty {value!r}")
        return None
    if value != value or not 1 <= value <= 12:
        issues.append(f"dropped out-of-range difficulty {value!r}")
        return None
    return int(round(value))


def normalize_choices(
    raw_choices: list[Any],
    issues: list[str]
) -> list[SimpleChoice] | list[StructuredChoice]:
    """
    Coerce a mixed list of strings and objects into one representation.

    Any object element makes the whole list structured; otherwise every
    element becomes a SimpleChoice. Elements without usable text and
    duplicate texts are dropped.

    Args:
        raw_choices: Decoded "choices" array
        issues: Collector for repair notes

    Returns:
        List of SimpleChoice or list of StructuredChoice
    """
    entries: list[tuple[str, int | None, bool]] = []
    structured = False
    seen: set[str] = set()

    for item in raw_choices:
        if isinstance(item, str):
            text, difficulty, is_goal = item.strip(), None, False
        elif isinstance(item, dict):
            structured = True
            raw_text = item.get("text")
            text = raw_text.strip() if isinstance(raw_text, str) else ""
            difficulty = _parse_difficulty(item.get("difficulty"), issues)
            is_goal = item.get("isGoal", item.get("is_goal")) is True
        else:
            issues.append(f"dropped choice of type {type(item).__name__}")
            continue

        if not text:
            issues.append("dropped choice without text")
            continue
        if text in seen:
            issues.append(f"dropped duplicate choice {text!r}")
            continue
        seen.add(text)
        entries.append((text, difficulty, is_goal))

    if structured:
        return [
            StructuredChoice(text=text, difficulty=difficulty, is_goal=is_goal)
            for text, difficulty, is_goal in entries
        ]
    return [SimpleChoice(text=text) for text, _, _ in entries]


def _normalize_goal_options(raw_options: list[Any] | None, issues: list[str]) -> list[Goal] | None:
    if raw_options is None:
        return None

    goals: list[Goal] = []
    for idx, item in enumerate(raw_options, start=1):
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            issues.append(f"dropped goal option of type {type(item).__name__}")
            continue

        description = item.get("description")
        if not isinstance(description, str) or not description.strip():
            issues.append(f"dropped goal option {idx} without description")
            continue

        goal_id = item.get("id")
        if not isinstance(goal_id, str) or not goal_id.strip():
            goal_id = f"goal-{idx}"

        requirements = item.get("requirements") or []
        if not isinstance(requirements, list):
            requirements = []

        goals.append(Goal(
            id=goal_id,
            description=description.strip(),
            requirements=[str(req) for req in requirements],
        ))
    return goals


def _normalize_ending(raw_ending: Any, issues: list[str]) -> EndingPayload | None:
    if raw_ending is None:
        return None
    if not isinstance(raw_ending, dict):
        issues.append("dropped ending that is not an object")
        return None

    title = raw_ending.get("title")
    if not isinstance(title, str) or not title.strip():
        issues.append("dropped ending without title")
        return None

    ending_type = None
    raw_type = raw_ending.get("type")
    if raw_type is not None:
        try:
            ending_type = EndingType(raw_type)
        except ValueError:
            issues.append(f"ignored unknown ending type {raw_type!r}")

    description = raw_ending.get("description")
    conditions = raw_ending.get("conditions") or []
    return EndingPayload(
        type=ending_type,
        title=title.strip(),
        description=description if isinstance(description, str) else "",
        conditions=[str(c) for c in conditions] if isinstance(conditions, list) else [],
    )


def _phase_problem(response: NarrativeResponse, phase: Phase) -> str | None:
    if phase == Phase.OPENING:
        if not response.choices:
            return "opening round has no choices"
        if any(choice.difficulty is not None for choice in response.choices):
            return "opening choices must not carry a difficulty"
    elif phase == Phase.GOAL_SELECTION:
        if response.choices:
            return "goal-selection round must have no choices"
        if not response.goal_options:
            return "goal-selection round has no goal options"
    elif phase in (Phase.DEVELOPMENT, Phase.CLIMAX):
        if not response.choices:
            return f"{phase.value} round has no choices"
    elif phase == Phase.ENDING:
        if response.ending is None:
            return "ending round has no ending object"
    return None


def _partial_response(decoded: dict[str, Any], stage: ParseStage) -> NarrativeResponse | None:
    """Keep whatever fields of a schema-invalid object are still usable"""
    content = decoded.get("content")
    if not isinstance(content, str) or not content.strip():
        return None

    issues: list[str] = []
    raw_choices = decoded.get("choices")
    raw_goals = decoded.get("goalOptions", decoded.get("goal_options"))
    return NarrativeResponse(
        content=content.strip(),
        choices=normalize_choices(raw_choices if isinstance(raw_choices, list) else [], issues),
        goal_options=_normalize_goal_options(raw_goals if isinstance(raw_goals, list) else None, issues),
        ending=_normalize_ending(decoded.get("ending"), issues),
        stage=stage,
        issues=issues,
    )


def _parse_strict(text: str, phase: Phase, stage: ParseStage) -> NarrativeResponse:
    """Decode the outermost JSON object and validate it against the phase"""
    span = _extract_object(text)
    try:
        decoded = json.loads(span)
    except json.JSONDecodeError as e:
        raise MalformedOutput(f"invalid JSON: {e}") from e

    if not isinstance(decoded, dict):
        raise MalformedOutput("top-level JSON value is not an object")

    try:
        payload = _RawPayload.model_validate(decoded)
    except ValidationError as e:
        problem = f"payload schema mismatch: {e.error_count()} errors"
        partial = _partial_response(decoded, stage)
        if partial is not None:
            raise _SalvageableOutput(problem, partial) from e
        raise MalformedOutput(problem) from e

    issues: list[str] = []
    progress = None
    if payload.progress is not None:
        progress = validate_progress(payload.progress)
        if progress is None:
            issues.append(f"invalid_progress: {payload.progress!r}")

    response = NarrativeResponse(
        content=payload.content.strip() or payload.content,
        choices=normalize_choices(payload.choices, issues),
        goal_options=_normalize_goal_options(payload.goal_options, issues),
        progress=progress,
        ending=_normalize_ending(payload.ending, issues),
        stage=stage,
        issues=issues,
    )

    problem = _phase_problem(response, phase)
    if problem is not None:
        raise _SalvageableOutput(problem, response)

    if phase == Phase.CLIMAX and len(response.choices) > CLIMAX_CHOICE_COUNT:
        response.issues.append(f"trimmed climax choices from {len(response.choices)} to {CLIMAX_CHOICE_COUNT}")
        response.choices = response.choices[:CLIMAX_CHOICE_COUNT]
    return response


def _pad_choices(texts: list[str], count: int) -> list[str]:
    padded = list(texts[:count])
    for generic in GENERIC_CHOICES:
        if len(padded) >= count:
            break
        if generic not in padded:
            padded.append(generic)
    return padded


def _shape_for_phase(
    content: str,
    candidates: list[str],
    phase: Phase,
    stage: ParseStage,
    issues: list[str],
    goal_options: list[Goal] | None = None,
    ending: EndingPayload | None = None,
    progress=None
) -> NarrativeResponse:
    """Build a phase-appropriate response from salvaged text"""
    if phase == Phase.GOAL_SELECTION:
        if not goal_options:
            descriptions = candidates or GENERIC_GOALS
            goal_options = [
                Goal(id=f"goal-{idx}", description=text)
                for idx, text in enumerate(descriptions[:HEURISTIC_CHOICE_COUNT], start=1)
            ]
        return NarrativeResponse(
            content=content,
            choices=[],
            goal_options=goal_options,
            stage=stage,
            issues=issues,
        )

    if phase == Phase.ENDING:
        if ending is None:
            first_line = content.splitlines()[0] if content else ""
            ending = EndingPayload(title=FALLBACK_ENDING_TITLE, description=first_line[:200])
        return NarrativeResponse(
            content=content,
            choices=[],
            ending=ending,
            progress=progress,
            stage=stage,
            issues=issues,
        )

    count = CLIMAX_CHOICE_COUNT if phase == Phase.CLIMAX else HEURISTIC_CHOICE_COUNT
    return NarrativeResponse(
        content=content,
        choices=[SimpleChoice(text=text) for text in _pad_choices(candidates, count)],
        progress=progress,
        stage=stage,
        issues=issues,
    )


def _salvage(decoded: NarrativeResponse, phase: Phase, issues: list[str]) -> NarrativeResponse:
    """Reuse the usable fields of a decoded object that failed validation"""
    return _shape_for_phase(
        content=decoded.content,
        candidates=[choice.text for choice in decoded.choices],
        phase=phase,
        stage=ParseStage.HEURISTIC,
        issues=issues,
        goal_options=decoded.goal_options,
        ending=decoded.ending,
        progress=decoded.progress,
    )


def _parse_heuristic(text: str, phase: Phase, issues: list[str]) -> NarrativeResponse:
    """Scan lines: enumerated ones become choices, earlier prose becomes content"""
    prose_before: list[str] = []
    prose_all: list[str] = []
    candidates: list[str] = []

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = CHOICE_LINE.match(stripped)
        if match and HAS_WORD.search(match.group("text")):
            candidate = match.group("text").strip().strip('"')
            if candidate and candidate not in candidates:
                candidates.append(candidate)
            continue
        if not HAS_WORD.search(stripped):
            continue
        prose_all.append(stripped)
        if not candidates:
            prose_before.append(stripped)

    if not prose_all and not candidates:
        raise MalformedOutput("no prose or enumerated lines found")

    content = "\n".join(prose_before or prose_all) or FALLBACK_CONTENT
    return _shape_for_phase(
        content=content,
        candidates=candidates[:HEURISTIC_CHOICE_COUNT],
        phase=phase,
        stage=ParseStage.HEURISTIC,
        issues=issues,
    )


def build_fallback(phase: Phase, issues: list[str] | None = None) -> NarrativeResponse:
    """
    Hard fallback: fixed content and generic choices, shaped for the phase.

    Raises:
        InvariantViolation: If the fixed payload itself fails validation
    """
    try:
        return _shape_for_phase(
            content=FALLBACK_CONTENT,
            candidates=[],
            phase=phase,
            stage=ParseStage.FALLBACK,
            issues=list(issues or []),
        )
    except ValidationError as e:
        raise InvariantViolation(f"hard fallback payload is invalid: {e}") from e


def parse_narrative_response(raw: str | None, phase: Phase) -> NarrativeResponse:
    """
    Turn raw service output into a well-formed NarrativeResponse.

    Stages, first success wins:
    1. strict: outermost {...} span, JSON decode, schema and phase check
    2. lenient: strip code fences, json tags, <think> blocks and trailing
       commas, then strict again
    3. heuristic: enumerated lines become up to 3 choices, prose becomes
       content; a decoded object with usable content that failed the
       schema or phase check is salvaged here instead
    4. fallback: fixed apology content and generic choices

    MalformedOutput never escapes this function.

    Args:
        raw: Raw text returned by the narrative service
        phase: Phase of the round being generated

    Returns:
        NarrativeResponse tagged with the stage that produced it
    """
    text = raw or ""
    issues: list[str] = []
    salvageable: NarrativeResponse | None = None

    try:
        return _parse_strict(text, phase, ParseStage.STRICT)
    except _SalvageableOutput as e:
        salvageable = e.response
        issues.append(f"strict: {e}")
    except MalformedOutput as e:
        issues.append(f"strict: {e}")

    cleaned = _clean_wrappers(text)
    cleaned_json = TRAILING_COMMA.sub(r"\1", cleaned)
    try:
        response = _parse_strict(cleaned_json, phase, ParseStage.LENIENT)
        response.issues = issues + response.issues
        return response
    except _SalvageableOutput as e:
        salvageable = salvageable or e.response
        issues.append(f"lenient: {e}")
    except MalformedOutput as e:
        issues.append(f"lenient: {e}")

    if salvageable is not None:
        logger.bind(phase=phase.value).debug("Salvaging decoded payload that failed phase check")
        return _salvage(salvageable, phase, issues + salvageable.issues)

    try:
        return _parse_heuristic(cleaned, phase, issues)
    except MalformedOutput as e:
        issues.append(f"heuristic: {e}")

    logger.bind(phase=phase.value, raw_length=len(text)).warning(
        "Narrative output unusable, using hard fallback"
    )
    return build_fallback(phase, issues)

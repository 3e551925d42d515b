# ABOUTME: Prompt templates for the narrator across genres and story phases.
# ABOUTME: build_prompt turns a NarrativeRequest into (system, user) messages with the phase's JSON output format.

from storyteller.models.game_state import GameGoal, Genre, Phase
from storyteller.models.narrative import HistoryEntry, NarrativeRequest
from storyteller.utils.dice import outcome_label

STORY_WORD_COUNT = "200-300"
ENDING_WORD_COUNT = "300-500"

GENRE_SYSTEM_PROMPTS: dict[Genre, str] = {
    Genre.WUXIA: """
You are a storyteller steeped in wuxia fiction, writing sweeping tales of the
jianghu: sect rivalries, debts of honour, and quiet moments of character.
- Write {words} words per round
- Keep scenes vivid and immersive
- Stay consistent with the martial-world setting
""",
    Genre.URBAN_MYSTERY: """
You are an author of modern urban mysteries with a supernatural edge.
- Contemporary city settings touched by the uncanny
- Atmosphere and psychology over gore
- Plant clues, keep the bigger secrets for later
- Write {words} words per round
""",
    Genre.PEAKY_BLINDERS: """
You write gritty 1920s Birmingham gangland drama.
- Smoke, steel, razor gangs and shifting loyalties
- Terse dialogue, heavy consequences
- Write {words} words per round
""",
}

GENRE_OPENING_HOOKS: dict[Genre, str] = {
    Genre.WUXIA: "an inn, a mountain road or a river crossing where trouble is brewing",
    Genre.URBAN_MYSTERY: "an apartment block, office or late-night subway station where something is off",
    Genre.PEAKY_BLINDERS: "a smoky pub, a betting shop or the canal docks where a deal is going wrong",
}

PROLOGUE_OUTPUT_FORMAT = f"""
Reply with this JSON object only, no other text:
{{
  "content": "{STORY_WORD_COUNT} words of story",
  "choices": [
    {{"text": "first option"}},
    {{"text": "second option"}},
    {{"text": "third option"}}
  ]
}}

PROLOGUE RULES:
- Choices are narrative exploration and need NO dice check
- NEVER include a "difficulty" field in any choice
"""

OUTPUT_FORMAT = f"""
Reply with this JSON object only, no other text:
{{
  "content": "{STORY_WORD_COUNT} words of story",
  "choices": [
    {{"text": "first option", "difficulty": 8}},
    {{"text": "second option", "difficulty": 6}},
    {{"text": "third option", "difficulty": 10}}
  ]
}}

CHOICE RULES:
- difficulty: 6 (easy), 8 (normal), 10 (hard), 11-12 (very hard)
- Every choice is resolved with a 2d6 check
"""

OUTPUT_FORMAT_WITH_GOAL = f"""
Reply with this JSON object only, no other text:
{{
  "content": "{STORY_WORD_COUNT} words of story",
  "choices": [
    {{"text": "first option", "difficulty": 8}},
    {{"text": "second option", "difficulty": 6}},
    {{"text": "third option", "difficulty": 10}}
  ],
  "goalProgress": {{"percentage": 30, "reason": "why progress changed"}}
}}

PROGRESS RULES (follow strictly):
Gain on success by difficulty: easy(6) +5-10%, normal(8) +10-15%,
hard(10) +15-25%, very hard(11-12) +20-35%.
Outcome modifiers: critical success x1.5, perfect x1.2, success x1,
fail no change, critical fail -10%.
Progress may reach 100% in any round; at 100% the goal is complete.
"""

GOAL_SELECTION_OUTPUT_FORMAT = f"""
This is the GOAL SELECTION round. Reply with this JSON object only:
{{
  "content": "{STORY_WORD_COUNT} words that draw the prologue together and point toward possible goals",
  "choices": [],
  "goalOptions": [
    {{"id": "goal-1", "description": "a story goal, e.g. uncover the truth"}},
    {{"id": "goal-2", "description": "a second goal"}}
  ]
}}

RULES:
1. "choices" MUST be an empty array
2. Provide 2-3 goalOptions, each a clear story objective
"""

ENDING_OUTPUT_FORMAT = f"""
Reply with this JSON object only, no other text:
{{
  "content": "{ENDING_WORD_COUNT} words concluding the story",
  "choices": [],
  "ending": {{
    "type": "success",
    "title": "ending title",
    "description": "one-line summary of the ending",
    "conditions": ["what led to this ending"]
  }}
}}

The ending MUST match goal progress:
- below 30%: outright failure, no hint of success
- 30-69%: failure with something learned, focus on the cost
- 70-99%: nearly succeeded, bittersweet
- 100%: the goal is fully achieved
"""


def _phase_guidance(phase: Phase, round_number: int, max_rounds: int, goal_round: int) -> str:
    remaining = max_rounds - round_number
    adventure_rounds = max_rounds - goal_round
    adventure_round = round_number - goal_round

    if phase == Phase.OPENING:
        if round_number == 1:
            return (
                "[PROLOGUE - OPENING]\n"
                "- Establish the world, the scene and the protagonist's situation\n"
                "- Plant hooks without rushing the main plot"
            )
        return (
            "[PROLOGUE - BUILD-UP]\n"
            "- Widen the setting, introduce key figures or factions\n"
            "- Seed the tensions that the goal choice will resolve"
        )
    if phase == Phase.GOAL_SELECTION:
        return (
            f"[PROLOGUE - DECISION] Round {round_number}/{max_rounds}\n"
            "- Summarise the prologue and present goal options only"
        )
    if phase == Phase.DEVELOPMENT:
        return (
            f"[ADVENTURE] Round {adventure_round}/{adventure_rounds}, {remaining} left\n"
            "- Drive the plot toward the goal\n"
            "- Update goal progress from the player's action and the dice"
        )
    if phase == Phase.CLIMAX:
        return (
            f"[CLIMAX] Round {adventure_round}/{adventure_rounds}, {remaining} left before the end\n"
            "1. Start closing the story, no new characters or subplots\n"
            "2. Offer exactly 2 decisive choices\n"
            "3. Goal progress must move clearly (+20% or more)"
        )
    return "[ENDING]\n- Conclude the story"


def _history_text(history: list[HistoryEntry], window: int) -> str:
    recent = history[-window:]
    offset = len(history) - len(recent)
    return "\n\n".join(
        f"[Part {offset + idx + 1}]\n{entry.content}\nPlayer chose: {entry.chosen or 'nothing'}"
        for idx, entry in enumerate(recent)
    )


def _goal_text(goal: GameGoal | None) -> str:
    if goal is None:
        return ""
    return (
        "\n[CURRENT GOAL]\n"
        f"Goal: {goal.goal.description}\n"
        f"Progress: {goal.progress.percentage}%"
    )


def _ending_goal_status(goal: GameGoal | None) -> str:
    if goal is None:
        return "\n[GOAL STATUS]\nNo goal was chosen; the story ran out of time."

    percentage = goal.progress.percentage
    if goal.is_completed:
        status = "achieved"
    elif percentage >= 70:
        status = "partially achieved"
    else:
        status = "not achieved"

    text = (
        "\n[GOAL STATUS - CRITICAL]\n"
        f"Goal: {goal.goal.description}\n"
        f"Progress: {percentage}%\n"
        f"Status: {status}"
    )
    if percentage < 70:
        text += f"\nWARNING: progress is only {percentage}%, this MUST be a failure ending."
    return text


def build_prompt(
    request: NarrativeRequest,
    history_window: int = 3,
    goal_selection_round: int = 3
) -> tuple[str, str]:
    """
    Build (system, user) prompts for a narrative request.

    The output format is chosen by phase: prologue rounds forbid difficulty,
    goal selection asks for goal options, development/climax ask for
    difficulties (plus goal progress once a goal exists), ending asks for an
    ending object matched to goal progress.

    Args:
        request: Narrative request for the round being generated
        history_window: Number of recent rounds to include
        goal_selection_round: Round number of goal selection (for adventure numbering)

    Returns:
        Tuple of (system_prompt, user_prompt)
    """
    system = GENRE_SYSTEM_PROMPTS[request.genre].format(words=STORY_WORD_COUNT).strip()
    character = (
        f"Character:\n- Name: {request.character.name}"
        + (f"\n- About: {request.character.description}" if request.character.description else "")
    )

    if request.is_ending or request.phase == Phase.ENDING:
        history = _history_text(request.history, max(history_window, 5))
        user = (
            f"{character}\n\nThe story so far:\n{history}"
            f"{_ending_goal_status(request.goal)}\n\n"
            "Write the ending:\n"
            "1. Tie together the arc of the story\n"
            "2. Reflect the player's choices\n"
            "3. The ending MUST agree with the goal progress\n"
            f"{ENDING_OUTPUT_FORMAT}"
        )
        return system, user

    if request.is_opening:
        user = (
            f"{character}\n\n"
            f"{_phase_guidance(Phase.OPENING, 1, request.max_rounds, goal_selection_round)}\n\n"
            f"Open the story in {GENRE_OPENING_HOOKS[request.genre]}.\n"
            "Then give 3 exploratory choices for the player's first decision.\n"
            f"{PROLOGUE_OUTPUT_FORMAT}"
        )
        return system, user

    guidance = _phase_guidance(
        request.phase, request.round_number, request.max_rounds, goal_selection_round
    )
    history = _history_text(request.history, history_window)

    dice_text = ""
    if request.dice_roll is not None:
        roll = request.dice_roll
        dice_text = (
            f"\nDice check: {roll.die1} + {roll.die2} = {roll.total} "
            f"vs difficulty {roll.difficulty} -> {outcome_label(roll.outcome)}. "
            "Narrate the consequences of this outcome."
        )

    if request.is_goal_selection or request.phase == Phase.GOAL_SELECTION:
        output_format = GOAL_SELECTION_OUTPUT_FORMAT
        closing = "Bring the prologue to a point where the player must choose what to pursue."
    elif request.phase == Phase.OPENING:
        output_format = PROLOGUE_OUTPUT_FORMAT
        closing = "Continue the story, then give 3 new choices."
    else:
        output_format = OUTPUT_FORMAT_WITH_GOAL if request.goal else OUTPUT_FORMAT
        count = 2 if request.phase == Phase.CLIMAX else 3
        closing = f"Continue the story, then give {count} new choices."

    user = (
        f"{character}\n\n{guidance}\n\n"
        f"The story so far:\n{history}\n\n"
        f"Player's latest choice: {request.user_input}"
        f"{dice_text}{_goal_text(request.goal)}\n\n"
        f"{closing}\n"
        f"{output_format}"
    )
    return system, user

# ABOUTME: Offline narrative client returning well-formed, phase-appropriate JSON payloads.
# ABOUTME: Used when no API key is configured and as a deterministic narrator in tests and demos.

import json

from storyteller.models.game_state import Genre, Phase
from storyteller.models.narrative import NarrativeRequest
from storyteller.narrative.llm_client import NarrativeClient

SCENES: dict[Genre, list[str]] = {
    Genre.WUXIA: [
        "Rain drums on the roof tiles of a roadside inn. A scarred swordsman watches the door.",
        "A sect messenger arrives breathless, a sealed letter pressed to his chest.",
        "Moonlight spills across the bamboo grove as blades whisper in the dark.",
    ],
    Genre.URBAN_MYSTERY: [
        "The elevator stops on a floor that does not exist. The doors slide open onto silence.",
        "A voicemail from a number that was disconnected ten years ago is waiting for you.",
        "Under the flicker of the station lights, the same stranger boards every train.",
    ],
    Genre.PEAKY_BLINDERS: [
        "Smoke hangs low in the Garrison as a stranger lays a bloodied betting slip on the bar.",
        "Down by the canal a barge rides too low in the water for what it claims to carry.",
        "A copper with a London accent is asking questions in Small Heath.",
    ],
}

PROLOGUE_CHOICES = [
    "Watch quietly and learn more",
    "Approach and start a conversation",
    "Slip away to follow a hunch",
]

ACTION_CHOICES = [
    ("Take the careful route", 6),
    ("Act decisively", 8),
    ("Gamble everything on a bold move", 10),
]

GOAL_OPTIONS = [
    {"id": "goal-1", "description": "Uncover who is behind the trouble"},
    {"id": "goal-2", "description": "Protect the people caught in the middle"},
    {"id": "goal-3", "description": "Turn the situation to your own advantage"},
]


class MockNarrativeClient(NarrativeClient):
    """Deterministic narrator that always honours the output contract"""

    def __init__(self):
        self.requests: list[NarrativeRequest] = []

    async def generate(self, request: NarrativeRequest) -> str:
        self.requests.append(request)
        scene = SCENES[request.genre][(request.round_number - 1) % len(SCENES[request.genre])]
        name = request.character.name

        if request.is_ending or request.phase == Phase.ENDING:
            percentage = request.goal.progress.percentage if request.goal else 0
            return json.dumps({
                "content": f"{scene} {name}'s story draws to a close at {percentage}% of the goal.",
                "choices": [],
                "ending": {
                    "title": "Where the Road Ends",
                    "description": f"{name} reaches the end of the road.",
                    "conditions": [f"goal progress {percentage}%"],
                },
            })

        if request.is_goal_selection or request.phase == Phase.GOAL_SELECTION:
            return json.dumps({
                "content": f"{scene} {name} realises it is time to decide what matters most.",
                "choices": [],
                "goalOptions": GOAL_OPTIONS,
            })

        if request.phase == Phase.OPENING:
            return json.dumps({
                "content": f"{scene} {name} takes in the scene.",
                "choices": [{"text": text} for text in PROLOGUE_CHOICES],
            })

        choices = ACTION_CHOICES[:2] if request.phase == Phase.CLIMAX else ACTION_CHOICES
        outcome = request.dice_roll.outcome.value if request.dice_roll else "no check"
        return json.dumps({
            "content": f"{scene} {name} chose to {request.user_input.lower()} ({outcome}).",
            "choices": [{"text": text, "difficulty": difficulty} for text, difficulty in choices],
        })

# ABOUTME: Shared pytest fixtures for unit and integration tests.
# ABOUTME: Provides settings, stores, a scripted narrative client, payload builders and dice helpers.

import json
import random
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

import pytest
from redis import Redis

from storyteller.config.settings import Settings
from storyteller.models.dice_models import DiceOutcome, DiceRoll
from storyteller.models.game_state import Character, Genre
from storyteller.models.narrative import NarrativeRequest
from storyteller.narrative.exceptions import NarrativeServiceError
from storyteller.narrative.llm_client import NarrativeClient
from storyteller.orchestration.session_orchestrator import SessionOrchestrator
from storyteller.storage.session_store import InMemorySessionStore
from storyteller.utils.dice import resolve_outcome

# --- Helper Functions ---


def make_roll(die1: int, die2: int, difficulty: int = 8) -> DiceRoll:
    """Build a DiceRoll from fixed faces"""
    return DiceRoll(
        die1=die1,
        die2=die2,
        total=die1 + die2,
        difficulty=difficulty,
        outcome=resolve_outcome(die1, die2, difficulty),
        timestamp=datetime.now(UTC),
    )


def opening_payload(content: str = "The inn is quiet tonight.") -> str:
    return json.dumps({
        "content": content,
        "choices": [{"text": "Listen at the door"}, {"text": "Order tea"}, {"text": "Leave"}],
    })


def goal_selection_payload() -> str:
    return json.dumps({
        "content": "Everything points toward a choice.",
        "choices": [],
        "goalOptions": [
            {"id": "goal-1", "description": "Find the stolen sword"},
            {"id": "goal-2", "description": "Protect the innkeeper"},
        ],
    })


def development_payload(
    content: str = "The chase leads through the market.",
    progress: dict | None = None,
    count: int = 3
) -> str:
    choices = [
        {"text": "Vault the stall", "difficulty": 10},
        {"text": "Cut through the alley", "difficulty": 8},
        {"text": "Hide and wait", "difficulty": 6},
    ][:count]
    payload: dict[str, Any] = {"content": content, "choices": choices}
    if progress is not None:
        payload["goalProgress"] = progress
    return json.dumps(payload)


def ending_payload(ending_type: str = "success") -> str:
    return json.dumps({
        "content": "And so the tale ends.",
        "choices": [],
        "ending": {
            "type": ending_type,
            "title": "Dawn Over the River",
            "description": "The story closes.",
            "conditions": ["the sword was found"],
        },
    })


class ScriptedNarrativeClient(NarrativeClient):
    """Narrative client that replays queued raw outputs and records requests"""

    def __init__(self, outputs: list[str | Exception] | None = None):
        self.outputs: list[str | Exception] = list(outputs or [])
        self.requests: list[NarrativeRequest] = []

    def queue(self, *outputs: str | Exception) -> None:
        self.outputs.extend(outputs)

    async def generate(self, request: NarrativeRequest) -> str:
        self.requests.append(request)
        if not self.outputs:
            raise NarrativeServiceError("no scripted output left")
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return output


class FixedDiceRandom(random.Random):
    """Random source whose d6 draws come from a fixed list"""

    def __init__(self, faces: list[int]):
        super().__init__(0)
        self.faces = list(faces)

    def randint(self, a: int, b: int) -> int:
        if a == 1 and b == 6 and self.faces:
            return self.faces.pop(0)
        return super().randint(a, b)


# --- Fixtures ---


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any .env file, with the default story arc"""
    return Settings(
        _env_file=None,
        narrative_api_key=None,
        max_rounds=6,
        opening_rounds=2,
        goal_selection_round=3,
        climax_lookback=2,
        narrative_timeout_seconds=5.0,
    )


@pytest.fixture
def memory_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def character() -> Character:
    return Character(name="Li Wei", description="A wandering swordsman with a debt to repay")


@pytest.fixture
def genre() -> Genre:
    return Genre.WUXIA


@pytest.fixture
def scripted_client() -> ScriptedNarrativeClient:
    return ScriptedNarrativeClient()


@pytest.fixture
def make_orchestrator(test_settings, memory_store, scripted_client):
    """Factory for orchestrators sharing the scripted client and store"""

    def _make(faces: list[int] | None = None, **kwargs) -> SessionOrchestrator:
        rng = FixedDiceRandom(faces or [])
        return SessionOrchestrator(
            scripted_client,
            kwargs.pop("store", memory_store),
            kwargs.pop("settings", test_settings),
            rng=rng,
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_redis_client():
    """Mock Redis client backed by a dict, for snapshot storage"""
    redis = MagicMock(spec=Redis)
    data: dict[str, bytes] = {}
    index: set[bytes] = set()

    def _set(key, value):
        data[key] = value.encode() if isinstance(value, str) else value
        return True

    def _delete(key):
        return 1 if data.pop(key, None) is not None else 0

    def _sadd(key, member):
        index.add(member.encode())
        return 1

    def _srem(key, member):
        index.discard(member.encode())
        return 1

    redis.set.side_effect = _set
    redis.get.side_effect = lambda key: data.get(key)
    redis.delete.side_effect = _delete
    redis.sadd.side_effect = _sadd
    redis.srem.side_effect = _srem
    redis.smembers.side_effect = lambda key: set(index)
    redis.data = data

    return redis


@pytest.fixture
def critical_success_roll() -> DiceRoll:
    roll = make_roll(6, 6)
    assert roll.outcome == DiceOutcome.CRITICAL_SUCCESS
    return roll

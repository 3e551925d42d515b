# ABOUTME: Unit tests for SessionOrchestrator's turn-commit protocol.
# ABOUTME: Drives a scripted narrator and fixed dice through goal selection, pending confirmation, failures and endings.

import asyncio
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from storyteller.models.exceptions import InvariantViolation
from storyteller.models.game_state import (
    Character,
    EndingType,
    GameGoal,
    Genre,
    Goal,
    Phase,
    Progress,
    TurnState,
)
from storyteller.narrative.exceptions import NarrativeServiceError
from storyteller.narrative.llm_client import NarrativeClient
from storyteller.orchestration.exceptions import NoActiveSession
from storyteller.orchestration.results import FailureKind
from storyteller.orchestration.session_orchestrator import decide_ending_type
from storyteller.storage.exceptions import PersistenceError
from storyteller.storage.session_store import SessionStore
from storyteller.utils.goal_progress import ProgressResult
from tests.conftest import (
    development_payload,
    ending_payload,
    goal_selection_payload,
    opening_payload,
)


class BlockingClient(NarrativeClient):
    """Narrator that never answers until cancelled"""

    def __init__(self):
        self.started = asyncio.Event()

    async def generate(self, request):
        self.started.set()
        await asyncio.Event().wait()


async def reach_development(orchestrator, client):
    """Play rounds 1-3 so the active round is the first development round"""
    client.queue(
        opening_payload(),
        opening_payload("Footsteps on the stairs."),
        goal_selection_payload(),
        development_payload(),
    )
    assert (await orchestrator.start_session(Genre.WUXIA, Character(name="Li Wei"))).success
    assert (await orchestrator.submit_choice(0)).success
    assert (await orchestrator.submit_choice(0)).success
    result = await orchestrator.select_goal(0)
    assert result.success
    return result


class TestSessionStart:
    @pytest.mark.asyncio
    async def test_start_session_persists_opening(self, make_orchestrator, scripted_client, memory_store, genre, character):
        scripted_client.queue(opening_payload())
        orchestrator = make_orchestrator()

        result = await orchestrator.start_session(genre, character)

        assert result.success
        assert result.persisted
        assert result.view.round_number == 1
        assert result.view.phase == Phase.OPENING
        assert result.view.turn_state == TurnState.IDLE
        assert memory_store.load_by_id(result.view.session_id) is not None
        assert scripted_client.requests[0].is_opening

    @pytest.mark.asyncio
    async def test_start_session_service_failure(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(NarrativeServiceError("unreachable"))
        orchestrator = make_orchestrator()

        result = await orchestrator.start_session(genre, character)

        assert not result.success
        assert result.failure.kind == FailureKind.SERVICE_UNAVAILABLE
        assert result.failure.retryable
        assert orchestrator.session is None

    @pytest.mark.asyncio
    async def test_operations_without_session(self, make_orchestrator):
        orchestrator = make_orchestrator()

        result = await orchestrator.submit_choice(0)

        assert result.failure.kind == FailureKind.NO_SESSION
        with pytest.raises(NoActiveSession):
            orchestrator.view()

    @pytest.mark.asyncio
    async def test_resume_from_store(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(opening_payload())
        first = make_orchestrator()
        started = await first.start_session(genre, character)

        second = make_orchestrator()
        resumed = second.resume(started.view.session_id)

        assert resumed.success
        assert resumed.view.current_round.content == "The inn is quiet tonight."
        assert second.resume("session-unknown").failure.kind == FailureKind.NOT_FOUND


class TestPrologueAndGoal:
    @pytest.mark.asyncio
    async def test_prologue_choices_roll_no_dice(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(opening_payload(), opening_payload("Footsteps on the stairs."))
        orchestrator = make_orchestrator()
        await orchestrator.start_session(genre, character)

        result = await orchestrator.submit_choice(1)

        assert result.success
        assert result.view.round_number == 2
        assert orchestrator.session.rounds[0].chosen == "Order tea"
        assert orchestrator.session.rounds[0].dice_roll is None

    @pytest.mark.asyncio
    async def test_goal_round_rejects_plain_choices(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(opening_payload(), opening_payload(), goal_selection_payload())
        orchestrator = make_orchestrator()
        await orchestrator.start_session(genre, character)
        await orchestrator.submit_choice(0)
        result = await orchestrator.submit_choice(0)
        assert result.view.current_round.is_goal_selection

        assert (await orchestrator.submit_choice(0)).failure.kind == FailureKind.INVALID_CHOICE
        assert (await orchestrator.select_goal(7)).failure.kind == FailureKind.INVALID_CHOICE
        assert (await orchestrator.select_goal("goal-9")).failure.kind == FailureKind.INVALID_CHOICE

    @pytest.mark.asyncio
    async def test_select_goal_by_id(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(
            opening_payload(), opening_payload(), goal_selection_payload(), development_payload()
        )
        orchestrator = make_orchestrator()
        await orchestrator.start_session(genre, character)
        await orchestrator.submit_choice(0)
        await orchestrator.submit_choice(0)

        result = await orchestrator.select_goal("goal-2")

        assert result.success
        assert result.view.goal.goal.description == "Protect the innkeeper"
        assert result.view.goal.progress.percentage == 0
        assert result.view.phase == Phase.DEVELOPMENT
        assert orchestrator.session.rounds[2].chosen == "Goal: Protect the innkeeper"

    @pytest.mark.asyncio
    async def test_service_progress_ignored_without_check(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(
            opening_payload(),
            opening_payload(),
            goal_selection_payload(),
            development_payload(progress={"percentage": 60, "reason": "Lucky"}),
        )
        orchestrator = make_orchestrator()
        await orchestrator.start_session(genre, character)
        await orchestrator.submit_choice(0)
        await orchestrator.submit_choice(0)

        result = await orchestrator.select_goal(0)

        assert result.view.goal.progress.percentage == 0


class TestDiceTurns:
    @pytest.mark.asyncio
    async def test_dice_turn_waits_for_confirmation(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator(faces=[4, 4])
        await reach_development(orchestrator, scripted_client)
        scripted_client.queue(development_payload("The alley opens onto the docks.", count=2))

        result = await orchestrator.submit_choice(1)

        assert result.success
        assert result.awaiting_confirmation
        assert result.view.round_number == 4
        assert result.view.pending_round.content == "The alley opens onto the docks."
        assert result.view.current_dice_roll.total == 8
        assert result.view.current_dice_roll.difficulty == 8
        assert len(orchestrator.session.rounds) == 4

        busy = await orchestrator.submit_choice(0)
        assert busy.failure.kind == FailureKind.TURN_IN_PROGRESS
        assert busy.failure.retryable

        committed = await orchestrator.acknowledge_dice_result()

        assert committed.success
        assert committed.view.round_number == 5
        assert committed.view.phase == Phase.CLIMAX
        assert committed.view.turn_state == TurnState.IDLE
        assert 10 <= committed.view.goal.progress.percentage <= 15

    @pytest.mark.asyncio
    async def test_acknowledge_without_pending_round(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator()
        await reach_development(orchestrator, scripted_client)

        result = await orchestrator.acknowledge_dice_result()

        assert result.failure.kind == FailureKind.NO_PENDING_ROUND

    @pytest.mark.asyncio
    async def test_custom_action_uses_default_difficulty(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator(faces=[2, 3])
        await reach_development(orchestrator, scripted_client)
        scripted_client.queue(development_payload(count=2))

        result = await orchestrator.submit_choice("I climb onto the roof")

        assert result.view.current_dice_roll.difficulty == 8
        assert orchestrator.session.current_round.chosen == "I climb onto the roof"
        assert scripted_client.requests[-1].user_input == "I climb onto the roof"

    @pytest.mark.asyncio
    async def test_service_failure_keeps_round_and_reuses_dice(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator(faces=[3, 5, 1, 1])
        await reach_development(orchestrator, scripted_client)
        scripted_client.queue(NarrativeServiceError("rate limited"))

        failed = await orchestrator.submit_choice(1)

        assert not failed.success
        assert failed.failure.kind == FailureKind.SERVICE_UNAVAILABLE
        assert failed.failure.retryable
        assert failed.view.turn_state == TurnState.IDLE
        assert failed.view.round_number == 4
        assert orchestrator.session.current_round.chosen == "Cut through the alley"

        scripted_client.queue(development_payload(count=2))
        retried = await orchestrator.submit_choice(1)

        assert retried.success
        roll = retried.view.current_dice_roll
        assert (roll.die1, roll.die2) == (3, 5)

    @pytest.mark.asyncio
    async def test_switching_choice_after_failure_rerolls(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator(faces=[3, 5, 2, 2])
        await reach_development(orchestrator, scripted_client)
        scripted_client.queue(NarrativeServiceError("rate limited"), development_payload(count=2))

        await orchestrator.submit_choice(1)
        retried = await orchestrator.submit_choice(2)

        roll = retried.view.current_dice_roll
        assert (roll.die1, roll.die2, roll.difficulty) == (2, 2, 6)

    @pytest.mark.asyncio
    async def test_dice_published_before_service_call(self, make_orchestrator, scripted_client):
        seen = []

        async def on_dice(roll):
            seen.append((roll.total, len(scripted_client.requests)))

        orchestrator = make_orchestrator(faces=[6, 1], on_dice_rolled=on_dice)
        await reach_development(orchestrator, scripted_client)
        requests_before = len(scripted_client.requests)
        scripted_client.queue(development_payload(count=2))

        await orchestrator.submit_choice(0)

        assert seen == [(7, requests_before)]

    @pytest.mark.asyncio
    async def test_narrative_timeout(self, make_orchestrator, scripted_client, test_settings):
        settings = test_settings.model_copy(update={"narrative_timeout_seconds": 0.05})
        orchestrator = make_orchestrator(faces=[4, 4], settings=settings)
        await reach_development(orchestrator, scripted_client)
        orchestrator.client = BlockingClient()

        result = await orchestrator.submit_choice(0)

        assert result.failure.kind == FailureKind.SERVICE_UNAVAILABLE
        assert "exceeded" in result.failure.message
        assert orchestrator.turn_state == TurnState.IDLE

    @pytest.mark.asyncio
    async def test_cancellation_returns_to_idle(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator(faces=[4, 4])
        await reach_development(orchestrator, scripted_client)
        blocking = BlockingClient()
        orchestrator.client = blocking

        task = asyncio.create_task(orchestrator.submit_choice(0))
        await blocking.started.wait()
        assert orchestrator.turn_state == TurnState.AWAITING_SERVICE

        concurrent = await orchestrator.submit_choice(1)
        assert concurrent.failure.kind == FailureKind.TURN_IN_PROGRESS

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.turn_state == TurnState.IDLE
        assert orchestrator.session.round_number == 4


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_failure_does_not_stop_play(self, make_orchestrator, scripted_client, genre, character):
        store = MagicMock(spec=SessionStore)
        store.save.side_effect = PersistenceError("redis down")
        scripted_client.queue(opening_payload(), opening_payload())
        orchestrator = make_orchestrator(store=store)

        started = await orchestrator.start_session(genre, character)
        played = await orchestrator.submit_choice(0)

        assert started.success and not started.persisted
        assert played.success and not played.persisted
        assert played.view.round_number == 2

    @pytest.mark.asyncio
    async def test_choice_saved_before_service_call(self, make_orchestrator, scripted_client, memory_store):
        orchestrator = make_orchestrator(faces=[4, 4])
        await reach_development(orchestrator, scripted_client)
        scripted_client.queue(NarrativeServiceError("down"))

        await orchestrator.submit_choice(0)

        stored = memory_store.load_by_id(orchestrator.session.id)
        assert stored.current_round.chosen == "Vault the stall"
        assert stored.current_round.dice_roll is not None


class TestEndings:
    @pytest.mark.asyncio
    async def test_climax_turn_produces_ending(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator(faces=[4, 4, 6, 6])
        await reach_development(orchestrator, scripted_client)
        scripted_client.queue(development_payload(count=2), ending_payload("success"))

        await orchestrator.submit_choice(1)
        await orchestrator.acknowledge_dice_result()
        pending = await orchestrator.submit_choice(0)

        assert pending.awaiting_confirmation
        assert scripted_client.requests[-1].is_ending
        assert scripted_client.requests[-1].phase == Phase.ENDING

        result = await orchestrator.acknowledge_dice_result()

        assert result.view.ending is not None
        assert result.view.phase == Phase.ENDING
        assert len(orchestrator.session.rounds) == 6
        assert orchestrator.session.rounds[-1].choices == []
        # 10-15 from round 4, then at least +20 from the climax swing
        assert result.view.goal.progress.percentage >= 30
        assert result.view.ending.type == decide_ending_type(result.view.goal)
        assert result.view.ending.title == "Dawn Over the River"

    @pytest.mark.asyncio
    async def test_goal_completion_triggers_ending(self, make_orchestrator, scripted_client):
        orchestrator = make_orchestrator(faces=[5, 5])
        await reach_development(orchestrator, scripted_client)
        scripted_client.queue(
            development_payload(progress={"percentage": 100, "reason": "The sword is found"}, count=2),
            ending_payload("failure"),
        )

        await orchestrator.submit_choice(1)
        result = await orchestrator.acknowledge_dice_result()

        assert result.view.goal.is_completed
        assert result.view.ending.type == EndingType.SUCCESS
        assert len(orchestrator.session.rounds) == 6

    @pytest.mark.asyncio
    async def test_early_ending_without_goal_is_timeout(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(opening_payload(), ending_payload("success"))
        orchestrator = make_orchestrator()
        await orchestrator.start_session(genre, character)

        result = await orchestrator.request_ending()

        assert result.view.ending.type == EndingType.TIMEOUT
        assert result.view.round_number == 2

        after = await orchestrator.submit_choice(0)
        assert after.failure.kind == FailureKind.SESSION_ENDED
        assert (await orchestrator.request_ending()).failure.kind == FailureKind.SESSION_ENDED

    @pytest.mark.asyncio
    async def test_ending_defaults_when_narrator_omits_it(self, make_orchestrator, scripted_client, genre, character):
        scripted_client.queue(opening_payload(), "The tale fades into mist.")
        orchestrator = make_orchestrator()
        await orchestrator.start_session(genre, character)

        result = await orchestrator.request_ending()

        assert result.view.ending.type == EndingType.TIMEOUT
        assert result.view.ending.conditions


class TestDecideEndingType:
    def _goal(self, percentage: int) -> GameGoal:
        return GameGoal(
            goal=Goal(id="goal-1", description="Find the sword"),
            progress=Progress(percentage=percentage),
            completed_at=datetime.now(UTC) if percentage >= 100 else None,
        )

    @pytest.mark.parametrize("percentage,expected", [
        (100, EndingType.SUCCESS),
        (70, EndingType.PARTIAL_SUCCESS),
        (99, EndingType.PARTIAL_SUCCESS),
        (69, EndingType.FAILURE),
        (0, EndingType.FAILURE),
    ])
    def test_thresholds(self, percentage, expected):
        assert decide_ending_type(self._goal(percentage)) == expected

    def test_no_goal_is_timeout(self):
        assert decide_ending_type(None) == EndingType.TIMEOUT


class TestStrictInvariants:
    @pytest.mark.asyncio
    async def test_regression_after_completion(self, make_orchestrator, scripted_client, test_settings):
        strict = test_settings.model_copy(update={"strict_invariants": True})
        lenient = make_orchestrator()
        await reach_development(lenient, scripted_client)
        lenient.session.goal.progress = Progress(percentage=100)
        lenient.session.goal.completed_at = datetime.now(UTC)

        lenient._apply_progress(ProgressResult(percentage=40, delta=-60, reason="Setback"))
        assert lenient.goal.progress.percentage == 100

        lenient.settings = strict
        with pytest.raises(InvariantViolation):
            lenient._apply_progress(ProgressResult(percentage=40, delta=-60, reason="Setback"))

    @pytest.mark.asyncio
    async def test_strict_violation_on_commit_returns_to_idle(self, make_orchestrator, scripted_client, test_settings):
        strict = test_settings.model_copy(update={"strict_invariants": True})
        orchestrator = make_orchestrator(faces=[1, 1], settings=strict)
        await reach_development(orchestrator, scripted_client)
        orchestrator.session.goal.progress = Progress(percentage=100)
        orchestrator.session.goal.completed_at = datetime.now(UTC)
        scripted_client.queue(ending_payload("success"))

        pending = await orchestrator.submit_choice(0)
        assert pending.awaiting_confirmation

        with pytest.raises(InvariantViolation):
            await orchestrator.acknowledge_dice_result()

        assert orchestrator.turn_state == TurnState.IDLE
        assert orchestrator.pending_round is None
        assert len(orchestrator.session.rounds) == 4
        assert orchestrator.session.ending is None
        assert orchestrator.goal.progress.percentage == 100

        scripted_client.queue(ending_payload("success"))
        ended = await orchestrator.request_ending()

        assert ended.success
        assert ended.view.ending.type == EndingType.SUCCESS

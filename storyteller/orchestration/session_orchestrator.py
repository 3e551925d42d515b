# ABOUTME: SessionOrchestrator owns one Session and runs the pending/confirm turn-commit protocol.
# ABOUTME: Rolls dice, calls the narrative service, validates output, scores progress and decides endings.

import asyncio
import inspect
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from storyteller.config.settings import Settings, get_settings
from storyteller.models.dice_models import DiceRoll
from storyteller.models.exceptions import InvariantViolation
from storyteller.models.game_state import (
    Character,
    Ending,
    EndingType,
    GameGoal,
    Genre,
    Goal,
    Phase,
    Progress,
    Round,
    Session,
    SimpleChoice,
    StructuredChoice,
    TurnState,
)
from storyteller.models.narrative import (
    EndingPayload,
    HistoryEntry,
    NarrativeRequest,
    NarrativeResponse,
)
from storyteller.narrative.exceptions import NarrativeServiceError, NarrativeTimeout
from storyteller.narrative.llm_client import NarrativeClient
from storyteller.narrative.response_parser import parse_narrative_response
from storyteller.orchestration.exceptions import NoActiveSession
from storyteller.orchestration.results import FailureKind, SessionView, TurnResult
from storyteller.orchestration.turn_machine import TurnEvent, next_turn_state
from storyteller.storage.exceptions import PersistenceError
from storyteller.storage.session_store import SessionStore
from storyteller.utils.dice import roll_check
from storyteller.utils.goal_progress import ProgressResult, apply_climax_swing, score_progress
from storyteller.utils.logging import log_quality_signal, log_turn_event, log_turn_transition
from storyteller.utils.phases import get_phase, requires_dice

PARTIAL_SUCCESS_THRESHOLD = 70

DEFAULT_ENDING_TITLES: dict[EndingType, str] = {
    EndingType.SUCCESS: "Goal Achieved",
    EndingType.PARTIAL_SUCCESS: "So Close",
    EndingType.FAILURE: "The Goal Slips Away",
    EndingType.TIMEOUT: "The Road Runs Out",
}

AnyChoice = SimpleChoice | StructuredChoice


@dataclass
class PendingTurn:
    """Generated-but-uncommitted round plus what committing it will apply"""
    round: Round
    progress: ProgressResult | None = None
    ending: EndingPayload | None = None
    is_ending: bool = False


def decide_ending_type(goal: GameGoal | None) -> EndingType:
    """
    Decide how the story ended from goal state alone.

    Completed goal -> success, progress >= 70 -> partial success, any other
    goal -> failure, no goal -> timeout.
    """
    if goal is None:
        return EndingType.TIMEOUT
    if goal.is_completed:
        return EndingType.SUCCESS
    if goal.progress.percentage >= PARTIAL_SUCCESS_THRESHOLD:
        return EndingType.PARTIAL_SUCCESS
    return EndingType.FAILURE


class SessionOrchestrator:
    """
    Owns one Session and advances it one turn at a time.

    Every mutating call returns a TurnResult; service failures, invalid
    input and concurrent submissions come back as typed TurnFailures rather
    than exceptions. A turn with a dice roll parks in PENDING_CONFIRM until
    acknowledge_dice_result() commits it.
    """

    def __init__(
        self,
        client: NarrativeClient,
        store: SessionStore,
        settings: Settings | None = None,
        on_dice_rolled: Callable[[DiceRoll], Any] | None = None,
        rng: random.Random | None = None
    ):
        """
        Initialize session orchestrator.

        Args:
            client: Narrative service client
            store: Snapshot persistence
            settings: Application settings (default: get_settings())
            on_dice_rolled: Optional callback (sync or async) fired before the service is awaited
            rng: Optional random source for dice and progress draws
        """
        self.client = client
        self.store = store
        self.settings = settings or get_settings()
        self.on_dice_rolled = on_dice_rolled
        self.rng = rng
        self.phase_config = self.settings.phase_config

        self._session: Session | None = None
        self._state = TurnState.IDLE
        self._pending: PendingTurn | None = None

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def turn_state(self) -> TurnState:
        return self._state

    @property
    def current_round(self) -> Round | None:
        return self._session.current_round if self._session else None

    @property
    def pending_round(self) -> Round | None:
        return self._pending.round if self._pending else None

    @property
    def current_dice_roll(self) -> DiceRoll | None:
        """Dice recorded on the active round for the turn in flight"""
        return self._session.current_round.dice_roll if self._session else None

    @property
    def goal(self) -> GameGoal | None:
        return self._session.goal if self._session else None

    def view(self) -> SessionView:
        """
        Snapshot of the session for presentation.

        Raises:
            NoActiveSession: If no session is loaded
        """
        session = self._require_session()
        phase = Phase.ENDING if session.is_ended else self._phase_for(session.round_number)
        return SessionView(
            session_id=session.id,
            genre=session.genre,
            character=session.character,
            round_number=session.round_number,
            max_rounds=session.max_rounds,
            phase=phase,
            turn_state=self._state,
            current_round=session.current_round,
            pending_round=self.pending_round,
            current_dice_roll=self.current_dice_roll,
            goal=session.goal,
            ending=session.ending,
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(self, genre: Genre, character: Character) -> TurnResult:
        """
        Generate the opening round and persist a new session.

        Returns:
            TurnResult with the new session's view, or service_unavailable
        """
        if self._state != TurnState.IDLE:
            return self._busy()

        max_rounds = self.settings.max_rounds
        phase = get_phase(1, max_rounds, self.phase_config)
        request = NarrativeRequest(
            genre=genre,
            character=character,
            phase=phase,
            round_number=1,
            max_rounds=max_rounds,
            is_opening=phase == Phase.OPENING,
            is_goal_selection=phase == Phase.GOAL_SELECTION,
        )

        try:
            raw = await self._generate(request)
        except NarrativeServiceError as e:
            logger.bind(genre=genre.value).error(f"Failed to generate opening round: {e}")
            return TurnResult.fail(FailureKind.SERVICE_UNAVAILABLE, str(e), retryable=True)

        response = self._parse(raw, phase, round_number=1, session_id=None)
        session = Session(
            genre=genre,
            character=character,
            rounds=[self._build_round(response, phase)],
            max_rounds=max_rounds,
        )
        self._session = session
        self._pending = None
        persisted = self._save()

        log_turn_event(
            "Session started",
            session_id=session.id,
            round_number=1,
            phase=phase.value,
            genre=genre.value,
            character=character.name,
        )
        return TurnResult.ok(self.view(), persisted=persisted)

    def resume(self, session_id: str) -> TurnResult:
        """
        Load a persisted session and make it the active one.

        A round whose choice was recorded before the player left can be
        resubmitted; its dice roll is reused.
        """
        if self._state != TurnState.IDLE:
            return self._busy()

        try:
            session = self.store.load_by_id(session_id)
        except PersistenceError as e:
            logger.bind(session=session_id).error(f"Failed to load session: {e}")
            return TurnResult.fail(FailureKind.NOT_FOUND, str(e), retryable=True)

        if session is None:
            return TurnResult.fail(FailureKind.NOT_FOUND, f"No session with id {session_id}")

        self._session = session
        self._pending = None
        log_turn_event(
            "Session resumed",
            session_id=session.id,
            round_number=session.round_number,
            ended=session.is_ended,
        )
        return TurnResult.ok(self.view())

    # ------------------------------------------------------------------
    # Turn operations
    # ------------------------------------------------------------------

    async def submit_choice(self, choice_ref: int | str) -> TurnResult:
        """
        Take a choice on the active round and generate the next one.

        Args:
            choice_ref: 0-based index into the offered choices, the text of
                an offered choice, or free text as a custom action

        Returns:
            TurnResult; awaiting_confirmation is True when a dice round is pending
        """
        blocked = self._check_can_act()
        if blocked is not None:
            return blocked

        session = self._session
        rnd = session.current_round
        if rnd.is_goal_selection:
            return TurnResult.fail(
                FailureKind.INVALID_CHOICE,
                "This round asks for a goal; use select_goal",
                view=self.view(),
            )

        resolved = self._resolve_choice(rnd, choice_ref)
        if resolved is None:
            return TurnResult.fail(
                FailureKind.INVALID_CHOICE,
                f"No such choice: {choice_ref!r}",
                view=self.view(),
            )
        text, choice = resolved

        phase = self._phase_for(session.round_number)
        dice = None
        if rnd.chosen == text and rnd.dice_roll is not None:
            dice = rnd.dice_roll
            log_turn_event(
                "Reusing recorded dice roll for resubmitted choice",
                session_id=session.id,
                round_number=session.round_number,
                phase=phase.value,
            )
        elif requires_dice(phase):
            difficulty = (choice.difficulty if choice else None) or self.settings.default_difficulty
            dice = roll_check(difficulty, rng=self.rng)

        return await self._play_turn(text, dice, phase)

    async def select_goal(self, goal_ref: int | str) -> TurnResult:
        """
        Pick one of the goal-selection round's options and continue the story.

        Args:
            goal_ref: 0-based index into the goal options, or a goal id

        Returns:
            TurnResult for the round generated after the selection
        """
        blocked = self._check_can_act()
        if blocked is not None:
            return blocked

        session = self._session
        rnd = session.current_round
        if not rnd.is_goal_selection:
            return TurnResult.fail(
                FailureKind.INVALID_CHOICE,
                "The active round does not offer goals",
                view=self.view(),
            )

        goal = self._resolve_goal(rnd.goal_options, goal_ref)
        if goal is None:
            return TurnResult.fail(
                FailureKind.INVALID_CHOICE,
                f"No such goal: {goal_ref!r}",
                view=self.view(),
            )

        if session.goal is not None and session.goal.goal.id != goal.id:
            return TurnResult.fail(
                FailureKind.INVALID_CHOICE,
                f"Goal already selected: {session.goal.goal.description}",
                view=self.view(),
            )

        if session.goal is None:
            session.goal = GameGoal(goal=goal)
            log_turn_event(
                "Goal selected",
                session_id=session.id,
                round_number=session.round_number,
                goal=goal.id,
            )

        return await self._play_turn(f"Goal: {goal.description}", None, Phase.GOAL_SELECTION)

    async def acknowledge_dice_result(self) -> TurnResult:
        """Commit the round held in PENDING_CONFIRM"""
        if self._session is None:
            return self._no_session()
        if self._state != TurnState.PENDING_CONFIRM or self._pending is None:
            return TurnResult.fail(
                FailureKind.NO_PENDING_ROUND,
                "No round is waiting for dice confirmation",
                view=self.view(),
            )

        self._transition(TurnEvent.DICE_ACKNOWLEDGED)
        return await self._commit()

    async def request_ending(self) -> TurnResult:
        """Generate and commit the ending round from history and goal state"""
        blocked = self._check_can_act()
        if blocked is not None:
            return blocked

        session = self._session
        self._transition(TurnEvent.ENDING_REQUESTED)
        request = self._build_request(
            round_number=len(session.rounds) + 1,
            phase=Phase.ENDING,
            user_input=session.current_round.chosen or "",
            dice=None,
            goal=session.goal,
        )

        try:
            raw = await self._generate(request)
        except NarrativeServiceError as e:
            return self._service_failed(e)
        except asyncio.CancelledError:
            self._transition(TurnEvent.CANCELLED)
            raise

        response = self._parse(raw, Phase.ENDING, request.round_number, session.id)
        self._pending = PendingTurn(
            round=Round(content=response.content),
            ending=response.ending,
            is_ending=True,
        )
        self._transition(TurnEvent.SERVICE_RESPONDED)
        return await self._commit()

    # ------------------------------------------------------------------
    # Turn internals
    # ------------------------------------------------------------------

    async def _play_turn(self, text: str, dice: DiceRoll | None, choice_phase: Phase) -> TurnResult:
        session = self._session
        rnd = session.current_round

        self._transition(
            TurnEvent.CHOICE_WITH_DICE if dice is not None else TurnEvent.CHOICE_WITHOUT_DICE
        )
        rnd.chosen = text
        rnd.dice_roll = dice
        session.touch()
        persisted = self._save()

        if dice is not None:
            try:
                await self._publish_dice(dice)
            except asyncio.CancelledError:
                self._transition(TurnEvent.CANCELLED)
                raise
            self._transition(TurnEvent.DICE_SHOWN)

        next_number = session.round_number + 1
        next_phase = self._phase_for(next_number)
        is_ending = (
            next_phase == Phase.ENDING
            or next_number >= session.max_rounds
            or (session.goal is not None and session.goal.is_completed)
        )

        local_progress = self._score(dice, choice_phase)
        request_goal = session.goal
        if is_ending and local_progress is not None:
            request_goal = self._projected_goal(local_progress)

        request = self._build_request(
            round_number=next_number,
            phase=Phase.ENDING if is_ending else next_phase,
            user_input=text,
            dice=dice,
            goal=request_goal,
        )

        try:
            raw = await self._generate(request)
        except NarrativeServiceError as e:
            return self._service_failed(e)
        except asyncio.CancelledError:
            self._transition(TurnEvent.CANCELLED)
            raise

        response = self._parse(raw, request.phase, next_number, session.id)
        if is_ending:
            self._pending = PendingTurn(
                round=Round(content=response.content),
                progress=local_progress,
                ending=response.ending,
                is_ending=True,
            )
        else:
            self._pending = PendingTurn(
                round=self._build_round(response, next_phase),
                progress=self._resolve_progress(response, local_progress, dice, choice_phase),
            )

        if dice is not None:
            self._transition(TurnEvent.SERVICE_RESPONDED_WITH_DICE)
            log_turn_event(
                "Round pending dice confirmation",
                session_id=session.id,
                round_number=session.round_number,
                outcome=dice.outcome.value,
            )
            return TurnResult.ok(self.view(), persisted=persisted)

        self._transition(TurnEvent.SERVICE_RESPONDED)
        result = await self._commit()
        result.persisted = result.persisted and persisted
        return result

    async def _commit(self) -> TurnResult:
        session = self._session
        pending = self._pending
        self._pending = None

        if not pending.is_ending and len(session.rounds) + 1 > session.max_rounds:
            logger.bind(session=session.id, rounds=len(session.rounds)).warning(
                "Commit would exceed max rounds, discarding round and generating ending"
            )
            self._transition(TurnEvent.COMMIT_FINISHED)
            return await self.request_ending()

        if pending.progress is not None and session.goal is not None:
            try:
                self._apply_progress(pending.progress)
            except InvariantViolation:
                # Nothing was applied; the turn ends with the session untouched
                self._transition(TurnEvent.COMMIT_FINISHED)
                raise

        session.append_round(pending.round)
        if pending.is_ending:
            session.ending = self._build_ending(pending.ending)
            session.touch()
        persisted = self._save()

        self._transition(TurnEvent.COMMIT_FINISHED)
        log_turn_event(
            "Ending committed" if session.is_ended else "Round committed",
            session_id=session.id,
            round_number=session.round_number,
            phase=self.view().phase.value,
            progress=session.goal.progress.percentage if session.goal else None,
        )

        if not session.is_ended and session.goal is not None and session.goal.is_completed:
            log_turn_event(
                "Goal completed, generating ending",
                session_id=session.id,
                round_number=session.round_number,
            )
            result = await self.request_ending()
            result.persisted = result.persisted and persisted
            return result

        return TurnResult.ok(self.view(), persisted=persisted)

    def _score(self, dice: DiceRoll | None, choice_phase: Phase) -> ProgressResult | None:
        goal = self._session.goal
        if goal is None or dice is None:
            return None

        current = goal.progress.percentage
        result = score_progress(dice.difficulty, dice.outcome, current, rng=self.rng)
        if choice_phase == Phase.CLIMAX and dice.outcome.is_success:
            result = apply_climax_swing(result, current, self.settings.climax_min_swing)
        return result

    def _resolve_progress(
        self,
        response: NarrativeResponse,
        local: ProgressResult | None,
        dice: DiceRoll | None,
        choice_phase: Phase
    ) -> ProgressResult | None:
        """Prefer the narrator's validated figure; fall back to local scoring"""
        session = self._session
        if local is None:
            if response.progress is not None and session.goal is not None:
                log_quality_signal(
                    "progress_without_check",
                    session_id=session.id,
                    round_number=session.round_number,
                )
            return None

        if response.progress is None:
            return local

        current = session.goal.progress.percentage
        claimed = response.progress.percentage
        result = ProgressResult(
            percentage=claimed,
            delta=claimed - current,
            reason=response.progress.reason or "Progress updated by the narrator",
        )
        if choice_phase == Phase.CLIMAX and dice.outcome.is_success:
            result = apply_climax_swing(result, current, self.settings.climax_min_swing)
        return result

    def _apply_progress(self, result: ProgressResult) -> None:
        session = self._session
        goal = session.goal
        current = goal.progress.percentage

        if goal.is_completed and result.percentage < current:
            message = (
                f"Progress regression after completion ignored "
                f"({current}% -> {result.percentage}%)"
            )
            if self.settings.strict_invariants:
                raise InvariantViolation(message)
            logger.bind(session=session.id, round=session.round_number).error(message)
            return

        goal.progress = Progress(percentage=result.percentage, reason=result.reason)
        if result.percentage >= 100 and goal.completed_at is None:
            goal.completed_at = datetime.now(UTC)

    def _projected_goal(self, result: ProgressResult) -> GameGoal:
        """Goal as it will look once this turn's progress is applied"""
        goal = self._session.goal
        if goal.is_completed and result.percentage < goal.progress.percentage:
            return goal
        completed_at = goal.completed_at
        if result.percentage >= 100 and completed_at is None:
            completed_at = datetime.now(UTC)
        return goal.model_copy(update={
            "progress": Progress(percentage=result.percentage, reason=result.reason),
            "completed_at": completed_at,
        })

    def _build_ending(self, payload: EndingPayload | None) -> Ending:
        session = self._session
        ending_type = decide_ending_type(session.goal)

        if payload is not None and payload.type is not None and payload.type != ending_type:
            log_quality_signal(
                "ending_type_mismatch",
                session_id=session.id,
                round_number=session.round_number,
                proposed=payload.type.value,
                decided=ending_type.value,
            )

        conditions = list(payload.conditions) if payload else []
        if not conditions:
            if session.goal is None:
                conditions = ["No goal was chosen before the story ran out"]
            else:
                conditions = [
                    f"{session.goal.goal.description}: {session.goal.progress.percentage}%"
                ]

        return Ending(
            type=ending_type,
            title=payload.title if payload else DEFAULT_ENDING_TITLES[ending_type],
            description=payload.description if payload else "",
            conditions=conditions,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _generate(self, request: NarrativeRequest) -> str:
        timeout = self.settings.narrative_timeout_seconds
        try:
            return await asyncio.wait_for(self.client.generate(request), timeout=timeout)
        except TimeoutError as e:
            raise NarrativeTimeout(f"Narrative generation exceeded {timeout}s") from e

    async def _publish_dice(self, dice: DiceRoll) -> None:
        if self.on_dice_rolled is None:
            return
        outcome = self.on_dice_rolled(dice)
        if inspect.isawaitable(outcome):
            await outcome

    def _parse(
        self,
        raw: str,
        phase: Phase,
        round_number: int,
        session_id: str | None
    ) -> NarrativeResponse:
        response = parse_narrative_response(raw, phase)
        if response.issues or response.is_degraded:
            log_quality_signal(
                f"{response.stage.value}_parse" if response.is_degraded else "repaired_output",
                session_id=session_id,
                round_number=round_number,
                issues=response.issues,
            )
        return response

    def _build_round(self, response: NarrativeResponse, phase: Phase) -> Round:
        if phase == Phase.GOAL_SELECTION:
            return Round(content=response.content, goal_options=response.goal_options)
        return Round(content=response.content, choices=response.choices)

    def _build_request(
        self,
        round_number: int,
        phase: Phase,
        user_input: str,
        dice: DiceRoll | None,
        goal: GameGoal | None
    ) -> NarrativeRequest:
        session = self._session
        return NarrativeRequest(
            genre=session.genre,
            character=session.character,
            history=[HistoryEntry(content=r.content, chosen=r.chosen) for r in session.rounds],
            user_input=user_input,
            phase=phase,
            round_number=round_number,
            max_rounds=session.max_rounds,
            dice_roll=dice,
            goal=goal,
            is_goal_selection=phase == Phase.GOAL_SELECTION,
            is_ending=phase == Phase.ENDING,
        )

    def _resolve_choice(self, rnd: Round, ref: int | str) -> tuple[str, AnyChoice | None] | None:
        if isinstance(ref, bool):
            return None
        if isinstance(ref, int):
            if 0 <= ref < len(rnd.choices):
                choice = rnd.choices[ref]
                return choice.text, choice
            return None

        text = ref.strip()
        if not text:
            return None
        return text, rnd.find_choice(text)

    def _resolve_goal(self, options: list[Goal] | None, ref: int | str) -> Goal | None:
        options = options or []
        if isinstance(ref, int) and not isinstance(ref, bool):
            return options[ref] if 0 <= ref < len(options) else None
        for goal in options:
            if goal.id == ref:
                return goal
        return None

    def _phase_for(self, round_number: int) -> Phase:
        return get_phase(round_number, self._session.max_rounds, self.phase_config)

    def _transition(self, event: TurnEvent) -> None:
        previous = self._state
        self._state = next_turn_state(previous, event)
        log_turn_transition(
            previous.value,
            self._state.value,
            session_id=self._session.id if self._session else "-",
            round_number=self._session.round_number if self._session else 0,
            event=event.value,
        )

    def _save(self) -> bool:
        session = self._session
        try:
            self.store.save(session)
        except PersistenceError as e:
            logger.bind(session=session.id, round=session.round_number).error(
                f"Failed to persist session snapshot: {e}"
            )
            return False
        return True

    def _service_failed(self, error: NarrativeServiceError) -> TurnResult:
        self._transition(TurnEvent.SERVICE_FAILED)
        session = self._session
        logger.bind(session=session.id, round=session.round_number).error(
            f"Narrative service failed: {error}"
        )
        return TurnResult.fail(
            FailureKind.SERVICE_UNAVAILABLE,
            str(error),
            retryable=True,
            view=self.view(),
        )

    def _check_can_act(self) -> TurnResult | None:
        if self._session is None:
            return self._no_session()
        if self._session.is_ended:
            return TurnResult.fail(
                FailureKind.SESSION_ENDED,
                "The story has already ended",
                view=self.view(),
            )
        if self._state != TurnState.IDLE:
            return self._busy()
        return None

    def _busy(self) -> TurnResult:
        return TurnResult.fail(
            FailureKind.TURN_IN_PROGRESS,
            f"A turn is already in progress ({self._state.value})",
            retryable=True,
            view=self.view() if self._session else None,
        )

    def _no_session(self) -> TurnResult:
        return TurnResult.fail(FailureKind.NO_SESSION, "No session is active")

    def _require_session(self) -> Session:
        if self._session is None:
            raise NoActiveSession("No session is active")
        return self._session

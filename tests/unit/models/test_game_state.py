# ABOUTME: Unit tests for session snapshot models.
# ABOUTME: Validates choice unions, goal completion, round/session invariants and JSON round-trips.

from datetime import UTC, datetime

import pytest
from pydantic import TypeAdapter, ValidationError

from storyteller.models.game_state import (
    Character,
    Choice,
    Ending,
    EndingType,
    GameGoal,
    Genre,
    Goal,
    Progress,
    Round,
    Session,
    SimpleChoice,
    StructuredChoice,
)
from tests.conftest import make_roll


def _round(text: str = "A scene.", choices=None, **kwargs) -> Round:
    if choices is None:
        choices = [SimpleChoice(text="Go left"), SimpleChoice(text="Go right")]
    return Round(content=text, choices=choices, **kwargs)


def _session(rounds=None, **kwargs) -> Session:
    return Session(
        genre=Genre.URBAN_MYSTERY,
        character=Character(name="Mara"),
        rounds=rounds or [_round()],
        max_rounds=6,
        **kwargs,
    )


class TestChoices:
    def test_discriminated_union_parses_both_kinds(self):
        adapter = TypeAdapter(list[Choice])
        parsed = adapter.validate_python([
            {"kind": "simple", "text": "Wait"},
            {"kind": "structured", "text": "Climb", "difficulty": 10, "is_goal": True},
        ])
        assert isinstance(parsed[0], SimpleChoice)
        assert isinstance(parsed[1], StructuredChoice)
        assert parsed[1].difficulty == 10

    def test_simple_choice_has_no_mechanics(self):
        choice = SimpleChoice(text="Wait")
        assert choice.difficulty is None
        assert choice.is_goal is False

    @pytest.mark.parametrize("difficulty", [0, 13])
    def test_structured_difficulty_range(self, difficulty):
        with pytest.raises(ValidationError):
            StructuredChoice(text="Climb", difficulty=difficulty)

    def test_round_rejects_mixed_representations(self):
        with pytest.raises(ValidationError, match="one representation"):
            Round(
                content="Mixed",
                choices=[SimpleChoice(text="a"), StructuredChoice(text="b", difficulty=8)],
            )

    def test_find_choice(self):
        rnd = _round()
        assert rnd.find_choice("Go right").text == "Go right"
        assert rnd.find_choice("Fly") is None


class TestGameGoal:
    def test_completed_at_requires_full_progress(self):
        with pytest.raises(ValidationError, match="completed_at"):
            GameGoal(
                goal=Goal(id="g", description="Win"),
                progress=Progress(percentage=80),
                completed_at=datetime.now(UTC),
            )

    def test_full_progress_requires_completed_at(self):
        with pytest.raises(ValidationError, match="completed_at"):
            GameGoal(goal=Goal(id="g", description="Win"), progress=Progress(percentage=100))

    def test_completed_goal(self):
        goal = GameGoal(
            goal=Goal(id="g", description="Win"),
            progress=Progress(percentage=100),
            completed_at=datetime.now(UTC),
        )
        assert goal.is_completed

    @pytest.mark.parametrize("percentage", [-1, 101])
    def test_progress_range(self, percentage):
        with pytest.raises(ValidationError):
            Progress(percentage=percentage)


class TestSession:
    def test_active_index_in_range(self):
        with pytest.raises(ValidationError, match="active_index"):
            _session(active_index=1)

    def test_needs_at_least_one_round(self):
        with pytest.raises(ValidationError):
            Session(
                genre=Genre.WUXIA,
                character=Character(name="Li"),
                rounds=[],
                max_rounds=6,
            )

    def test_choice_round_without_choices_rejected(self):
        with pytest.raises(ValidationError, match="choices must be empty iff"):
            _session(rounds=[_round(choices=[])])

    def test_goal_selection_round_has_no_choices(self):
        rnd = Round(content="Pick", goal_options=[Goal(id="goal-1", description="Win")])
        session = _session(rounds=[rnd])
        assert session.current_round.is_goal_selection

    def test_ended_session_must_point_at_last_round(self):
        ending = Ending(type=EndingType.TIMEOUT, title="Out of time")
        with pytest.raises(ValidationError):
            _session(rounds=[_round(), Round(content="The end")], active_index=0, ending=ending)

        session = _session(rounds=[_round(), Round(content="The end")], active_index=1, ending=ending)
        assert session.is_ended

    def test_append_round_advances_index(self):
        session = _session()
        before = session.updated_at
        session.append_round(_round("Next"))

        assert session.round_number == 2
        assert session.current_round.content == "Next"
        assert session.updated_at >= before

    def test_append_after_ending_rejected(self):
        session = _session()
        session.append_round(Round(content="The end"))
        session.ending = Ending(type=EndingType.TIMEOUT, title="Out of time")

        with pytest.raises(ValueError, match="ended session"):
            session.append_round(_round())

    def test_json_round_trip(self):
        first = _round(choices=[
            StructuredChoice(text="Climb", difficulty=10),
            StructuredChoice(text="Wait", difficulty=6),
        ])
        first.chosen = "Climb"
        first.dice_roll = make_roll(4, 6, 10)
        session = _session(
            rounds=[first, _round("Second")],
            active_index=1,
            goal=GameGoal(goal=Goal(id="g", description="Win"), progress=Progress(percentage=35)),
        )

        restored = Session.model_validate_json(session.model_dump_json())

        assert restored == session
        assert restored.active_index == 1
        assert restored.goal.progress.percentage == 35
        assert isinstance(restored.rounds[0].choices[0], StructuredChoice)
        assert restored.rounds[0].dice_roll.outcome == first.dice_roll.outcome

    def test_character_name_length(self):
        with pytest.raises(ValidationError):
            Character(name="")
        with pytest.raises(ValidationError):
            Character(name="x" * 51)

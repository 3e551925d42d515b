# ABOUTME: Terminal play loop for the narrative session orchestrator.
# ABOUTME: Command parsing, output formatting (dice labels, progress bar) and the async session loop.

import asyncio
import re
import sys
from dataclasses import dataclass
from enum import Enum

from loguru import logger
from redis import Redis, RedisError

from storyteller.config.settings import Settings, get_settings
from storyteller.models.dice_models import DiceRoll
from storyteller.models.game_state import Character, Ending, GameGoal, Genre, Phase, Round
from storyteller.narrative.llm_client import NarrativeClient, OpenAINarrativeClient
from storyteller.narrative.mock_client import MockNarrativeClient
from storyteller.orchestration.results import SessionView, TurnResult
from storyteller.orchestration.session_orchestrator import SessionOrchestrator
from storyteller.storage.exceptions import PersistenceError
from storyteller.storage.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
)
from storyteller.utils.dice import outcome_label, outcome_symbol
from storyteller.utils.logging import setup_logging


class InvalidCommandError(Exception):
    """Raised when a command cannot be parsed"""
    pass


class PlayerCommandType(str, Enum):
    """Commands available at the play prompt"""
    CHOOSE = "choose"
    ACTION = "action"
    END = "end"
    INFO = "info"
    SESSIONS = "sessions"
    RESUME = "resume"
    QUIT = "quit"


@dataclass
class ParsedCommand:
    """Parsed command with type and arguments"""
    command_type: PlayerCommandType
    args: dict
    raw_input: str


class PlayerCommandParser:
    """
    Parser for player input.

    Supports:
    - Choice numbers: "2"
    - Slash commands: "/end", "/info", "/sessions", "/resume <id>", "/quit"
    - Anything else is a custom action: "I climb onto the roof"
    """

    COMMAND_PATTERNS = {
        PlayerCommandType.CHOOSE: r'^(\d+)$',
        PlayerCommandType.END: r'^/end$',
        PlayerCommandType.INFO: r'^/info$',
        PlayerCommandType.SESSIONS: r'^/sessions$',
        PlayerCommandType.RESUME: r'^/resume(?:\s+(\S+))?$',
        PlayerCommandType.QUIT: r'^/(?:quit|exit)$',
    }

    def parse(self, user_input: str) -> ParsedCommand:
        """
        Parse player input into a structured command.

        Raises:
            InvalidCommandError: If input is empty or a malformed slash command
        """
        if not user_input or not user_input.strip():
            raise InvalidCommandError("Cannot parse empty command")

        user_input = user_input.strip()

        for cmd_type, pattern in self.COMMAND_PATTERNS.items():
            match = re.match(pattern, user_input, re.IGNORECASE)
            if not match:
                continue

            if cmd_type == PlayerCommandType.CHOOSE:
                number = int(match.group(1))
                if number < 1:
                    raise InvalidCommandError("Choices are numbered from 1")
                return ParsedCommand(cmd_type, {"index": number - 1}, user_input)

            if cmd_type == PlayerCommandType.RESUME:
                session_id = match.group(1)
                if not session_id:
                    raise InvalidCommandError("Usage: /resume <session-id>")
                return ParsedCommand(cmd_type, {"session_id": session_id}, user_input)

            return ParsedCommand(cmd_type, {}, user_input)

        if user_input.startswith("/"):
            raise InvalidCommandError(f"Unknown command: {user_input.split()[0]}")

        return ParsedCommand(PlayerCommandType.ACTION, {"text": user_input}, user_input)


class CLIFormatter:
    """Formats session state for the terminal"""

    HEADER_BORDER = "═"
    PHASE_MARKER = "▶"
    BAR_WIDTH = 20

    PHASE_NAMES = {
        Phase.OPENING: "Prologue",
        Phase.GOAL_SELECTION: "Choose Your Goal",
        Phase.DEVELOPMENT: "Adventure",
        Phase.CLIMAX: "Climax",
        Phase.ENDING: "Ending",
    }

    def format_header(self, view: SessionView) -> str:
        width = 70
        title = f"{view.character.name} - {view.genre.value}"
        return "\n".join([
            "╔" + self.HEADER_BORDER * (width - 2) + "╗",
            "║" + title.center(width - 2) + "║",
            "║" + f"Session {view.session_id}".center(width - 2) + "║",
            "╚" + self.HEADER_BORDER * (width - 2) + "╝",
        ])

    def format_round(self, view: SessionView) -> str:
        rnd: Round = view.current_round
        lines = [
            f"\n{self.PHASE_MARKER} [Round {view.round_number}/{view.max_rounds}] "
            f"{self.PHASE_NAMES[view.phase]}",
            "",
            rnd.content,
        ]
        if view.goal is not None:
            lines.extend(["", self.format_goal(view.goal)])

        if rnd.goal_options:
            lines.extend(["", "Goals:"])
            for idx, goal in enumerate(rnd.goal_options, start=1):
                lines.append(f"  {idx}. {goal.description}")
        elif rnd.choices and view.ending is None:
            lines.extend(["", "Choices:"])
            for idx, choice in enumerate(rnd.choices, start=1):
                suffix = f" (difficulty {choice.difficulty})" if choice.difficulty else ""
                lines.append(f"  {idx}. {choice.text}{suffix}")
        return "\n".join(lines)

    def format_dice_roll(self, roll: DiceRoll) -> str:
        return (
            f"\n🎲 {roll.die1} + {roll.die2} = {roll.total} vs {roll.difficulty}  "
            f"{outcome_symbol(roll.outcome)} {outcome_label(roll.outcome)}"
        )

    def format_goal(self, goal: GameGoal) -> str:
        percentage = goal.progress.percentage
        filled = percentage * self.BAR_WIDTH // 100
        bar = "█" * filled + "░" * (self.BAR_WIDTH - filled)
        line = f"Goal: {goal.goal.description}\n[{bar}] {percentage}%"
        if goal.progress.reason:
            line += f"  ({goal.progress.reason})"
        return line

    def format_ending(self, ending: Ending) -> str:
        lines = [
            "",
            self.HEADER_BORDER * 70,
            f"THE END - {ending.title} [{ending.type.value}]",
        ]
        if ending.description:
            lines.append(ending.description)
        for condition in ending.conditions:
            lines.append(f"  - {condition}")
        return "\n".join(lines)

    def format_error(self, message: str, suggestion: str | None = None) -> str:
        text = f"\n⚠ {message}"
        if suggestion:
            text += f"\n  {suggestion}"
        return text


class PlayerCommandLineInterface:
    """Interactive play loop driving a SessionOrchestrator"""

    def __init__(self, orchestrator: SessionOrchestrator, store: SessionStore):
        self.orchestrator = orchestrator
        self.store = store
        self.parser = PlayerCommandParser()
        self.formatter = CLIFormatter()
        self.orchestrator.on_dice_rolled = self._show_dice

    def _show_dice(self, roll: DiceRoll) -> None:
        print(self.formatter.format_dice_roll(roll))
        print("The story unfolds...")

    async def _input(self, prompt: str) -> str:
        return (await asyncio.to_thread(input, prompt)).strip()

    async def _create_session(self) -> TurnResult:
        genres = list(Genre)
        print("\nGenres:")
        for idx, genre in enumerate(genres, start=1):
            print(f"  {idx}. {genre.value}")

        genre = None
        while genre is None:
            answer = await self._input("Pick a genre: ")
            if answer.isdigit() and 1 <= int(answer) <= len(genres):
                genre = genres[int(answer) - 1]
            else:
                print(self.formatter.format_error("Enter a number from the list"))

        name = ""
        while not name or len(name) > 50:
            name = await self._input("Character name: ")
        description = await self._input("Describe your character (optional): ")

        print("\nThe story begins...")
        return await self.orchestrator.start_session(
            genre, Character(name=name, description=description)
        )

    def _show(self, result: TurnResult) -> None:
        if not result.persisted:
            print(self.formatter.format_error("Progress could not be saved; playing on"))
        if not result.success:
            failure = result.failure
            hint = "Try the same choice again." if failure.retryable else None
            print(self.formatter.format_error(failure.message, hint))
            return

        view = result.view
        print(self.formatter.format_round(view))
        if view.ending is not None:
            print(self.formatter.format_ending(view.ending))

    async def _confirm_pending(self, result: TurnResult) -> TurnResult:
        while result.success and result.awaiting_confirmation:
            await self._input("\n[Enter] to continue ")
            result = await self.orchestrator.acknowledge_dice_result()
        return result

    async def _handle(self, parsed: ParsedCommand) -> bool:
        """Run one command; returns False when the loop should stop"""
        cmd = parsed.command_type
        orchestrator = self.orchestrator

        if cmd == PlayerCommandType.QUIT:
            return False

        if cmd == PlayerCommandType.INFO:
            self._show(TurnResult.ok(orchestrator.view()))
            return True

        if cmd == PlayerCommandType.SESSIONS:
            try:
                sessions = self.store.list_all()
            except PersistenceError as e:
                logger.error(f"Failed to list sessions: {e}")
                print(self.formatter.format_error(f"Saved sessions are unavailable: {e}"))
                return True
            for session in sessions:
                status = session.ending.type.value if session.ending else "in progress"
                print(
                    f"  {session.id}  {session.character.name:<20} "
                    f"round {session.round_number}/{session.max_rounds}  {status}"
                )
            return True

        if cmd == PlayerCommandType.RESUME:
            self._show(orchestrator.resume(parsed.args["session_id"]))
            return True

        if cmd == PlayerCommandType.END:
            result = await orchestrator.request_ending()
        elif cmd == PlayerCommandType.CHOOSE and orchestrator.current_round.is_goal_selection:
            result = await orchestrator.select_goal(parsed.args["index"])
        elif cmd == PlayerCommandType.CHOOSE:
            result = await orchestrator.submit_choice(parsed.args["index"])
        else:
            result = await orchestrator.submit_choice(parsed.args["text"])

        result = await self._confirm_pending(result)
        self._show(result)
        return True

    async def run(self) -> None:
        """Start (or resume) a session and play until the story ends or the player quits"""
        result = await self._create_session()
        while not result.success:
            self._show(result)
            await self._input("[Enter] to retry ")
            result = await self._create_session()

        print(self.formatter.format_header(result.view))
        self._show(result)

        while True:
            if self.orchestrator.session.is_ended:
                print("\nThanks for playing.")
                return
            try:
                parsed = self.parser.parse(await self._input("\n> "))
            except InvalidCommandError as e:
                print(self.formatter.format_error(str(e), "Type a choice number, an action or /quit"))
                continue

            if not await self._handle(parsed):
                print(f"\nSession saved as {self.orchestrator.session.id}")
                return


def build_client(settings: Settings) -> NarrativeClient:
    """Real narrator when an API key is configured, offline mock otherwise"""
    if settings.narrative_api_key:
        return OpenAINarrativeClient.from_settings(settings)
    logger.warning("No narrative API key configured, using the offline mock narrator")
    return MockNarrativeClient()


def build_store(settings: Settings) -> SessionStore:
    """Redis store when reachable, in-memory store otherwise"""
    try:
        redis_client = Redis.from_url(settings.redis_url)
        redis_client.ping()
        logger.info("Connected to Redis successfully")
        return RedisSessionStore(redis_client, key_prefix=settings.session_key_prefix)
    except RedisError as e:
        logger.warning(f"Could not connect to Redis ({e}); sessions will not outlive this process")
        return InMemorySessionStore()


def main() -> None:
    """Entry point for running the CLI"""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir, console_output=False)

    store = build_store(settings)
    orchestrator = SessionOrchestrator(build_client(settings), store, settings)
    cli = PlayerCommandLineInterface(orchestrator, store)

    try:
        asyncio.run(cli.run())
    except (KeyboardInterrupt, EOFError):
        print("\nGoodbye.")
    except Exception as e:
        print(f"\nFatal error: {e}")
        logger.exception("Fatal error in CLI")
        sys.exit(1)


if __name__ == "__main__":
    main()

# ABOUTME: Structured logging configuration using loguru for session and turn diagnostics.
# ABOUTME: Supports context fields (session, round, phase, turn state) and file/console output.

import sys
from pathlib import Path
from typing import Any

from loguru import logger


# Default log format with structured context
DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | "
    "{extra}"
)

VALID_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def setup_logging(
    log_level: str = "INFO",
    log_dir: str | Path | None = None,
    console_output: bool = True,
    file_output: bool = True,
    format_string: str | None = None,
    rotation: str = "100 MB",
    retention: str = "30 days",
    compression: str = "zip"
) -> None:
    """
    Configure loguru sinks for the storyteller process.

    This setup enables:
    - Structured context fields via logger.bind()
    - Console output with color formatting
    - File output with rotation and compression

    Usage:
        >>> setup_logging(log_level="DEBUG", log_dir="logs")
        >>> logger.bind(session="session-1", round=4).info("Turn started")

    Args:
        log_level: Minimum log level ("DEBUG", "INFO", "WARNING", "ERROR", ...)
        log_dir: Directory for log files (default: "logs")
        console_output: Enable console logging (default: True)
        file_output: Enable file logging (default: True)
        format_string: Custom format string (default: structured format)
        rotation: When to rotate log files (default: "100 MB")
        retention: How long to keep old logs (default: "30 days")
        compression: Compression for rotated logs (default: "zip")

    Raises:
        ValueError: If log_level is invalid
    """
    log_level = log_level.upper()
    if log_level not in VALID_LEVELS:
        raise ValueError(
            f"Invalid log level: '{log_level}'. "
            f"Must be one of: {', '.join(sorted(VALID_LEVELS))}"
        )

    logger.remove()

    fmt = format_string or DEFAULT_FORMAT

    if console_output:
        logger.add(
            sys.stderr,
            format=fmt,
            level=log_level,
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    if file_output:
        log_path = Path("logs") if log_dir is None else Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path / "storyteller_{time:YYYY-MM-DD}.log"),
            format=fmt,
            level=log_level,
            rotation=rotation,
            retention=retention,
            compression=compression,
            backtrace=True,
            diagnose=False,
            enqueue=True,  # Thread-safe
        )

    logger.info(
        f"Logging configured: level={log_level}, "
        f"console={console_output}, file={file_output}"
    )


def log_turn_event(
    message: str,
    session_id: str,
    round_number: int,
    phase: str | None = None,
    level: str = "INFO",
    **extra_context: Any
) -> None:
    """
    Log a turn event with the standard session context fields.

    Usage:
        >>> log_turn_event(
        ...     "Choice recorded",
        ...     session_id="session-ab12",
        ...     round_number=4,
        ...     phase="development",
        ...     choice="Scale the wall",
        ... )

    Args:
        message: Log message
        session_id: Session identifier
        round_number: Active round (1-based)
        phase: Optional narrative phase
        level: Log level (default: "INFO")
        **extra_context: Additional context fields
    """
    context: dict[str, Any] = {
        "session": session_id,
        "round": round_number,
        **extra_context,
    }
    if phase:
        context["phase"] = phase

    logger.bind(**context).log(level.upper(), message)


def log_turn_transition(
    from_state: str,
    to_state: str,
    session_id: str,
    round_number: int,
    event: str | None = None
) -> None:
    """
    Log a turn-commit state machine transition.

    Args:
        from_state: Previous TurnState value
        to_state: New TurnState value
        session_id: Session identifier
        round_number: Active round (1-based)
        event: Event that caused the transition
    """
    context: dict[str, Any] = {
        "from_state": from_state,
        "to_state": to_state,
        "session": session_id,
        "round": round_number,
    }
    if event is not None:
        context["event"] = event

    logger.bind(**context).debug(f"Turn transition: {from_state} -> {to_state}")


def log_quality_signal(
    signal: str,
    session_id: str | None = None,
    round_number: int | None = None,
    **extra_context: Any
) -> None:
    """
    Record that the narrative service broke its output contract.

    These are expected and recovered locally; they are logged at WARNING so
    output quality can be tracked without surfacing anything to the player.

    Args:
        signal: Short identifier (e.g. "invalid_progress", "heuristic_parse")
        session_id: Optional session identifier
        round_number: Optional round number
        **extra_context: Additional context fields
    """
    context: dict[str, Any] = {"signal": signal, **extra_context}
    if session_id is not None:
        context["session"] = session_id
    if round_number is not None:
        context["round"] = round_number

    logger.bind(**context).warning(f"Narrative quality signal: {signal}")

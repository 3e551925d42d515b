# ABOUTME: Exception definitions for orchestration layer errors.
# ABOUTME: Defines error types raised by the turn state machine and SessionOrchestrator.

from storyteller.models.exceptions import InvariantViolation


class InvalidTurnTransition(Exception):
    """Raised when an event is not allowed in the current turn state"""

    def __init__(self, state: str, event: str):
        super().__init__(f"Event '{event}' is not allowed in turn state '{state}'")
        self.state = state
        self.event = event


class NoActiveSession(Exception):
    """Raised when an operation needs a session but none is loaded"""

    pass


__all__ = ["InvalidTurnTransition", "InvariantViolation", "NoActiveSession"]

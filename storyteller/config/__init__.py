"""Configuration module for the narrative session orchestrator"""

from .prompts import (
    ENDING_OUTPUT_FORMAT,
    GOAL_SELECTION_OUTPUT_FORMAT,
    OUTPUT_FORMAT,
    OUTPUT_FORMAT_WITH_GOAL,
    PROLOGUE_OUTPUT_FORMAT,
    build_prompt,
)
from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "build_prompt",
    "PROLOGUE_OUTPUT_FORMAT",
    "OUTPUT_FORMAT",
    "OUTPUT_FORMAT_WITH_GOAL",
    "GOAL_SELECTION_OUTPUT_FORMAT",
    "ENDING_OUTPUT_FORMAT",
]

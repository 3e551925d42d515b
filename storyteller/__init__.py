"""Narrative session orchestrator for turn-based interactive fiction"""

__version__ = "0.1.0"

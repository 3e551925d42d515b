"""Narrative service boundary: clients, retry policy and the response validator"""

from .exceptions import MalformedOutput, NarrativeServiceError, NarrativeTimeout
from .llm_client import NarrativeClient, OpenAINarrativeClient
from .mock_client import MockNarrativeClient
from .response_parser import build_fallback, normalize_choices, parse_narrative_response

__all__ = [
    "NarrativeServiceError",
    "NarrativeTimeout",
    "MalformedOutput",
    "NarrativeClient",
    "OpenAINarrativeClient",
    "MockNarrativeClient",
    "parse_narrative_response",
    "normalize_choices",
    "build_fallback",
]

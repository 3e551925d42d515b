# ABOUTME: Exception definitions for the narrative service boundary.
# ABOUTME: Defines error types raised by narrative clients and the response validator.


class NarrativeServiceError(Exception):
    """Raised when the narrative service call fails after retries"""
    pass


class MalformedOutput(Exception):
    """Raised inside the validator when a parse stage cannot produce a usable payload"""
    pass


class NarrativeTimeout(NarrativeServiceError):
    """Raised when a generation exceeds the per-turn timeout"""
    pass

# ABOUTME: Exception definitions for data-model invariant breaches.
# ABOUTME: InvariantViolation is raised by any layer that detects a state the models forbid.


class InvariantViolation(Exception):
    """Raised when a session or round would break a model invariant"""
    pass

"""
Exception taxonomy for the review engine.

InvalidTransition is recoverable: the rejected call leaves session state
exactly as it was. DivisionByZeroError is fatal to the scheduling attempt
that raised it and is always propagated to the caller.
"""

from __future__ import annotations


class ReviewEngineError(Exception):
    """Base class for all review engine errors."""

    pass


class InvalidTransition(ReviewEngineError):
    """Raised when an operation is attempted outside its precondition."""

    pass


class DivisionByZeroError(ReviewEngineError, ZeroDivisionError):
    """Raised when a schedule is requested for a session with no questions."""

    pass


class InvalidSessionError(ReviewEngineError, ValueError):
    """Raised when a session is built from an unusable item list."""

    pass

"""Errors raised when talking to the workflow engine.

Domain errors and technical failures raised inside handlers never appear here:
handlers classify those themselves into an outcome (see `tasks.outcome`).
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for errors reported by (or about) the workflow engine."""


class EngineUnavailable(EngineError):
    """The engine could not be reached.

    Always retryable. Pollers back off and try again; it is never fatal.
    """


class TaskNotFoundError(EngineError):
    """The external task no longer exists (completed, cancelled or deleted)."""


class LeaseLostError(EngineError):
    """The engine rejected a report because this worker no longer holds the lock."""


class InstanceNotFoundError(EngineError):
    """No running or archived process instance with the given id."""


class ReviewTaskNotFoundError(EngineError):
    """No open review task with the given id."""

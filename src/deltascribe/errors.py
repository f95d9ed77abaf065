"""Exception hierarchy for the edit tracking and personalization engine."""

from __future__ import annotations


class DeltaScribeError(Exception):
    """Base class for all deltascribe errors."""


class SessionClosedError(DeltaScribeError):
    """A mutation or save was attempted on a session that is no longer open."""

    def __init__(self, session_id: str, state: str) -> None:
        super().__init__(f"Edit session {session_id} is {state}; it no longer accepts changes")
        self.session_id = session_id
        self.state = state


class InsufficientDataError(DeltaScribeError):
    """Feedback analysis was requested with too few records.

    Callers should skip personalization and fall back to the base prompt.
    """

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Need at least {required} feedback records for analysis, got {available}"
        )
        self.available = available
        self.required = required


class PersistenceError(DeltaScribeError):
    """Reading from or writing to the persistent store failed."""


class ExperimentNotFoundError(DeltaScribeError):
    """No experiment exists with the requested id."""


class UnknownVariantError(DeltaScribeError):
    """An outcome was recorded for a variant the experiment does not contain."""


class ExperimentConcludedError(DeltaScribeError):
    """An outcome was recorded for an experiment that has been concluded."""

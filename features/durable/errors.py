"""
Exceptions raised by the durable step executor.
"""

from __future__ import annotations


class DurableError(Exception):
    """Base class for engine errors."""


class RunNotFoundError(DurableError):
    """No run is stored under the given id."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class StepFailedError(DurableError):
    """A step raised and either had no retry policy or exhausted it.

    Attributes:
        step: Name of the failed step.
        attempts: Number of times the step's work was invoked.
    """

    def __init__(self, step: str, attempts: int, cause: BaseException):
        self.step = step
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Step '{step}' failed after {attempts} attempt(s): {cause}")


class RunCancelledError(DurableError):
    """Cancellation was requested for the run before the named step started."""

    def __init__(self, run_id: str, step: str):
        self.run_id = run_id
        self.step = step
        super().__init__(f"Run {run_id} cancelled before step '{step}'")

"""
Data models for the durable steps feature.

A Run owns an append-only log of StepRecords. The presence of a successful
record for a step name is what tells the executor to skip that step on replay.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


@dataclass
class StepRecord:
    """A checkpointed step outcome. Never mutated once appended."""
    name: str
    completed_at: str
    result: Any = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class Run:
    """One execution instance of a workflow definition."""
    id: str
    params: list[dict]
    started_at: str
    status: RunStatus = RunStatus.RUNNING
    steps: list[StepRecord] = field(default_factory=list)
    completed_at: str | None = None
    output: Any = None
    error: str | None = None
    cancel_requested: bool = False

    def record(self, name: str) -> StepRecord | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def snapshot(self) -> dict:
        """Status view returned to callers; ``output`` is set once complete."""
        return {
            "id": self.id,
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "steps": [s.name for s in self.steps],
            "error": self.error,
            "output": self.output if self.status is RunStatus.COMPLETE else None,
        }

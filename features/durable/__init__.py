"""
Durable steps feature — named, checkpointed steps that replay after restarts.

Public API:
    from features.durable import StepExecutor, StepContext, RetryPolicy
    from features.durable import InMemoryStepStore, PostgresStepStore
    from features.durable import Run, RunStatus, StepRecord
"""

from features.durable.errors import (
    DurableError,
    RunCancelledError,
    RunNotFoundError,
    StepFailedError,
)
from features.durable.executor import StepContext, StepExecutor
from features.durable.models import Run, RunStatus, StepRecord
from features.durable.retry import RetryPolicy
from features.durable.store import InMemoryStepStore, PostgresStepStore, StepStore

__all__ = [
    "DurableError",
    "InMemoryStepStore",
    "PostgresStepStore",
    "RetryPolicy",
    "Run",
    "RunCancelledError",
    "RunNotFoundError",
    "RunStatus",
    "StepContext",
    "StepExecutor",
    "StepFailedError",
    "StepRecord",
    "StepStore",
]

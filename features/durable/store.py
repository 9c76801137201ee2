"""
Step record stores.

The executor only talks to a StepStore. InMemoryStepStore keeps everything in
process (tests, single-process dev); PostgresStepStore persists through
features.durable.db so a restarted process can replay a run.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from features.durable.errors import RunNotFoundError
from features.durable.models import Run, RunStatus, StepRecord
from models.schemas import isoformat

log = logging.getLogger(__name__)


class StepStore(ABC):
    """Append-only step log plus run metadata."""

    @abstractmethod
    def create_run(self, run: Run) -> None: ...

    @abstractmethod
    def get_run(self, run_id: str) -> Run | None:
        """Return the run with its step log loaded, or None."""

    @abstractmethod
    def append_step(self, run_id: str, record: StepRecord) -> None: ...

    @abstractmethod
    def finish_run(self, run: Run) -> None:
        """Persist a terminal status, output and error."""

    @abstractmethod
    def list_runs(self, limit: int = 50, status: str | None = None) -> list[Run]: ...

    @abstractmethod
    def request_cancel(self, run_id: str) -> bool: ...

    @abstractmethod
    def is_cancel_requested(self, run_id: str) -> bool: ...


class InMemoryStepStore(StepStore):
    """Dict-backed store. Returns copies so callers never share mutable state."""

    def __init__(self):
        self._runs: dict[str, Run] = {}
        self._lock = threading.Lock()

    def create_run(self, run: Run) -> None:
        with self._lock:
            if run.id in self._runs:
                raise ValueError(f"Run already exists: {run.id}")
            self._runs[run.id] = copy.deepcopy(run)

    def get_run(self, run_id: str) -> Run | None:
        with self._lock:
            run = self._runs.get(run_id)
            return copy.deepcopy(run) if run else None

    def append_step(self, run_id: str, record: StepRecord) -> None:
        with self._lock:
            run = self._require(run_id)
            if run.record(record.name) is None:
                run.steps.append(copy.deepcopy(record))

    def finish_run(self, run: Run) -> None:
        with self._lock:
            stored = self._require(run.id)
            if stored.status.is_terminal:
                return
            stored.status = run.status
            stored.completed_at = run.completed_at
            stored.output = copy.deepcopy(run.output)
            stored.error = run.error

    def list_runs(self, limit: int = 50, status: str | None = None) -> list[Run]:
        with self._lock:
            runs = [r for r in reversed(list(self._runs.values()))
                    if status is None or r.status.value == status]
            return [copy.deepcopy(r) for r in runs[:limit]]

    def request_cancel(self, run_id: str) -> bool:
        with self._lock:
            run = self._require(run_id)
            if run.status.is_terminal:
                return False
            run.cancel_requested = True
            return True

    def is_cancel_requested(self, run_id: str) -> bool:
        with self._lock:
            run = self._runs.get(run_id)
            return bool(run and run.cancel_requested)

    def _require(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run


class PostgresStepStore(StepStore):
    """Store backed by the snapshot_runs / step_records tables."""

    def __init__(self, db=None):
        if db is None:
            from features.durable import db
        self._db = db

    def init(self) -> "PostgresStepStore":
        self._db.init_db()
        return self

    def create_run(self, run: Run) -> None:
        self._db.insert_run({
            "run_id": run.id,
            "params": run.params,
            "status": run.status.value,
            "started_at": run.started_at,
        })

    def get_run(self, run_id: str) -> Run | None:
        row = self._db.get_run(run_id)
        if row is None:
            return None
        return run_from_row(row, self._db.get_steps_for_run(run_id))

    def append_step(self, run_id: str, record: StepRecord) -> None:
        self._db.insert_step(run_id, {
            "name": record.name,
            "result": record.result,
            "error": record.error,
            "completed_at": record.completed_at,
        })

    def finish_run(self, run: Run) -> None:
        self._db.update_run({
            "run_id": run.id,
            "status": run.status.value,
            "completed_at": run.completed_at,
            "output": run.output,
            "error": run.error,
        })

    def list_runs(self, limit: int = 50, status: str | None = None) -> list[Run]:
        return [run_from_row(row, []) for row in self._db.list_runs(limit=limit, status=status)]

    def request_cancel(self, run_id: str) -> bool:
        return self._db.request_cancel(run_id)

    def is_cancel_requested(self, run_id: str) -> bool:
        return self._db.is_cancel_requested(run_id)


def _ts(value) -> str | None:
    if isinstance(value, datetime):
        return isoformat(value)
    return value


def run_from_row(row: dict, step_rows: list[dict]) -> Run:
    """Build a Run from a snapshot_runs row and its step_records rows."""
    return Run(
        id=row["run_id"],
        params=list(row.get("params") or []),
        started_at=_ts(row["started_at"]),
        status=RunStatus(row["status"]),
        steps=[
            StepRecord(
                name=s["name"],
                completed_at=_ts(s["completed_at"]),
                result=s.get("result"),
                error=s.get("error"),
            )
            for s in step_rows
        ],
        completed_at=_ts(row.get("completed_at")),
        output=row.get("output"),
        error=row.get("error"),
        cancel_requested=bool(row.get("cancel_requested")),
    )

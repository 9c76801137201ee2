"""
Run Controller — creates snapshot runs and answers status queries.

RunController drives runs with the in-process StepExecutor; TemporalRunController
hands them to a Temporal worker. Both expose the same coroutine API:

    handle = await controller.create(sites)      # sites=None → DEFAULT_SITES
    await controller.status(handle.run_id)       # {"status": "running", ...}
    await controller.cancel(handle.run_id)
    await controller.list_runs()
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

from temporalio.client import Client, WorkflowExecutionStatus, WorkflowFailureError
from temporalio.service import RPCError, RPCStatusCode

import config
from activities.capture import CaptureClient
from features.durable import Run, RunNotFoundError, RunStatus, StepExecutor, StepStore
from models.schemas import SiteDescriptor, isoformat
from models.sites import DEFAULT_SITES
from workflows.snapshot import NewsSnapshotWorkflow, news_snapshot

log = logging.getLogger(__name__)


def new_run_id() -> str:
    return f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


def resolve_sites(sites: Iterable[Any] | None) -> list[dict]:
    """Normalize caller-supplied sites (or the defaults) into descriptor dicts."""
    chosen = DEFAULT_SITES if sites is None else sites
    return [SiteDescriptor.from_value(s).to_dict() for s in chosen]


class RunHandle:
    """Reference to a started run. ``await handle.result()`` waits for a terminal status."""

    def __init__(self, run_id: str, wait: Callable[[], Awaitable[dict]]):
        self.run_id = run_id
        self._wait = wait

    async def result(self) -> dict:
        return await self._wait()

    def __repr__(self) -> str:
        return f"RunHandle({self.run_id!r})"


class RunController:
    """Runs snapshot workflows in this process on top of a StepStore."""

    def __init__(
        self,
        settings: config.SnapshotSettings,
        store: StepStore,
        *,
        executor: StepExecutor | None = None,
        client_factory: Callable[[], CaptureClient] | None = None,
        runs_dir: Path | None = config.RUNS_DIR,
    ):
        self.settings = settings
        self.store = store
        self.executor = executor or StepExecutor(store)
        self._client_factory = client_factory or partial(CaptureClient.from_settings, settings)
        self.runs_dir = runs_dir
        self._tasks: dict[str, asyncio.Task] = {}

    async def create(self, sites: Iterable[Any] | None = None) -> RunHandle:
        """Start a new run. Raises ConfigurationError before anything is stored."""
        self.settings.validate()
        run = Run(
            id=new_run_id(),
            params=resolve_sites(sites),
            started_at=isoformat(self.executor.clock()),
        )
        self.store.create_run(run)
        log.info("Run %s created with %d site(s)", run.id, len(run.params))
        return self._launch(run.id)

    async def resume(self, run_id: str) -> RunHandle:
        """Re-invoke the executor for an existing run; recorded steps are replayed."""
        if run_id in self._tasks:
            task = self._tasks[run_id]
            return RunHandle(run_id, partial(self._snapshot_after, task))
        if self.store.get_run(run_id) is None:
            raise RunNotFoundError(run_id)
        self.settings.validate()
        log.info("Run %s resuming", run_id)
        return self._launch(run_id)

    async def recover(self) -> list[RunHandle]:
        """Resume every run the store still lists as running (e.g. after a restart)."""
        pending = self.store.list_runs(limit=1000, status=RunStatus.RUNNING.value)
        if pending:
            log.info("Recovering %d unfinished run(s)", len(pending))
        return [await self.resume(run.id) for run in pending]

    async def status(self, run_id: str) -> dict:
        run = self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run.snapshot()

    async def cancel(self, run_id: str) -> dict:
        """Ask a running run to stop before its next step."""
        if self.store.get_run(run_id) is None:
            raise RunNotFoundError(run_id)
        if self.store.request_cancel(run_id):
            log.info("Run %s cancellation requested", run_id)
        return await self.status(run_id)

    async def list_runs(self, limit: int = 50, status: str | None = None) -> list[dict]:
        return [run.snapshot() for run in self.store.list_runs(limit=limit, status=status)]

    def _launch(self, run_id: str) -> RunHandle:
        task = asyncio.create_task(self._execute(run_id), name=f"snapshot-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(partial(self._on_task_done, run_id))
        return RunHandle(run_id, partial(self._snapshot_after, task))

    def _on_task_done(self, run_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        if task.cancelled():
            log.warning("Run %s task cancelled; the run stays resumable", run_id)
            return
        exc = task.exception()
        if exc is not None:
            log.error("Run %s task crashed: %s", run_id, exc, exc_info=exc)

    async def _snapshot_after(self, task: asyncio.Task) -> dict:
        run = await task
        return run.snapshot()

    async def _execute(self, run_id: str) -> Run:
        async with self._client_factory() as client:
            run = await self.executor.run(run_id, partial(news_snapshot, capture_fn=client.capture))
        if run.status.is_terminal and self.runs_dir is not None:
            _save_run_log(self.runs_dir, run)
        return run


_TEMPORAL_STATUS = {
    WorkflowExecutionStatus.RUNNING: RunStatus.RUNNING,
    WorkflowExecutionStatus.CONTINUED_AS_NEW: RunStatus.RUNNING,
    WorkflowExecutionStatus.COMPLETED: RunStatus.COMPLETE,
    WorkflowExecutionStatus.FAILED: RunStatus.FAILED,
    WorkflowExecutionStatus.TIMED_OUT: RunStatus.FAILED,
    WorkflowExecutionStatus.TERMINATED: RunStatus.FAILED,
    WorkflowExecutionStatus.CANCELED: RunStatus.CANCELLED,
}


class TemporalRunController:
    """Starts snapshot runs as Temporal workflows; Temporal history holds the step log."""

    def __init__(
        self,
        client: Client,
        settings: config.SnapshotSettings,
        task_queue: str = config.TEMPORAL_TASK_QUEUE,
    ):
        self.client = client
        self.settings = settings
        self.task_queue = task_queue

    async def create(self, sites: Iterable[Any] | None = None) -> RunHandle:
        self.settings.validate()
        run_id = new_run_id()
        params = resolve_sites(sites)
        await self.client.start_workflow(
            NewsSnapshotWorkflow.run,
            params,
            id=run_id,
            task_queue=self.task_queue,
        )
        log.info("Run %s started via Temporal with %d site(s)", run_id, len(params))
        return RunHandle(run_id, partial(self._snapshot_after_result, run_id))

    async def recover(self) -> list[RunHandle]:
        """Temporal workers replay open workflows themselves."""
        return []

    async def status(self, run_id: str) -> dict:
        handle = self.client.get_workflow_handle(run_id)
        try:
            desc = await handle.describe()
        except RPCError as e:
            if e.status == RPCStatusCode.NOT_FOUND:
                raise RunNotFoundError(run_id) from e
            raise

        status = _TEMPORAL_STATUS.get(desc.status, RunStatus.RUNNING)
        output = None
        error = None
        if status is RunStatus.COMPLETE:
            output = await handle.result()
        elif status is RunStatus.FAILED:
            try:
                await handle.result()
            except WorkflowFailureError as e:
                error = str(e.cause or e)
        return {
            "id": run_id,
            "status": status.value,
            "startedAt": isoformat(desc.start_time) if desc.start_time else None,
            "completedAt": isoformat(desc.close_time) if desc.close_time else None,
            "steps": [],
            "error": error,
            "output": output,
        }

    async def cancel(self, run_id: str) -> dict:
        await self.status(run_id)
        await self.client.get_workflow_handle(run_id).cancel()
        log.info("Run %s cancellation requested via Temporal", run_id)
        return await self.status(run_id)

    async def list_runs(self, limit: int = 50, status: str | None = None) -> list[dict]:
        runs = []
        async for execution in self.client.list_workflows(
            f"WorkflowType = '{NewsSnapshotWorkflow.__name__}'"
        ):
            mapped = _TEMPORAL_STATUS.get(execution.status, RunStatus.RUNNING)
            if status and mapped.value != status:
                continue
            runs.append({
                "id": execution.id,
                "status": mapped.value,
                "startedAt": isoformat(execution.start_time),
                "completedAt": isoformat(execution.close_time) if execution.close_time else None,
            })
            if len(runs) >= limit:
                break
        return runs

    async def _snapshot_after_result(self, run_id: str) -> dict:
        try:
            await self.client.get_workflow_handle(run_id).result()
        except WorkflowFailureError:
            log.info("Run %s ended without a summary", run_id)
        return await self.status(run_id)


def _save_run_log(runs_dir: Path, run: Run) -> str:
    """Save the terminal run record to the snapshot_runs/ directory."""
    runs_dir.mkdir(parents=True, exist_ok=True)
    file_path = runs_dir / f"{run.id}.json"
    record = {**run.snapshot(), "params": run.params, "output": run.output}
    with open(file_path, "w") as f:
        json.dump(record, f, indent=2, default=str)
    log.info("Run log saved: %s", file_path)
    return str(file_path)

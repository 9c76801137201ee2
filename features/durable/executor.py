"""
Durable Step Executor — runs a workflow definition as a chain of named steps.

Each step's result is appended to the run's step log before the definition
moves on. When the same run is executed again (after a crash, a restart, or
an explicit resume) every step whose name is already in the log returns the
stored result instead of running its work again, so execution picks up at the
first step without a record.

    async def definition(ctx: StepContext):
        info = await ctx.step("initialize", lambda: {...})
        await ctx.sleep("pause-1", timedelta(seconds=5))
        return await ctx.step("finish", do_work, retry=RetryPolicy())

    run = await StepExecutor(store).run(run_id, definition)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from features.durable.errors import RunCancelledError, RunNotFoundError, StepFailedError
from features.durable.models import Run, RunStatus, StepRecord
from features.durable.retry import RetryPolicy
from features.durable.store import StepStore
from models.schemas import isoformat, parse_timestamp, utcnow

log = logging.getLogger(__name__)

Definition = Callable[["StepContext"], Awaitable[Any]]


class StepContext:
    """Handle passed to a workflow definition for one invocation of a run."""

    def __init__(self, executor: "StepExecutor", run: Run):
        self._executor = executor
        self._store = executor.store
        self.run_id = run.id
        self.params = run.params
        self._records = {r.name: r for r in run.steps}
        self._seen: set[str] = set()

    def now(self) -> datetime:
        return self._executor.clock()

    def _claim(self, name: str) -> None:
        if name in self._seen:
            raise ValueError(f"Duplicate step name in run {self.run_id}: {name}")
        self._seen.add(name)

    def _check_cancelled(self, name: str) -> None:
        if self._store.is_cancel_requested(self.run_id):
            log.info("[STEP] Cancelled: %s before %s", self.run_id, name)
            raise RunCancelledError(self.run_id, name)

    async def step(self, name: str, work: Callable[[], Any], retry: RetryPolicy | None = None) -> Any:
        """Run ``work`` once for this run and checkpoint its result under ``name``."""
        self._claim(name)
        existing = self._records.get(name)
        if existing is not None and existing.succeeded:
            log.info("[STEP] Replayed: %s — %s", self.run_id, name)
            return existing.result
        if existing is not None:
            # A failed record is terminal for the run; surface it again unchanged.
            raise StepFailedError(name, 0, RuntimeError(existing.error))

        self._check_cancelled(name)
        log.info("[STEP] Started: %s — %s", self.run_id, name)
        attempt = 1
        while True:
            try:
                result = work()
                if inspect.isawaitable(result):
                    result = await result
                break
            except Exception as exc:
                if retry is None or not retry.should_retry(attempt):
                    self._append(StepRecord(name=name, completed_at=isoformat(self.now()), error=str(exc)))
                    log.error("[STEP] Failed: %s — %s after %d attempt(s): %s",
                              self.run_id, name, attempt, exc)
                    raise StepFailedError(name, attempt, exc) from exc
                delay = retry.delay_for(attempt)
                log.warning("[STEP] Retrying: %s — %s (attempt %d/%d) in %.0fs: %s",
                            self.run_id, name, attempt, retry.max_attempts, delay, exc)
                await self._executor.sleep(delay)
                attempt += 1

        self._append(StepRecord(name=name, completed_at=isoformat(self.now()), result=result))
        log.info("[STEP] Completed: %s — %s", self.run_id, name)
        return result

    async def sleep(self, name: str, duration: timedelta | float) -> None:
        """Durable timer. On replay only the remaining time (if any) is waited."""
        self._claim(name)
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        existing = self._records.get(name)
        if existing is not None:
            wake_at = parse_timestamp(existing.result["wakeAt"])
            remaining = (wake_at - self.now()).total_seconds()
            if remaining > 0:
                log.info("[STEP] Resuming sleep: %s — %s (%.1fs left)", self.run_id, name, remaining)
                await self._executor.sleep(remaining)
            return

        self._check_cancelled(name)
        now = self.now()
        wake_at = now + timedelta(seconds=seconds)
        self._append(StepRecord(name=name, completed_at=isoformat(now), result={"wakeAt": isoformat(wake_at)}))
        log.info("[STEP] Sleeping: %s — %s (%.1fs)", self.run_id, name, seconds)
        await self._executor.sleep(seconds)

    def _append(self, record: StepRecord) -> None:
        self._store.append_step(self.run_id, record)
        self._records[record.name] = record


class StepExecutor:
    """Executes workflow definitions against a StepStore.

    ``sleep`` and ``clock`` are injectable so retries and timers can be
    driven without real waiting.
    """

    def __init__(
        self,
        store: StepStore,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.sleep = sleep
        self.clock = clock

    async def run(self, run_id: str, definition: Definition) -> Run:
        """Execute (or resume) a run to a terminal state and return it."""
        run = self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.status.is_terminal:
            log.info("Run %s already %s — nothing to do", run_id, run.status.value)
            return run

        ctx = StepContext(self, run)
        log.info("Run %s executing (%d step(s) already recorded)", run_id, len(run.steps))
        try:
            output = await definition(ctx)
        except RunCancelledError as e:
            self._finish(run, RunStatus.CANCELLED, error=str(e))
        except StepFailedError as e:
            self._finish(run, RunStatus.FAILED, error=str(e))
        except Exception as e:
            log.error("Run %s failed outside a step: %s", run_id, e, exc_info=True)
            self._finish(run, RunStatus.FAILED, error=str(e))
        else:
            self._finish(run, RunStatus.COMPLETE, output=output)

        return self.store.get_run(run_id) or run

    def _finish(self, run: Run, status: RunStatus, output: Any = None, error: str | None = None) -> None:
        run.status = status
        run.output = output
        run.error = error
        run.completed_at = isoformat(self.clock())
        self.store.finish_run(run)
        log.info("Run %s finished — status: %s", run.id, status.value)

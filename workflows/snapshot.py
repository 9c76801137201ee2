"""
Workflow: News Snapshot

Steps, in order:
  1. initialize-workflow      — record start time and the site list
  2. process-batch-N          — capture up to BATCH_SIZE sites concurrently (retried)
  3. wait-between-batches-N   — rate-limit pause, only between batches
  4. summarize-results        — fold all site results into the run summary

The same sequence is expressed twice: ``news_snapshot`` for the in-process
StepExecutor, and ``NewsSnapshotWorkflow`` for Temporal, whose event history
does the checkpointing.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from functools import partial

from temporalio import activity, workflow
from temporalio.common import RetryPolicy as TemporalRetryPolicy

with workflow.unsafe.imports_passed_through():
    import config
    from activities.batch import CaptureFn, partition, process_batch
    from activities.capture import CaptureClient
    from activities.summarize import aggregate
    from features.durable import RetryPolicy, StepContext
    from models.schemas import SiteDescriptor, SiteResult, isoformat, utcnow

log = logging.getLogger(__name__)


def batch_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        limit=config.RETRY_LIMIT,
        delay=config.RETRY_BASE_DELAY_SECONDS,
        backoff=config.RETRY_BACKOFF,
    )


# ── Step bodies shared by both backends ───────────────────────────────

def initialize_run(sites: list[dict], now: datetime) -> dict:
    return {
        "startTime": isoformat(now),
        "sitesCount": len(sites),
        "sites": [s["url"] for s in sites],
    }


def summarize_results(results: list[dict], start_time: str, now: datetime | None = None) -> dict:
    summary = aggregate([SiteResult.from_dict(r) for r in results], start_time, now)
    return summary.to_dict()


# ── In-process definition ─────────────────────────────────────────────

async def news_snapshot(ctx: StepContext, capture_fn: CaptureFn) -> dict:
    """Workflow definition for StepExecutor. ``ctx.params`` holds the site dicts."""
    sites = [SiteDescriptor.from_value(p).to_dict() for p in ctx.params]
    start_info = await ctx.step("initialize-workflow", lambda: initialize_run(sites, ctx.now()))

    batches = partition(sites, config.BATCH_SIZE)
    log.info("Run %s: %d site(s) in %d batch(es)", ctx.run_id, len(sites), len(batches))
    retry = batch_retry_policy()
    results: list[dict] = []
    for index, batch in enumerate(batches, start=1):
        batch_results = await ctx.step(
            f"process-batch-{index}",
            partial(process_batch, batch, capture_fn),
            retry=retry,
        )
        results.extend(batch_results)
        if index < len(batches):
            await ctx.sleep(
                f"wait-between-batches-{index}",
                timedelta(seconds=config.BATCH_DELAY_SECONDS),
            )

    return await ctx.step(
        "summarize-results",
        lambda: summarize_results(results, start_info["startTime"], ctx.now()),
    )


# ── Temporal ──────────────────────────────────────────────────────────

class SnapshotActivities:
    """Temporal activities. Settings are injected at worker start-up, never sent through history."""

    def __init__(self, settings: config.SnapshotSettings, transport=None):
        self.settings = settings
        self._transport = transport

    @activity.defn(name="initialize_workflow")
    async def initialize(self, sites: list[dict]) -> dict:
        return initialize_run(sites, utcnow())

    @activity.defn(name="process_batch")
    async def capture_batch(self, batch: list[dict]) -> list[dict]:
        async with CaptureClient.from_settings(self.settings, transport=self._transport) as client:
            return await process_batch(batch, client.capture)

    @activity.defn(name="summarize_results")
    async def summarize(self, results: list[dict], start_time: str) -> dict:
        return summarize_results(results, start_time)


@workflow.defn
class NewsSnapshotWorkflow:
    """Temporal workflow running the snapshot steps for a list of site dicts."""

    @workflow.run
    async def run(self, sites: list[dict]) -> dict:
        start_info = await workflow.execute_activity_method(
            SnapshotActivities.initialize, sites,
            activity_id="initialize-workflow",
            start_to_close_timeout=timedelta(minutes=1),
        )

        batches = partition(sites, config.BATCH_SIZE)
        policy = batch_retry_policy()
        results: list[dict] = []
        for index, batch in enumerate(batches, start=1):
            batch_results = await workflow.execute_activity_method(
                SnapshotActivities.capture_batch, batch,
                activity_id=f"process-batch-{index}",
                start_to_close_timeout=timedelta(minutes=5),
                retry_policy=TemporalRetryPolicy(
                    initial_interval=timedelta(seconds=policy.delay),
                    backoff_coefficient=2.0 if policy.backoff == "exponential" else 1.0,
                    maximum_attempts=policy.max_attempts,
                ),
            )
            results.extend(batch_results)
            if index < len(batches):
                await asyncio.sleep(config.BATCH_DELAY_SECONDS)

        summary = await workflow.execute_activity_method(
            SnapshotActivities.summarize,
            args=[results, start_info["startTime"]],
            activity_id="summarize-results",
            start_to_close_timeout=timedelta(minutes=1),
        )
        workflow.logger.info("Snapshot workflow complete: %d/%d captured",
                             summary["successful"], summary["totalSites"])
        return summary

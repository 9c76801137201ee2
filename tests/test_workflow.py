"""End-to-end tests of the snapshot workflow on the in-process executor."""

from functools import partial

from activities.batch import BatchError, process_batch
from features.durable import RunStatus, StepRecord
from models.schemas import SiteDescriptor
from workflows.snapshot import SnapshotActivities, news_snapshot


async def _run(executor, client, run_id="run-test"):
    async with client:
        return await executor.run(run_id, partial(news_snapshot, capture_fn=client.capture))


async def test_four_sites_two_batches_one_sleep(executor, clock, new_run, sites, capture_service):
    new_run(sites)

    run = await _run(executor, capture_service.client())

    assert run.status is RunStatus.COMPLETE
    assert [s.name for s in run.steps] == [
        "initialize-workflow",
        "process-batch-1",
        "wait-between-batches-1",
        "process-batch-2",
        "summarize-results",
    ]
    assert clock.sleeps == [5]
    assert len(run.record("process-batch-1").result) == 3
    assert len(run.record("process-batch-2").result) == 1

    summary = run.output
    assert summary["totalSites"] == 4
    assert summary["successful"] == 4
    assert summary["failed"] == 0
    assert [r["site"] for r in summary["results"]] == [s.url for s in sites]
    assert summary["durationSeconds"] == 5.0


async def test_no_sleep_after_single_batch(executor, clock, new_run, sites, capture_service):
    new_run(sites[:3])

    run = await _run(executor, capture_service.client())

    assert clock.sleeps == []
    assert "wait-between-batches-1" not in [s.name for s in run.steps]


async def test_one_site_500_still_completes(executor, new_run, sites, capture_service):
    new_run(sites[:3])
    capture_service.failing["https://b.example/"] = 500

    run = await _run(executor, capture_service.client())

    assert run.status is RunStatus.COMPLETE
    results = run.record("process-batch-1").result
    assert [(r["site"], r["status"]) for r in results] == [
        ("https://a.example/", "success"),
        ("https://b.example/", "error"),
        ("https://c.example/", "success"),
    ]
    assert "https://b.example/" in results[1]["error"]
    assert run.output["successful"] == 2
    assert run.output["failed"] == 1


async def test_style_override_is_sent(executor, new_run, sites, capture_service):
    new_run([sites[1]])

    await _run(executor, capture_service.client())

    assert capture_service.requests[0]["json"]["addStyleTag"] == [{"content": "#banner { display: none; }"}]


async def test_batch_step_exhausts_retries_and_fails_run(
    executor, clock, new_run, sites, capture_service, monkeypatch,
):
    new_run(sites)
    attempts = []

    async def service_down(batch, capture_fn):
        attempts.append([s["url"] for s in batch])
        raise BatchError("capture service unavailable")

    monkeypatch.setattr("workflows.snapshot.process_batch", service_down)

    run = await _run(executor, capture_service.client())

    assert run.status is RunStatus.FAILED
    assert len(attempts) == 4
    assert clock.sleeps == [10, 20, 40]
    assert run.output is None
    assert run.record("summarize-results") is None
    assert run.record("process-batch-1").error == "capture service unavailable"
    assert run.record("process-batch-2") is None


async def test_resume_skips_recorded_batches(store, executor, new_run, sites, capture_service):
    new_run(sites)
    store.append_step("run-test", StepRecord(
        name="initialize-workflow", completed_at="2026-01-01T07:59:00Z",
        result={"startTime": "2026-01-01T07:59:00Z", "sitesCount": 4, "sites": [s.url for s in sites]},
    ))
    store.append_step("run-test", StepRecord(
        name="process-batch-1", completed_at="2026-01-01T07:59:30Z",
        result=[
            {"site": s.url, "status": "success", "data": {"cached": True}, "timestamp": "2026-01-01T07:59:30Z"}
            for s in sites[:3]
        ],
    ))

    run = await _run(executor, capture_service.client())

    assert capture_service.captured == ["https://d.example/"]
    assert run.status is RunStatus.COMPLETE
    assert run.output["startTime"] == "2026-01-01T07:59:00Z"
    assert run.output["totalSites"] == 4
    assert run.output["results"][0]["data"] == {"cached": True}


async def test_retried_batch_recaptures_every_site(executor, new_run, sites, capture_service, monkeypatch):
    """A retried batch step discards the successes of the failed attempt."""
    new_run(sites[:3])

    calls = {"n": 0}

    async def fails_once(batch, capture_fn):
        results = await process_batch(batch, capture_fn)
        calls["n"] += 1
        if calls["n"] == 1:
            raise BatchError("lost the response")
        return results

    monkeypatch.setattr("workflows.snapshot.process_batch", fails_once)

    run = await _run(executor, capture_service.client())

    assert run.status is RunStatus.COMPLETE
    assert sorted(capture_service.captured) == sorted([s.url for s in sites[:3]] * 2)


async def test_temporal_batch_activity_uses_capture_service(settings, capture_service):
    activities = SnapshotActivities(settings, transport=capture_service.transport())

    results = await activities.capture_batch([SiteDescriptor(url="https://a.example/").to_dict()])

    assert results[0]["status"] == "success"
    assert capture_service.captured == ["https://a.example/"]

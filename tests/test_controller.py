"""Run controller tests (in-process backend)."""

import asyncio
import json
import logging

import pytest

import config
from features.durable import InMemoryStepStore, RunNotFoundError, StepExecutor, StepRecord
from models.sites import DEFAULT_SITES
from workflows.controller import RunController, new_run_id, resolve_sites


@pytest.fixture
def controller(settings, store, executor, capture_service, tmp_path):
    return RunController(
        settings,
        store,
        executor=executor,
        client_factory=capture_service.client,
        runs_dir=tmp_path,
    )


async def test_create_without_credentials_stores_nothing(store, executor, capture_service):
    controller = RunController(
        config.SnapshotSettings(api_url="", api_key=""),
        store,
        executor=executor,
        client_factory=capture_service.client,
        runs_dir=None,
    )

    with pytest.raises(config.ConfigurationError):
        await controller.create()

    assert store.list_runs() == []
    assert capture_service.requests == []


async def test_create_with_default_sites(controller, capture_service):
    handle = await controller.create()
    snapshot = await handle.result()

    assert snapshot["status"] == "complete"
    assert snapshot["output"]["totalSites"] == len(DEFAULT_SITES)
    assert sorted(capture_service.captured) == sorted(s.url for s in DEFAULT_SITES)


async def test_create_with_caller_sites(controller, capture_service):
    handle = await controller.create(["https://a.example/", {"url": "https://b.example/", "styleOverride": "x"}])

    first = await controller.status(handle.run_id)
    assert first["status"] == "running"
    assert first["output"] is None

    await handle.result()
    final = await controller.status(handle.run_id)

    assert final["status"] == "complete"
    assert final["output"]["successful"] + final["output"]["failed"] == final["output"]["totalSites"] == 2
    assert final["steps"] == ["initialize-workflow", "process-batch-1", "summarize-results"]
    b_request = next(r for r in capture_service.requests if r["json"]["url"] == "https://b.example/")
    assert b_request["json"]["addStyleTag"] == [{"content": "x"}]


async def test_status_of_unknown_run(controller):
    with pytest.raises(RunNotFoundError):
        await controller.status("run-does-not-exist")


async def test_cancel_before_first_step(controller, capture_service):
    handle = await controller.create(["https://a.example/"])
    await controller.cancel(handle.run_id)

    snapshot = await handle.result()

    assert snapshot["status"] == "cancelled"
    assert snapshot["steps"] == []
    assert capture_service.requests == []


async def test_cancel_unknown_run(controller):
    with pytest.raises(RunNotFoundError):
        await controller.cancel("run-missing")


async def test_resume_replays_recorded_steps(controller, store, new_run, sites, capture_service):
    new_run(sites[:3], run_id="run-crashed")
    store.append_step("run-crashed", StepRecord(
        name="initialize-workflow", completed_at="2026-01-01T07:00:00Z",
        result={"startTime": "2026-01-01T07:00:00Z", "sitesCount": 3, "sites": [s.url for s in sites[:3]]},
    ))

    handle = await controller.resume("run-crashed")
    snapshot = await handle.result()

    assert snapshot["status"] == "complete"
    assert snapshot["output"]["startTime"] == "2026-01-01T07:00:00Z"
    assert sorted(capture_service.captured) == sorted(s.url for s in sites[:3])


async def test_resume_unknown_run(controller):
    with pytest.raises(RunNotFoundError):
        await controller.resume("run-missing")


async def test_recover_resumes_running_runs(controller, new_run, sites):
    new_run(sites[:1], run_id="run-a")
    new_run(sites[1:2], run_id="run-b")

    handles = await controller.recover()
    results = [await h.result() for h in handles]

    assert sorted(h.run_id for h in handles) == ["run-a", "run-b"]
    assert all(r["status"] == "complete" for r in results)
    assert await controller.recover() == []


async def test_terminal_run_log_written(controller, tmp_path):
    handle = await controller.create(["https://a.example/"])
    await handle.result()

    log_file = tmp_path / f"{handle.run_id}.json"
    record = json.loads(log_file.read_text())
    assert record["status"] == "complete"
    assert record["params"] == [{"url": "https://a.example/", "styleOverride": None}]
    assert record["output"]["totalSites"] == 1


async def test_list_runs(controller):
    first = await controller.create(["https://a.example/"])
    await first.result()
    second = await controller.create(["https://b.example/"])
    await second.result()

    runs = await controller.list_runs()
    assert [r["id"] for r in runs] == [second.run_id, first.run_id]
    assert await controller.list_runs(status="failed") == []


async def test_empty_url_rejected_before_run_is_stored(controller, store, capture_service):
    with pytest.raises(ValueError):
        await controller.create(["https://a.example/", "", "https://c.example/"])

    assert store.list_runs() == []
    assert capture_service.requests == []


class FinishFailsStore(InMemoryStepStore):
    def finish_run(self, run):
        raise RuntimeError("database went away")


async def test_crashed_run_task_is_logged(settings, clock, capture_service, caplog):
    store = FinishFailsStore()
    controller = RunController(
        settings,
        store,
        executor=StepExecutor(store, sleep=clock.sleep, clock=clock.now),
        client_factory=capture_service.client,
        runs_dir=None,
    )

    handle = await controller.create(["https://a.example/"])
    with caplog.at_level(logging.ERROR, logger="workflows.controller"):
        with pytest.raises(RuntimeError):
            await handle.result()
        await asyncio.sleep(0)

    crashed = [r for r in caplog.records if "task crashed" in r.getMessage()]
    assert len(crashed) == 1
    assert handle.run_id in crashed[0].getMessage()
    assert crashed[0].exc_info is not None
    assert (await controller.status(handle.run_id))["status"] == "running"


def test_resolve_sites_defaults_and_validation():
    assert resolve_sites(None) == [s.to_dict() for s in DEFAULT_SITES]
    assert resolve_sites([]) == []
    with pytest.raises(ValueError):
        resolve_sites([42])
    with pytest.raises(ValueError):
        resolve_sites([""])
    with pytest.raises(ValueError):
        resolve_sites([{"url": "   "}])
    with pytest.raises(ValueError):
        resolve_sites([{"url": "https://a.example/", "styleOverride": 7}])


def test_resolve_sites_accepts_legacy_request_body():
    sites = resolve_sites([{"url": "https://a.example/", "requestBody": {"addStyleTag": "#x { display: none; }"}}])
    assert sites == [{"url": "https://a.example/", "styleOverride": "#x { display: none; }"}]


def test_run_ids_are_unique():
    assert new_run_id() != new_run_id()

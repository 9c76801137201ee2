"""Shared pytest fixtures.

- FakeClock: a clock whose sleep() advances time instead of waiting
- capture service doubles built on httpx.MockTransport
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

import config
from activities.capture import CaptureClient
from features.durable import InMemoryStepStore, Run, StepExecutor
from models.schemas import SiteDescriptor, isoformat

API_URL = "https://capture.test"
API_KEY = "test-key"


class FakeClock:
    """Deterministic time. ``sleep`` records the delay and moves the clock forward."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStepStore()


@pytest.fixture
def executor(store, clock):
    return StepExecutor(store, sleep=clock.sleep, clock=clock.now)


@pytest.fixture
def settings():
    return config.SnapshotSettings(api_url=API_URL, api_key=API_KEY)


@pytest.fixture
def sites():
    """A, B, C, D in order."""
    return [
        SiteDescriptor(url="https://a.example/"),
        SiteDescriptor(url="https://b.example/", style_override="#banner { display: none; }"),
        SiteDescriptor(url="https://c.example/"),
        SiteDescriptor(url="https://d.example/"),
    ]


@pytest.fixture
def new_run(store, clock):
    """Store a fresh running Run for the given site descriptors."""

    def _make(site_list, run_id="run-test"):
        run = Run(
            id=run_id,
            params=[s.to_dict() for s in site_list],
            started_at=isoformat(clock.now()),
        )
        store.create_run(run)
        return run

    return _make


class CaptureService:
    """Capture service double: per-URL status codes, records every request body."""

    def __init__(self, failing: dict[str, int] | None = None):
        self.failing = failing or {}
        self.requests: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append({"url": str(request.url), "headers": dict(request.headers), "json": body})
        status = self.failing.get(body["url"])
        if status:
            return httpx.Response(status, text="capture failed")
        return httpx.Response(200, json={"data": {"key": f"screenshots/{body['url']}.png"}})

    @property
    def captured(self) -> list[str]:
        return [r["json"]["url"] for r in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> CaptureClient:
        return CaptureClient(API_URL, API_KEY, transport=self.transport())


@pytest.fixture
def capture_service():
    return CaptureService()

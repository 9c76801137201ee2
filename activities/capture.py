"""
Activity: Capture Client — asks the external capture service for a full-page screenshot.

One request per site. Every failure mode (transport error, non-200 response,
body without ``data``) is folded into an error SiteResult; ``capture`` never
raises for ordinary exceptions.
"""

from __future__ import annotations

import logging

import httpx

import config
from models.schemas import SiteDescriptor, SiteResult

log = logging.getLogger(__name__)

CAPTURE_PATH = "/apps/capture-screenshot"


class CaptureError(Exception):
    """The capture service did not return usable screenshot data."""


def build_capture_request(site: SiteDescriptor) -> dict:
    """Request body for the capture service."""
    body: dict = {
        "url": site.url,
        "screenshotOptions": {"fullPage": True},
        "viewport": dict(config.VIEWPORT),
        "gotoOptions": {
            "waitUntil": config.NAVIGATION_WAIT_UNTIL,
            "timeout": config.NAVIGATION_TIMEOUT_MS,
        },
    }
    if site.style_override:
        body["addStyleTag"] = [{"content": site.style_override}]
    return body


class CaptureClient:
    """Async client for the capture service. Use as an async context manager."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        timeout: float = config.CAPTURE_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: config.SnapshotSettings, **kwargs) -> "CaptureClient":
        return cls(settings.api_url, settings.api_key, timeout=settings.capture_timeout, **kwargs)

    async def __aenter__(self):
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("CaptureClient must be used as async context manager")
        return self._client

    async def capture(self, site: SiteDescriptor) -> SiteResult:
        try:
            data = await self._request(site)
        except Exception as e:
            log.warning("Capture failed for %s: %s", site.url, e)
            return SiteResult.failure(site.url, str(e))
        log.info("Captured %s", site.url)
        return SiteResult.success(site.url, data)

    async def _request(self, site: SiteDescriptor):
        try:
            response = await self.client.post(
                f"{self.api_url}{CAPTURE_PATH}",
                json=build_capture_request(site),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise CaptureError(f"Failed to capture screenshot for {site.url}: {e!r}") from e

        if response.status_code != 200:
            raise CaptureError(
                f"Failed to capture screenshot for {site.url}: "
                f"HTTP {response.status_code} {response.text[:500]}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise CaptureError(f"Failed to capture screenshot for {site.url}: invalid JSON body") from e
        if not isinstance(payload, dict) or "data" not in payload:
            raise CaptureError(f"Failed to capture screenshot for {site.url}: response has no data")
        return payload["data"]

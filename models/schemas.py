"""
Data models for the snapshot pipeline.

Run / StepRecord live with the engine in features.durable.models; this module
holds the capture-side types that flow through the steps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class SiteStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class SiteDescriptor:
    """A capture target: a URL plus an optional stylesheet injected before capture."""
    url: str
    style_override: str | None = None

    @classmethod
    def from_value(cls, value: Any) -> "SiteDescriptor":
        """Accept a bare URL, ``{url, styleOverride}`` or ``{url, requestBody: {addStyleTag}}``."""
        if isinstance(value, SiteDescriptor):
            url, style = value.url, value.style_override
        elif isinstance(value, str):
            url, style = value, None
        elif isinstance(value, dict):
            url = value.get("url")
            style = value.get("styleOverride", value.get("style_override"))
            if style is None and isinstance(value.get("requestBody"), dict):
                style = value["requestBody"].get("addStyleTag")
        else:
            raise ValueError(f"Invalid site descriptor: {value!r}")

        if not isinstance(url, str) or not url.strip():
            raise ValueError(f"Invalid site descriptor, url must be a non-empty string: {value!r}")
        if style is not None and not isinstance(style, str):
            raise ValueError(f"Invalid site descriptor, style override must be a string: {value!r}")
        if isinstance(value, SiteDescriptor):
            return value
        return cls(url=url, style_override=style)

    def to_dict(self) -> dict:
        return {"url": self.url, "styleOverride": self.style_override}


@dataclass(frozen=True)
class SiteResult:
    """Outcome of capturing one site. Produced once per site per run."""
    site: str
    status: SiteStatus
    timestamp: str
    data: Any = None
    error: str | None = None

    @classmethod
    def success(cls, site: str, data: Any) -> "SiteResult":
        return cls(site=site, status=SiteStatus.SUCCESS, data=data, timestamp=isoformat(utcnow()))

    @classmethod
    def failure(cls, site: str, error: str) -> "SiteResult":
        return cls(site=site, status=SiteStatus.ERROR, error=error, timestamp=isoformat(utcnow()))

    @classmethod
    def from_dict(cls, data: dict) -> "SiteResult":
        return cls(
            site=data["site"],
            status=SiteStatus(data["status"]),
            timestamp=data["timestamp"],
            data=data.get("data"),
            error=data.get("error"),
        )

    def to_dict(self) -> dict:
        out: dict = {"site": self.site, "status": self.status.value, "timestamp": self.timestamp}
        if self.status is SiteStatus.SUCCESS:
            out["data"] = self.data
        else:
            out["error"] = self.error
        return out


@dataclass
class RunSummary:
    """Terminal report of a completed run."""
    total_sites: int
    successful: int
    failed: int
    start_time: str
    completion_time: str
    duration_seconds: float
    results: list[SiteResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalSites": self.total_sites,
            "successful": self.successful,
            "failed": self.failed,
            "startTime": self.start_time,
            "completionTime": self.completion_time,
            "durationSeconds": self.duration_seconds,
            "results": [r.to_dict() for r in self.results],
        }

"""
Activity: Result Aggregator — folds per-site results into the run summary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from models.schemas import RunSummary, SiteResult, SiteStatus, isoformat, parse_timestamp, utcnow


def aggregate(
    results: Sequence[SiteResult],
    start_time: str | datetime,
    completion_time: str | datetime | None = None,
) -> RunSummary:
    """Count results by status and time the run. ``results`` are kept as given."""
    started = parse_timestamp(start_time)
    completed = parse_timestamp(completion_time) if completion_time is not None else utcnow()
    successful = sum(1 for r in results if r.status is SiteStatus.SUCCESS)
    return RunSummary(
        total_sites=len(results),
        successful=successful,
        failed=len(results) - successful,
        start_time=isoformat(started),
        completion_time=isoformat(completed),
        duration_seconds=round((completed - started).total_seconds(), 3),
        results=list(results),
    )

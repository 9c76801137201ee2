"""
Activity: Batch Scheduler — splits sites into fixed-size batches and captures one batch concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from models.schemas import SiteDescriptor, SiteResult, SiteStatus

log = logging.getLogger(__name__)

T = TypeVar("T")

CaptureFn = Callable[[SiteDescriptor], Awaitable[SiteResult]]


class BatchError(Exception):
    """The batch itself is unusable. Raised out of the step so it is retried."""


def partition(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Order-preserving chunks of ``batch_size``; the last one may be shorter."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def _validate(batch: Sequence[SiteDescriptor]) -> None:
    if not batch:
        raise BatchError("Empty batch")
    for site in batch:
        if not isinstance(site, SiteDescriptor) or not site.url:
            raise BatchError(f"Malformed site in batch: {site!r}")


async def execute_batch(
    batch: Sequence[SiteDescriptor],
    capture_fn: CaptureFn,
    concurrency: int | None = None,
) -> list[SiteResult]:
    """Capture every site of the batch at once, bounded by ``concurrency``.

    Returns results in site order. A site whose capture raises becomes an
    error result; only a malformed batch raises (BatchError).
    """
    _validate(batch)
    semaphore = asyncio.Semaphore(concurrency or len(batch))

    async def _one(site: SiteDescriptor) -> SiteResult:
        async with semaphore:
            try:
                return await capture_fn(site)
            except Exception as e:
                log.warning("Capture raised for %s: %s", site.url, e)
                return SiteResult.failure(site.url, str(e))

    results = await asyncio.gather(*(_one(site) for site in batch))
    ok = sum(1 for r in results if r.status is SiteStatus.SUCCESS)
    log.info("Batch complete: %d/%d captured", ok, len(results))
    return list(results)


async def process_batch(batch: Sequence[dict], capture_fn: CaptureFn) -> list[dict]:
    """Step body for ``process-batch-N``: descriptors in, JSON-ready results out."""
    try:
        sites = [SiteDescriptor.from_value(item) for item in batch]
    except ValueError as e:
        raise BatchError(str(e)) from e
    results = await execute_batch(sites, capture_fn)
    return [r.to_dict() for r in results]

"""Best-effort deletion of blobs whose image rows are gone.

Reclamation always runs after the relational transaction committed and never
changes the outcome reported to the caller. Each object is deleted
independently with its own timeout; failures are logged and counted, not
retried. Anything left behind is picked up by the orphan sweep
(``scripts/kill_orphans.py``).
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, NamedTuple

from app.config import Settings
from app.metrics import (
    blob_delete_fail_total,
    blob_delete_seconds,
    blob_delete_total,
    orphan_blobs_deleted_total,
)
from app.services import storage

settings = Settings()
logger = logging.getLogger(__name__)

DeleteFn = Callable[[str], Awaitable[None]]

_pending: set[asyncio.Task] = set()


class ReclaimReport(NamedTuple):
    deleted: list[str]
    failed: list[str]


async def _delete_one(locator: str, delete: DeleteFn, timeout: float) -> bool:
    blob_delete_total.inc()
    started = time.perf_counter()
    try:
        await asyncio.wait_for(delete(locator), timeout)
    except asyncio.TimeoutError:
        blob_delete_fail_total.inc()
        logger.error(
            "Blob delete timed out after %.1fs: %s",
            timeout,
            locator,
            extra={"locator": locator},
        )
        return False
    except Exception:
        blob_delete_fail_total.inc()
        logger.exception("Failed to delete blob %s", locator, extra={"locator": locator})
        return False
    finally:
        blob_delete_seconds.observe(time.perf_counter() - started)
    logger.info("Deleted blob %s", locator, extra={"locator": locator})
    return True


async def reclaim(
    locators: Iterable[str],
    *,
    delete: DeleteFn | None = None,
    timeout: float | None = None,
) -> ReclaimReport:
    """Delete every locator concurrently; never raises for store failures."""
    unique = list(dict.fromkeys(loc for loc in locators if loc))
    if not unique:
        return ReclaimReport(deleted=[], failed=[])
    delete = delete or storage.delete_object
    timeout = timeout if timeout is not None else settings.blob_delete_timeout_s
    results = await asyncio.gather(
        *(_delete_one(loc, delete, timeout) for loc in unique)
    )
    report = ReclaimReport(
        deleted=[loc for loc, ok in zip(unique, results) if ok],
        failed=[loc for loc, ok in zip(unique, results) if not ok],
    )
    if report.failed:
        logger.warning(
            "Reclamation left %d orphaned blobs (%d deleted)",
            len(report.failed),
            len(report.deleted),
        )
    return report


def schedule_reclaim(locators: Iterable[str]) -> asyncio.Task | None:
    """Run ``reclaim`` in the background, detached from the calling request.

    Cancelling the request does not cancel the task; ``drain`` waits for the
    remaining tasks at shutdown.
    """
    locators = list(locators)
    if not locators:
        return None
    return track(asyncio.get_running_loop().create_task(reclaim(locators)))


def track(task: asyncio.Task) -> asyncio.Task:
    """Keep a reference to ``task`` until it finishes; ``drain`` waits for it."""
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain(timeout: float | None = None) -> None:
    # a finishing delete may schedule its reclamation while we wait
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    while _pending:
        logger.info("Waiting for %d reclamation tasks", len(_pending))
        remaining = None if deadline is None else max(deadline - loop.time(), 0)
        _, not_done = await asyncio.wait(set(_pending), timeout=remaining)
        if not_done:
            logger.warning("%d reclamation tasks still running at shutdown", len(not_done))
            return


async def find_orphans(known_locators: Iterable[str]) -> list[str]:
    """Keys present in the bucket that no image row references."""
    known_keys = {storage.key_for_locator(loc) for loc in known_locators}
    return [key async for key in storage.iter_keys() if key not in known_keys]


async def delete_orphans(
    keys: Iterable[str],
    *,
    delete: DeleteFn | None = None,
    timeout: float | None = None,
) -> ReclaimReport:
    """Delete orphaned keys one at a time, continuing past failures."""
    delete = delete or storage.delete_object
    timeout = timeout if timeout is not None else settings.blob_delete_timeout_s
    deleted: list[str] = []
    failed: list[str] = []
    for key in keys:
        if await _delete_one(key, delete, timeout):
            deleted.append(key)
            orphan_blobs_deleted_total.inc()
        else:
            failed.append(key)
    return ReclaimReport(deleted=deleted, failed=failed)


__all__ = [
    "ReclaimReport",
    "reclaim",
    "schedule_reclaim",
    "track",
    "drain",
    "find_orphans",
    "delete_orphans",
]

"""
Background Auto-Assignment
==========================

When no provider is within the default radius at creation time, the request
is returned ``pending`` and a fire-and-forget retry is scheduled here.  The
retry assigns the globally closest available provider, if any.

* Runs after the creating call has returned; never blocks it.
* Re-reads the request first: a request cancelled, denied or manually
  assigned in the meantime is left alone.
* Goes through the same locked, version-checked assignment as every other
  caller, so it cannot double-assign.
* Failures are logged; the request simply stays ``pending`` for an admin.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from roadside.domain.errors import InvalidTransition, MatchNotFound, RequestNotFound

if TYPE_CHECKING:
    from roadside.services.lifecycle import RequestLifecycleService

logger = logging.getLogger(__name__)

_tasks: set[asyncio.Task] = set()


# ── Public API ────────────────────────────────────────────────────────


def schedule_retry(
    service: "RequestLifecycleService", request_id: int, delay: float = 0.0
) -> asyncio.Task:
    task = asyncio.create_task(_retry(service, request_id, delay))
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    logger.info("Background assignment scheduled for request %s", request_id)
    return task


async def drain() -> None:
    """Wait for every scheduled retry to finish."""
    while _tasks:
        await asyncio.gather(*list(_tasks), return_exceptions=True)


async def stop() -> None:
    for task in list(_tasks):
        task.cancel()
    if _tasks:
        await asyncio.gather(*list(_tasks), return_exceptions=True)
    logger.info("Auto-assignment worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _retry(
    service: "RequestLifecycleService", request_id: int, delay: float
) -> None:
    if delay:
        await asyncio.sleep(delay)
    try:
        assigned = await service.assign_closest_any(request_id)
    except MatchNotFound:
        logger.warning(
            "No provider available for request %s; left pending for an admin",
            request_id,
        )
    except (InvalidTransition, RequestNotFound) as exc:
        logger.info("Background assignment of request %s skipped: %s", request_id, exc)
    except Exception:
        logger.exception("Unhandled error assigning request %s", request_id)
    else:
        if assigned is not None:
            logger.info(
                "Request %s assigned in background to provider %s",
                request_id,
                assigned.provider_id,
            )

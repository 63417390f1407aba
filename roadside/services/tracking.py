"""
Per-request live tracking sessions.

A session exists only while its request is ``en_route`` or ``in_progress``.
It owns a queue of incoming position reports and a consumer task that feeds
them into a ``PositionSampler``; the lifecycle service opens it when the
status enters a tracked state and closes it (cancelling the task) when the
request completes, is cancelled or denied.  Position reports never block a
status transition.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from roadside.config import settings
from roadside.domain.entities import Coordinate, ServiceRequest, as_utc
from roadside.domain.enums import TRACKED_STATUSES
from roadside.domain.errors import StaleSample
from roadside.domain.tracking import EtaEstimate, PositionSample, PositionSampler

logger = logging.getLogger(__name__)


class TrackingSession:
    def __init__(self, request_id: int, sampler: PositionSampler):
        self.request_id = request_id
        self.sampler = sampler
        self._queue: asyncio.Queue[PositionSample] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._last_submitted_at: Optional[datetime] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._consume())

    async def _consume(self) -> None:
        while True:
            sample = await self._queue.get()
            try:
                self.sampler.record(sample)
            except StaleSample as exc:
                logger.debug("Dropping sample for request %s: %s", self.request_id, exc)
            finally:
                self._queue.task_done()

    def submit(self, sample: PositionSample) -> None:
        """Queue *sample*; raises ``StaleSample`` if it is not newer than the last one."""
        captured_at = as_utc(sample.captured_at)
        if self._last_submitted_at is not None and captured_at <= self._last_submitted_at:
            raise StaleSample(
                f"sample at {captured_at.isoformat()} is not newer than "
                f"{self._last_submitted_at.isoformat()}"
            )
        self._last_submitted_at = captured_at
        self._queue.put_nowait(sample)

    async def join(self) -> None:
        """Wait until every submitted sample has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass


class TrackingRegistry:
    def __init__(
        self,
        history_size: int = settings.position_history_size,
        min_delta_deg: float = settings.min_position_delta_deg,
        stale_after_seconds: int = settings.eta_stale_seconds,
    ):
        self.history_size = history_size
        self.min_delta_deg = min_delta_deg
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self._sessions: dict[int, TrackingSession] = {}

    def get(self, request_id: int) -> Optional[TrackingSession]:
        return self._sessions.get(request_id)

    def open(self, request_id: int, destination: Optional[Coordinate]) -> TrackingSession:
        session = self._sessions.get(request_id)
        if session is None:
            sampler = PositionSampler(
                destination,
                history_size=self.history_size,
                min_delta_deg=self.min_delta_deg,
                stale_after=self.stale_after,
            )
            session = TrackingSession(request_id, sampler)
            session.start()
            self._sessions[request_id] = session
            logger.info("Tracking started for request %s", request_id)
        return session

    async def close(self, request_id: int) -> None:
        session = self._sessions.pop(request_id, None)
        if session:
            await session.close()
            logger.info("Tracking stopped for request %s", request_id)

    async def close_all(self) -> None:
        for request_id in list(self._sessions):
            await self.close(request_id)

    async def on_status_change(self, request: ServiceRequest) -> None:
        if request.status in TRACKED_STATUSES:
            self.open(request.id, request.customer_coordinate)
        else:
            await self.close(request.id)

    def report(self, request: ServiceRequest, sample: PositionSample) -> TrackingSession:
        """Queue *sample*; opens the session lazily (e.g. after a restart)."""
        session = self.open(request.id, request.customer_coordinate)
        session.submit(sample)
        return session

    def estimate(self, request_id: int, now: Optional[datetime] = None) -> EtaEstimate:
        session = self._sessions.get(request_id)
        if session is None:
            return EtaEstimate()
        return session.sampler.estimate(now)

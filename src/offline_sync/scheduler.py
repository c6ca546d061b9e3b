"""
Background Sync - periodic and event-driven drain triggers

Runs SyncCoordinator.drain on an interval and whenever trigger() is called
(app foregrounded, connectivity restored). The drain itself is blocking I/O, so
it runs in a worker thread and never stalls the event loop.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Optional

from .coordinator import DrainReport, SyncCoordinator

logger = logging.getLogger(__name__)


class BackgroundSync:
    """
    Drives drains from an asyncio loop.

    Usage:
        background = BackgroundSync(coordinator)
        await background.start_background_sync()

        # connectivity restored
        background.trigger()

        await background.stop_background_sync()
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        interval_seconds: Optional[float] = None,
        on_report: Optional[Callable[[DrainReport], None]] = None,
        history_limit: int = 20,
    ):
        """
        Args:
            coordinator: Coordinator whose drain is scheduled
            interval_seconds: Seconds between drains; defaults to the config value
            on_report: Called with every non-skipped drain report
            history_limit: Most recent reports kept in self.reports
        """
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds or coordinator.config.sync_interval_seconds
        self.on_report = on_report

        self._sync_task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.reports: Deque[DrainReport] = deque(maxlen=history_limit)

    @property
    def last_report(self) -> Optional[DrainReport]:
        return self.reports[-1] if self.reports else None

    @property
    def running(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    async def start_background_sync(self) -> None:
        """Start background sync task."""
        if self._sync_task is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._sync_task = asyncio.create_task(self._background_sync_loop())

    async def stop_background_sync(self) -> None:
        """Stop background sync task. A drain already in its worker thread runs to completion."""
        if self._sync_task is None:
            return

        self._sync_task.cancel()
        try:
            await self._sync_task
        except asyncio.CancelledError:
            pass
        self._sync_task = None
        self._wake = None
        self._loop = None

    def trigger(self) -> None:
        """Request a drain as soon as possible. Safe to call from any thread."""
        wake, loop = self._wake, self._loop
        if wake is None or loop is None:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            wake.set()
        else:
            # asyncio.Event is not thread-safe; hand the set to the owning loop
            loop.call_soon_threadsafe(wake.set)

    async def sync_now(self) -> DrainReport:
        """Run one drain in a worker thread and return its report."""
        report = await asyncio.to_thread(self.coordinator.drain)
        if not report.skipped:
            self.reports.append(report)
            if self.on_report is not None:
                self.on_report(report)
        return report

    async def _wait_for_cycle(self) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def _background_sync_loop(self) -> None:
        """Background sync loop."""
        while True:
            await self._wait_for_cycle()

            if not self.coordinator.has_pending():
                continue

            try:
                await self.sync_now()
            except Exception:
                # Keep the loop alive; the queue is still intact for next cycle
                logger.exception("Background drain failed")

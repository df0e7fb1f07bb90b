import asyncio
import logging
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import QueueSettings, queue_settings
from .queue import OfflineQueue

log = logging.getLogger("pdca.sync")

DRAIN_JOB_ID = "offline_queue_drain"


class ConnectivityMonitor:
    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        log.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                log.exception("Connectivity listener failed")


class QueueSyncer:
    """Drains the queue on reconnect and on a fixed interval."""

    def __init__(
        self,
        queue: OfflineQueue,
        monitor: ConnectivityMonitor,
        settings: QueueSettings = queue_settings,
    ):
        self.queue = queue
        self.monitor = monitor
        self.settings = settings
        self.queue.is_online = lambda: self.monitor.is_online
        self._reconnect_task: Optional[asyncio.Task] = None
        monitor.subscribe(self._on_connectivity_change)

    def _on_connectivity_change(self, online: bool) -> None:
        if not online or self.queue.pending_count == 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running loop, reconnect drain left to the periodic job")
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = loop.create_task(self._drain_after(self.settings.RECONNECT_DELAY_SECONDS))

    async def _drain_after(self, delay: float) -> None:
        # Give the connection a moment to settle before hammering it.
        await asyncio.sleep(delay)
        if self.monitor.is_online:
            await self.queue.drain()

    async def periodic_drain(self) -> None:
        if not self.monitor.is_online or self.queue.pending_count == 0 or self.queue.is_syncing:
            return
        await self.queue.drain()

    def start(self, scheduler: AsyncIOScheduler) -> None:
        scheduler.add_job(
            self.periodic_drain,
            "interval",
            seconds=self.settings.DRAIN_INTERVAL_SECONDS,
            id=DRAIN_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        log.info("Offline queue sync scheduled every %ss", self.settings.DRAIN_INTERVAL_SECONDS)

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import QueueSettings, queue_settings
from .kiosk import KioskChargeFlow
from .queue import OfflineQueue
from .storage import JsonFileStorage
from .submitter import HttpChargeSubmitter
from .sync import ConnectivityMonitor, QueueSyncer

log = logging.getLogger("pdca.agent")


class KioskAgent:
    """Kiosk-side wiring: file-backed queue, HTTP submitter and scheduled sync."""

    def __init__(self, settings: QueueSettings = queue_settings, monitor: Optional[ConnectivityMonitor] = None):
        self.settings = settings
        self.monitor = monitor or ConnectivityMonitor()
        self.submitter = HttpChargeSubmitter(settings.API_BASE_URL, timeout=settings.SUBMIT_TIMEOUT_SECONDS)
        self.queue = OfflineQueue(JsonFileStorage(settings.STORAGE_PATH), self.submitter, settings)
        self.syncer = QueueSyncer(self.queue, self.monitor, settings)
        self.flow = KioskChargeFlow(self.queue, self.submitter, is_online=lambda: self.monitor.is_online)
        self.scheduler = None

    async def start(self) -> None:
        pending = self.queue.load()
        log.info("Kiosk agent starting with %s pending charges", pending)
        self.scheduler = AsyncIOScheduler()
        self.syncer.start(self.scheduler)
        self.scheduler.start()
        if pending:
            await self.queue.drain()

    async def stop(self) -> None:
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
        await self.flow.wait_for_reconciliation()
        await self.submitter.aclose()


async def run_forever(settings: QueueSettings = queue_settings) -> None:
    agent = KioskAgent(settings)
    await agent.start()
    try:
        await asyncio.Event().wait()
    finally:
        await agent.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_forever())

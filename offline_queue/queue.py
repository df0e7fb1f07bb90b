"""
Offline Submission Queue

Durable, FIFO, at-least-once buffer for charges the kiosk could not confirm
online. Every mutation is written through to the injected key-value storage.
Each item carries an idempotency key that the ledger uses to turn replays of
an already-applied charge into no-ops, so a lost acknowledgement does not
double-post.
"""

import asyncio
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from pydantic import ValidationError

from .backoff import BackoffPolicy
from .config import QueueSettings, queue_settings
from .models import (
    ChargePayload,
    DeliveryOutcome,
    DeliveryStatus,
    DrainReport,
    PendingCharge,
)
from .storage import KeyValueStorage
from .submitter import ChargeRejectedError, ChargeSubmitter

log = logging.getLogger("pdca.queue")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id(now: datetime) -> str:
    return f"offline_{int(now.timestamp() * 1000)}_{secrets.token_hex(5)}"


class OfflineQueue:
    def __init__(
        self,
        storage: KeyValueStorage,
        submitter: ChargeSubmitter,
        settings: QueueSettings = queue_settings,
        backoff: Optional[BackoffPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
        is_online: Callable[[], bool] = lambda: True,
        drain_on_enqueue: bool = True,
    ):
        self.storage = storage
        self.submitter = submitter
        self.settings = settings
        self.backoff = backoff or BackoffPolicy.from_settings(settings)
        self.clock = clock
        self.is_online = is_online
        self.drain_on_enqueue = drain_on_enqueue
        self.last_sync_attempt: Optional[datetime] = None
        self._items: list[PendingCharge] = []
        self._syncing = False
        self._drain_tasks: set[asyncio.Task] = set()

    # -----------------------------
    # Lifecycle / persistence
    # -----------------------------
    def load(self) -> int:
        try:
            raw = self.storage.get(self.settings.STORAGE_KEY)
            items = json.loads(raw) if raw else []
            self._items = [PendingCharge.model_validate(item) for item in items or []]
        except (OSError, TypeError, ValueError, ValidationError):
            log.exception("Failed to load offline queue, starting empty")
            self._items = []
        return len(self._items)

    def _persist(self) -> None:
        data = json.dumps([item.model_dump(mode="json") for item in self._items])
        try:
            self.storage.set(self.settings.STORAGE_KEY, data)
        except (OSError, ValueError):
            log.exception("Failed to save offline queue")

    # -----------------------------
    # Inspection
    # -----------------------------
    @property
    def pending(self) -> list[PendingCharge]:
        return [item.model_copy() for item in self._items]

    @property
    def pending_count(self) -> int:
        return len(self._items)

    @property
    def review_count(self) -> int:
        return sum(1 for item in self._items if item.needs_review)

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def get(self, local_id: str) -> Optional[PendingCharge]:
        for item in self._items:
            if item.local_id == local_id:
                return item
        return None

    # -----------------------------
    # Mutations
    # -----------------------------
    def enqueue(
        self,
        payload: ChargePayload,
        idempotency_key: Optional[str] = None,
        needs_review: bool = False,
        last_error: Optional[str] = None,
    ) -> str:
        now = self.clock()
        item = PendingCharge(
            local_id=new_local_id(now),
            idempotency_key=idempotency_key or str(uuid4()),
            payload=payload,
            created_at=now,
            retry_count=0,
            last_error=last_error,
            needs_review=needs_review,
        )
        self._items.append(item)
        self._persist()
        log.info("Queued offline charge %s (%s pending)", item.local_id, self.pending_count)

        if self.drain_on_enqueue and not needs_review and self.is_online():
            self._schedule_drain()
        return item.local_id

    def discard(self, local_id: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.local_id != local_id]
        if len(self._items) == before:
            return False
        self._persist()
        log.warning("Offline charge %s discarded by operator", local_id)
        return True

    def release(self, local_id: str) -> bool:
        """Clear the review flag and backoff so the item goes out on the next drain."""
        item = self.get(local_id)
        if not item:
            return False
        item.needs_review = False
        item.next_attempt_at = None
        self._persist()
        return True

    def _remove(self, local_id: str) -> None:
        self._items = [item for item in self._items if item.local_id != local_id]
        self._persist()

    def _mark_failed(self, local_id: str, error: str, needs_review: bool = False) -> None:
        item = self.get(local_id)
        if not item:
            return
        now = self.clock()
        item.retry_count += 1
        item.last_error = error
        item.next_attempt_at = self.backoff.next_attempt_at(item.retry_count, now)
        item.needs_review = needs_review or self.backoff.is_expired(item.created_at, now)
        self._persist()

    # -----------------------------
    # Drain
    # -----------------------------
    def _schedule_drain(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.drain())
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def drain(self) -> DrainReport:
        report = DrainReport()
        if self._syncing or not self._items:
            report.skipped = self._syncing
            return report
        if not self.is_online():
            report.skipped = True
            return report

        self._syncing = True
        self.last_sync_attempt = self.clock()
        try:
            delivered_any = False
            for snapshot in list(self._items):
                item = self.get(snapshot.local_id)
                if item is None:
                    continue

                now = self.clock()
                if item.needs_review:
                    report.held += 1
                    continue
                if self.backoff.is_expired(item.created_at, now):
                    item.needs_review = True
                    item.last_error = item.last_error or "Exceeded max in-flight age"
                    self._persist()
                    log.warning("Offline charge %s flagged for review after max age", item.local_id)
                    report.outcomes.append(DeliveryOutcome(item.local_id, DeliveryStatus.EXPIRED))
                    continue
                if item.next_attempt_at and item.next_attempt_at > now:
                    report.deferred += 1
                    continue

                if delivered_any:
                    await asyncio.sleep(self.settings.DELIVERY_DELAY_SECONDS)
                delivered_any = True
                report.outcomes.append(await self._deliver(item))
        finally:
            self._syncing = False

        log.info(
            "Drain finished: %s delivered, %s still pending (%s need review)",
            report.delivered, self.pending_count, self.review_count,
        )
        return report

    async def _deliver(self, item: PendingCharge) -> DeliveryOutcome:
        try:
            result = await self.submitter.submit(item.payload, item.idempotency_key)
        except ChargeRejectedError as e:
            log.warning("Offline charge %s rejected, flagged for review: %s", item.local_id, e)
            self._mark_failed(item.local_id, str(e), needs_review=True)
            return DeliveryOutcome(item.local_id, DeliveryStatus.REJECTED, error=str(e))
        except Exception as e:
            log.warning("Offline charge %s failed, will retry: %s", item.local_id, e)
            self._mark_failed(item.local_id, str(e))
            return DeliveryOutcome(item.local_id, DeliveryStatus.RETRY, error=str(e))

        self._remove(item.local_id)
        status = DeliveryStatus.DUPLICATE if result.duplicate else DeliveryStatus.DELIVERED
        return DeliveryOutcome(item.local_id, status, transaction_id=result.transaction_id)

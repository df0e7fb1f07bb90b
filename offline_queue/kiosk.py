import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional
from uuid import UUID, uuid4

from .models import ChargePayload
from .queue import OfflineQueue
from .submitter import ChargeRejectedError, ChargeSubmitter, TransientDeliveryError

log = logging.getLogger("pdca.kiosk")

MONEY = Decimal("0.01")


class ChargeStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    QUEUED = "queued"
    FAILED = "failed"


class ReconciliationStatus(str, Enum):
    CONFIRMED = "confirmed"
    REQUEUED = "requeued"
    FLAGGED = "flagged"


@dataclass
class ChargeOutcome:
    status: ChargeStatus
    balance: Decimal
    idempotency_key: str
    message: str = ""
    transaction_id: Optional[UUID] = None
    local_id: Optional[str] = None
    reconciliation: Optional["asyncio.Task[ReconciliationStatus]"] = None


class KioskChargeFlow:
    """Two-phase charge submission for the kiosk.

    Charges that keep the member at or above zero are reported back as
    ``tentative`` straight away and reconciled in the background; anything
    that would overdraw the member waits for the ledger's answer. One
    idempotency key is minted per logical charge and reused by the online
    attempt and by any queued replay.
    """

    def __init__(
        self,
        queue: OfflineQueue,
        submitter: ChargeSubmitter,
        is_online: Callable[[], bool] = lambda: True,
    ):
        self.queue = queue
        self.submitter = submitter
        self.is_online = is_online
        self._background: set[asyncio.Task] = set()

    async def submit(self, payload: ChargePayload, current_balance: Decimal) -> ChargeOutcome:
        idempotency_key = str(uuid4())
        projected = (Decimal(current_balance) - payload.amount).quantize(MONEY)

        if not self.is_online():
            return self._queued(payload, idempotency_key, projected)

        if projected >= 0:
            task = asyncio.create_task(self._reconcile(payload, idempotency_key))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            return ChargeOutcome(ChargeStatus.TENTATIVE, projected, idempotency_key, reconciliation=task)

        try:
            result = await self.submitter.submit(payload, idempotency_key)
        except ChargeRejectedError as e:
            return ChargeOutcome(ChargeStatus.FAILED, Decimal(current_balance), idempotency_key, message=str(e))
        except TransientDeliveryError as e:
            log.warning("Overdraft charge could not be confirmed, queuing: %s", e)
            return self._queued(payload, idempotency_key, projected, str(e))
        except Exception as e:
            log.exception("Unexpected error confirming overdraft charge, queuing")
            return self._queued(payload, idempotency_key, projected, str(e))

        return ChargeOutcome(
            ChargeStatus.CONFIRMED, result.balance_after, idempotency_key,
            transaction_id=result.transaction_id,
        )

    def _queued(
        self, payload: ChargePayload, idempotency_key: str, projected: Decimal, error: Optional[str] = None
    ) -> ChargeOutcome:
        local_id = self.queue.enqueue(payload, idempotency_key=idempotency_key, last_error=error)
        return ChargeOutcome(
            ChargeStatus.QUEUED, projected, idempotency_key,
            message="Saved offline, will sync when connected", local_id=local_id,
        )

    async def _reconcile(self, payload: ChargePayload, idempotency_key: str) -> ReconciliationStatus:
        try:
            await self.submitter.submit(payload, idempotency_key)
        except ChargeRejectedError as e:
            log.warning("Tentative charge rejected, held for operator review: %s", e)
            self.queue.enqueue(payload, idempotency_key=idempotency_key, needs_review=True, last_error=str(e))
            return ReconciliationStatus.FLAGGED
        except Exception as e:
            log.warning("Tentative charge not confirmed, queuing for retry: %s", e)
            self.queue.enqueue(payload, idempotency_key=idempotency_key, last_error=str(e))
            return ReconciliationStatus.REQUEUED
        return ReconciliationStatus.CONFIRMED

    async def wait_for_reconciliation(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

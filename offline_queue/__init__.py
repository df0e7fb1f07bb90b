"""
Offline Submission Queue for kiosk devices

Provides:
- Durable FIFO buffer of unconfirmed charges over injectable key-value storage
- Drain passes with exponential backoff and operator review for stuck items
- Idempotency keys per logical charge so replays never double-post
- Two-phase (tentative / confirmed) kiosk charge submission
- Reconnect and interval triggered syncing
"""

from .agent import KioskAgent
from .kiosk import ChargeOutcome, ChargeStatus, KioskChargeFlow, ReconciliationStatus
from .models import ChargePayload, PendingCharge, DrainReport, DeliveryStatus
from .queue import OfflineQueue
from .storage import KeyValueStorage, InMemoryKeyValueStorage, JsonFileStorage
from .submitter import (
    ChargeSubmitter,
    HttpChargeSubmitter,
    LocalChargeSubmitter,
    DeliveryError,
    TransientDeliveryError,
    ChargeRejectedError,
)
from .sync import ConnectivityMonitor, QueueSyncer

__all__ = [
    "KioskAgent",
    "ChargeOutcome",
    "ChargeStatus",
    "KioskChargeFlow",
    "ReconciliationStatus",
    "ChargePayload",
    "PendingCharge",
    "DrainReport",
    "DeliveryStatus",
    "OfflineQueue",
    "KeyValueStorage",
    "InMemoryKeyValueStorage",
    "JsonFileStorage",
    "ChargeSubmitter",
    "HttpChargeSubmitter",
    "LocalChargeSubmitter",
    "DeliveryError",
    "TransientDeliveryError",
    "ChargeRejectedError",
    "ConnectivityMonitor",
    "QueueSyncer",
]

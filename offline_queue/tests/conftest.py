from decimal import Decimal

import pytest

from ledger.service import LedgerService
from ledger.storage import DEMO_BUSINESS_ID, DEMO_MEMBER_ID, InMemoryStorage
from offline_queue.config import QueueSettings
from offline_queue.models import ChargePayload
from offline_queue.submitter import LocalChargeSubmitter

from .doubles import FakeClock


@pytest.fixture
def settings():
    return QueueSettings(DELIVERY_DELAY_SECONDS=0, RECONNECT_DELAY_SECONDS=0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger_storage():
    return InMemoryStorage()


@pytest.fixture
def ledger_service(ledger_storage):
    return LedgerService(ledger_storage)


@pytest.fixture
def local_submitter(ledger_service):
    return LocalChargeSubmitter(ledger_service)


@pytest.fixture
def make_payload():
    def _make(amount="2.00", member_id=DEMO_MEMBER_ID, **extra):
        return ChargePayload(
            member_id=member_id,
            member_name="John Member",
            business_id=DEMO_BUSINESS_ID,
            business_name="Corner Cafe",
            amount=Decimal(amount),
            description=f"Corner Cafe - {amount}",
            **extra,
        )
    return _make

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field

from ledger.models import TransactionSource


class ChargePayload(BaseModel):
    member_id: UUID
    member_name: str = ""
    business_id: UUID
    business_name: str = ""
    amount: Decimal = Field(..., gt=0)
    description: str = ""
    comment: Optional[str] = None
    source: TransactionSource = TransactionSource.KIOSK
    device_info: dict[str, Any] = Field(default_factory=dict)


class PendingCharge(BaseModel):
    local_id: str
    idempotency_key: str
    payload: ChargePayload
    created_at: datetime
    retry_count: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    needs_review: bool = False


class SubmitResult(BaseModel):
    transaction_id: UUID
    balance_before: Decimal
    balance_after: Decimal
    duplicate: bool = False


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    DUPLICATE = "duplicate"
    RETRY = "retry"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass
class DeliveryOutcome:
    local_id: str
    status: DeliveryStatus
    transaction_id: Optional[UUID] = None
    error: Optional[str] = None


@dataclass
class DrainReport:
    skipped: bool = False
    held: int = 0
    deferred: int = 0
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    def count(self, status: DeliveryStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def delivered(self) -> int:
        return self.count(DeliveryStatus.DELIVERED) + self.count(DeliveryStatus.DUPLICATE)

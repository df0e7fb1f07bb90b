from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class TransactionSource(str, Enum):
    KIOSK = "kiosk"
    BUSINESS_PORTAL = "business_portal"
    ADMIN_PANEL = "admin_panel"
    API = "api"
    TEST_DATA = "test_data"


class TransactionStatus(str, Enum):
    POSTED = "posted"
    VOIDED = "voided"


class AdjustmentType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    CORRECTION = "correction"


class BillingCycleStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class BulkItemStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class Member(BaseModel):
    id: UUID
    member_code: str
    first_name: str
    last_name: str
    balance: Decimal = Decimal("0.00")
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Business(BaseModel):
    id: UUID
    name: str
    is_active: bool = True
    preset_amounts: Optional[list[int]] = None
    auto_update_preset_amounts: bool = False
    preset_amounts_threshold: Optional[int] = None
    max_preset_amounts: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    id: UUID
    member_id: UUID
    business_id: UUID
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    billing_cycle_id: Optional[UUID] = None
    source: TransactionSource = TransactionSource.KIOSK
    description: Optional[str] = None
    notes: Optional[str] = None
    device_info: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    idempotency_key: Optional[str] = None
    status: TransactionStatus = TransactionStatus.POSTED
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    voided_by: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def can_void(self) -> bool:
        return self.status == TransactionStatus.POSTED


class TransactionReversal(BaseModel):
    id: UUID
    transaction_id: UUID
    member_id: UUID
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reason: str
    admin_user_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BalanceAdjustment(BaseModel):
    id: UUID
    member_id: UUID
    amount: Decimal
    adjustment_type: AdjustmentType
    notes: Optional[str] = None
    admin_user_id: Optional[UUID] = None
    balance_before: Decimal
    balance_after: Decimal
    billing_cycle_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogEntry(BaseModel):
    id: UUID
    table_name: str
    record_id: UUID
    action: str
    old_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PostChargeRequest(BaseModel):
    member_id: UUID
    business_id: UUID
    amount: Decimal = Field(..., description="Charge amount, must be positive")
    description: Optional[str] = None
    comment: Optional[str] = None
    source: TransactionSource = TransactionSource.KIOSK
    device_info: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    idempotency_key: Optional[str] = Field(
        default=None, description="Stable key for one logical charge; replays are no-ops"
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "member_id": "550e8400-e29b-41d4-a716-446655440000",
            "business_id": "11111111-1111-1111-1111-111111111111",
            "amount": 15.00,
            "description": "Cafe - 15.00",
            "source": "kiosk",
            "idempotency_key": "0d8d1c4e-5b8f-4a53-9d3c-2a1f0c9e7b11"
        }
    })


class VoidTransactionRequest(BaseModel):
    reason: str = Field(..., description="Reason for voiding")
    admin_user_id: Optional[UUID] = None


class AdjustBalanceRequest(BaseModel):
    amount: Decimal
    adjustment_type: AdjustmentType
    notes: Optional[str] = None
    admin_user_id: Optional[UUID] = None


class ChargeResult(BaseModel):
    transaction_id: UUID
    balance_before: Decimal
    balance_after: Decimal
    duplicate: bool = False
    message: str


class VoidResult(BaseModel):
    transaction_id: UUID
    reversal_id: UUID
    new_balance: Decimal
    message: str


class AdjustmentResult(BaseModel):
    adjustment_id: UUID
    balance_before: Decimal
    balance_after: Decimal
    message: str


class RecalculationResult(BaseModel):
    member_id: UUID
    old_balance: Decimal
    new_balance: Decimal
    transaction_count: int
    changed: bool


class MemberBalance(BaseModel):
    member_id: UUID
    balance: Decimal
    total_transactions: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    member_id: UUID
    transactions: list[Transaction]
    adjustments: list[BalanceAdjustment]
    reversals: list[TransactionReversal] = Field(default_factory=list)
    total_count: int
    current_balance: Decimal


class BulkSyncItem(BaseModel):
    client_tx_id: str
    member_id: UUID
    business_id: UUID
    amount: Decimal
    description: Optional[str] = None
    occurred_at: Optional[datetime] = None


class BulkSyncRequest(BaseModel):
    device_id: str
    transactions: list[BulkSyncItem]


class BulkSyncItemResult(BaseModel):
    client_tx_id: str
    status: BulkItemStatus
    server_transaction_id: Optional[UUID] = None
    balance_after: Optional[Decimal] = None
    error: Optional[str] = None


class BulkSyncResponse(BaseModel):
    device_id: str
    processed: int
    results: list[BulkSyncItemResult]

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from .models import AdjustmentType, BillingCycleStatus, TransactionStatus

MONEY = Decimal("0.01")

DEMO_MEMBER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
DEMO_OVERDRAFT_MEMBER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
DEMO_BUSINESS_ID = UUID("11111111-1111-1111-1111-111111111111")
DEMO_BILLING_CYCLE_ID = UUID("22222222-2222-2222-2222-222222222222")


def money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(MONEY)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _failure(code: str, error: str, **extra: Any) -> dict:
    return {"success": False, "code": code, "error": error, **extra}


class StoreError(Exception):
    """The store could not be reached or the procedure call itself failed."""


class LedgerStore(ABC):
    """Atomic procedures and reads the ledger depends on.

    Every balance-changing procedure locks the member row for the whole
    read-modify-write and returns a JSON-like result carrying ``success`` and,
    on failure, ``code`` and ``error``. Infrastructure failures raise
    ``StoreError`` instead.
    """

    @abstractmethod
    def process_charge(
        self,
        *,
        member_id: UUID,
        business_id: UUID,
        amount: Decimal,
        description: Optional[str],
        notes: Optional[str],
        billing_cycle_id: Optional[UUID],
        source: str,
        device_info: dict,
        ip_address: Optional[str],
        idempotency_key: Optional[str],
    ) -> dict: ...

    @abstractmethod
    def void_transaction(self, *, transaction_id: UUID, reason: str, admin_user_id: Optional[UUID]) -> dict: ...

    @abstractmethod
    def adjust_balance(
        self,
        *,
        member_id: UUID,
        amount: Decimal,
        adjustment_type: str,
        notes: Optional[str],
        admin_user_id: Optional[UUID],
        billing_cycle_id: Optional[UUID],
    ) -> dict: ...

    @abstractmethod
    def recalculate_balance(self, *, member_id: UUID) -> dict: ...

    @abstractmethod
    def get_active_billing_cycle_id(self) -> Optional[UUID]: ...

    @abstractmethod
    def get_member(self, member_id: UUID) -> Optional[dict]: ...

    @abstractmethod
    def get_business(self, business_id: UUID) -> Optional[dict]: ...

    @abstractmethod
    def get_transaction(self, transaction_id: UUID) -> Optional[dict]: ...

    @abstractmethod
    def list_member_transactions(self, member_id: UUID) -> list[dict]: ...

    @abstractmethod
    def list_member_adjustments(self, member_id: UUID) -> list[dict]: ...

    @abstractmethod
    def list_member_reversals(self, member_id: UUID) -> list[dict]: ...

    @abstractmethod
    def list_audit_logs(self, record_id: UUID) -> list[dict]: ...

    @abstractmethod
    def recent_business_amounts(self, business_id: UUID, limit: int) -> list[Decimal]: ...

    @abstractmethod
    def update_preset_amounts(self, business_id: UUID, presets: list[int]) -> None: ...

    @abstractmethod
    def hard_delete_transaction(self, transaction_id: UUID) -> bool:
        """Remove a transaction row without touching the member balance."""


class InMemoryStorage(LedgerStore):
    def __init__(self, seed: bool = True):
        self.members: dict[UUID, dict] = {}
        self.businesses: dict[UUID, dict] = {}
        self.billing_cycles: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self.reversals: dict[UUID, dict] = {}
        self.adjustments: dict[UUID, dict] = {}
        self.audit_logs: list[dict] = []
        self.idempotency_index: dict[str, UUID] = {}
        self._index_lock = threading.Lock()
        self._member_locks: dict[UUID, threading.Lock] = {}
        if seed:
            self._seed_data()

    def _seed_data(self):
        self.add_member(DEMO_MEMBER_ID, "M1001", "John", "Member", balance=Decimal("20.00"))
        self.add_member(DEMO_OVERDRAFT_MEMBER_ID, "M1002", "Jane", "Member", balance=Decimal("0.00"))
        self.add_business(DEMO_BUSINESS_ID, "Corner Cafe")
        self.add_billing_cycle(DEMO_BILLING_CYCLE_ID, "Current cycle", BillingCycleStatus.ACTIVE)

    def add_member(
        self,
        member_id: UUID,
        member_code: str,
        first_name: str,
        last_name: str,
        balance: Decimal = Decimal("0.00"),
        is_active: bool = True,
    ) -> dict:
        row = {
            "id": member_id, "member_code": member_code,
            "first_name": first_name, "last_name": last_name,
            "balance": money(0), "is_active": is_active,
        }
        with self._index_lock:
            self.members[member_id] = row
        # Opening balances go through the adjustment log so recalculation agrees with them.
        if money(balance) != 0:
            self.adjust_balance(
                member_id=member_id,
                amount=money(balance),
                adjustment_type=AdjustmentType.DEPOSIT.value if balance > 0 else AdjustmentType.CORRECTION.value,
                notes="Opening balance",
                admin_user_id=None,
                billing_cycle_id=None,
            )
        return dict(self.members[member_id])

    def add_business(
        self,
        business_id: UUID,
        name: str,
        is_active: bool = True,
        preset_amounts: Optional[list[int]] = None,
        auto_update_preset_amounts: bool = False,
        preset_amounts_threshold: Optional[int] = None,
        max_preset_amounts: Optional[int] = None,
    ) -> dict:
        row = {
            "id": business_id, "name": name, "is_active": is_active,
            "preset_amounts": list(preset_amounts or []),
            "auto_update_preset_amounts": auto_update_preset_amounts,
            "preset_amounts_threshold": preset_amounts_threshold,
            "max_preset_amounts": max_preset_amounts,
        }
        with self._index_lock:
            self.businesses[business_id] = row
        return dict(row)

    def add_billing_cycle(self, cycle_id: UUID, name: str, status: BillingCycleStatus) -> dict:
        row = {"id": cycle_id, "name": name, "status": status, "start_date": _now(), "end_date": None}
        with self._index_lock:
            self.billing_cycles[cycle_id] = row
        return dict(row)

    def _member_lock(self, member_id: UUID) -> threading.Lock:
        with self._index_lock:
            return self._member_locks.setdefault(member_id, threading.Lock())

    def _snapshot(self, table: dict) -> list[dict]:
        # Other members insert concurrently; never iterate the live dict.
        with self._index_lock:
            return list(table.values())

    # -----------------------------
    # Atomic procedures
    # -----------------------------
    def process_charge(
        self,
        *,
        member_id: UUID,
        business_id: UUID,
        amount: Decimal,
        description: Optional[str],
        notes: Optional[str],
        billing_cycle_id: Optional[UUID],
        source: str,
        device_info: dict,
        ip_address: Optional[str],
        idempotency_key: Optional[str],
    ) -> dict:
        with self._member_lock(member_id):
            if idempotency_key:
                with self._index_lock:
                    existing_id = self.idempotency_index.get(idempotency_key)
                    existing = self.transactions.get(existing_id) if existing_id else None
                if existing:
                    return {
                        "success": True,
                        "duplicate": True,
                        "transaction_id": existing_id,
                        "balance_before": existing["balance_before"],
                        "balance_after": existing["balance_after"],
                    }

            if amount is None or Decimal(amount) <= 0:
                return _failure("INVALID_AMOUNT", "Amount must be greater than zero")

            member = self.members.get(member_id)
            if not member:
                return _failure("MEMBER_NOT_FOUND", "Member not found")
            if not member["is_active"]:
                return _failure("MEMBER_INACTIVE", "Member account is not active")

            business = self.businesses.get(business_id)
            if not business:
                return _failure("BUSINESS_NOT_FOUND", "Business not found")
            if not business["is_active"]:
                return _failure("BUSINESS_INACTIVE", "Business is not active")

            balance_before = member["balance"]
            balance_after = money(balance_before - money(amount))
            transaction_id = uuid4()

            row = {
                "id": transaction_id,
                "member_id": member_id,
                "business_id": business_id,
                "amount": money(amount),
                "balance_before": balance_before,
                "balance_after": balance_after,
                "billing_cycle_id": billing_cycle_id,
                "source": source,
                "description": description,
                "notes": notes,
                "device_info": dict(device_info or {}),
                "ip_address": ip_address,
                "idempotency_key": idempotency_key,
                "status": TransactionStatus.POSTED,
                "voided_at": None, "void_reason": None, "voided_by": None,
                "created_at": _now(),
            }
            with self._index_lock:
                self.transactions[transaction_id] = row
                if idempotency_key:
                    self.idempotency_index[idempotency_key] = transaction_id
            member["balance"] = balance_after

            return {
                "success": True,
                "duplicate": False,
                "transaction_id": transaction_id,
                "balance_before": balance_before,
                "balance_after": balance_after,
            }

    def void_transaction(self, *, transaction_id: UUID, reason: str, admin_user_id: Optional[UUID]) -> dict:
        with self._index_lock:
            transaction = self.transactions.get(transaction_id)
        if not transaction:
            return _failure("TRANSACTION_NOT_FOUND", "Transaction not found")

        with self._member_lock(transaction["member_id"]):
            # Re-read under the lock: a concurrent void may have won.
            if transaction["status"] == TransactionStatus.VOIDED:
                return _failure("ALREADY_VOIDED", "Transaction already voided", already_voided=True)

            member = self.members.get(transaction["member_id"])
            if not member:
                return _failure("MEMBER_NOT_FOUND", "Member not found")

            now = _now()
            balance_before = member["balance"]
            balance_after = money(balance_before + transaction["amount"])
            reversal_id = uuid4()

            reversal = {
                "id": reversal_id,
                "transaction_id": transaction_id,
                "member_id": transaction["member_id"],
                "amount": transaction["amount"],
                "balance_before": balance_before,
                "balance_after": balance_after,
                "reason": reason,
                "admin_user_id": admin_user_id,
                "created_at": now,
            }
            with self._index_lock:
                self.reversals[reversal_id] = reversal
            transaction["status"] = TransactionStatus.VOIDED
            transaction["voided_at"] = now
            transaction["void_reason"] = reason
            transaction["voided_by"] = admin_user_id
            member["balance"] = balance_after

            return {
                "success": True,
                "already_voided": False,
                "reversal_id": reversal_id,
                "new_balance": balance_after,
            }

    def adjust_balance(
        self,
        *,
        member_id: UUID,
        amount: Decimal,
        adjustment_type: str,
        notes: Optional[str],
        admin_user_id: Optional[UUID],
        billing_cycle_id: Optional[UUID],
    ) -> dict:
        with self._member_lock(member_id):
            member = self.members.get(member_id)
            if not member:
                return _failure("MEMBER_NOT_FOUND", "Member not found")
            if Decimal(amount) == 0:
                return _failure("INVALID_AMOUNT", "Adjustment amount cannot be zero")

            balance_before = member["balance"]
            balance_after = money(balance_before + money(amount))
            adjustment_id = uuid4()

            adjustment = {
                "id": adjustment_id,
                "member_id": member_id,
                "amount": money(amount),
                "adjustment_type": AdjustmentType(adjustment_type),
                "notes": notes,
                "admin_user_id": admin_user_id,
                "balance_before": balance_before,
                "balance_after": balance_after,
                "billing_cycle_id": billing_cycle_id,
                "created_at": _now(),
            }
            with self._index_lock:
                self.adjustments[adjustment_id] = adjustment
            member["balance"] = balance_after

            return {
                "success": True,
                "adjustment_id": adjustment_id,
                "balance_before": balance_before,
                "balance_after": balance_after,
            }

    def recalculate_balance(self, *, member_id: UUID) -> dict:
        with self._member_lock(member_id):
            member = self.members.get(member_id)
            if not member:
                return _failure("MEMBER_NOT_FOUND", "Member not found")

            transactions = [t for t in self._snapshot(self.transactions) if t["member_id"] == member_id]
            adjustments = [a for a in self._snapshot(self.adjustments) if a["member_id"] == member_id]

            charged = sum(
                (t["amount"] for t in transactions if t["status"] == TransactionStatus.POSTED),
                Decimal("0"),
            )
            adjusted = sum((a["amount"] for a in adjustments), Decimal("0"))
            old_balance = member["balance"]
            new_balance = money(adjusted - charged)

            if new_balance != old_balance:
                member["balance"] = new_balance
                with self._index_lock:
                    self.audit_logs.append({
                        "id": uuid4(),
                        "table_name": "members",
                        "record_id": member_id,
                        "action": "UPDATE",
                        "old_data": {"balance": str(old_balance)},
                        "new_data": {"balance": str(new_balance), "recalculated": True},
                        "changed_at": _now(),
                    })

            return {
                "success": True,
                "old_balance": old_balance,
                "new_balance": new_balance,
                "transaction_count": len(transactions) + len(adjustments),
            }

    # -----------------------------
    # Reads
    # -----------------------------
    def get_active_billing_cycle_id(self) -> Optional[UUID]:
        for cycle in self._snapshot(self.billing_cycles):
            if cycle["status"] == BillingCycleStatus.ACTIVE:
                return cycle["id"]
        return None

    def get_member(self, member_id: UUID) -> Optional[dict]:
        row = self.members.get(member_id)
        return dict(row) if row else None

    def get_business(self, business_id: UUID) -> Optional[dict]:
        row = self.businesses.get(business_id)
        return dict(row) if row else None

    def get_transaction(self, transaction_id: UUID) -> Optional[dict]:
        with self._index_lock:
            row = self.transactions.get(transaction_id)
        return dict(row) if row else None

    def list_member_transactions(self, member_id: UUID) -> list[dict]:
        return [dict(t) for t in self._snapshot(self.transactions) if t["member_id"] == member_id]

    def list_member_adjustments(self, member_id: UUID) -> list[dict]:
        return [dict(a) for a in self._snapshot(self.adjustments) if a["member_id"] == member_id]

    def list_member_reversals(self, member_id: UUID) -> list[dict]:
        return [dict(r) for r in self._snapshot(self.reversals) if r["member_id"] == member_id]

    def list_audit_logs(self, record_id: UUID) -> list[dict]:
        with self._index_lock:
            rows = list(self.audit_logs)
        return [dict(row) for row in rows if row["record_id"] == record_id]

    def recent_business_amounts(self, business_id: UUID, limit: int) -> list[Decimal]:
        rows = [t for t in self._snapshot(self.transactions) if t["business_id"] == business_id]
        rows.sort(key=lambda t: t["created_at"], reverse=True)
        return [t["amount"] for t in rows[:limit]]

    def update_preset_amounts(self, business_id: UUID, presets: list[int]) -> None:
        business = self.businesses.get(business_id)
        if business is not None:
            business["preset_amounts"] = list(presets)

    def hard_delete_transaction(self, transaction_id: UUID) -> bool:
        with self._index_lock:
            transaction = self.transactions.pop(transaction_id, None)
            if not transaction:
                return False
            if transaction.get("idempotency_key"):
                self.idempotency_index.pop(transaction["idempotency_key"], None)
        return True

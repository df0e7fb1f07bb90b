import logging
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from supabase import Client, create_client

from .config import settings
from .storage import LedgerStore, StoreError

log = logging.getLogger("pdca.supabase")


def _str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


class SupabaseStore(LedgerStore):
    """LedgerStore backed by the PL/pgSQL functions in ``sql/ledger_procedures.sql``."""

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
                raise StoreError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY in backend env.")
            client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        self.client = client

    def _rpc(self, name: str, params: dict[str, Any]) -> dict:
        try:
            response = self.client.rpc(name, params).execute()
        except Exception as e:
            log.error("RPC %s failed: %s", name, e)
            raise StoreError(str(e)) from e
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise StoreError(f"Unexpected response from {name}")
        return data

    def _select(self, table: str, columns: str = "*", **filters: Any) -> list[dict]:
        try:
            query = self.client.table(table).select(columns)
            for column, value in filters.items():
                query = query.eq(column, value)
            return query.execute().data or []
        except Exception as e:
            log.error("Select on %s failed: %s", table, e)
            raise StoreError(str(e)) from e

    def _first(self, table: str, **filters: Any) -> Optional[dict]:
        rows = self._select(table, **filters)
        return rows[0] if rows else None

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
        return self._rpc("process_kiosk_transaction", {
            "p_member_id": str(member_id),
            "p_business_id": str(business_id),
            "p_amount": str(amount),
            "p_description": description,
            "p_notes": notes,
            "p_billing_cycle_id": _str(billing_cycle_id),
            "p_source": source,
            "p_device_info": device_info or {},
            "p_ip_address": ip_address,
            "p_idempotency_key": idempotency_key,
        })

    def void_transaction(self, *, transaction_id: UUID, reason: str, admin_user_id: Optional[UUID]) -> dict:
        return self._rpc("void_transaction", {
            "p_transaction_id": str(transaction_id),
            "p_reason": reason,
            "p_admin_user_id": _str(admin_user_id),
        })

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
        return self._rpc("admin_adjust_balance", {
            "p_member_id": str(member_id),
            "p_amount": str(amount),
            "p_adjustment_type": adjustment_type,
            "p_notes": notes,
            "p_admin_user_id": _str(admin_user_id),
            "p_billing_cycle_id": _str(billing_cycle_id),
        })

    def recalculate_balance(self, *, member_id: UUID) -> dict:
        return self._rpc("recalculate_member_balance", {"p_member_id": str(member_id)})

    # -----------------------------
    # Reads
    # -----------------------------
    def get_active_billing_cycle_id(self) -> Optional[UUID]:
        row = self._first("billing_cycles", status="active")
        return UUID(row["id"]) if row else None

    def get_member(self, member_id: UUID) -> Optional[dict]:
        return self._first("members", id=str(member_id))

    def get_business(self, business_id: UUID) -> Optional[dict]:
        return self._first("businesses", id=str(business_id))

    def get_transaction(self, transaction_id: UUID) -> Optional[dict]:
        return self._first("transactions", id=str(transaction_id))

    def list_member_transactions(self, member_id: UUID) -> list[dict]:
        return self._select("transactions", member_id=str(member_id))

    def list_member_adjustments(self, member_id: UUID) -> list[dict]:
        return self._select("balance_adjustments", member_id=str(member_id))

    def list_member_reversals(self, member_id: UUID) -> list[dict]:
        return self._select("transaction_reversals", member_id=str(member_id))

    def list_audit_logs(self, record_id: UUID) -> list[dict]:
        return self._select("audit_logs", record_id=str(record_id))

    def recent_business_amounts(self, business_id: UUID, limit: int) -> list[Decimal]:
        try:
            rows = (
                self.client.table("transactions")
                .select("amount")
                .eq("business_id", str(business_id))
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
                .data
            ) or []
        except Exception as e:
            raise StoreError(str(e)) from e
        return [Decimal(str(r["amount"])) for r in rows]

    def update_preset_amounts(self, business_id: UUID, presets: list[int]) -> None:
        try:
            self.client.table("businesses").update({"preset_amounts": presets}).eq("id", str(business_id)).execute()
        except Exception as e:
            raise StoreError(str(e)) from e

    def hard_delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            response = self.client.table("transactions").delete().eq("id", str(transaction_id)).execute()
        except Exception as e:
            raise StoreError(str(e)) from e
        return bool(response.data)

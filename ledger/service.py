import logging
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from .config import Settings, settings as default_settings
from .models import (
    AdjustmentType,
    AuditLogEntry,
    BalanceAdjustment,
    Member,
    Transaction,
    TransactionReversal,
    TransactionSource,
    PostChargeRequest,
    VoidTransactionRequest,
    AdjustBalanceRequest,
    ChargeResult,
    VoidResult,
    AdjustmentResult,
    RecalculationResult,
    MemberBalance,
    LedgerHistoryResponse,
    BulkItemStatus,
    BulkSyncRequest,
    BulkSyncItemResult,
    BulkSyncResponse,
)
from .side_effects import ChargePosted, InlineDispatcher, SideEffectDispatcher
from .storage import InMemoryStorage, LedgerStore, StoreError, money

log = logging.getLogger("pdca.ledger")


class LedgerServiceError(Exception):
    pass


class InvalidAmountError(LedgerServiceError):
    pass


class MemberNotFoundError(LedgerServiceError):
    pass


class BusinessNotFoundError(LedgerServiceError):
    pass


class TransactionNotFoundError(LedgerServiceError):
    pass


class AlreadyVoidedError(LedgerServiceError):
    pass


class ProcedureRejectedError(LedgerServiceError):
    pass


class BatchTooLargeError(LedgerServiceError):
    pass


class LedgerUnavailableError(LedgerServiceError):
    pass


_ERRORS_BY_CODE: dict[str, type[LedgerServiceError]] = {
    "INVALID_AMOUNT": InvalidAmountError,
    "MEMBER_NOT_FOUND": MemberNotFoundError,
    "BUSINESS_NOT_FOUND": BusinessNotFoundError,
    "TRANSACTION_NOT_FOUND": TransactionNotFoundError,
    "ALREADY_VOIDED": AlreadyVoidedError,
}


def normalize_adjustment_amount(amount: Decimal, adjustment_type: AdjustmentType) -> Decimal:
    if adjustment_type == AdjustmentType.DEPOSIT:
        return abs(amount)
    if adjustment_type == AdjustmentType.WITHDRAWAL:
        return -abs(amount)
    return amount


class LedgerService:
    def __init__(
        self,
        storage: Optional[LedgerStore] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        settings: Settings = default_settings,
    ):
        self.storage = storage or InMemoryStorage()
        self.dispatcher = dispatcher or InlineDispatcher()
        self.settings = settings

    def post_charge(self, request: PostChargeRequest) -> ChargeResult:
        if request.amount <= 0:
            raise InvalidAmountError("Amount must be greater than zero")

        billing_cycle_id = self._active_billing_cycle_id()
        result = self._call(
            self.storage.process_charge,
            member_id=request.member_id,
            business_id=request.business_id,
            amount=request.amount,
            description=request.description,
            notes=request.comment,
            billing_cycle_id=billing_cycle_id,
            source=request.source.value,
            device_info=request.device_info,
            ip_address=request.ip_address,
            idempotency_key=request.idempotency_key,
        )

        charge = ChargeResult(
            transaction_id=UUID(str(result["transaction_id"])),
            balance_before=money(result["balance_before"]),
            balance_after=money(result["balance_after"]),
            duplicate=bool(result.get("duplicate")),
            message="Charge already posted (idempotent return)" if result.get("duplicate") else "Charge posted successfully",
        )

        if not charge.duplicate:
            self._publish(ChargePosted(
                transaction_id=charge.transaction_id,
                member_id=request.member_id,
                business_id=request.business_id,
                amount=money(request.amount),
                description=request.description or "",
                source=request.source.value,
                balance_before=charge.balance_before,
                balance_after=charge.balance_after,
            ))
        return charge

    def void_transaction(self, transaction_id: UUID, request: VoidTransactionRequest) -> VoidResult:
        result = self._call(
            self.storage.void_transaction,
            transaction_id=transaction_id,
            reason=request.reason,
            admin_user_id=request.admin_user_id,
        )
        log.info("Transaction %s voided: %s", transaction_id, request.reason)
        return VoidResult(
            transaction_id=transaction_id,
            reversal_id=UUID(str(result["reversal_id"])),
            new_balance=money(result["new_balance"]),
            message="Transaction voided successfully",
        )

    def adjust_balance(self, member_id: UUID, request: AdjustBalanceRequest) -> AdjustmentResult:
        amount = normalize_adjustment_amount(request.amount, request.adjustment_type)
        if amount == 0:
            raise InvalidAmountError("Adjustment amount cannot be zero")

        result = self._call(
            self.storage.adjust_balance,
            member_id=member_id,
            amount=amount,
            adjustment_type=request.adjustment_type.value,
            notes=request.notes,
            admin_user_id=request.admin_user_id,
            billing_cycle_id=self._active_billing_cycle_id(),
        )
        return AdjustmentResult(
            adjustment_id=UUID(str(result["adjustment_id"])),
            balance_before=money(result["balance_before"]),
            balance_after=money(result["balance_after"]),
            message="Balance adjusted successfully",
        )

    def recalculate_balance(self, member_id: UUID) -> RecalculationResult:
        result = self._call(self.storage.recalculate_balance, member_id=member_id)
        old_balance = money(result["old_balance"])
        new_balance = money(result["new_balance"])
        if old_balance != new_balance:
            log.warning("Balance drift for member %s corrected: %s -> %s", member_id, old_balance, new_balance)
        return RecalculationResult(
            member_id=member_id,
            old_balance=old_balance,
            new_balance=new_balance,
            transaction_count=int(result.get("transaction_count", 0)),
            changed=old_balance != new_balance,
        )

    def bulk_sync(self, request: BulkSyncRequest) -> BulkSyncResponse:
        if len(request.transactions) > self.settings.BULK_SYNC_MAX_ITEMS:
            raise BatchTooLargeError(
                f"Too many transactions (max {self.settings.BULK_SYNC_MAX_ITEMS} per request)"
            )

        results = []
        for item in request.transactions:
            try:
                charge = self.post_charge(PostChargeRequest(
                    member_id=item.member_id,
                    business_id=item.business_id,
                    amount=item.amount,
                    description=item.description,
                    source=TransactionSource.KIOSK,
                    device_info={
                        "device_id": request.device_id,
                        "occurred_at": item.occurred_at.isoformat() if item.occurred_at else None,
                    },
                    idempotency_key=f"{request.device_id}:{item.client_tx_id}",
                ))
            except LedgerServiceError as e:
                results.append(BulkSyncItemResult(
                    client_tx_id=item.client_tx_id, status=BulkItemStatus.REJECTED, error=str(e)
                ))
                continue

            results.append(BulkSyncItemResult(
                client_tx_id=item.client_tx_id,
                status=BulkItemStatus.DUPLICATE if charge.duplicate else BulkItemStatus.ACCEPTED,
                server_transaction_id=charge.transaction_id,
                balance_after=charge.balance_after,
            ))

        return BulkSyncResponse(device_id=request.device_id, processed=len(request.transactions), results=results)

    def get_member(self, member_id: UUID) -> Member:
        row = self._read(self.storage.get_member, member_id)
        if not row:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return Member.model_validate(row)

    def get_balance(self, member_id: UUID) -> MemberBalance:
        member = self.get_member(member_id)
        transactions = [Transaction(**t) for t in self._read(self.storage.list_member_transactions, member_id)]
        last = max(transactions, key=lambda t: t.created_at) if transactions else None

        return MemberBalance(
            member_id=member_id,
            balance=money(member.balance),
            total_transactions=len(transactions),
            last_transaction_at=last.created_at if last else None,
        )

    def get_transaction(self, transaction_id: UUID) -> Transaction:
        row = self._read(self.storage.get_transaction, transaction_id)
        if not row:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return Transaction(**row)

    def get_ledger_history(self, member_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        balance = self.get_balance(member_id)
        transactions = [Transaction(**t) for t in self._read(self.storage.list_member_transactions, member_id)]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        adjustments = [BalanceAdjustment(**a) for a in self._read(self.storage.list_member_adjustments, member_id)]
        adjustments.sort(key=lambda a: a.created_at, reverse=True)
        reversals = [TransactionReversal(**r) for r in self._read(self.storage.list_member_reversals, member_id)]
        reversals.sort(key=lambda r: r.created_at, reverse=True)

        return LedgerHistoryResponse(
            member_id=member_id,
            transactions=transactions[offset:offset + limit],
            adjustments=adjustments,
            reversals=reversals,
            total_count=len(transactions),
            current_balance=balance.balance,
        )

    def get_audit_log(self, member_id: UUID) -> list[AuditLogEntry]:
        """Balance repairs recorded against a member, newest first."""
        self.get_member(member_id)
        entries = [AuditLogEntry(**row) for row in self._read(self.storage.list_audit_logs, member_id)]
        entries.sort(key=lambda e: e.changed_at, reverse=True)
        return entries

    def _active_billing_cycle_id(self) -> Optional[UUID]:
        return self._read(self.storage.get_active_billing_cycle_id)

    def _call(self, procedure: Callable[..., dict], **kwargs) -> dict:
        try:
            result = procedure(**kwargs)
        except StoreError as e:
            log.error("Procedure %s failed: %s", getattr(procedure, "__name__", "procedure"), e)
            raise LedgerUnavailableError(f"Database error: {e}") from e

        if not result.get("success"):
            error_cls = _ERRORS_BY_CODE.get(result.get("code") or "", ProcedureRejectedError)
            raise error_cls(result.get("error") or "Operation failed")
        return result

    def _read(self, reader: Callable, *args):
        try:
            return reader(*args)
        except StoreError as e:
            raise LedgerUnavailableError(f"Database error: {e}") from e

    def _publish(self, event: ChargePosted) -> None:
        try:
            self.dispatcher.publish(event)
        except Exception:
            log.exception("Failed to publish side effects for %s", event.transaction_id)

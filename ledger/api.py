from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from .config import settings, configure_logging
from .models import (
    PostChargeRequest, VoidTransactionRequest, AdjustBalanceRequest,
    ChargeResult, VoidResult, AdjustmentResult, RecalculationResult,
    MemberBalance, LedgerHistoryResponse, Transaction, AuditLogEntry,
    BulkSyncRequest, BulkSyncResponse,
)
from .presets import PresetAmountTuner
from .service import (
    LedgerService, LedgerServiceError, MemberNotFoundError,
    BusinessNotFoundError, TransactionNotFoundError, AlreadyVoidedError,
    BatchTooLargeError, LedgerUnavailableError,
)
from .sheets import SpreadsheetLogger
from .side_effects import BackgroundDispatcher
from .storage import InMemoryStorage, LedgerStore


def create_ledger_service() -> LedgerService:
    store: LedgerStore
    if settings.LEDGER_STORE == "supabase":
        from .supabase_store import SupabaseStore
        store = SupabaseStore()
    else:
        store = InMemoryStorage()

    dispatcher = BackgroundDispatcher(
        [PresetAmountTuner(store), SpreadsheetLogger(store)],
        max_workers=settings.SIDE_EFFECT_WORKERS,
    )
    return LedgerService(store, dispatcher)


configure_logging()

app = FastAPI(
    title="PDCA Ledger API",
    description="Member balance ledger: charges, voids, adjustments and offline kiosk sync",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = create_ledger_service()


def get_ledger_service() -> LedgerService:
    return ledger_service


@app.on_event("shutdown")
def shutdown_side_effects():
    dispatcher = ledger_service.dispatcher
    if isinstance(dispatcher, BackgroundDispatcher):
        # Let queued sheet appends and preset updates finish.
        dispatcher.shutdown(wait=True)


def _http_error(e: LedgerServiceError) -> HTTPException:
    if isinstance(e, (MemberNotFoundError, BusinessNotFoundError, TransactionNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, AlreadyVoidedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, LedgerUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "pdca-ledger"}


@app.post("/charges", response_model=ChargeResult, status_code=status.HTTP_201_CREATED, tags=["Charges"])
def post_charge(
    body: PostChargeRequest,
    request: Request,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    service: LedgerService = Depends(get_ledger_service),
) -> ChargeResult:
    updates = {}
    if idempotency_key and not body.idempotency_key:
        updates["idempotency_key"] = idempotency_key
    if not body.ip_address and request.client:
        updates["ip_address"] = request.client.host
    try:
        return service.post_charge(body.model_copy(update=updates))
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/charges/bulk", response_model=BulkSyncResponse, tags=["Charges"])
def bulk_sync(
    body: BulkSyncRequest,
    kiosk_token: Optional[str] = Header(default=None, alias="x-kiosk-token"),
    service: LedgerService = Depends(get_ledger_service),
) -> BulkSyncResponse:
    expected = service.settings.KIOSK_SYNC_TOKEN
    if not expected or kiosk_token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        return service.bulk_sync(body)
    except BatchTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/transactions/{transaction_id}", response_model=Transaction, tags=["Transactions"])
def get_transaction(transaction_id: UUID, service: LedgerService = Depends(get_ledger_service)) -> Transaction:
    try:
        return service.get_transaction(transaction_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/transactions/{transaction_id}/void", response_model=VoidResult, tags=["Transactions"])
def void_transaction(
    transaction_id: UUID,
    body: VoidTransactionRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> VoidResult:
    try:
        return service.void_transaction(transaction_id, body)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/members/{member_id}/adjustments", response_model=AdjustmentResult, status_code=status.HTTP_201_CREATED, tags=["Members"])
def adjust_balance(
    member_id: UUID,
    body: AdjustBalanceRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> AdjustmentResult:
    try:
        return service.adjust_balance(member_id, body)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/members/{member_id}/recalculate", response_model=RecalculationResult, tags=["Members"])
def recalculate_balance(member_id: UUID, service: LedgerService = Depends(get_ledger_service)) -> RecalculationResult:
    try:
        return service.recalculate_balance(member_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/members/{member_id}/balance", response_model=MemberBalance, tags=["Members"])
def get_member_balance(member_id: UUID, service: LedgerService = Depends(get_ledger_service)) -> MemberBalance:
    try:
        return service.get_balance(member_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/members/{member_id}/ledger", response_model=LedgerHistoryResponse, tags=["Members"])
def get_member_ledger(
    member_id: UUID,
    limit: int = 50,
    offset: int = 0,
    service: LedgerService = Depends(get_ledger_service),
) -> LedgerHistoryResponse:
    try:
        return service.get_ledger_history(member_id, limit, offset)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/members/{member_id}/audit-log", response_model=list[AuditLogEntry], tags=["Members"])
def get_member_audit_log(member_id: UUID, service: LedgerService = Depends(get_ledger_service)) -> list[AuditLogEntry]:
    try:
        return service.get_audit_log(member_id)
    except LedgerServiceError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

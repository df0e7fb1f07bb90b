import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from ledger.models import PostChargeRequest
from ledger.service import LedgerService, LedgerServiceError, LedgerUnavailableError

from .config import queue_settings
from .models import ChargePayload, SubmitResult

TRANSIENT_STATUS_CODES = {408, 425, 429}


class DeliveryError(Exception):
    pass


class TransientDeliveryError(DeliveryError):
    """Processor unreachable or temporarily failing; safe to retry."""


class ChargeRejectedError(DeliveryError):
    """Processor refused the charge (validation or business rule)."""


class ChargeSubmitter(ABC):
    @abstractmethod
    async def submit(self, payload: ChargePayload, idempotency_key: str) -> SubmitResult: ...


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {response.status_code}"


class HttpChargeSubmitter(ChargeSubmitter):
    def __init__(
        self,
        base_url: str = queue_settings.API_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = queue_settings.SUBMIT_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def submit(self, payload: ChargePayload, idempotency_key: str) -> SubmitResult:
        body = payload.model_dump(mode="json", exclude={"member_name", "business_name"})
        body["idempotency_key"] = idempotency_key
        try:
            r = await self._client.post(
                f"{self.base_url}/charges",
                json=body,
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            raise TransientDeliveryError(f"Network error: {e}") from e

        if r.status_code >= 500 or r.status_code in TRANSIENT_STATUS_CODES:
            raise TransientDeliveryError(_detail(r))
        if r.status_code >= 400:
            raise ChargeRejectedError(_detail(r))
        try:
            return SubmitResult.model_validate(r.json())
        except ValueError as e:
            # The charge may have posted; a replay under the same key settles it.
            raise TransientDeliveryError(f"Unreadable response ({r.status_code}): {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LocalChargeSubmitter(ChargeSubmitter):
    """Delivers straight into an in-process LedgerService."""

    def __init__(self, service: LedgerService):
        self.service = service

    async def submit(self, payload: ChargePayload, idempotency_key: str) -> SubmitResult:
        try:
            request = PostChargeRequest(
                member_id=payload.member_id,
                business_id=payload.business_id,
                amount=payload.amount,
                description=payload.description or None,
                comment=payload.comment,
                source=payload.source,
                device_info=payload.device_info,
                idempotency_key=idempotency_key,
            )
        except ValidationError as e:
            raise ChargeRejectedError(str(e)) from e

        try:
            charge = await asyncio.to_thread(self.service.post_charge, request)
        except LedgerUnavailableError as e:
            raise TransientDeliveryError(str(e)) from e
        except LedgerServiceError as e:
            raise ChargeRejectedError(str(e)) from e

        return SubmitResult(
            transaction_id=charge.transaction_id,
            balance_before=charge.balance_before,
            balance_after=charge.balance_after,
            duplicate=charge.duplicate,
        )

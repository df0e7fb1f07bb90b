"""
Best-effort side channels for posted charges.

The ledger publishes a ``ChargePosted`` event after a charge commits and never
waits on, or learns about, what the handlers do with it. Handler failures are
logged and dropped.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional
from uuid import UUID

log = logging.getLogger("pdca.side_effects")


@dataclass(frozen=True)
class ChargePosted:
    transaction_id: UUID
    member_id: UUID
    business_id: UUID
    amount: Decimal
    description: str
    source: str
    balance_before: Decimal
    balance_after: Decimal
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Handler = Callable[[ChargePosted], None]


class SideEffectDispatcher(ABC):
    def __init__(self, handlers: Optional[Iterable[Handler]] = None):
        self.handlers: list[Handler] = list(handlers or [])

    def subscribe(self, handler: Handler) -> None:
        self.handlers.append(handler)

    @abstractmethod
    def publish(self, event: ChargePosted) -> None:
        """Hand the event to every handler. Must not raise."""

    def _run(self, handler: Handler, event: ChargePosted) -> None:
        try:
            handler(event)
        except Exception:
            log.exception(
                "Side effect %s failed for transaction %s",
                getattr(handler, "__name__", type(handler).__name__),
                event.transaction_id,
            )


class InlineDispatcher(SideEffectDispatcher):
    def publish(self, event: ChargePosted) -> None:
        for handler in self.handlers:
            self._run(handler, event)


class BackgroundDispatcher(SideEffectDispatcher):
    def __init__(self, handlers: Optional[Iterable[Handler]] = None, max_workers: int = 4):
        super().__init__(handlers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pdca-side-effects")

    def publish(self, event: ChargePosted) -> None:
        for handler in self.handlers:
            try:
                self._executor.submit(self._run, handler, event)
            except RuntimeError:
                log.warning("Dispatcher is shut down; dropping side effect for %s", event.transaction_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

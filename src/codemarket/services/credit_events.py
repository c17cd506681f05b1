"""Balance-change notifications.

Ledger mutations are published here after their transaction commits, so
subscribers only ever see balances that are durable.  Subscriber failures
are logged and swallowed: the ledger is already committed and must not be
affected by a slow or broken listener.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from codemarket.services.credit_service import LedgerEntry

log = structlog.get_logger()


class BalanceChanged(BaseModel):
    user_id: uuid.UUID
    amount: int
    txn_type: str
    balance_after: int
    reference_id: Optional[uuid.UUID] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_entry(
        cls,
        entry: LedgerEntry,
        reference_id: Optional[uuid.UUID] = None,
    ) -> "BalanceChanged":
        return cls(
            user_id=entry.user_id,
            amount=entry.amount,
            txn_type=entry.txn_type,
            balance_after=entry.balance_after,
            reference_id=reference_id,
        )


Handler = Callable[[BalanceChanged], Awaitable[None]]


class CreditEventBus:
    """In-process fan-out of BalanceChanged events to async handlers."""

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register *handler*; returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    async def publish(self, event: BalanceChanged) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as exc:
                log.warning(
                    "credit_event_handler_failed",
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    user_id=str(event.user_id),
                    error=str(exc),
                )

    async def publish_entries(
        self,
        entries: list[Optional[LedgerEntry]],
        reference_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Publish one event per ledger entry, skipping ``None`` placeholders."""
        for entry in entries:
            if entry is not None:
                await self.publish(BalanceChanged.from_entry(entry, reference_id))


class RedisBalancePublisher:
    """Pushes balance changes onto a Redis pub/sub channel as JSON."""

    def __init__(self, redis: Any, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def __call__(self, event: BalanceChanged) -> None:
        payload = json.dumps({
            "event": "balance_changed",
            "user_id": str(event.user_id),
            "amount": event.amount,
            "txn_type": event.txn_type,
            "balance_after": event.balance_after,
            "reference_id": str(event.reference_id) if event.reference_id else None,
            "occurred_at": event.occurred_at.isoformat(),
        })
        await self._redis.publish(self._channel, payload)


credit_events = CreditEventBus()

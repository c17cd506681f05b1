"""Tests for balance-change notifications."""

from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock

import pytest

from codemarket.services.credit_events import (
    BalanceChanged,
    CreditEventBus,
    RedisBalancePublisher,
)
from codemarket.services.credit_service import LedgerEntry


def _entry(amount=10, balance_after=10) -> LedgerEntry:
    return LedgerEntry(
        txn_id=1,
        user_id=uuid.uuid4(),
        amount=amount,
        txn_type="sale",
        balance_after=balance_after,
    )


@pytest.mark.asyncio
async def test_publish_entries_fans_out_and_skips_none():
    bus = CreditEventBus()
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe(handler)
    order_id = uuid.uuid4()
    entries = [_entry(-50, 0), None, _entry(50, 50)]

    await bus.publish_entries(entries, reference_id=order_id)

    assert [e.amount for e in received] == [-50, 50]
    assert all(e.reference_id == order_id for e in received)


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others():
    bus = CreditEventBus()
    healthy = AsyncMock()

    async def broken(event):
        raise RuntimeError("listener down")

    bus.subscribe(broken)
    bus.subscribe(healthy)

    await bus.publish(BalanceChanged.from_entry(_entry()))

    healthy.assert_awaited_once()


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    bus = CreditEventBus()
    handler = AsyncMock()
    unsubscribe = bus.subscribe(handler)

    unsubscribe()
    unsubscribe()
    await bus.publish(BalanceChanged.from_entry(_entry()))

    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_publisher_payload():
    redis = AsyncMock()
    entry = _entry(25, 125)
    publisher = RedisBalancePublisher(redis, "credits:balance-changed")

    await publisher(BalanceChanged.from_entry(entry))

    channel, payload = redis.publish.await_args[0]
    assert channel == "credits:balance-changed"
    data = json.loads(payload)
    assert data["event"] == "balance_changed"
    assert data["user_id"] == str(entry.user_id)
    assert (data["amount"], data["balance_after"]) == (25, 125)
    assert data["reference_id"] is None

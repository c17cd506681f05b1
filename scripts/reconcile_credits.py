#!/usr/bin/env python3
"""Nightly ledger reconciliation script.

Checks two invariants and reports violations as JSON:

* every ``user_credits.available_credits`` equals the sum of that user's
  ``credit_transactions`` amounts;
* every completed order has exactly one ``purchase`` debit referencing it.

Usage:
    DATABASE_URL=postgresql://... python scripts/reconcile_credits.py

Exit codes:
    0 -- ledger is consistent
    1 -- one or more discrepancies found
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from datetime import datetime, timezone

import asyncpg  # type: ignore[import-untyped]

DEFAULT_DATABASE_URL = "postgresql://app:devpassword@db:5432/codemarket"

BALANCE_QUERY = """
SELECT
    uc.user_id,
    uc.available_credits AS stored_balance,
    COALESCE(t.computed, 0)::int AS computed_balance
FROM user_credits uc
LEFT JOIN (
    SELECT user_id, SUM(amount) AS computed
    FROM credit_transactions
    GROUP BY user_id
) t USING (user_id)
WHERE uc.available_credits <> COALESCE(t.computed, 0)
ORDER BY uc.user_id
"""

SETTLEMENT_QUERY = """
SELECT
    o.order_id,
    o.order_number,
    COUNT(ct.txn_id)::int AS purchase_debits
FROM orders o
LEFT JOIN credit_transactions ct
       ON ct.reference_id = o.order_id AND ct.txn_type = 'purchase'
WHERE o.status = 'completed'
GROUP BY o.order_id, o.order_number
HAVING COUNT(ct.txn_id) <> 1
ORDER BY o.order_number
"""


def _get_dsn() -> str:
    """Return a raw ``postgresql://`` DSN (strip any SQLAlchemy dialect prefix)."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


async def reconcile(dsn: str) -> dict[str, list[dict]]:
    """Run both checks and return their violations keyed by check name."""
    conn: asyncpg.Connection = await asyncpg.connect(dsn)
    try:
        balance_rows = await conn.fetch(BALANCE_QUERY)
        settlement_rows = await conn.fetch(SETTLEMENT_QUERY)
    finally:
        await conn.close()

    return {
        "balances": [
            {
                "user_id": str(row["user_id"]),
                "stored_balance": row["stored_balance"],
                "computed_balance": row["computed_balance"],
                "difference": row["stored_balance"] - row["computed_balance"],
            }
            for row in balance_rows
        ],
        "settlements": [
            {
                "order_id": str(row["order_id"]),
                "order_number": row["order_number"],
                "purchase_debits": row["purchase_debits"],
            }
            for row in settlement_rows
        ],
    }


async def main() -> int:
    findings = await reconcile(_get_dsn())
    total = sum(len(items) for items in findings.values())

    report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_discrepancies": total,
        **findings,
    }
    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")

    return 1 if total else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

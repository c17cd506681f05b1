"""Initial schema -- ledger, orders, role upgrades, seed configs, and triggers.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from alembic import op

from codemarket.schema_sql import (
    indexes,
    seeds,
    tables_core,
    tables_marketplace,
    triggers,
)

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _execute_all(statements: list[str]) -> None:
    """Execute a list of SQL statements sequentially."""
    for stmt in statements:
        op.execute(stmt)


def upgrade() -> None:
    _execute_all(tables_core.ALL)
    _execute_all(tables_marketplace.ALL)
    _execute_all(indexes.ALL)
    _execute_all(seeds.ALL)
    _execute_all(triggers.FUNCTIONS_ALL)
    _execute_all(triggers.TRIGGERS_ALL)


def downgrade() -> None:
    _drop_triggers()
    _drop_functions()
    _drop_tables()


def _drop_triggers() -> None:
    op.execute(
        "DROP TRIGGER IF EXISTS trg_credit_transactions_immutable "
        "ON credit_transactions;"
    )
    op.execute("DROP TRIGGER IF EXISTS trg_orders_terminal_status ON orders;")


def _drop_functions() -> None:
    op.execute("DROP FUNCTION IF EXISTS check_order_terminal_status();")
    op.execute("DROP FUNCTION IF EXISTS raise_immutable_error();")


def _drop_tables() -> None:
    tables = [
        "role_upgrade_requests",
        "order_downloads",
        "orders",
        "projects",
        "credit_configs",
        "credit_transactions",
        "user_credits",
        "users",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")

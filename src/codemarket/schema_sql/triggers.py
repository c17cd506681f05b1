"""Trigger functions and trigger DDL for the initial schema."""

# ---- Trigger functions ----

FN_RAISE_IMMUTABLE = """
CREATE OR REPLACE FUNCTION raise_immutable_error()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Rows in table % are immutable', TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""

FN_CHECK_ORDER_TERMINAL = """
CREATE OR REPLACE FUNCTION check_order_terminal_status()
RETURNS TRIGGER AS $$
BEGIN
    IF OLD.status <> 'pending' AND NEW.status IS DISTINCT FROM OLD.status THEN
        RAISE EXCEPTION 'Order % is % and cannot become %',
            OLD.order_number, OLD.status, NEW.status;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

FUNCTIONS_ALL = [
    FN_RAISE_IMMUTABLE,
    FN_CHECK_ORDER_TERMINAL,
]

# ---- Triggers ----

TRIGGERS_ALL = [
    "CREATE TRIGGER trg_credit_transactions_immutable "
    "BEFORE UPDATE OR DELETE ON credit_transactions "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",

    "CREATE TRIGGER trg_orders_terminal_status "
    "BEFORE UPDATE ON orders "
    "FOR EACH ROW EXECUTE FUNCTION check_order_terminal_status();",
]

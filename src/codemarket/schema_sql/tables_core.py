"""CREATE TABLE statements for users and the credit ledger."""

USERS = """
CREATE TABLE users (
    user_id     UUID PRIMARY KEY,
    email       VARCHAR(320) NOT NULL UNIQUE,
    username    VARCHAR(50)  NOT NULL UNIQUE,
    role        VARCHAR(20)  NOT NULL DEFAULT 'buyer'
                CONSTRAINT ck_users_role
                CHECK (role IN ('buyer', 'seller', 'admin')),
    is_active   BOOLEAN NOT NULL DEFAULT TRUE,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ
);
"""

USER_CREDITS = """
CREATE TABLE user_credits (
    account_id        BIGSERIAL PRIMARY KEY,
    user_id           UUID NOT NULL UNIQUE REFERENCES users(user_id) ON DELETE CASCADE,
    available_credits INTEGER NOT NULL DEFAULT 0
                      CONSTRAINT ck_user_credits_non_negative
                      CHECK (available_credits >= 0),
    total_earned      INTEGER NOT NULL DEFAULT 0
                      CONSTRAINT ck_user_credits_earned_non_negative
                      CHECK (total_earned >= 0),
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at        TIMESTAMPTZ
);
"""

CREDIT_TRANSACTIONS = """
CREATE TABLE credit_transactions (
    txn_id         BIGSERIAL PRIMARY KEY,
    user_id        UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    amount         INTEGER NOT NULL
                   CONSTRAINT ck_credit_txn_amount_nonzero CHECK (amount <> 0),
    txn_type       VARCHAR(30) NOT NULL
                   CONSTRAINT ck_credit_txn_type
                   CHECK (txn_type IN (
                       'register_bonus','upload_bonus','docker_bonus',
                       'review_bonus','daily_signin','referral_bonus',
                       'purchase','sale','admin_adjustment'
                   )),
    description    TEXT,
    reference_id   UUID,
    reference_type VARCHAR(50),
    balance_after  INTEGER NOT NULL,
    created_by     UUID REFERENCES users(user_id),
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

CREDIT_CONFIGS = """
CREATE TABLE credit_configs (
    config_id    SERIAL PRIMARY KEY,
    config_key   VARCHAR(100) NOT NULL UNIQUE,
    config_value INTEGER NOT NULL
                 CONSTRAINT ck_credit_config_non_negative CHECK (config_value >= 0),
    description  TEXT,
    is_active    BOOLEAN NOT NULL DEFAULT TRUE,
    updated_at   TIMESTAMPTZ
);
"""

ALL = [USERS, USER_CREDITS, CREDIT_TRANSACTIONS, CREDIT_CONFIGS]
